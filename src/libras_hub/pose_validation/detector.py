from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional

import cv2

from libras_hub.pose_validation.metrics import (
    MIN_CONFIDENCE,
    MIN_UPPER_BODY_FRACTION,
    MIN_VALID_FRAME_RATIO,
    aggregate_estimates,
    build_estimate,
)
from libras_hub.pose_validation.types import Landmark, PoseEstimate, VideoValidity

logger = logging.getLogger(__name__)


class PoseDetectionError(RuntimeError):
    """Raised when a single image cannot be scored."""


def create_mediapipe_pose(model_complexity: int = 1, min_detection_confidence: float = 0.5):
    import mediapipe as mp

    return mp.solutions.pose.Pose(
        static_image_mode=True,
        model_complexity=int(model_complexity),
        enable_segmentation=False,
        min_detection_confidence=float(min_detection_confidence),
    )


class LazyPoseModel:
    """Process-wide pose model, loaded on first use.

    Loading is guarded so concurrent first callers share one instance, and
    inference is serialized because the MediaPipe graph is not re-entrant.
    """

    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory
        self._model: Any = None
        self._init_lock = threading.Lock()
        self._infer_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def get(self) -> Any:
        if self._model is None:
            with self._init_lock:
                if self._model is None:
                    logger.info("Initializing pose landmark model (one-time)...")
                    self._model = self._factory()
        return self._model

    def process(self, rgb) -> Any:
        model = self.get()
        with self._infer_lock:
            return model.process(rgb)

    def close(self) -> None:
        with self._init_lock:
            if self._model is not None and hasattr(self._model, "close"):
                self._model.close()
            self._model = None


class PoseDetector:
    def __init__(
        self,
        model: LazyPoseModel,
        *,
        min_upper_body_fraction: float = MIN_UPPER_BODY_FRACTION,
        min_confidence: float = MIN_CONFIDENCE,
        min_valid_frame_ratio: float = MIN_VALID_FRAME_RATIO,
    ) -> None:
        self._model = model
        self._min_upper_body_fraction = min_upper_body_fraction
        self._min_confidence = min_confidence
        self._min_valid_frame_ratio = min_valid_frame_ratio

    def detect_pose(self, image_path: Path | str) -> PoseEstimate:
        frame = cv2.imread(str(image_path))
        if frame is None:
            raise PoseDetectionError(f"Could not read image: {image_path}")
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

        try:
            results = self._model.process(rgb)
        except Exception as exc:
            raise PoseDetectionError(
                f"Pose inference failed for {Path(image_path).name}: {exc}"
            ) from exc

        pose_landmarks = getattr(results, "pose_landmarks", None)
        if not pose_landmarks:
            return PoseEstimate.empty()

        landmarks = _to_landmarks(pose_landmarks.landmark)
        return build_estimate(
            landmarks,
            min_upper_body_fraction=self._min_upper_body_fraction,
            min_confidence=self._min_confidence,
        )

    def analyze_frames(self, frame_paths: Iterable[Path | str]) -> VideoValidity:
        estimates: List[Optional[PoseEstimate]] = []
        for frame_path in frame_paths:
            try:
                estimate = self.detect_pose(frame_path)
            except Exception:
                logger.exception("Error analyzing frame %s", frame_path)
                estimates.append(None)
                continue
            logger.debug(
                "Frame %s: upper_body=%s confidence=%.2f valid=%s",
                Path(frame_path).name,
                estimate.has_upper_body,
                estimate.confidence,
                estimate.is_valid,
            )
            estimates.append(estimate)

        validity = aggregate_estimates(
            estimates, min_valid_ratio=self._min_valid_frame_ratio
        )
        logger.info(
            "Pose analysis: frames=%d valid=%d avg_confidence=%.2f passed=%s",
            validity.frames_analyzed,
            validity.valid_frames,
            validity.average_confidence,
            validity.is_valid,
        )
        return validity


def _to_landmarks(raw) -> List[Landmark]:
    return [
        Landmark(
            x=float(p.x),
            y=float(p.y),
            z=float(getattr(p, "z", 0.0) or 0.0),
            visibility=float(getattr(p, "visibility", 0.0) or 0.0),
        )
        for p in raw
    ]
