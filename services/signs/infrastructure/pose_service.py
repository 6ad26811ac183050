from __future__ import annotations

import asyncio
from functools import partial
from pathlib import Path
from typing import Sequence

from libras_hub.pose_validation import (
    LazyPoseModel,
    PoseDetector,
    PoseEstimate,
    VideoValidity,
    create_mediapipe_pose,
)
from services.signs.application.interfaces import PoseEstimator
from services.signs.config import SignsConfig


class MediaPipePoseEstimator(PoseEstimator):
    """
    Pose estimation service backed by MediaPipe Pose.
    Inference runs in worker threads so other jobs keep moving.
    """

    def __init__(self, detector: PoseDetector) -> None:
        self._detector = detector

    async def detect_pose(self, image_path: Path) -> PoseEstimate:
        return await asyncio.to_thread(self._detector.detect_pose, image_path)

    async def analyze_frames(self, frame_paths: Sequence[Path]) -> VideoValidity:
        return await asyncio.to_thread(self._detector.analyze_frames, list(frame_paths))


def create_pose_estimator(config: SignsConfig) -> PoseEstimator:
    """Factory function to create the pose estimator with its shared model handle."""
    model = LazyPoseModel(
        partial(
            create_mediapipe_pose,
            model_complexity=config.pose_model_complexity,
            min_detection_confidence=config.pose_min_detection_confidence,
        )
    )
    detector = PoseDetector(
        model,
        min_upper_body_fraction=config.pose_min_upper_body_fraction,
        min_confidence=config.pose_min_confidence,
        min_valid_frame_ratio=config.pose_min_valid_frame_ratio,
    )
    return MediaPipePoseEstimator(detector)
