from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

# MediaPipe Pose landmark pairs drawn as the body skeleton.
POSE_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, 1),
    (1, 2),
    (2, 3),
    (3, 7),
    (0, 4),
    (4, 5),
    (5, 6),
    (6, 8),
    (9, 10),
    (11, 12),
    (11, 13),
    (13, 15),
    (12, 14),
    (14, 16),
    (11, 23),
    (12, 24),
    (23, 24),
    (23, 25),
    (25, 27),
    (24, 26),
    (26, 28),
)


@dataclass(frozen=True)
class Landmark:
    """A single body point in normalized image coordinates."""

    x: float
    y: float
    z: float
    visibility: float  # [0..1]

    def inside_frame(self) -> bool:
        return 0.0 < self.x < 1.0 and 0.0 < self.y < 1.0


@dataclass(frozen=True)
class PoseEstimate:
    landmarks: Tuple[Landmark, ...]
    has_upper_body: bool
    confidence: float
    is_valid: bool

    @classmethod
    def empty(cls) -> "PoseEstimate":
        return cls(landmarks=(), has_upper_body=False, confidence=0.0, is_valid=False)

    def keypoints(self) -> Dict[str, Any] | None:
        """Structured payload stored alongside a sign for downstream ML use."""
        if not self.landmarks:
            return None
        pose: List[Dict[str, float]] = [
            {
                "id": idx,
                "x": lm.x,
                "y": lm.y,
                "z": lm.z,
                "visibility": lm.visibility,
            }
            for idx, lm in enumerate(self.landmarks)
        ]
        return {
            "pose": pose,
            "connections": [list(pair) for pair in POSE_CONNECTIONS],
        }


@dataclass(frozen=True)
class VideoValidity:
    frames_analyzed: int
    valid_frames: int
    average_confidence: float
    is_valid: bool

    @property
    def valid_ratio(self) -> float:
        if self.frames_analyzed == 0:
            return 0.0
        return self.valid_frames / self.frames_analyzed
