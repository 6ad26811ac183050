"""
Pose-based framing checks for sign videos.

Scores sampled frames with a landmark model and decides whether the signer is
visible from the waist up often enough for the clip to be usable.
"""

from libras_hub.pose_validation.detector import (
    LazyPoseModel,
    PoseDetectionError,
    PoseDetector,
    create_mediapipe_pose,
)
from libras_hub.pose_validation.types import (
    POSE_CONNECTIONS,
    Landmark,
    PoseEstimate,
    VideoValidity,
)

__all__ = [
    "LazyPoseModel",
    "Landmark",
    "POSE_CONNECTIONS",
    "PoseDetectionError",
    "PoseDetector",
    "PoseEstimate",
    "VideoValidity",
    "create_mediapipe_pose",
]
