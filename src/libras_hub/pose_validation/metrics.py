from __future__ import annotations

from typing import Iterable, Sequence

from libras_hub.pose_validation.types import Landmark, PoseEstimate, VideoValidity

# nose, shoulders, elbows, wrists, hips
UPPER_BODY_INDICES = (11, 12, 13, 14, 15, 16, 0, 23, 24)

MIN_UPPER_BODY_FRACTION = 0.35
MIN_CONFIDENCE = 0.5
MIN_VALID_FRAME_RATIO = 0.5


def count_visible_upper_body(landmarks: Sequence[Landmark]) -> int:
    visible = 0
    for idx in UPPER_BODY_INDICES:
        if idx < len(landmarks) and landmarks[idx].inside_frame():
            visible += 1
    return visible


def has_upper_body(
    landmarks: Sequence[Landmark], min_fraction: float = MIN_UPPER_BODY_FRACTION
) -> bool:
    """True when at least ``min_fraction`` of the upper-body points are in frame."""
    if not landmarks:
        return False
    visible = count_visible_upper_body(landmarks)
    return visible >= len(UPPER_BODY_INDICES) * min_fraction


def mean_visibility(landmarks: Sequence[Landmark]) -> float:
    if not landmarks:
        return 0.0
    return sum(lm.visibility for lm in landmarks) / len(landmarks)


def build_estimate(
    landmarks: Sequence[Landmark],
    *,
    min_upper_body_fraction: float = MIN_UPPER_BODY_FRACTION,
    min_confidence: float = MIN_CONFIDENCE,
) -> PoseEstimate:
    if not landmarks:
        return PoseEstimate.empty()
    upper_body = has_upper_body(landmarks, min_upper_body_fraction)
    confidence = mean_visibility(landmarks)
    return PoseEstimate(
        landmarks=tuple(landmarks),
        has_upper_body=upper_body,
        confidence=confidence,
        is_valid=upper_body and confidence > min_confidence,
    )


def aggregate_estimates(
    estimates: Iterable[PoseEstimate | None],
    *,
    min_valid_ratio: float = MIN_VALID_FRAME_RATIO,
) -> VideoValidity:
    """Majority vote over sampled frames.

    ``None`` entries stand for frames whose detection failed; they count as
    analyzed, invalid and zero-confidence.
    """
    analyzed = 0
    valid = 0
    total_confidence = 0.0
    for estimate in estimates:
        analyzed += 1
        if estimate is None:
            continue
        total_confidence += estimate.confidence
        if estimate.is_valid:
            valid += 1

    if analyzed == 0:
        return VideoValidity(
            frames_analyzed=0, valid_frames=0, average_confidence=0.0, is_valid=False
        )

    return VideoValidity(
        frames_analyzed=analyzed,
        valid_frames=valid,
        average_confidence=total_confidence / analyzed,
        is_valid=valid / analyzed >= min_valid_ratio,
    )
