from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional


class ArtifactRole(str, Enum):
    RAW = "raw"
    NORMALIZED = "normalized"
    BACKGROUND_TREATED = "background-treated"
    THUMBNAIL = "thumbnail"
    FRAME = "frame"


class PipelineState(str, Enum):
    RECEIVED = "received"
    STAGED = "staged"
    NORMALIZED = "normalized"
    BACKGROUND_TREATED = "background_treated"
    THUMBNAIL_READY = "thumbnail_ready"
    FRAMES_EXTRACTED = "frames_extracted"
    POSE_SCORED = "pose_scored"
    PUBLISHED = "published"
    PERSISTED = "persisted"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"


class ResourceKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


@dataclass(frozen=True)
class UploadJob:
    job_id: str
    content_type: str
    filename: str
    size_bytes: int | None
    staging_dir: Path


@dataclass(frozen=True)
class StagedArtifact:
    role: ArtifactRole
    path: Path
    index: Optional[int] = None

    @property
    def label(self) -> str:
        if self.index is None:
            return self.role.value
        return f"{self.role.value}[{self.index}]"


@dataclass(frozen=True)
class VideoProbe:
    duration: float | None = None
    bitrate: int | None = None
    stream_count: int | None = None
    size_bytes: int | None = None


@dataclass(frozen=True)
class PublishOptions:
    resource_kind: ResourceKind
    folder: str
    public_id: str


@dataclass(frozen=True)
class PublishedAsset:
    role: ArtifactRole
    url: str


@dataclass(frozen=True)
class SignRecord:
    id: str
    gloss: str
    description: str
    category: str
    video_url: str
    thumb_url: str
    keypoints: Mapping[str, Any] | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PoseAnalysis:
    is_valid: bool
    confidence: float
    has_upper_body: bool


@dataclass(frozen=True)
class CreatedSign:
    sign: SignRecord
    pose_analysis: PoseAnalysis | None = None
