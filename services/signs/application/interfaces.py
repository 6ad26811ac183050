from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Protocol, Sequence

from services.signs.domain.sign import (
    ArtifactRole,
    PublishOptions,
    SignRecord,
    StagedArtifact,
    UploadJob,
    VideoProbe,
)

if TYPE_CHECKING:
    from libras_hub.pose_validation import PoseEstimate, VideoValidity


class StagingStore(Protocol):
    def allocate(self, job_id: str) -> Path: ...

    def stage(self, job: UploadJob, source: BinaryIO) -> StagedArtifact: ...

    def derive(
        self,
        job_id: str,
        role: ArtifactRole,
        suffix: str,
        index: int | None = None,
    ) -> StagedArtifact: ...

    def register(
        self,
        job_id: str,
        role: ArtifactRole,
        path: Path,
        index: int | None = None,
    ) -> StagedArtifact: ...

    def artifacts(self, job_id: str) -> list[StagedArtifact]: ...

    def cleanup(self, job_id: str) -> None: ...


class Transcoder(Protocol):
    async def normalize(self, source: Path, destination: Path) -> Path: ...

    async def extract_thumbnail(
        self, source: Path, destination: Path, duration: float | None = None
    ) -> Path: ...

    async def extract_frames(
        self,
        source: Path,
        output_dir: Path,
        count: int,
        duration: float | None = None,
    ) -> list[Path]: ...

    async def probe(self, source: Path) -> VideoProbe: ...


class BackgroundTreatment(Protocol):
    async def apply(self, source: Path, destination: Path) -> Path: ...


class PoseEstimator(Protocol):
    """Scores frames for signer framing."""

    async def detect_pose(self, image_path: Path) -> "PoseEstimate": ...

    async def analyze_frames(self, frame_paths: Sequence[Path]) -> "VideoValidity": ...


class PublicationSink(Protocol):
    async def publish(self, path: Path, options: PublishOptions) -> str: ...


class SignRepository(Protocol):
    def save(self, record: SignRecord) -> SignRecord: ...
