from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from services.signs.application.dto import CreateSignCommand
from services.signs.application.errors import (
    PoseRejectedError,
    PublicationError,
    SignPipelineError,
    ValidationError,
)
from services.signs.application.interfaces import (
    BackgroundTreatment,
    PoseEstimator,
    PublicationSink,
    SignRepository,
    StagingStore,
    Transcoder,
)
from services.signs.domain.sign import (
    ArtifactRole,
    CreatedSign,
    PipelineState,
    PoseAnalysis,
    PublishedAsset,
    PublishOptions,
    ResourceKind,
    SignRecord,
    StagedArtifact,
    UploadJob,
)

logger = logging.getLogger(__name__)

DEFAULT_GLOSS = "Untitled"
DEFAULT_CATEGORY = "outros"


@dataclass(frozen=True)
class PipelinePolicy:
    allowed_mime_types: frozenset[str]
    max_upload_bytes: int
    pose_validation_enabled: bool = False
    frame_sample_count: int = 12
    video_folder: str = "librashub/signs"
    thumbnail_folder: str = "librashub/thumbnails"


class CreateSignUseCase:
    """
    Runs one upload through stage → transcode → validate → publish → persist.

    Every staged file is registered in the staging manifest when its path is
    allocated; the manifest is cleaned up once, at the end, whatever happened.
    """

    def __init__(
        self,
        *,
        staging: StagingStore,
        transcoder: Transcoder,
        background: BackgroundTreatment,
        publisher: PublicationSink,
        repository: SignRepository,
        policy: PipelinePolicy,
        pose_estimator: PoseEstimator | None = None,
    ) -> None:
        if policy.pose_validation_enabled and pose_estimator is None:
            raise ValueError("pose validation is enabled but no pose estimator was given")
        self._staging = staging
        self._transcoder = transcoder
        self._background = background
        self._publisher = publisher
        self._repository = repository
        self._policy = policy
        self._pose_estimator = pose_estimator

    def validate(self, command: CreateSignCommand) -> None:
        content_type = (command.content_type or "").split(";")[0].strip().lower()
        if content_type not in self._policy.allowed_mime_types:
            raise ValidationError("Invalid file type. Only video files are allowed.")
        if command.size_bytes is not None and command.size_bytes > self._policy.max_upload_bytes:
            raise ValidationError(
                f"File too large. Maximum size is {self._policy.max_upload_bytes} bytes."
            )

    async def execute(self, command: CreateSignCommand) -> CreatedSign:
        self.validate(command)

        job_id = uuid.uuid4().hex
        tracker = _StateTracker(job_id)
        try:
            job = UploadJob(
                job_id=job_id,
                content_type=command.content_type,
                filename=command.filename,
                size_bytes=command.size_bytes,
                staging_dir=self._staging.allocate(job_id),
            )
            return await self._run(job, command, tracker)
        except (ValidationError, PoseRejectedError):
            tracker.fail()
            raise
        except Exception as exc:
            tracker.fail()
            logger.exception("Job %s failed: %s", job_id, exc)
            raise SignPipelineError(job_id) from exc
        finally:
            self._staging.cleanup(job_id)
            tracker.finish()

    async def _run(
        self, job: UploadJob, command: CreateSignCommand, tracker: "_StateTracker"
    ) -> CreatedSign:
        raw = await asyncio.to_thread(self._staging.stage, job, command.stream)
        tracker.advance(PipelineState.STAGED)

        normalized = self._staging.derive(job.job_id, ArtifactRole.NORMALIZED, ".mp4")
        await self._transcoder.normalize(raw.path, normalized.path)
        tracker.advance(PipelineState.NORMALIZED)

        treated = self._staging.derive(
            job.job_id, ArtifactRole.BACKGROUND_TREATED, ".mp4"
        )
        await self._background.apply(normalized.path, treated.path)
        tracker.advance(PipelineState.BACKGROUND_TREATED)

        probe = await self._transcoder.probe(treated.path)
        thumbnail = self._staging.derive(job.job_id, ArtifactRole.THUMBNAIL, ".jpg")
        await self._transcoder.extract_thumbnail(
            treated.path, thumbnail.path, probe.duration
        )
        tracker.advance(PipelineState.THUMBNAIL_READY)

        keypoints = None
        pose_analysis = None
        if self._policy.pose_validation_enabled:
            keypoints, pose_analysis = await self._validate_pose(
                job, treated, probe.duration, tracker
            )

        video_asset, thumb_asset = await self._publish(job, treated, thumbnail)
        tracker.advance(PipelineState.PUBLISHED)

        now = datetime.now(timezone.utc)
        record = SignRecord(
            id=str(uuid.uuid4()),
            gloss=(command.gloss or "").strip() or DEFAULT_GLOSS,
            description=(command.description or "").strip(),
            category=(command.category or "").strip() or DEFAULT_CATEGORY,
            video_url=video_asset.url,
            thumb_url=thumb_asset.url,
            keypoints=keypoints,
            created_at=now,
            updated_at=now,
        )
        saved = await asyncio.to_thread(self._repository.save, record)
        tracker.advance(PipelineState.PERSISTED)
        logger.info("Sign %s (%s) created by job %s", saved.id, saved.gloss, job.job_id)
        return CreatedSign(sign=saved, pose_analysis=pose_analysis)

    async def _validate_pose(
        self,
        job: UploadJob,
        video: StagedArtifact,
        duration: float | None,
        tracker: "_StateTracker",
    ) -> tuple[dict | None, PoseAnalysis]:
        frame_paths = await self._transcoder.extract_frames(
            video.path, job.staging_dir, self._policy.frame_sample_count, duration
        )
        frames = _register_frames(self._staging, job.job_id, frame_paths)
        tracker.advance(PipelineState.FRAMES_EXTRACTED)

        validity = await self._pose_estimator.analyze_frames([f.path for f in frames])
        tracker.advance(PipelineState.POSE_SCORED)
        if not validity.is_valid:
            logger.info(
                "Job %s rejected: %d/%d frames framed from the waist up",
                job.job_id,
                validity.valid_frames,
                validity.frames_analyzed,
            )
            raise PoseRejectedError(
                "Video validation failed: Person must be visible from waist up"
            )

        # the middle sample is the reference frame for stored keypoints
        reference = frames[len(frames) // 2]
        detailed = await self._pose_estimator.detect_pose(reference.path)
        return detailed.keypoints(), PoseAnalysis(
            is_valid=validity.is_valid,
            confidence=validity.average_confidence,
            has_upper_body=detailed.has_upper_body,
        )

    async def _publish(
        self, job: UploadJob, video: StagedArtifact, thumbnail: StagedArtifact
    ) -> tuple[PublishedAsset, PublishedAsset]:
        video_url = await self._publisher.publish(
            video.path,
            PublishOptions(
                resource_kind=ResourceKind.VIDEO,
                folder=self._policy.video_folder,
                public_id=f"sign-{job.job_id}",
            ),
        )
        thumb_url = await self._publisher.publish(
            thumbnail.path,
            PublishOptions(
                resource_kind=ResourceKind.IMAGE,
                folder=self._policy.thumbnail_folder,
                public_id=f"thumb-{job.job_id}",
            ),
        )
        if not video_url or not thumb_url or video_url == thumb_url:
            raise PublicationError(
                f"Storage returned unusable URLs: video={video_url!r} thumb={thumb_url!r}"
            )
        return (
            PublishedAsset(role=ArtifactRole.BACKGROUND_TREATED, url=video_url),
            PublishedAsset(role=ArtifactRole.THUMBNAIL, url=thumb_url),
        )


def _register_frames(
    staging: StagingStore, job_id: str, paths: Iterable[Path]
) -> list[StagedArtifact]:
    return [
        staging.register(job_id, ArtifactRole.FRAME, path, index)
        for index, path in enumerate(paths)
    ]


class _StateTracker:
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.state = PipelineState.RECEIVED

    def advance(self, state: PipelineState) -> None:
        logger.info("Job %s: %s -> %s", self.job_id, self.state.value, state.value)
        self.state = state

    def fail(self) -> None:
        self.advance(PipelineState.FAILED)

    def finish(self) -> None:
        if self.state is PipelineState.PERSISTED:
            self.advance(PipelineState.CLEANED_UP)
