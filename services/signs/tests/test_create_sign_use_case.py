from __future__ import annotations

import asyncio
import io
import shutil
from pathlib import Path

import pytest

from libras_hub.pose_validation import Landmark, PoseEstimate, VideoValidity
from services.signs.application.dto import CreateSignCommand
from services.signs.application.errors import (
    PersistenceError,
    PoseRejectedError,
    SignPipelineError,
    TranscodeError,
    ValidationError,
)
from services.signs.application.use_cases.create_sign import (
    CreateSignUseCase,
    PipelinePolicy,
)
from services.signs.config import DEFAULT_ALLOWED_MIME_TYPES
from services.signs.domain.sign import VideoProbe
from services.signs.infrastructure.staging import LocalStagingStore


class FakeTranscoder:
    def __init__(self, fail_normalize: bool = False) -> None:
        self.fail_normalize = fail_normalize
        self.seen: dict[str, Path] = {}

    async def normalize(self, source: Path, destination: Path) -> Path:
        self.seen["normalize"] = destination
        if self.fail_normalize:
            destination.write_bytes(b"partial")
            raise TranscodeError("ffmpeg exited with code 1 during normalize")
        destination.write_bytes(b"h264")
        return destination

    async def extract_thumbnail(self, source, destination, duration=None):
        self.seen["thumbnail"] = destination
        destination.write_bytes(b"jpg")
        return destination

    async def extract_frames(self, source, output_dir, count, duration=None):
        frames = []
        for n in range(1, count + 1):
            frame = output_dir / f"frame-{n:03d}.jpg"
            frame.write_bytes(b"jpg")
            frames.append(frame)
        return frames

    async def probe(self, path):
        return VideoProbe(duration=2.0, bitrate=800_000, stream_count=2, size_bytes=4)


class CopyBackground:
    async def apply(self, source: Path, destination: Path) -> Path:
        shutil.copyfile(source, destination)
        return destination


class RecordingPublisher:
    def __init__(self) -> None:
        self.published = []

    async def publish(self, path, options):
        assert path.exists()
        self.published.append(options)
        return f"https://cdn.test/{options.folder}/{options.public_id}{path.suffix}"


class RecordingRepository:
    def __init__(self, error: Exception | None = None) -> None:
        self.saved = []
        self.error = error

    def save(self, record):
        if self.error is not None:
            raise self.error
        self.saved.append(record)
        return record


class FakePoseEstimator:
    def __init__(self, validity: VideoValidity) -> None:
        self.validity = validity
        self.analyzed: list[Path] = []
        self.detected: list[Path] = []

    async def analyze_frames(self, paths):
        self.analyzed = list(paths)
        return self.validity

    async def detect_pose(self, path):
        self.detected.append(path)
        landmarks = tuple(Landmark(0.5, 0.5, 0.0, 0.8) for _ in range(33))
        return PoseEstimate(
            landmarks=landmarks, has_upper_body=True, confidence=0.8, is_valid=True
        )


def _command(content_type="video/mp4", **overrides):
    values = dict(
        filename="casa.mp4",
        content_type=content_type,
        size_bytes=11,
        stream=io.BytesIO(b"video-bytes"),
    )
    values.update(overrides)
    return CreateSignCommand(**values)


@pytest.fixture
def staging_root(tmp_path):
    return tmp_path / "uploads"


def _use_case(
    staging_root,
    *,
    transcoder=None,
    publisher=None,
    repository=None,
    pose_estimator=None,
    pose_enabled=False,
    max_bytes=100 * 1024 * 1024,
):
    return CreateSignUseCase(
        staging=LocalStagingStore(staging_root, max_bytes=max_bytes),
        transcoder=transcoder or FakeTranscoder(),
        background=CopyBackground(),
        publisher=publisher or RecordingPublisher(),
        repository=repository or RecordingRepository(),
        policy=PipelinePolicy(
            allowed_mime_types=frozenset(DEFAULT_ALLOWED_MIME_TYPES),
            max_upload_bytes=max_bytes,
            pose_validation_enabled=pose_enabled,
            frame_sample_count=6,
        ),
        pose_estimator=pose_estimator,
    )


def _leftovers(root: Path):
    if not root.exists():
        return []
    return list(root.rglob("*"))


def test_happy_path_publishes_and_persists(staging_root):
    publisher = RecordingPublisher()
    repository = RecordingRepository()
    use_case = _use_case(staging_root, publisher=publisher, repository=repository)

    created = asyncio.run(
        use_case.execute(_command(gloss="CASA", description="casa", category="noun"))
    )

    sign = created.sign
    assert sign.gloss == "CASA"
    assert sign.category == "noun"
    assert sign.video_url and sign.thumb_url
    assert sign.video_url != sign.thumb_url
    assert sign.video_url.endswith(".mp4")
    assert sign.thumb_url.endswith(".jpg")
    assert sign.keypoints is None
    assert created.pose_analysis is None
    assert repository.saved == [sign]
    assert [o.folder for o in publisher.published] == [
        "librashub/signs",
        "librashub/thumbnails",
    ]
    assert publisher.published[0].public_id.startswith("sign-")
    assert publisher.published[1].public_id.startswith("thumb-")
    assert _leftovers(staging_root) == []


def test_blank_metadata_gets_defaults(staging_root):
    created = asyncio.run(_use_case(staging_root).execute(_command(gloss="  ")))

    assert created.sign.gloss == "Untitled"
    assert created.sign.description == ""
    assert created.sign.category == "outros"


def test_content_type_parameters_are_ignored(staging_root):
    created = asyncio.run(
        _use_case(staging_root).execute(_command(content_type="Video/WebM; codecs=vp9"))
    )

    assert created.sign.video_url


def test_rejects_non_video_before_staging(staging_root):
    transcoder = FakeTranscoder()
    repository = RecordingRepository()
    use_case = _use_case(staging_root, transcoder=transcoder, repository=repository)

    with pytest.raises(ValidationError):
        asyncio.run(use_case.execute(_command(content_type="application/pdf")))

    assert transcoder.seen == {}
    assert repository.saved == []
    assert _leftovers(staging_root) == []


def test_rejects_declared_oversize_upload(staging_root):
    use_case = _use_case(staging_root, max_bytes=4)

    with pytest.raises(ValidationError):
        asyncio.run(use_case.execute(_command(size_bytes=5)))

    assert _leftovers(staging_root) == []


def test_rejects_undeclared_oversize_stream_and_cleans_up(staging_root):
    use_case = _use_case(staging_root, max_bytes=4)

    with pytest.raises(ValidationError):
        asyncio.run(use_case.execute(_command(size_bytes=None)))

    assert _leftovers(staging_root) == []


def test_transcode_failure_reports_generic_error_and_cleans_up(staging_root):
    transcoder = FakeTranscoder(fail_normalize=True)
    publisher = RecordingPublisher()
    repository = RecordingRepository()
    use_case = _use_case(
        staging_root, transcoder=transcoder, publisher=publisher, repository=repository
    )

    with pytest.raises(SignPipelineError) as excinfo:
        asyncio.run(use_case.execute(_command()))

    assert str(excinfo.value) == "Error processing video"
    assert isinstance(excinfo.value.__cause__, TranscodeError)
    assert not transcoder.seen["normalize"].exists()
    assert publisher.published == []
    assert repository.saved == []
    assert _leftovers(staging_root) == []


def test_persistence_failure_still_cleans_up(staging_root):
    repository = RecordingRepository(error=PersistenceError("db down"))
    use_case = _use_case(staging_root, repository=repository)

    with pytest.raises(SignPipelineError):
        asyncio.run(use_case.execute(_command()))

    assert _leftovers(staging_root) == []


def test_empty_urls_from_storage_are_a_failure(staging_root):
    class BlankPublisher:
        async def publish(self, path, options):
            return ""

    use_case = CreateSignUseCase(
        staging=LocalStagingStore(staging_root),
        transcoder=FakeTranscoder(),
        background=CopyBackground(),
        publisher=BlankPublisher(),
        repository=RecordingRepository(),
        policy=PipelinePolicy(
            allowed_mime_types=frozenset({"video/mp4"}), max_upload_bytes=1024
        ),
    )

    with pytest.raises(SignPipelineError):
        asyncio.run(use_case.execute(_command()))


def test_pose_validation_attaches_keypoints(staging_root):
    estimator = FakePoseEstimator(
        VideoValidity(frames_analyzed=6, valid_frames=5, average_confidence=0.7, is_valid=True)
    )
    use_case = _use_case(staging_root, pose_estimator=estimator, pose_enabled=True)

    created = asyncio.run(use_case.execute(_command()))

    assert len(estimator.analyzed) == 6
    assert estimator.detected == [estimator.analyzed[3]]
    assert created.pose_analysis.is_valid is True
    assert created.pose_analysis.confidence == pytest.approx(0.7)
    assert created.pose_analysis.has_upper_body is True
    assert len(created.sign.keypoints["pose"]) == 33
    assert len(created.sign.keypoints["connections"]) == 21
    assert _leftovers(staging_root) == []


def test_pose_rejection_publishes_nothing(staging_root):
    estimator = FakePoseEstimator(
        VideoValidity(frames_analyzed=6, valid_frames=2, average_confidence=0.3, is_valid=False)
    )
    publisher = RecordingPublisher()
    repository = RecordingRepository()
    use_case = _use_case(
        staging_root,
        publisher=publisher,
        repository=repository,
        pose_estimator=estimator,
        pose_enabled=True,
    )

    with pytest.raises(PoseRejectedError) as excinfo:
        asyncio.run(use_case.execute(_command()))

    assert "waist up" in str(excinfo.value)
    assert publisher.published == []
    assert repository.saved == []
    assert _leftovers(staging_root) == []


def test_pose_validation_requires_an_estimator(staging_root):
    with pytest.raises(ValueError):
        _use_case(staging_root, pose_enabled=True)
