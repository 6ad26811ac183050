import io
from pathlib import Path

import pytest

from services.signs.application.errors import StagingError, ValidationError
from services.signs.domain.sign import ArtifactRole, UploadJob
from services.signs.infrastructure.staging import LocalStagingStore


def _job(store: LocalStagingStore, job_id: str = "job1", filename: str = "clip.mp4"):
    return UploadJob(
        job_id=job_id,
        content_type="video/mp4",
        filename=filename,
        size_bytes=None,
        staging_dir=store.allocate(job_id),
    )


def test_allocate_creates_distinct_dirs_per_job(tmp_path):
    store = LocalStagingStore(tmp_path)

    first = store.allocate("a")
    second = store.allocate("b")

    assert first.is_dir() and second.is_dir()
    assert first != second
    assert first.name.endswith("-a")


def test_stage_writes_raw_artifact(tmp_path):
    store = LocalStagingStore(tmp_path)
    job = _job(store)

    artifact = store.stage(job, io.BytesIO(b"video-bytes"))

    assert artifact.role is ArtifactRole.RAW
    assert artifact.path.parent == job.staging_dir
    assert artifact.path.suffix == ".mp4"
    assert artifact.path.read_bytes() == b"video-bytes"
    assert store.artifacts("job1") == [artifact]


def test_stage_sanitizes_unknown_suffix(tmp_path):
    store = LocalStagingStore(tmp_path)
    job = _job(store, filename="../../etc/passwd")

    artifact = store.stage(job, io.BytesIO(b"x"))

    assert artifact.path.parent == job.staging_dir
    assert artifact.path.suffix == ".bin"


def test_stage_enforces_size_ceiling(tmp_path):
    store = LocalStagingStore(tmp_path, max_bytes=4)
    job = _job(store)

    with pytest.raises(ValidationError):
        store.stage(job, io.BytesIO(b"too many bytes"))

    # the partial file is still tracked for cleanup
    assert len(store.artifacts("job1")) == 1


def test_derive_registers_before_file_exists(tmp_path):
    store = LocalStagingStore(tmp_path)
    _job(store)

    frame = store.derive("job1", ArtifactRole.FRAME, "jpg", index=3)

    assert not frame.path.exists()
    assert frame.path.name == "frame-003.jpg"
    assert frame.label == "frame[3]"
    assert store.artifacts("job1") == [frame]


def test_register_is_deduplicated(tmp_path):
    store = LocalStagingStore(tmp_path)
    job = _job(store)
    path = job.staging_dir / "frame-001.jpg"

    first = store.register("job1", ArtifactRole.FRAME, path, 0)
    second = store.register("job1", ArtifactRole.FRAME, path, 0)

    assert first is second
    assert len(store.artifacts("job1")) == 1


def test_unknown_job_raises(tmp_path):
    store = LocalStagingStore(tmp_path)

    with pytest.raises(StagingError):
        store.derive("nope", ArtifactRole.NORMALIZED, ".mp4")


def test_cleanup_removes_everything_and_tolerates_missing(tmp_path):
    store = LocalStagingStore(tmp_path)
    job = _job(store)
    raw = store.stage(job, io.BytesIO(b"data"))
    never_written = store.derive("job1", ArtifactRole.NORMALIZED, ".mp4")
    stray = job.staging_dir / "frame-009.jpg"
    stray.write_bytes(b"left by a failed process")

    store.cleanup("job1")

    assert not raw.path.exists()
    assert not never_written.path.exists()
    assert not job.staging_dir.exists()
    assert store.artifacts("job1") == []


def test_cleanup_is_idempotent(tmp_path):
    store = LocalStagingStore(tmp_path)
    job = _job(store)
    store.stage(job, io.BytesIO(b"data"))

    store.cleanup("job1")
    store.cleanup("job1")
    store.cleanup("never-allocated")

    assert list(Path(tmp_path).iterdir()) == []


def test_cleanup_continues_after_a_failed_delete(tmp_path, monkeypatch):
    store = LocalStagingStore(tmp_path)
    job = _job(store)
    first = store.derive("job1", ArtifactRole.NORMALIZED, ".mp4")
    second = store.derive("job1", ArtifactRole.THUMBNAIL, ".jpg")
    first.path.write_bytes(b"a")
    second.path.write_bytes(b"b")

    original_unlink = Path.unlink
    attempted = []

    def flaky_unlink(self, missing_ok=False):
        attempted.append(self.name)
        if self == first.path:
            raise PermissionError("locked")
        return original_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)

    store.cleanup("job1")

    assert attempted[:2] == [first.path.name, second.path.name]
    assert not second.path.exists()
    assert not job.staging_dir.exists()
