from __future__ import annotations

import logging
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from services.signs.application.errors import StagingError, ValidationError
from services.signs.application.interfaces import StagingStore
from services.signs.config import SignsConfig
from services.signs.domain.sign import ArtifactRole, StagedArtifact, UploadJob

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


class LocalStagingStore(StagingStore):
    """Per-job scratch directories with a cleanup manifest.

    Paths are registered when they are allocated, before the stage that writes
    them runs, so a failed stage can never leave an untracked file behind.
    """

    def __init__(self, root: Path | str, *, max_bytes: int | None = None) -> None:
        self._root = Path(root)
        self._max_bytes = max_bytes
        self._lock = threading.Lock()
        self._dirs: dict[str, Path] = {}
        self._manifests: dict[str, list[StagedArtifact]] = {}

    def allocate(self, job_id: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        job_dir = self._root / f"{stamp}-{job_id}"
        try:
            job_dir.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise StagingError(f"Could not create staging dir {job_dir}: {exc}") from exc
        with self._lock:
            self._dirs[job_id] = job_dir
            self._manifests[job_id] = []
        return job_dir

    def stage(self, job: UploadJob, source: BinaryIO) -> StagedArtifact:
        artifact = self.derive(job.job_id, ArtifactRole.RAW, _safe_suffix(job.filename))
        written = 0
        try:
            with artifact.path.open("wb") as dest:
                while True:
                    chunk = source.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if self._max_bytes is not None and written > self._max_bytes:
                        raise ValidationError(
                            f"Upload exceeds the maximum size of {self._max_bytes} bytes"
                        )
                    dest.write(chunk)
        except OSError as exc:
            raise StagingError(f"Could not stage upload {job.filename!r}: {exc}") from exc
        logger.info("Staged %s (%d bytes) for job %s", artifact.path.name, written, job.job_id)
        return artifact

    def derive(
        self,
        job_id: str,
        role: ArtifactRole,
        suffix: str,
        index: int | None = None,
    ) -> StagedArtifact:
        job_dir = self._job_dir(job_id)
        suffix = suffix if suffix.startswith(".") else f".{suffix}"
        name = role.value if index is None else f"{role.value}-{index:03d}"
        return self.register(job_id, role, job_dir / f"{name}{suffix}", index)

    def register(
        self,
        job_id: str,
        role: ArtifactRole,
        path: Path,
        index: int | None = None,
    ) -> StagedArtifact:
        artifact = StagedArtifact(role=role, path=Path(path), index=index)
        with self._lock:
            manifest = self._manifests.get(job_id)
            if manifest is None:
                raise StagingError(f"Unknown staging job {job_id}")
            for existing in manifest:
                if existing.path == artifact.path:
                    return existing
            manifest.append(artifact)
        return artifact

    def artifacts(self, job_id: str) -> list[StagedArtifact]:
        with self._lock:
            return list(self._manifests.get(job_id, []))

    def cleanup(self, job_id: str) -> None:
        with self._lock:
            manifest = self._manifests.pop(job_id, [])
            job_dir = self._dirs.pop(job_id, None)

        logger.info("Cleaning up %d staged artifacts for job %s", len(manifest), job_id)
        for artifact in manifest:
            try:
                artifact.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.error("Failed to remove %s: %s", artifact.path, exc)

        if job_dir is not None and job_dir.exists():
            try:
                shutil.rmtree(job_dir)
            except OSError as exc:
                logger.error("Failed to remove staging dir %s: %s", job_dir, exc)

    def _job_dir(self, job_id: str) -> Path:
        with self._lock:
            job_dir = self._dirs.get(job_id)
        if job_dir is None:
            raise StagingError(f"Unknown staging job {job_id}")
        return job_dir


def _safe_suffix(filename: str) -> str:
    suffix = Path(filename or "").suffix.lower()
    if not suffix or not suffix[1:].isalnum():
        return ".bin"
    return suffix


def create_staging_store(config: SignsConfig) -> StagingStore:
    return LocalStagingStore(config.staging_root, max_bytes=config.max_upload_bytes)
