from __future__ import annotations


class SignIngestError(RuntimeError):
    """Base class for failures raised by the sign ingest pipeline."""


class ValidationError(SignIngestError):
    """Upload rejected at intake (content type or size)."""


class StagingError(SignIngestError):
    """Raised when the raw upload cannot be written to the staging area."""


class TranscodeError(SignIngestError):
    """Raised when an ffmpeg stage exits non-zero, times out or has no input."""


class PublicationError(SignIngestError):
    """Raised when an artifact cannot be uploaded to object storage."""


class PersistenceError(SignIngestError):
    """Raised by the record sink when a finished sign cannot be stored."""


class PoseRejectedError(SignIngestError):
    """The signer is not framed well enough in the sampled frames."""


class SignPipelineError(SignIngestError):
    """Generic failure reported to callers; details stay in the logs."""

    def __init__(self, job_id: str, message: str = "Error processing video") -> None:
        super().__init__(message)
        self.job_id = job_id
