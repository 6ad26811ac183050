"""Use cases for the signs service."""

from .create_sign import CreateSignUseCase, PipelinePolicy

__all__ = [
    "CreateSignUseCase",
    "PipelinePolicy",
]
