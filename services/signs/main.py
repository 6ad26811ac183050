from __future__ import annotations

import logging

from fastapi import FastAPI

from services.signs.api.routes import create_router
from services.signs.application.use_cases.create_sign import (
    CreateSignUseCase,
    PipelinePolicy,
)
from services.signs.config import SignsConfig, load_config
from services.signs.infrastructure.background import create_background_treatment
from services.signs.infrastructure.db import create_session_factory
from services.signs.infrastructure.pose_service import create_pose_estimator
from services.signs.infrastructure.signs import SqlAlchemySignRepository
from services.signs.infrastructure.staging import create_staging_store
from services.signs.infrastructure.storage import create_publication_sink
from services.signs.infrastructure.transcoder import create_transcoder


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    )


def build_use_case(cfg: SignsConfig) -> CreateSignUseCase:
    transcoder = create_transcoder(cfg)
    policy = PipelinePolicy(
        allowed_mime_types=frozenset(cfg.allowed_mime_types),
        max_upload_bytes=cfg.max_upload_bytes,
        pose_validation_enabled=cfg.pose_validation_enabled,
        frame_sample_count=cfg.frame_sample_count,
        video_folder=cfg.storage_video_folder,
        thumbnail_folder=cfg.storage_thumbnail_folder,
    )
    return CreateSignUseCase(
        staging=create_staging_store(cfg),
        transcoder=transcoder,
        background=create_background_treatment(cfg, transcoder),
        publisher=create_publication_sink(cfg),
        repository=SqlAlchemySignRepository(
            session_factory=create_session_factory(cfg.database_url)
        ),
        policy=policy,
        pose_estimator=create_pose_estimator(cfg)
        if cfg.pose_validation_enabled
        else None,
    )


def build_app(
    config: SignsConfig | None = None,
    use_case: CreateSignUseCase | None = None,
) -> FastAPI:
    cfg = config or load_config()
    configure_logging(cfg.log_level)
    app = FastAPI(title="Sign ingest")

    @app.get("/ping")
    async def ping():
        return {"message": "pong"}

    app.include_router(create_router(use_case or build_use_case(cfg)))
    return app
