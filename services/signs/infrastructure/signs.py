from __future__ import annotations

import logging

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlalchemy.exc import SQLAlchemyError

from services.signs.application.errors import PersistenceError
from services.signs.application.interfaces import SignRepository
from services.signs.domain.sign import SignRecord
from services.signs.infrastructure.db import Base

logger = logging.getLogger(__name__)


class SignRow(Base):
    __tablename__ = "signs"

    id = Column(String, primary_key=True)
    gloss = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False)
    video_url = Column(String, nullable=False)
    thumb_url = Column(String, nullable=False)
    keypoints = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class SqlAlchemySignRepository(SignRepository):
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def save(self, record: SignRecord) -> SignRecord:
        row = SignRow(
            id=record.id,
            gloss=record.gloss,
            description=record.description,
            category=record.category,
            video_url=record.video_url,
            thumb_url=record.thumb_url,
            keypoints=dict(record.keypoints) if record.keypoints is not None else None,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to persist sign %s: %s", record.id, exc)
            raise PersistenceError(f"Could not store sign {record.id}") from exc
        return record

    def get(self, sign_id: str) -> SignRecord | None:
        with self._session_factory() as db:
            row = db.get(SignRow, sign_id)
            if row is None:
                return None
            return SignRecord(
                id=row.id,
                gloss=row.gloss,
                description=row.description,
                category=row.category,
                video_url=row.video_url,
                thumb_url=row.thumb_url,
                keypoints=row.keypoints,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
