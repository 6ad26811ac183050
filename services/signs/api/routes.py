from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel

from services.signs.application.dto import CreateSignCommand
from services.signs.application.errors import (
    PoseRejectedError,
    SignPipelineError,
    ValidationError,
)
from services.signs.application.use_cases.create_sign import CreateSignUseCase
from services.signs.domain.sign import CreatedSign, PoseAnalysis


class PoseAnalysisResponse(BaseModel):
    isValid: bool
    confidence: float
    hasUpperBody: bool

    @classmethod
    def from_domain(cls, analysis: PoseAnalysis) -> "PoseAnalysisResponse":
        return cls(
            isValid=analysis.is_valid,
            confidence=analysis.confidence,
            hasUpperBody=analysis.has_upper_body,
        )


class SignResponse(BaseModel):
    id: str
    gloss: str
    description: str
    category: str
    videoUrl: str | None
    thumbUrl: str | None
    keypoints: Dict[str, Any] | None = None
    createdAt: str
    updatedAt: str
    poseAnalysis: PoseAnalysisResponse | None = None


class CreateSignResponse(BaseModel):
    sign: SignResponse

    @classmethod
    def from_domain(cls, created: CreatedSign) -> "CreateSignResponse":
        sign = created.sign
        return cls(
            sign=SignResponse(
                id=sign.id,
                gloss=sign.gloss,
                description=sign.description,
                category=sign.category,
                videoUrl=sign.video_url,
                thumbUrl=sign.thumb_url,
                keypoints=dict(sign.keypoints) if sign.keypoints is not None else None,
                createdAt=sign.created_at.isoformat().replace("+00:00", "Z"),
                updatedAt=sign.updated_at.isoformat().replace("+00:00", "Z"),
                poseAnalysis=PoseAnalysisResponse.from_domain(created.pose_analysis)
                if created.pose_analysis is not None
                else None,
            )
        )


def create_router(create_sign_use_case: CreateSignUseCase) -> APIRouter:
    router = APIRouter()
    signs_router = APIRouter(prefix="/v1/signs", tags=["signs"])

    @signs_router.post(
        "", response_model=CreateSignResponse, status_code=status.HTTP_201_CREATED
    )
    async def create_sign_endpoint(
        file: UploadFile = File(...),
        gloss: str = Form(""),
        description: str = Form(""),
        category: str = Form(""),
    ):
        """Upload and process a new sign video."""
        command = CreateSignCommand(
            filename=file.filename or "upload.bin",
            content_type=file.content_type or "",
            size_bytes=file.size,
            stream=file.file,
            gloss=gloss,
            description=description,
            category=category,
        )
        try:
            created = await create_sign_use_case.execute(command)
        except (ValidationError, PoseRejectedError, SignPipelineError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        finally:
            await file.close()
        return CreateSignResponse.from_domain(created)

    router.include_router(signs_router)
    return router
