from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from services.signs.application.errors import TranscodeError
from services.signs.application.interfaces import BackgroundTreatment
from services.signs.config import SignsConfig
from services.signs.infrastructure.transcoder import FFmpegTranscoder

logger = logging.getLogger(__name__)


class PassthroughBackgroundTreatment(BackgroundTreatment):
    """Copies the normalized video unchanged."""

    async def apply(self, source: Path, destination: Path) -> Path:
        if not source.exists():
            raise TranscodeError(f"Input file not found: {source}")
        try:
            await asyncio.to_thread(shutil.copyfile, source, destination)
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise TranscodeError(f"Background copy failed for {source.name}: {exc}") from exc
        return destination


class ChromaKeyBackgroundTreatment(BackgroundTreatment):
    """Replaces a keyed backdrop (e.g. a green screen) with a flat neutral fill."""

    def __init__(
        self,
        transcoder: FFmpegTranscoder,
        *,
        key_color: str = "0x00FF00",
        fill_color: str = "0xF2F2F2",
        similarity: float = 0.15,
        blend: float = 0.05,
    ) -> None:
        self._transcoder = transcoder
        self._key_color = key_color
        self._fill_color = fill_color
        self._similarity = similarity
        self._blend = blend

    def filter_graph(self) -> str:
        return (
            "[0:v]split[fgsrc][bgsrc];"
            f"[bgsrc]drawbox=c={self._fill_color}:t=fill[bg];"
            f"[fgsrc]chromakey={self._key_color}:{self._similarity}:{self._blend}[fg];"
            "[bg][fg]overlay=format=auto[out]"
        )

    async def apply(self, source: Path, destination: Path) -> Path:
        if not source.exists():
            raise TranscodeError(f"Input file not found: {source}")
        cmd = [
            self._transcoder.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            source.as_posix(),
            "-filter_complex",
            self.filter_graph(),
            "-map",
            "[out]",
            "-map",
            "0:a?",
            *self._transcoder.h264_output_args(destination),
            destination.as_posix(),
        ]
        await self._transcoder.run_stage("background", cmd, outputs=[destination])
        return destination


def create_background_treatment(
    config: SignsConfig, transcoder: FFmpegTranscoder
) -> BackgroundTreatment:
    mode = config.background_mode
    if mode == "passthrough":
        return PassthroughBackgroundTreatment()
    if mode == "chromakey":
        return ChromaKeyBackgroundTreatment(
            transcoder,
            key_color=config.background_key_color,
            fill_color=config.background_fill_color,
        )
    raise ValueError(f"Unknown BACKGROUND_MODE {mode!r}")
