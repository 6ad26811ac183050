from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from services.signs.application.errors import TranscodeError
from services.signs.application.interfaces import Transcoder
from services.signs.config import SignsConfig
from services.signs.domain.sign import VideoProbe

logger = logging.getLogger(__name__)

FASTSTART_EXTENSIONS = {".mp4", ".m4v", ".mov"}
FRAME_PREFIX = "frame-"


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


class FFmpegTranscoder(Transcoder):
    def __init__(
        self,
        *,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        crf: int = 23,
        preset: str = "fast",
        frame_size: str = "640x480",
        timeout_seconds: float | None = None,
        log_level: str = "error",
    ) -> None:
        self._ffmpeg = ffmpeg_path
        self._ffprobe = ffprobe_path
        self._crf = crf
        self._preset = preset
        self._frame_size = frame_size
        self._timeout = timeout_seconds
        self._log_level = log_level

    @property
    def ffmpeg_path(self) -> str:
        return self._ffmpeg

    async def normalize(self, source: Path, destination: Path) -> Path:
        _require_input(source)
        cmd = [
            *self._ffmpeg_prefix(),
            "-i",
            source.as_posix(),
            *self.h264_output_args(destination),
            destination.as_posix(),
        ]
        await self.run_stage("normalize", cmd, outputs=[destination])
        return destination

    async def extract_thumbnail(
        self, source: Path, destination: Path, duration: float | None = None
    ) -> Path:
        _require_input(source)
        midpoint = (duration or 0.0) / 2.0
        cmd = [
            *self._ffmpeg_prefix(),
            "-ss",
            f"{midpoint:.3f}",
            "-i",
            source.as_posix(),
            "-frames:v",
            "1",
            "-vf",
            f"scale={self._scale_expr()}",
            "-q:v",
            "2",
            destination.as_posix(),
        ]
        await self.run_stage("thumbnail", cmd, outputs=[destination])
        return destination

    async def extract_frames(
        self,
        source: Path,
        output_dir: Path,
        count: int,
        duration: float | None = None,
    ) -> list[Path]:
        _require_input(source)
        if count <= 0:
            return []
        output_dir.mkdir(parents=True, exist_ok=True)
        if duration and duration > 0:
            rate = f"{count / duration:.6f}"
        else:
            rate = "1"
        pattern = output_dir / f"{FRAME_PREFIX}%03d.jpg"
        cmd = [
            *self._ffmpeg_prefix(),
            "-i",
            source.as_posix(),
            "-vf",
            f"fps={rate},scale={self._scale_expr()}",
            "-frames:v",
            str(count),
            "-f",
            "image2",
            pattern.as_posix(),
        ]
        try:
            await self.run_stage("frames", cmd)
        except TranscodeError:
            for partial in _frame_files(output_dir):
                partial.unlink(missing_ok=True)
            raise

        frames = _frame_files(output_dir)[:count]
        if not frames:
            raise TranscodeError(f"ffmpeg produced no frames for {source.name}")
        logger.info("Extracted %d frames from %s", len(frames), source.name)
        return frames

    async def probe(self, source: Path) -> VideoProbe:
        """Best-effort metadata; never raises."""
        if not source.exists():
            return VideoProbe()
        cmd = [
            self._ffprobe,
            "-v",
            "error",
            "-show_entries",
            "format=duration,size,bit_rate,nb_streams",
            "-of",
            "json",
            source.as_posix(),
        ]
        try:
            result = await self.run(cmd)
        except TranscodeError as exc:
            logger.warning("ffprobe failed for %s: %s", source.name, exc)
            return VideoProbe()
        if result.returncode != 0:
            logger.warning(
                "ffprobe exited %d for %s: %s",
                result.returncode,
                source.name,
                result.stderr.strip(),
            )
            return VideoProbe()
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("ffprobe returned invalid JSON for %s", source.name)
            return VideoProbe()

        fmt = data.get("format") or {}
        probe = VideoProbe(
            duration=_to_float(fmt.get("duration")),
            bitrate=_to_int(fmt.get("bit_rate")),
            stream_count=_to_int(fmt.get("nb_streams")),
            size_bytes=_to_int(fmt.get("size")),
        )
        logger.info(
            "Video info %s: duration=%s bitrate=%s streams=%s",
            source.name,
            probe.duration,
            probe.bitrate,
            probe.stream_count,
        )
        return probe

    def h264_output_args(self, destination: Path) -> list[str]:
        args = [
            "-c:v",
            "libx264",
            "-preset",
            self._preset,
            "-crf",
            str(self._crf),
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "aac",
        ]
        if destination.suffix.lower() in FASTSTART_EXTENSIONS:
            args.extend(["-movflags", "+faststart"])
        return args

    async def run_stage(
        self, stage: str, cmd: Sequence[str], outputs: Sequence[Path] = ()
    ) -> ProcessResult:
        """Run one ffmpeg stage; on failure remove its partial outputs."""
        for output in outputs:
            output.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("ffmpeg %s: %s", stage, " ".join(cmd))
        try:
            result = await self.run(cmd)
            if result.returncode != 0:
                logger.error(
                    "ffmpeg %s failed (exit %d)\nstdout: %s\nstderr: %s",
                    stage,
                    result.returncode,
                    result.stdout.strip(),
                    result.stderr.strip(),
                )
                raise TranscodeError(f"ffmpeg {stage} exited with {result.returncode}")
            missing = [o for o in outputs if not o.exists()]
            if missing:
                raise TranscodeError(
                    f"ffmpeg {stage} did not produce {', '.join(o.name for o in missing)}"
                )
        except TranscodeError:
            for output in outputs:
                output.unlink(missing_ok=True)
            raise
        return result

    async def run(self, cmd: Sequence[str]) -> ProcessResult:
        return await asyncio.to_thread(self._run_blocking, list(cmd))

    def _run_blocking(self, cmd: list[str]) -> ProcessResult:
        try:
            completed = subprocess.run(cmd, capture_output=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise TranscodeError(
                f"{Path(cmd[0]).name} timed out after {self._timeout}s"
            ) from exc
        except OSError as exc:
            raise TranscodeError(f"Could not start {cmd[0]}: {exc}") from exc
        return ProcessResult(
            returncode=completed.returncode,
            stdout=_decode(completed.stdout),
            stderr=_decode(completed.stderr),
        )

    def _ffmpeg_prefix(self) -> list[str]:
        return [self._ffmpeg, "-y", "-hide_banner", "-loglevel", self._log_level]

    def _scale_expr(self) -> str:
        return self._frame_size.lower().replace("x", ":")


def _require_input(source: Path) -> None:
    if not source.exists():
        raise TranscodeError(f"Input file not found: {source}")


def _frame_files(directory: Path) -> list[Path]:
    return sorted(directory.glob(f"{FRAME_PREFIX}*.jpg"))


def _decode(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="ignore")
    return str(raw)


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def create_transcoder(config: SignsConfig) -> FFmpegTranscoder:
    return FFmpegTranscoder(
        ffmpeg_path=config.ffmpeg_path,
        ffprobe_path=config.ffprobe_path,
        crf=config.video_crf,
        preset=config.video_preset,
        frame_size=config.thumbnail_size,
        timeout_seconds=config.ffmpeg_timeout_seconds,
    )
