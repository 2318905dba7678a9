"""ffmpeg-backed keyframe and audio extraction."""
from __future__ import annotations

import asyncio
import logging
import re
import shutil
import tempfile
from pathlib import Path

from trem import config
from trem.errors import ExtractionError
from trem.models import ExtractionResult

logger = logging.getLogger("trem.collaborators.extraction")

_FRAME_RE = re.compile(r"^frame-(\d+)\.jpg$")


def resolve_ffmpeg() -> str | None:
    if config.FFMPEG:
        return config.FFMPEG
    return shutil.which("ffmpeg")


class FfmpegExtractor:
    """Runs ffmpeg in a temp dir; failures come back as empty frames and no audio."""

    def __init__(
        self,
        binary: str | None = None,
        frame_interval: int | None = None,
        sample_rate: int | None = None,
        timeout: float | None = None,
    ):
        self.binary = binary
        self.frame_interval = frame_interval or config.FRAME_INTERVAL_SECONDS
        self.sample_rate = sample_rate or config.AUDIO_SAMPLE_RATE
        self.timeout = timeout or config.EXTRACTION_TIMEOUT_SECONDS

    async def _run(self, *args: str) -> None:
        binary = self.binary or resolve_ffmpeg()
        if not binary:
            raise ExtractionError("ffmpeg binary not found (set FFMPEG or install ffmpeg)")
        try:
            proc = await asyncio.create_subprocess_exec(
                binary, "-hide_banner", "-loglevel", "error", "-y", *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionError(f"Could not start ffmpeg: {e}") from e
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ExtractionError(f"ffmpeg timed out after {self.timeout}s") from e
        if proc.returncode != 0:
            raise ExtractionError(f"ffmpeg exited {proc.returncode}: {stderr.decode(errors='replace')[:300]}")

    async def extract_frames(self, video: bytes) -> list[bytes]:
        with tempfile.TemporaryDirectory(prefix="trem-frames-") as tmp:
            workdir = Path(tmp)
            source = workdir / "input.bin"
            source.write_bytes(video)
            await self._run("-i", str(source), "-vf", f"fps=1/{self.frame_interval}", str(workdir / "frame-%d.jpg"))
            numbered = []
            for path in workdir.iterdir():
                match = _FRAME_RE.match(path.name)
                if match:
                    numbered.append((int(match.group(1)), path))
            return [path.read_bytes() for _, path in sorted(numbered)]

    async def extract_audio(self, video: bytes) -> bytes | None:
        with tempfile.TemporaryDirectory(prefix="trem-audio-") as tmp:
            workdir = Path(tmp)
            source = workdir / "input.bin"
            target = workdir / "audio.wav"
            source.write_bytes(video)
            await self._run(
                "-i", str(source), "-vn", "-acodec", "pcm_s16le",
                "-ar", str(self.sample_rate), "-ac", "1", str(target),
            )
            data = target.read_bytes() if target.exists() else b""
            return data or None

    async def extract(self, video: bytes) -> ExtractionResult:
        """Frames and audio are attempted independently."""
        frames: list[bytes] = []
        audio: bytes | None = None
        try:
            frames = await self.extract_frames(video)
        except ExtractionError as e:
            logger.warning("Keyframe extraction failed: %s", e)
        try:
            audio = await self.extract_audio(video)
        except ExtractionError as e:
            logger.warning("Audio extraction failed: %s", e)
        logger.info("Extracted %d keyframes, audio=%s", len(frames), "yes" if audio else "no")
        return ExtractionResult(frames=frames, audio=audio)
