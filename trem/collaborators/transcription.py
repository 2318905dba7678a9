"""Replicate Whisper transcription client."""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from typing import Any

import httpx

from trem import config
from trem.errors import TranscriptionError, TranscriptionTimeoutError
from trem.models import Transcription, TranscriptSegment

logger = logging.getLogger("trem.collaborators.transcription")

RUNNING_STATUSES = {"starting", "processing"}
FAILED_STATUSES = {"failed", "canceled"}
SUCCEEDED_STATUS = "succeeded"

_SRT_TIME_RE = re.compile(r"(\d+):(\d+):(\d+)(?:[,.](\d+))?")


# ── SRT helpers ────────────────────────────────────────────────────

def format_srt_time(seconds: float) -> str:
    total_ms = int(round(max(0.0, float(seconds)) * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def srt_time_to_seconds(value: str) -> float:
    match = _SRT_TIME_RE.search(value or "")
    if not match:
        return 0.0
    hours, minutes, secs, millis = match.groups()
    frac = int(millis) / (10 ** len(millis)) if millis else 0.0
    return int(hours) * 3600 + int(minutes) * 60 + int(secs) + frac


def generate_srt(segments: list[TranscriptSegment]) -> str:
    blocks = []
    for position, seg in enumerate(segments, start=1):
        blocks.append(f"{position}\n{format_srt_time(seg.start)} --> {format_srt_time(seg.end)}\n{seg.text}\n\n")
    return "".join(blocks)


def parse_srt(srt: str) -> list[TranscriptSegment]:
    """Parse caption blocks; blocks without a time line are skipped."""
    if not srt or not srt.strip():
        return []
    segments: list[TranscriptSegment] = []
    for block in re.split(r"\n\s*\n", srt.strip().replace("\r\n", "\n")):
        lines = block.split("\n")
        if len(lines) < 2:
            continue
        if "-->" in lines[0]:
            time_idx = 0
        elif len(lines) > 1 and "-->" in lines[1]:
            time_idx = 1
        else:
            continue
        index = len(segments) + 1
        if time_idx == 1 and lines[0].strip().isdigit():
            index = int(lines[0].strip())
        start_raw, _, end_raw = lines[time_idx].partition("-->")
        segments.append(
            TranscriptSegment(
                index=index,
                start=srt_time_to_seconds(start_raw),
                end=srt_time_to_seconds(end_raw),
                text="\n".join(lines[time_idx + 1:]).strip(),
            )
        )
    return segments


def parse_whisper_output(output: Any) -> Transcription:
    """Normalize a Whisper prediction output into a Transcription."""
    if isinstance(output, str):
        try:
            output = json.loads(output)
        except json.JSONDecodeError:
            text = output.strip()
            if "-->" in text:
                segments = parse_srt(text)
                return Transcription(text=" ".join(s.text for s in segments), segments=segments, srt=text)
            return Transcription(text=text)
    if not isinstance(output, dict):
        return Transcription()

    segments: list[TranscriptSegment] = []
    for position, raw in enumerate(output.get("segments") or [], start=1):
        if not isinstance(raw, dict):
            continue
        segments.append(
            TranscriptSegment(
                index=int(raw.get("id", position) or position),
                start=float(raw.get("start") or 0.0),
                end=float(raw.get("end") or 0.0),
                text=str(raw.get("text") or "").strip(),
            )
        )

    srt = str(output.get("transcription") or "")
    is_srt = "-->" in srt
    if not is_srt and segments:
        srt = generate_srt(segments)
    elif is_srt and not segments:
        segments = parse_srt(srt)

    raw_text = str(output.get("transcription") or "")
    if raw_text and not is_srt:
        text = raw_text.strip()
    else:
        text = " ".join(s.text for s in segments).strip()

    return Transcription(
        text=text,
        segments=segments,
        srt=srt if (is_srt or segments) else "",
        language=output.get("detected_language"),
    )


def audio_data_url(audio: bytes, mime_type: str = "audio/wav") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(audio).decode('ascii')}"


# ── Client ─────────────────────────────────────────────────────────

class ReplicateTranscriber:
    """Submits a Whisper prediction and polls it to completion with a bounded attempt count."""

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str | None = None,
        version: str | None = None,
        max_poll_attempts: int | None = None,
        poll_interval: float | None = None,
        max_audio_mb: float | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_token = api_token if api_token is not None else config.REPLICATE_API_TOKEN
        self.base_url = (base_url or config.REPLICATE_BASE_URL).rstrip("/")
        self.version = version or config.WHISPER_VERSION
        self.max_poll_attempts = max_poll_attempts or config.TRANSCRIBE_MAX_POLL_ATTEMPTS
        self.poll_interval = config.TRANSCRIBE_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_audio_mb = max_audio_mb or config.TRANSCRIBE_MAX_AUDIO_MB
        self.timeout = timeout or config.COLLABORATOR_TIMEOUT_SECONDS
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
        }

    async def transcribe(
        self,
        audio: bytes,
        *,
        language: str | None = None,
        translate: bool = False,
        mime_type: str = "audio/wav",
    ) -> Transcription:
        if not audio:
            raise TranscriptionError("No audio payload to transcribe")
        size_mb = len(audio) / (1024 * 1024)
        if size_mb > self.max_audio_mb:
            raise TranscriptionError(f"Audio payload too large ({size_mb:.1f}MB > {self.max_audio_mb}MB limit)")
        if not self.api_token:
            raise TranscriptionError("REPLICATE_API_TOKEN is not configured")

        payload = {
            "version": self.version,
            "input": {
                "audio": audio_data_url(audio, mime_type),
                "language": language or config.TRANSCRIBE_LANGUAGE,
                "translate": translate,
                "temperature": 0,
                "transcription": "srt",
                "suppress_tokens": "-1",
                "logprob_threshold": -1,
                "no_speech_threshold": 0.6,
                "condition_on_previous_text": True,
                "compression_ratio_threshold": 2.4,
                "temperature_increment_on_fallback": 0.2,
            },
        }

        if self._client is not None:
            return await self._run(self._client, payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._run(client, payload)

    async def _run(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> Transcription:
        prediction = await self._request(client, "POST", f"{self.base_url}/predictions", json=payload)
        prediction_id = str(prediction.get("id") or "")
        status = prediction.get("status")
        logger.info("Transcription prediction submitted: %s (status=%s)", prediction_id or "?", status)

        if status in RUNNING_STATUSES:
            if not prediction_id:
                raise TranscriptionError("Prediction is running but has no id to poll")
            prediction = await self._poll(client, prediction_id)
            status = prediction.get("status")

        if status in FAILED_STATUSES:
            raise TranscriptionError(f"Prediction {prediction_id} {status}: {prediction.get('error') or 'no details'}")
        return parse_whisper_output(prediction.get("output"))

    async def _poll(self, client: httpx.AsyncClient, prediction_id: str) -> dict[str, Any]:
        url = f"{self.base_url}/predictions/{prediction_id}"
        for attempt in range(1, self.max_poll_attempts + 1):
            if self.poll_interval > 0:
                await asyncio.sleep(self.poll_interval)
            prediction = await self._request(client, "GET", url)
            status = prediction.get("status")
            if status not in RUNNING_STATUSES:
                logger.info("Prediction %s finished with status=%s after %d polls", prediction_id, status, attempt)
                return prediction
            logger.debug("Prediction %s still %s (poll %d/%d)", prediction_id, status, attempt, self.max_poll_attempts)
        raise TranscriptionTimeoutError(prediction_id, self.max_poll_attempts)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Request to {url} failed: {e}") from e
        if resp.status_code >= 400:
            raise TranscriptionError(f"Replicate API error {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise TranscriptionError("Replicate response was not valid JSON") from e
        if not isinstance(data, dict):
            raise TranscriptionError("Replicate response was not a prediction object")
        return data
