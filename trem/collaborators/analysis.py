"""Gemini semantic analysis client."""
from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any

import httpx

from trem import config
from trem.errors import AnalysisError
from trem.models import AnalysisResult

logger = logging.getLogger("trem.collaborators.analysis")

ANALYSIS_PROMPT = (
    "Analyze this media asset based on the attached keyframes or file. "
    "Return a short description and 3 tags. "
    'Format: JSON { "description": "...", "tags": [...] }'
)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:idx + 1]
        start = text.find("{", start + 1)
    return None


def extract_json(text: str) -> Any:
    """Best-effort JSON recovery from a model response.

    Tries a direct parse, then the first fenced code block, then the first
    balanced ``{...}`` object. Raises AnalysisError when nothing parses.
    """
    text = (text or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for match in _FENCE_RE.finditer(text):
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            continue

    candidate = _first_balanced_object(text)
    if candidate is not None:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError as e:
            raise AnalysisError("Failed to extract valid JSON from response") from e
    raise AnalysisError("No JSON found in response")


def to_analysis_result(payload: Any) -> AnalysisResult:
    if not isinstance(payload, dict):
        raise AnalysisError(f"Analysis payload is a {type(payload).__name__}, expected an object")
    tags = payload.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    return AnalysisResult(
        description=str(payload.get("description") or ""),
        tags=[str(t) for t in tags if str(t).strip()],
    )


class GeminiAnalyzer:
    """Calls ``models/<model>:generateContent`` with the prompt plus inline media parts."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        max_frames: int | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_MODEL
        self.base_url = (base_url or config.GEMINI_BASE_URL).rstrip("/")
        self.max_frames = max_frames or config.ANALYSIS_MAX_FRAMES
        self.timeout = timeout or config.COLLABORATOR_TIMEOUT_SECONDS
        self._client = client

    def build_parts(self, frames: list[bytes] | None, blob: bytes | None, mime_type: str) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = [{"text": ANALYSIS_PROMPT}]
        if frames:
            for frame in frames[: self.max_frames]:
                parts.append({"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(frame).decode("ascii")}})
        elif blob:
            parts.append({
                "inlineData": {
                    "mimeType": mime_type or "video/mp4",
                    "data": base64.b64encode(blob).decode("ascii"),
                }
            })
        return parts

    async def analyze(
        self,
        *,
        frames: list[bytes] | None = None,
        blob: bytes | None = None,
        mime_type: str = "",
    ) -> AnalysisResult:
        if not self.api_key:
            raise AnalysisError("GEMINI_API_KEY is not configured")
        body = {"contents": [{"role": "user", "parts": self.build_parts(frames, blob, mime_type)}]}
        url = f"{self.base_url}/models/{self.model}:generateContent"

        if self._client is not None:
            data = await self._post(self._client, url, body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                data = await self._post(client, url, body)

        text = "".join(
            part.get("text", "")
            for candidate in (data.get("candidates") or [])[:1]
            for part in ((candidate.get("content") or {}).get("parts") or [])
            if isinstance(part, dict)
        )
        return to_analysis_result(extract_json(text or "{}"))

    async def _post(self, client: httpx.AsyncClient, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await client.post(url, json=body, headers={"x-goog-api-key": self.api_key})
        except httpx.HTTPError as e:
            raise AnalysisError(f"Request to {url} failed: {e}") from e
        if resp.status_code >= 400:
            raise AnalysisError(f"Gemini API error {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise AnalysisError("Gemini response was not valid JSON") from e
        if not isinstance(data, dict):
            raise AnalysisError("Gemini response was not an object")
        return data
