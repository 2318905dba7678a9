"""Scenes document aggregation."""
from __future__ import annotations

import json
import logging
from typing import Any

from trem import config
from trem.models import AnalysisResult, SceneEntry

logger = logging.getLogger("trem.scenes")

MERGE_MODES = ("append", "upsert")
DEFAULT_SCENE_DESCRIPTION = "Inferred context"


def parse_scenes_document(content: str | None) -> dict[str, Any]:
    """Decode the scenes file content; anything unusable becomes an empty document."""
    if not content or not content.strip():
        return {"assets": []}
    try:
        doc = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning("scenes.json is not valid JSON, starting from an empty document: %s", e)
        return {"assets": []}
    if not isinstance(doc, dict):
        logger.warning("scenes.json root is %s, expected an object", type(doc).__name__)
        return {"assets": []}
    if not isinstance(doc.get("assets"), list):
        doc["assets"] = []
    return doc


def scene_entry(asset_id: str, name: str, analysis: AnalysisResult | None) -> SceneEntry:
    return SceneEntry(
        id=asset_id,
        name=name,
        description=(analysis.description if analysis else "") or DEFAULT_SCENE_DESCRIPTION,
        tags=list(analysis.tags) if analysis else [],
    )


def merge_asset(doc: dict[str, Any], entry: SceneEntry, mode: str | None = None) -> dict[str, Any]:
    """Return a new document with ``entry`` folded in.

    ``append`` always adds a new entry, so re-ingesting the same asset
    duplicates it. ``upsert`` replaces the first entry with the same id and
    drops any later duplicates.
    """
    mode = (mode or config.SCENES_MERGE_MODE).lower()
    if mode not in MERGE_MODES:
        logger.warning("Unknown scenes merge mode %r, using append", mode)
        mode = "append"

    existing = list(doc.get("assets") or [])
    payload = entry.model_dump()

    if mode == "upsert":
        merged: list[Any] = []
        replaced = False
        for item in existing:
            if isinstance(item, dict) and item.get("id") == entry.id:
                if not replaced:
                    merged.append(payload)
                    replaced = True
                continue
            merged.append(item)
        if not replaced:
            merged.append(payload)
    else:
        merged = [*existing, payload]

    return {**doc, "assets": merged}


def serialize_scenes_document(doc: dict[str, Any]) -> str:
    return json.dumps(doc, indent=2)
