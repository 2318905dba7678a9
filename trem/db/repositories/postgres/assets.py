"""PostgreSQL implementation of AssetRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import asyncpg

_ASSET_COLUMNS = (
    "id, name, kind, mime_type, size, duration, created_at, updated_at, "
    "status, progress, tags_json, meta_json"
)


class PostgresAssetRepository:
    """PostgreSQL-backed asset storage."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert(self, asset_data: dict, blob: bytes | None = None) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO assets (
                id, name, kind, mime_type, blob, size, duration,
                created_at, updated_at, status, progress, tags_json, meta_json
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT(id) DO UPDATE SET
                name=EXCLUDED.name, kind=EXCLUDED.kind, mime_type=EXCLUDED.mime_type,
                blob=COALESCE(EXCLUDED.blob, assets.blob),
                size=EXCLUDED.size, duration=EXCLUDED.duration,
                updated_at=EXCLUDED.updated_at, status=EXCLUDED.status,
                progress=EXCLUDED.progress, tags_json=EXCLUDED.tags_json,
                meta_json=EXCLUDED.meta_json
            """,
            asset_data["id"],
            asset_data.get("name", ""),
            asset_data.get("kind", "video"),
            asset_data.get("mimeType", ""),
            blob,
            int(asset_data.get("size") or (len(blob) if blob else 0)),
            asset_data.get("duration"),
            asset_data.get("created") or now,
            now,
            asset_data.get("status", "pending"),
            int(asset_data.get("progress", 0)),
            json.dumps(asset_data.get("tags", [])),
            json.dumps(asset_data.get("meta", {})),
        )

    async def get_by_id(self, asset_id: str) -> dict | None:
        row = await self.db.fetchrow(f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = $1", asset_id)
        return dict(row) if row else None

    async def get_blob(self, asset_id: str) -> bytes | None:
        value = await self.db.fetchval("SELECT blob FROM assets WHERE id = $1", asset_id)
        return bytes(value) if value is not None else None

    async def list_all(self) -> list[dict]:
        rows = await self.db.fetch(f"SELECT {_ASSET_COLUMNS} FROM assets ORDER BY created_at DESC")
        return [dict(r) for r in rows]

    async def update_progress(self, asset_id: str, status: str, progress: int) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            "UPDATE assets SET status = $1, progress = $2, updated_at = $3 WHERE id = $4",
            status, int(progress), now, asset_id,
        )

    async def update_metadata(self, asset_id: str, tags: list[str], meta: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            "UPDATE assets SET tags_json = $1, meta_json = $2, updated_at = $3 WHERE id = $4",
            json.dumps(tags), json.dumps(meta), now, asset_id,
        )

    async def delete(self, asset_id: str) -> bool:
        status = await self.db.execute("DELETE FROM assets WHERE id = $1", asset_id)
        return status.endswith(" 1")
