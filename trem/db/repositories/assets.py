"""SQLite implementation of AssetRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import aiosqlite

# Every column except the binary payload; listing never loads blobs.
_ASSET_COLUMNS = (
    "id, name, kind, mime_type, size, duration, created_at, updated_at, "
    "status, progress, tags_json, meta_json"
)


class SqliteAssetRepository:
    """SQLite-backed asset storage, including the owned binary payload."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, asset_data: dict, blob: bytes | None = None) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO assets (
                id, name, kind, mime_type, blob, size, duration,
                created_at, updated_at, status, progress, tags_json, meta_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name, kind=excluded.kind, mime_type=excluded.mime_type,
                blob=COALESCE(excluded.blob, assets.blob),
                size=excluded.size, duration=excluded.duration,
                updated_at=excluded.updated_at, status=excluded.status,
                progress=excluded.progress, tags_json=excluded.tags_json,
                meta_json=excluded.meta_json
            """,
            (
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
            ),
        )
        await self.db.commit()

    async def get_by_id(self, asset_id: str) -> dict | None:
        async with self.db.execute(
            f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = ?", (asset_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_blob(self, asset_id: str) -> bytes | None:
        async with self.db.execute(
            "SELECT blob FROM assets WHERE id = ?", (asset_id,)
        ) as cur:
            row = await cur.fetchone()
            return bytes(row[0]) if row and row[0] is not None else None

    async def list_all(self) -> list[dict]:
        async with self.db.execute(
            f"SELECT {_ASSET_COLUMNS} FROM assets ORDER BY created_at DESC"
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    async def update_progress(self, asset_id: str, status: str, progress: int) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            "UPDATE assets SET status = ?, progress = ?, updated_at = ? WHERE id = ?",
            (status, int(progress), now, asset_id),
        )
        await self.db.commit()

    async def update_metadata(self, asset_id: str, tags: list[str], meta: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            "UPDATE assets SET tags_json = ?, meta_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(tags), json.dumps(meta), now, asset_id),
        )
        await self.db.commit()

    async def delete(self, asset_id: str) -> bool:
        async with self.db.execute("DELETE FROM assets WHERE id = ?", (asset_id,)) as cur:
            deleted = cur.rowcount
        await self.db.commit()
        return bool(deleted)
