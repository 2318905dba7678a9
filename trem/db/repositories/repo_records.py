"""SQLite implementation of RepoRecordRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import aiosqlite


class SqliteRepoRecordRepository:
    """SQLite-backed storage of repository records; the tree is kept as one JSON column."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, record: dict) -> int:
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            """INSERT INTO repositories (name, brief, created_at, updated_at, assets_json, tree_json)
            VALUES (?, ?, ?, ?, ?, ?)""",
            (
                record.get("name", ""),
                record.get("brief", ""),
                record.get("created") or now,
                now,
                json.dumps(record.get("assets", [])),
                json.dumps(record.get("tree", [])),
            ),
        ) as cur:
            repo_id = cur.lastrowid
        await self.db.commit()
        return int(repo_id)

    async def get_by_id(self, repo_id: int) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM repositories WHERE id = ?", (repo_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM repositories ORDER BY created_at DESC, id DESC"
        ) as cur:
            rows = await cur.fetchall()
            return [dict(r) for r in rows]

    async def update(self, repo_id: int, updates: dict) -> bool:
        """Write tree, asset list and descriptive fields in a single statement."""
        row = await self.get_by_id(repo_id)
        if not row:
            return False
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """UPDATE repositories
            SET name = ?, brief = ?, assets_json = ?, tree_json = ?, updated_at = ?
            WHERE id = ?""",
            (
                updates.get("name", row["name"]),
                updates.get("brief", row["brief"]),
                json.dumps(updates["assets"]) if "assets" in updates else row["assets_json"],
                json.dumps(updates["tree"]) if "tree" in updates else row["tree_json"],
                now,
                repo_id,
            ),
        )
        await self.db.commit()
        return True

    async def delete(self, repo_id: int) -> bool:
        async with self.db.execute("DELETE FROM repositories WHERE id = ?", (repo_id,)) as cur:
            deleted = cur.rowcount
        await self.db.commit()
        return bool(deleted)
