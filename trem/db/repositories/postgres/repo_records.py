"""PostgreSQL implementation of RepoRecordRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import asyncpg


class PostgresRepoRecordRepository:
    """PostgreSQL-backed storage of repository records."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def create(self, record: dict) -> int:
        now = datetime.now(timezone.utc).isoformat()
        repo_id = await self.db.fetchval(
            """INSERT INTO repositories (name, brief, created_at, updated_at, assets_json, tree_json)
            VALUES ($1, $2, $3, $4, $5, $6) RETURNING id""",
            record.get("name", ""),
            record.get("brief", ""),
            record.get("created") or now,
            now,
            json.dumps(record.get("assets", [])),
            json.dumps(record.get("tree", [])),
        )
        return int(repo_id)

    async def get_by_id(self, repo_id: int) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM repositories WHERE id = $1", repo_id)
        return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM repositories ORDER BY created_at DESC, id DESC")
        return [dict(r) for r in rows]

    async def update(self, repo_id: int, updates: dict) -> bool:
        row = await self.get_by_id(repo_id)
        if not row:
            return False
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """UPDATE repositories
            SET name = $1, brief = $2, assets_json = $3, tree_json = $4, updated_at = $5
            WHERE id = $6""",
            updates.get("name", row["name"]),
            updates.get("brief", row["brief"]),
            json.dumps(updates["assets"]) if "assets" in updates else row["assets_json"],
            json.dumps(updates["tree"]) if "tree" in updates else row["tree_json"],
            now,
            repo_id,
        )
        return True

    async def delete(self, repo_id: int) -> bool:
        status = await self.db.execute("DELETE FROM repositories WHERE id = $1", repo_id)
        return status.endswith(" 1")
