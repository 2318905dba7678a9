"""PostgreSQL schema creation and versioning."""
from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("trem.db")

SCHEMA_VERSION = 1

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS repositories (
    id           SERIAL PRIMARY KEY,
    name         TEXT NOT NULL,
    brief        TEXT DEFAULT '',
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    assets_json  TEXT DEFAULT '[]',
    tree_json    TEXT DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS assets (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    kind         TEXT NOT NULL DEFAULT 'video',
    mime_type    TEXT DEFAULT '',
    blob         BYTEA,
    size         BIGINT DEFAULT 0,
    duration     DOUBLE PRECISION,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    status       TEXT DEFAULT 'pending',
    progress     INTEGER DEFAULT 0,
    tags_json    TEXT DEFAULT '[]',
    meta_json    TEXT DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_assets_status ON assets(status);
CREATE INDEX IF NOT EXISTS idx_assets_created ON assets(created_at DESC);
"""


async def run_migrations(db: asyncpg.Pool) -> None:
    """Create all tables. Idempotent."""
    async with db.acquire() as conn:
        try:
            current_version = await conn.fetchval("SELECT MAX(version) FROM schema_version") or 0
        except asyncpg.UndefinedTableError:
            current_version = 0

        if current_version >= SCHEMA_VERSION:
            logger.info("Schema is up to date (version %s)", current_version)
            return

        logger.info("Running Postgres migrations: %s → %s", current_version, SCHEMA_VERSION)
        async with conn.transaction():
            await conn.execute(_TABLES)
            await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
        logger.info("Migrations complete, schema version %s", SCHEMA_VERSION)
