"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from trem.db.repositories.repo_records import SqliteRepoRecordRepository
from trem.db.repositories.assets import SqliteAssetRepository


def get_repo_record_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteRepoRecordRepository(db)
    from trem.db.repositories.postgres.repo_records import PostgresRepoRecordRepository
    return PostgresRepoRecordRepository(db)


def get_asset_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteAssetRepository(db)
    from trem.db.repositories.postgres.assets import PostgresAssetRepository
    return PostgresAssetRepository(db)
