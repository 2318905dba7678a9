"""Repository package for database access."""

from .repo_records import SqliteRepoRecordRepository
from .assets import SqliteAssetRepository

__all__ = [
    "SqliteRepoRecordRepository",
    "SqliteAssetRepository",
]
