import unittest

import aiosqlite

from trem.db.factory import get_asset_repository, get_repo_record_repository
from trem.db.repositories import SqliteAssetRepository, SqliteRepoRecordRepository
from trem.db.sqlite_migrations import SCHEMA_VERSION, run_migrations


class SqliteStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repos = get_repo_record_repository(self.db)
        self.assets = get_asset_repository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_factory_selects_sqlite(self) -> None:
        self.assertIsInstance(self.repos, SqliteRepoRecordRepository)
        self.assertIsInstance(self.assets, SqliteAssetRepository)

    async def test_migrations_are_idempotent(self) -> None:
        await run_migrations(self.db)
        self.assertEqual(await self.repos.list_all(), [])

    async def test_fresh_schema_records_single_version(self) -> None:
        await run_migrations(self.db)
        async with self.db.execute("SELECT version FROM schema_version") as cur:
            versions = [row[0] for row in await cur.fetchall()]
        self.assertEqual(versions, [SCHEMA_VERSION])
        self.assertEqual(SCHEMA_VERSION, 1)
        async with self.db.execute("PRAGMA table_info(assets)") as cur:
            columns = {row[1] for row in await cur.fetchall()}
        self.assertTrue({"mime_type", "duration", "blob", "tags_json", "meta_json"} <= columns)

    async def test_repository_record_lifecycle(self) -> None:
        repo_id = await self.repos.create({"name": "demo", "brief": "b", "assets": [], "tree": [{"id": "x"}]})
        self.assertIsInstance(repo_id, int)
        second = await self.repos.create({"name": "other"})
        self.assertNotEqual(repo_id, second)

        updated = await self.repos.update(repo_id, {"tree": [{"id": "y"}], "assets": ["a1"]})
        self.assertTrue(updated)
        row = await self.repos.get_by_id(repo_id)
        self.assertEqual(row["name"], "demo")
        self.assertEqual(row["tree_json"], '[{"id": "y"}]')
        self.assertEqual(row["assets_json"], '["a1"]')

        self.assertFalse(await self.repos.update(9999, {"tree": []}))
        self.assertTrue(await self.repos.delete(repo_id))
        self.assertIsNone(await self.repos.get_by_id(repo_id))
        self.assertFalse(await self.repos.delete(repo_id))
        self.assertEqual(len(await self.repos.list_all()), 1)

    async def test_asset_blob_survives_upsert_without_blob(self) -> None:
        await self.assets.upsert({"id": "a1", "name": "clip.mp4", "kind": "video", "mimeType": "video/mp4"}, b"\x00\x01")
        await self.assets.upsert({"id": "a1", "name": "clip.mp4", "kind": "video", "mimeType": "video/mp4", "size": 2, "status": "indexed"})

        self.assertEqual(await self.assets.get_blob("a1"), b"\x00\x01")
        row = await self.assets.get_by_id("a1")
        self.assertEqual(row["status"], "indexed")
        self.assertNotIn("blob", row)

    async def test_asset_progress_and_metadata(self) -> None:
        await self.assets.upsert({"id": "a1", "name": "pic.png", "kind": "image"}, b"png")
        await self.assets.update_progress("a1", "detecting", 40)
        await self.assets.update_metadata("a1", ["beach"], {"description": "sand"})

        row = await self.assets.get_by_id("a1")
        self.assertEqual((row["status"], row["progress"]), ("detecting", 40))
        self.assertEqual(row["tags_json"], '["beach"]')
        self.assertEqual(row["size"], 3)
        self.assertEqual([r["id"] for r in await self.assets.list_all()], ["a1"])

        self.assertTrue(await self.assets.delete("a1"))
        self.assertIsNone(await self.assets.get_blob("a1"))


if __name__ == "__main__":
    unittest.main()
