"""Repository facade: the only entry point the UI layer calls.

Every externally visible tree mutation goes through the commit engine while
holding the repository's lock, so commit ids within one repository cannot race.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from trem import config
from trem.collaborators.analysis import GeminiAnalyzer
from trem.collaborators.extraction import FfmpegExtractor
from trem.collaborators.transcription import ReplicateTranscriber
from trem.commits import CommitEngine, get_commit, list_commits
from trem.db.factory import get_asset_repository, get_repo_record_repository
from trem.errors import AssetNotFoundError, LockedNodeError, NodeNotFoundError, RepositoryNotFoundError
from trem.ingestion.operations import IngestionOperations
from trem.ingestion.pipeline import IngestionPipeline, classify
from trem.models import (
    Asset,
    AssetMetadata,
    Commit,
    FileNode,
    FolderNode,
    Repository,
    RepositorySummary,
    UploadedFile,
    dump_tree,
)
from trem.skeleton import COMMITS_ID, MEDIA_ID, MEDIA_RAW_ID, asset_node, build_skeleton
from trem.tree import (
    AnyNode,
    Tree,
    find_node,
    insert_child,
    iter_nodes,
    remove_node,
    rename_node,
    toggle_open,
    update_content,
)

logger = logging.getLogger("trem.service")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_list(raw: Any) -> list:
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw or "[]")
    except (TypeError, json.JSONDecodeError):
        return []
    return value if isinstance(value, list) else []


def _json_dict(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw or "{}")
    except (TypeError, json.JSONDecodeError):
        return {}
    return value if isinstance(value, dict) else {}


def repository_from_row(row: dict) -> Repository:
    return Repository(
        id=int(row["id"]),
        name=row.get("name") or "",
        brief=row.get("brief") or "",
        created=row.get("created_at") or "",
        updatedAt=row.get("updated_at") or "",
        assets=[str(a) for a in _json_list(row.get("assets_json"))],
        tree=_json_list(row.get("tree_json")),
    )


def asset_from_row(row: dict) -> Asset:
    return Asset(
        id=row["id"],
        name=row.get("name") or "",
        kind=row.get("kind") or "video",
        mimeType=row.get("mime_type") or "",
        size=int(row.get("size") or 0),
        duration=row.get("duration"),
        created=row.get("created_at") or "",
        updatedAt=row.get("updated_at") or "",
        status=row.get("status") or "pending",
        progress=int(row.get("progress") or 0),
        tags=[str(t) for t in _json_list(row.get("tags_json"))],
        meta=_json_dict(row.get("meta_json")),
    )


def _new_asset_id() -> str:
    return f"asset_{uuid.uuid4().hex[:12]}"


class RepositoryService:
    def __init__(
        self,
        db: Any,
        *,
        extractor: Any | None = None,
        transcriber: Any | None = None,
        analyzer: Any | None = None,
        operations: IngestionOperations | None = None,
        merge_mode: str | None = None,
    ):
        self.db = db
        self.repo_store = get_repo_record_repository(db)
        self.asset_store = get_asset_repository(db)
        self.commits = CommitEngine(self.repo_store)
        self.operations = operations or IngestionOperations()
        self.pipeline = IngestionPipeline(
            self.asset_store,
            self.commits,
            extractor or FfmpegExtractor(),
            transcriber or ReplicateTranscriber(),
            analyzer or GeminiAnalyzer(),
            operations=self.operations,
            merge_mode=merge_mode or config.SCENES_MERGE_MODE,
            max_frames=config.ANALYSIS_MAX_FRAMES,
        )
        self._locks: dict[int, asyncio.Lock] = {}
        self._repositories: dict[int, Repository] = {}

    def _lock(self, repository_id: int) -> asyncio.Lock:
        lock = self._locks.get(repository_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[repository_id] = lock
        return lock

    async def _load(self, repository_id: int) -> Repository:
        cached = self._repositories.get(repository_id)
        if cached is not None:
            return cached
        row = await self.repo_store.get_by_id(repository_id)
        if not row:
            raise RepositoryNotFoundError(repository_id)
        repository = repository_from_row(row)
        self._repositories[repository_id] = repository
        return repository

    async def _register_asset(self, upload: UploadedFile, status: str, progress: int) -> Asset:
        now = _now()
        asset = Asset(
            id=_new_asset_id(),
            name=upload.name,
            kind=classify(upload.mimeType),
            mimeType=upload.mimeType,
            size=len(upload.data),
            created=now,
            updatedAt=now,
            status=status,
            progress=progress,
        )
        await self.asset_store.upsert(asset.model_dump(), upload.data)
        return asset

    # ── repositories ───────────────────────────────────────────────

    async def create_repository(
        self,
        name: str,
        brief: str = "",
        initial_assets: Iterable[UploadedFile] = (),
    ) -> Repository:
        """Build the canonical skeleton and persist it. No commit is written."""
        created = _now()
        assets = [await self._register_asset(upload, "ready", 100) for upload in initial_assets]
        tree = build_skeleton(name, brief, created, assets)
        record = {
            "name": name,
            "brief": brief,
            "created": created,
            "assets": [a.id for a in assets],
            "tree": dump_tree(tree),
        }
        repository_id = await self.repo_store.create(record)
        repository = Repository(
            id=repository_id,
            name=name,
            brief=brief,
            created=created,
            updatedAt=created,
            assets=record["assets"],
            tree=tree,
        )
        self._repositories[repository_id] = repository
        logger.info("Repository created: %s (%s) with %d initial assets", repository_id, name, len(assets))
        return repository

    async def list_repositories(self) -> list[RepositorySummary]:
        summaries = []
        for row in await self.repo_store.list_all():
            repository = self._repositories.get(int(row["id"])) or repository_from_row(row)
            summaries.append(RepositorySummary(
                id=repository.id,
                name=repository.name,
                brief=repository.brief,
                created=repository.created,
                updatedAt=repository.updatedAt,
                assetCount=len(repository.assets),
            ))
        return summaries

    async def open_repository(self, repository_id: int) -> Repository:
        return await self._load(repository_id)

    async def get_tree(self, repository_id: int) -> Tree:
        return list((await self._load(repository_id)).tree)

    async def delete_repository(self, repository_id: int) -> None:
        async with self._lock(repository_id):
            repository = await self._load(repository_id)
            deleted = await self.repo_store.delete(repository_id)
            if not deleted:
                raise RepositoryNotFoundError(repository_id)
            self._repositories.pop(repository_id, None)
            if config.CASCADE_ASSET_DELETE:
                for asset_id in repository.assets:
                    await self.asset_store.delete(asset_id)
                logger.info("Repository %s deleted with %d assets", repository_id, len(repository.assets))
            else:
                logger.info("Repository %s deleted; %d assets left in the asset store", repository_id, len(repository.assets))
        self._locks.pop(repository_id, None)

    # ── nodes ──────────────────────────────────────────────────────

    @staticmethod
    def _refuse_history_edit(tree: Tree, node_id: Optional[str]) -> None:
        # commits/ is append-only; only the commit engine writes under it
        history = find_node(tree, COMMITS_ID)
        if node_id is None or history is None:
            return
        if any(node.id == node_id for node in iter_nodes([history])):
            raise LockedNodeError(node_id)

    async def create_node(
        self,
        repository_id: int,
        parent_id: Optional[str],
        name: str,
        kind: str,
        content: str = "",
    ) -> AnyNode:
        async with self._lock(repository_id):
            repository = await self._load(repository_id)
            self._refuse_history_edit(repository.tree, parent_id)
            node_id = f"{kind}_{uuid.uuid4().hex[:12]}"
            if kind == "folder":
                node: AnyNode = FolderNode(id=node_id, name=name)
            else:
                node = FileNode(id=node_id, name=name, content=content)
            new_tree = insert_child(repository.tree, parent_id, node)
            await self.commits.commit(repository, f"feat: created {name}", new_tree)
            return node

    async def delete_node(self, repository_id: int, node_id: str) -> None:
        async with self._lock(repository_id):
            repository = await self._load(repository_id)
            self._refuse_history_edit(repository.tree, node_id)
            node = find_node(repository.tree, node_id)
            if node is None:
                raise NodeNotFoundError(node_id)
            new_tree = remove_node(repository.tree, node_id)
            removed = {item.id for item in iter_nodes([node])}
            dropped = [asset_id for asset_id in repository.assets if asset_id in removed]
            if dropped:
                repository.assets = [asset_id for asset_id in repository.assets if asset_id not in removed]
                logger.info("Dropped assets %s from repository %s with node %s", dropped, repository_id, node_id)
            await self.commits.commit(repository, f"chore: deleted {node.name}", new_tree)

    async def rename_node(self, repository_id: int, node_id: str, name: str) -> AnyNode:
        async with self._lock(repository_id):
            repository = await self._load(repository_id)
            self._refuse_history_edit(repository.tree, node_id)
            node = find_node(repository.tree, node_id)
            if node is None:
                raise NodeNotFoundError(node_id)
            old_name = node.name
            new_tree = rename_node(repository.tree, node_id, name)
            await self.commits.commit(repository, f"refactor: renamed {old_name} to {name}", new_tree)
            return find_node(repository.tree, node_id)

    async def edit_file_content(self, repository_id: int, node_id: str, content: str) -> AnyNode:
        async with self._lock(repository_id):
            repository = await self._load(repository_id)
            self._refuse_history_edit(repository.tree, node_id)
            new_tree = update_content(repository.tree, node_id, content)
            node = find_node(new_tree, node_id)
            await self.commits.commit(repository, f"feat: updated {node.name}", new_tree)
            return find_node(repository.tree, node_id)

    async def toggle_open(self, repository_id: int, node_id: str) -> AnyNode:
        """Flip the display flag in memory only; nothing is committed."""
        async with self._lock(repository_id):
            repository = await self._load(repository_id)
            repository.tree = toggle_open(repository.tree, node_id)
            return find_node(repository.tree, node_id)

    # ── commits ────────────────────────────────────────────────────

    async def list_commits(self, repository_id: int) -> list[Commit]:
        return list_commits((await self._load(repository_id)).tree)

    async def get_commit(self, repository_id: int, commit_id: str) -> Optional[Commit]:
        return get_commit((await self._load(repository_id)).tree, commit_id)

    # ── ingestion ──────────────────────────────────────────────────

    async def start_operation(self, kind: str, repository_id: int, trigger: str = "api", metadata: dict | None = None) -> str:
        await self._load(repository_id)
        return await self.operations.start(kind, repository_id, trigger=trigger, metadata=metadata)

    @staticmethod
    def _with_placeholder(tree: Tree, asset: Asset) -> Tree:
        """Place the asset under media/raw; committed later with the ingested state."""
        if not isinstance(find_node(tree, MEDIA_RAW_ID), FolderNode):
            parent = MEDIA_ID if isinstance(find_node(tree, MEDIA_ID), FolderNode) else None
            tree = insert_child(tree, parent, FolderNode(id=MEDIA_RAW_ID, name="raw"))
        return insert_child(tree, MEDIA_RAW_ID, asset_node(asset))

    async def upload_assets(
        self,
        repository_id: int,
        files: list[UploadedFile],
        operation_id: str | None = None,
        trigger: str = "api",
    ) -> dict[str, Any]:
        """Register, place and ingest each file in submission order."""
        await self._load(repository_id)
        if not operation_id:
            operation_id = await self.operations.start(
                "upload", repository_id, trigger=trigger, metadata={"files": [f.name for f in files]}
            )
        stats: dict[str, Any] = {"operation_id": operation_id, "assets": [], "indexed": 0}
        try:
            for position, upload in enumerate(files, start=1):
                await self.operations.update(
                    operation_id,
                    phase="uploading",
                    message=f"> Uploading {upload.name} ({position}/{len(files)})",
                    counters={"total": len(files), "current": position},
                )
                async with self._lock(repository_id):
                    repository = await self._load(repository_id)
                    asset = await self._register_asset(upload, "pending", 0)
                    tree = self._with_placeholder(repository.tree, asset)
                    previous_assets = repository.assets
                    repository.assets = [*previous_assets, asset.id]
                    try:
                        await self.pipeline.ingest(repository, asset, operation_id=operation_id, base_tree=tree)
                    except Exception:
                        repository.assets = previous_assets
                        raise
                stats["assets"].append(asset.id)
                if asset.status == "indexed":
                    stats["indexed"] += 1
                await self.operations.update(operation_id, counters={"indexed": stats["indexed"]})
        except Exception as e:
            await self.operations.finish(operation_id, status="failed", stats=stats, error=str(e))
            raise
        await self.operations.update(operation_id, phase="completed", message=f"> Ingested {len(files)} assets")
        await self.operations.finish(operation_id, status="completed", stats=stats)
        return stats

    async def reingest_asset(
        self,
        repository_id: int,
        asset_id: str,
        operation_id: str | None = None,
        trigger: str = "api",
    ) -> AssetMetadata:
        """Run the pipeline again for an asset already in the repository."""
        repository = await self._load(repository_id)
        if asset_id not in repository.assets:
            raise AssetNotFoundError(asset_id)
        row = await self.asset_store.get_by_id(asset_id)
        if not row:
            raise AssetNotFoundError(asset_id)
        if not operation_id:
            operation_id = await self.operations.start("reingest", repository_id, trigger=trigger, metadata={"assetId": asset_id})
        asset = asset_from_row(row)
        try:
            async with self._lock(repository_id):
                repository = await self._load(repository_id)
                metadata = await self.pipeline.ingest(repository, asset, operation_id=operation_id)
        except Exception as e:
            await self.operations.finish(operation_id, status="failed", error=str(e))
            raise
        await self.operations.finish(operation_id, status="completed", stats={"assetId": asset_id})
        return metadata

    # ── asset library ──────────────────────────────────────────────

    async def list_assets(self) -> list[Asset]:
        return [asset_from_row(row) for row in await self.asset_store.list_all()]

    async def get_asset(self, asset_id: str) -> Asset:
        row = await self.asset_store.get_by_id(asset_id)
        if not row:
            raise AssetNotFoundError(asset_id)
        return asset_from_row(row)

    async def update_asset_tags(self, asset_id: str, tags: list[str]) -> Asset:
        asset = await self.get_asset(asset_id)
        cleaned = list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))
        await self.asset_store.update_metadata(asset_id, cleaned, asset.meta)
        asset.tags = cleaned
        return asset

    async def delete_asset(self, asset_id: str) -> None:
        if not await self.asset_store.delete(asset_id):
            raise AssetNotFoundError(asset_id)
        logger.info("Asset %s deleted from the asset store", asset_id)
