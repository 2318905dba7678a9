"""Per-asset ingestion state machine.

pending -> transcribing -> detecting -> indexed for audio and video,
pending -> detecting -> indexed for images. Collaborator failures are logged
and replaced with defaults; the asset always reaches ``indexed``.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Optional, TypeVar

from trem.commits import CommitEngine
from trem.ingestion.operations import IngestionOperations
from trem.models import (
    AnalysisResult,
    Asset,
    AssetMetadata,
    ExtractionResult,
    FileNode,
    FolderNode,
    HistoryEntry,
    Repository,
    Transcription,
)
from trem.observability import record_collaborator_failure, record_stage, start_span
from trem.scenes import merge_asset, parse_scenes_document, scene_entry, serialize_scenes_document
from trem.skeleton import (
    MEDIA_TRANSCRIPTS_ID,
    META_ID,
    SCENES_DOC_ID,
    SCENES_ID,
    SUBTITLES_ID,
)
from trem.tree import Tree, find_node, insert_child, update_content, upsert_file

logger = logging.getLogger("trem.ingestion")

T = TypeVar("T")

FAILED_ANALYSIS = AnalysisResult(description="Analysis failed", tags=["error"])

STAGE_SEQUENCES = {
    "video": ("pending", "transcribing", "detecting", "indexed"),
    "audio": ("pending", "transcribing", "detecting", "indexed"),
    "image": ("pending", "detecting", "indexed"),
}


def classify(mime_type: str) -> str:
    """Asset kind from the declared media type; anything unrecognised is treated as an image."""
    mime = (mime_type or "").lower()
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("audio/"):
        return "audio"
    return "image"


def metadata_node_id(asset_id: str) -> str:
    return f"meta_{asset_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ensure_folder(tree: Tree, folder_id: str, name: str) -> Tree:
    if isinstance(find_node(tree, folder_id), FolderNode):
        return tree
    logger.info("%s/ missing, recreating it at the root", name)
    return insert_child(tree, None, FolderNode(id=folder_id, name=name))


class IngestionPipeline:
    def __init__(
        self,
        asset_store: Any,
        commit_engine: CommitEngine,
        extractor: Any,
        transcriber: Any,
        analyzer: Any,
        operations: IngestionOperations | None = None,
        merge_mode: str | None = None,
        max_frames: int = 5,
    ):
        self.asset_store = asset_store
        self.commit_engine = commit_engine
        self.extractor = extractor
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.operations = operations
        self.merge_mode = merge_mode
        self.max_frames = max_frames

    # ── bookkeeping ────────────────────────────────────────────────

    async def _log(self, operation_id: str | None, message: str, phase: str | None = None) -> None:
        if self.operations is not None and operation_id:
            await self.operations.update(operation_id, phase=phase, message=message)
        else:
            logger.info(message)

    async def _set_status(self, asset: Asset, status: str, progress: int, operation_id: str | None) -> None:
        asset.status = status
        asset.progress = progress
        asset.updatedAt = _now()
        await self._store_write("update_progress", asset, self.asset_store.update_progress, asset.id, status, progress)
        if self.operations is not None and operation_id:
            await self.operations.update(
                operation_id, progress={asset.id: {"status": status, "progress": progress}}
            )

    async def _store_write(self, action: str, asset: Asset, call: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Asset-store access that logs a failure instead of aborting the ingestion."""
        try:
            return await call(*args)
        except Exception as e:
            logger.error("Asset store %s failed for %s: %s", action, asset.id, e)
            return None

    async def _guarded(
        self,
        stage: str,
        collaborator: str,
        kind: str,
        call: Callable[[], Awaitable[T]],
        default: T,
        operation_id: str | None,
    ) -> T:
        started = time.perf_counter()
        with start_span(f"trem.ingestion.{stage}", {"asset.kind": kind}):
            try:
                result = await call()
            except Exception as e:
                elapsed = (time.perf_counter() - started) * 1000
                logger.warning("%s stage failed (%s), continuing with defaults: %s", stage, type(e).__name__, e)
                record_collaborator_failure(collaborator)
                record_stage(stage, "error", elapsed, kind=kind)
                await self._log(operation_id, f"> {stage.capitalize()} failed: {e}")
                return default
        record_stage(stage, "ok", (time.perf_counter() - started) * 1000, kind=kind)
        return result

    # ── stages ─────────────────────────────────────────────────────

    async def _extract(self, asset: Asset, blob: bytes, operation_id: str | None) -> ExtractionResult:
        await self._log(operation_id, "> Extracting Keyframes...")
        extraction = await self._guarded(
            "extract", "extraction", asset.kind,
            lambda: self.extractor.extract(blob), ExtractionResult(), operation_id,
        )
        await self._log(
            operation_id,
            f"> Extracted {len(extraction.frames)} keyframes"
            + (" and audio track" if extraction.audio else ", no audio track"),
        )
        return extraction

    async def _transcribe(self, asset: Asset, audio: Optional[bytes], operation_id: str | None) -> Transcription:
        if not audio:
            await self._log(operation_id, "> No audio available, skipping transcription")
            return Transcription()
        mime_type = "audio/wav" if asset.kind == "video" else (asset.mimeType or "audio/wav")
        await self._log(operation_id, "> Transcribing Audio...")
        transcript = await self._guarded(
            "transcribe", "transcription", asset.kind,
            lambda: self.transcriber.transcribe(audio, mime_type=mime_type), Transcription(), operation_id,
        )
        if transcript.text:
            await self._log(operation_id, f"> Transcript ready ({len(transcript.segments)} segments)")
        return transcript

    async def _analyze(self, asset: Asset, frames: list[bytes], blob: bytes, operation_id: str | None) -> AnalysisResult:
        await self._log(operation_id, "> Running Semantic Analysis...")
        if frames:
            call = lambda: self.analyzer.analyze(frames=frames[: self.max_frames], mime_type="image/jpeg")  # noqa: E731
        else:
            call = lambda: self.analyzer.analyze(blob=blob, mime_type=asset.mimeType)  # noqa: E731
        return await self._guarded(
            "analyze", "analysis", asset.kind, call, FAILED_ANALYSIS.model_copy(deep=True), operation_id
        )

    # ── tree writes ────────────────────────────────────────────────

    def _write_metadata(
        self,
        tree: Tree,
        asset: Asset,
        analysis: AnalysisResult,
        transcript: Transcription,
        timestamp: str,
    ) -> tuple[Tree, AssetMetadata]:
        node_id = metadata_node_id(asset.id)
        tree = _ensure_folder(tree, META_ID, "meta")
        existing = find_node(tree, node_id)

        history: list[HistoryEntry] = []
        action = "ingested"
        if isinstance(existing, FileNode):
            action = "reingested"
            try:
                history = AssetMetadata(**json.loads(existing.content or "{}")).history
            except Exception as e:
                logger.warning("Existing metadata for %s unreadable, starting a new history: %s", asset.id, e)
        history = [*history, HistoryEntry(timestamp=timestamp, action=action)]

        metadata = AssetMetadata(
            asset_id=asset.id,
            original_name=asset.name,
            analysis=analysis,
            transcript=transcript.text or "",
            processed_at=timestamp,
            history=history,
        )
        content = json.dumps(metadata.model_dump(), indent=2)
        if isinstance(existing, FileNode):
            return update_content(tree, node_id, content), metadata
        node = FileNode(id=node_id, name=f"{asset.id}.json", icon="data_object", iconColor="text-sky-400", content=content)
        return insert_child(tree, META_ID, node), metadata

    def _write_transcript_artifacts(self, tree: Tree, asset: Asset, transcript: Transcription) -> Tree:
        if not transcript.text and not transcript.segments:
            return tree
        stem = PurePosixPath(asset.name).stem or asset.id
        segments = json.dumps([s.model_dump() for s in transcript.segments], indent=2)
        tree = _ensure_folder(tree, MEDIA_TRANSCRIPTS_ID, "transcripts")
        tree = upsert_file(tree, MEDIA_TRANSCRIPTS_ID, FileNode(
            id=f"transcript_{asset.id}", name=f"{stem}.json",
            icon="data_object", iconColor="text-amber-300", content=segments,
        ))
        if transcript.srt:
            tree = _ensure_folder(tree, SUBTITLES_ID, "subtitles")
            tree = upsert_file(tree, SUBTITLES_ID, FileNode(
                id=f"srt_{asset.id}", name=f"{stem}.srt",
                icon="subtitles", iconColor="text-slate-200", content=transcript.srt,
            ))
        return tree

    def _aggregate(self, tree: Tree, asset: Asset, analysis: AnalysisResult) -> Tree:
        scenes = find_node(tree, SCENES_DOC_ID)
        doc = parse_scenes_document(scenes.content if isinstance(scenes, FileNode) else None)
        doc = merge_asset(doc, scene_entry(asset.id, asset.name, analysis), self.merge_mode)
        content = serialize_scenes_document(doc)
        if isinstance(scenes, FileNode):
            return update_content(tree, SCENES_DOC_ID, content)
        tree = _ensure_folder(tree, SCENES_ID, "scenes")
        return insert_child(tree, SCENES_ID, FileNode(
            id=SCENES_DOC_ID, name="scenes.json", icon="data_object", iconColor="text-amber-400", content=content,
        ))

    # ── entry point ────────────────────────────────────────────────

    async def ingest(
        self,
        repository: Repository,
        asset: Asset,
        *,
        operation_id: str | None = None,
        base_tree: Optional[Tree] = None,
    ) -> AssetMetadata:
        """Drive one asset through every stage and commit the resulting tree.

        ``base_tree`` defaults to the repository's current tree. Uploads pass the
        tree holding the uncommitted placeholder so that it lands in the same
        commit as the ingested state.
        """
        asset.kind = classify(asset.mimeType)
        await self._log(operation_id, f"> Processing {asset.name} ({asset.kind})", phase=f"ingesting:{asset.id}")
        await self._set_status(asset, "pending", 0, operation_id)
        blob = await self._store_write("get_blob", asset, self.asset_store.get_blob, asset.id) or b""

        frames: list[bytes] = []
        transcript = Transcription()
        if asset.kind in ("video", "audio"):
            await self._set_status(asset, "transcribing", 0, operation_id)
            audio: Optional[bytes] = blob
            if asset.kind == "video":
                extraction = await self._extract(asset, blob, operation_id)
                frames, audio = extraction.frames, extraction.audio
                await self._set_status(asset, "transcribing", 50, operation_id)
            transcript = await self._transcribe(asset, audio, operation_id)
            await self._set_status(asset, "transcribing", 100, operation_id)

        await self._set_status(asset, "detecting", 0, operation_id)
        analysis = await self._analyze(asset, frames, blob, operation_id)
        await self._set_status(asset, "detecting", 100, operation_id)

        timestamp = _now()
        await self._log(operation_id, "> Writing metadata...")
        tree = list(repository.tree if base_tree is None else base_tree)
        tree, metadata = self._write_metadata(tree, asset, analysis, transcript, timestamp)
        tree = self._write_transcript_artifacts(tree, asset, transcript)
        await self._log(operation_id, "> Updating scenes index...")
        tree = self._aggregate(tree, asset, analysis)

        asset.tags = list(analysis.tags)
        asset.meta = {
            **asset.meta,
            "description": analysis.description,
            "metadataNodeId": metadata_node_id(asset.id),
            "hasTranscript": bool(transcript.text),
        }
        await self._store_write("update_metadata", asset, self.asset_store.update_metadata, asset.id, asset.tags, asset.meta)
        await self._set_status(asset, "indexed", 100, operation_id)

        message = f"feat: ingested {asset.name} (AI index)"
        commit = await self.commit_engine.commit(repository, message, tree, changes=f"ingestion:{asset.id}")
        if commit is not None:
            await self._log(operation_id, f"> Committed {commit.id}: {message}")
        else:
            await self._log(operation_id, f"> Commit failed for {asset.name}; changes kept in memory")
        return metadata
