import json
import unittest

import aiosqlite

from trem.commits import CommitEngine, list_commits
from trem.db.repositories import SqliteAssetRepository, SqliteRepoRecordRepository
from trem.db.sqlite_migrations import run_migrations
from trem.errors import AnalysisError, ExtractionError, TranscriptionTimeoutError
from trem.ingestion.operations import IngestionOperations
from trem.ingestion.pipeline import IngestionPipeline, classify
from trem.models import (
    AnalysisResult,
    Asset,
    ExtractionResult,
    Repository,
    Transcription,
    TranscriptSegment,
    dump_tree,
)
from trem.skeleton import build_skeleton
from trem.tree import duplicate_ids, find_node


class _RecordingAssetStore(SqliteAssetRepository):
    def __init__(self, db):
        super().__init__(db)
        self.transitions: list[tuple[str, str, int]] = []

    async def update_progress(self, asset_id, status, progress):
        self.transitions.append((asset_id, status, progress))
        await super().update_progress(asset_id, status, progress)


class _FakeExtractor:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def extract(self, video):
        self.calls += 1
        if self.fail:
            raise ExtractionError("ffmpeg exploded")
        return ExtractionResult(frames=[b"frame-%d" % i for i in range(7)], audio=b"wav-bytes")


class _FakeTranscriber:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.payloads: list[bytes] = []

    async def transcribe(self, audio, **kwargs):
        self.payloads.append(audio)
        if self.error:
            raise self.error
        segment = TranscriptSegment(index=1, start=0.0, end=2.0, text="Hello from the clip")
        return Transcription(
            text="Hello from the clip",
            segments=[segment],
            srt="1\n00:00:00,000 --> 00:00:02,000\nHello from the clip\n\n",
        )


class _FakeAnalyzer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    async def analyze(self, *, frames=None, blob=None, mime_type=""):
        self.calls.append({"frames": frames, "blob": blob, "mime_type": mime_type})
        if self.fail:
            raise AnalysisError("malformed reply")
        return AnalysisResult(description="Waves on a beach", tags=["beach", "sea"])


class ClassifyTests(unittest.TestCase):
    def test_classify_by_mime_type(self) -> None:
        self.assertEqual(classify("video/mp4"), "video")
        self.assertEqual(classify("audio/mpeg"), "audio")
        self.assertEqual(classify("image/png"), "image")
        self.assertEqual(classify("application/octet-stream"), "image")
        self.assertEqual(classify(""), "image")


class IngestionPipelineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo_store = SqliteRepoRecordRepository(self.db)
        self.asset_store = _RecordingAssetStore(self.db)
        tree = build_skeleton("demo", "", "2024-01-01T00:00:00+00:00")
        repo_id = await self.repo_store.create({"name": "demo", "tree": dump_tree(tree)})
        self.repository = Repository(id=repo_id, name="demo", tree=tree)
        self.operations = IngestionOperations()

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _pipeline(self, extractor=None, transcriber=None, analyzer=None, merge_mode="append"):
        self.extractor = extractor or _FakeExtractor()
        self.transcriber = transcriber or _FakeTranscriber()
        self.analyzer = analyzer or _FakeAnalyzer()
        return IngestionPipeline(
            self.asset_store,
            CommitEngine(self.repo_store),
            self.extractor,
            self.transcriber,
            self.analyzer,
            operations=self.operations,
            merge_mode=merge_mode,
        )

    async def _asset(self, asset_id: str, name: str, mime_type: str) -> Asset:
        asset = Asset(id=asset_id, name=name, mimeType=mime_type, kind=classify(mime_type))
        await self.asset_store.upsert(asset.model_dump(), b"payload-" + asset_id.encode())
        self.repository.assets.append(asset_id)
        return asset

    def _statuses(self, asset_id: str) -> list[str]:
        seen: list[str] = []
        for item_id, status, _ in self.asset_store.transitions:
            if item_id == asset_id and (not seen or seen[-1] != status):
                seen.append(status)
        return seen

    async def test_video_visits_every_stage_and_commits(self) -> None:
        pipeline = self._pipeline()
        asset = await self._asset("a1", "holiday.mp4", "video/mp4")
        op_id = await self.operations.start("upload", self.repository.id)

        metadata = await pipeline.ingest(self.repository, asset, operation_id=op_id)

        self.assertEqual(self._statuses("a1"), ["pending", "transcribing", "detecting", "indexed"])
        self.assertEqual(asset.status, "indexed")
        self.assertEqual(self.transcriber.payloads, [b"wav-bytes"])
        self.assertEqual(len(self.analyzer.calls[0]["frames"]), 5)
        self.assertEqual(metadata.transcript, "Hello from the clip")
        self.assertEqual([h.action for h in metadata.history], ["ingested"])

        meta_node = find_node(self.repository.tree, "meta_a1")
        self.assertEqual(meta_node.name, "a1.json")
        self.assertEqual(json.loads(meta_node.content)["original_name"], "holiday.mp4")
        self.assertEqual(find_node(self.repository.tree, "transcript_a1").name, "holiday.json")
        self.assertEqual(find_node(self.repository.tree, "srt_a1").name, "holiday.srt")

        scenes = json.loads(find_node(self.repository.tree, "scenes_json").content)
        self.assertEqual(scenes["assets"], [
            {"id": "a1", "name": "holiday.mp4", "description": "Waves on a beach", "tags": ["beach", "sea"]},
        ])
        commits = list_commits(self.repository.tree)
        self.assertEqual(commits[-1].message, "feat: ingested holiday.mp4 (AI index)")

        stored = await self.asset_store.get_by_id("a1")
        self.assertEqual(json.loads(stored["tags_json"]), ["beach", "sea"])
        operation = await self.operations.get(op_id)
        self.assertIn("> Extracting Keyframes...", operation["logs"])

    async def test_image_skips_transcription(self) -> None:
        pipeline = self._pipeline()
        asset = await self._asset("img", "poster.png", "image/png")

        metadata = await pipeline.ingest(self.repository, asset)

        self.assertEqual(self._statuses("img"), ["pending", "detecting", "indexed"])
        self.assertEqual(self.extractor.calls, 0)
        self.assertEqual(self.transcriber.payloads, [])
        self.assertEqual(self.analyzer.calls[0]["blob"], b"payload-img")
        self.assertEqual(metadata.transcript, "")
        self.assertIsNone(find_node(self.repository.tree, "transcript_img"))

    async def test_audio_is_transcribed_from_the_blob(self) -> None:
        pipeline = self._pipeline()
        asset = await self._asset("snd", "voice.mp3", "audio/mpeg")

        await pipeline.ingest(self.repository, asset)

        self.assertEqual(self._statuses("snd"), ["pending", "transcribing", "detecting", "indexed"])
        self.assertEqual(self.transcriber.payloads, [b"payload-snd"])
        self.assertEqual(self.extractor.calls, 0)

    async def test_transcription_timeout_still_reaches_indexed(self) -> None:
        pipeline = self._pipeline(transcriber=_FakeTranscriber(error=TranscriptionTimeoutError("pred-1", 60)))
        asset = await self._asset("a1", "long.mp4", "video/mp4")

        metadata = await pipeline.ingest(self.repository, asset)

        self.assertEqual(asset.status, "indexed")
        self.assertEqual(metadata.transcript, "")
        self.assertEqual(json.loads(find_node(self.repository.tree, "meta_a1").content)["transcript"], "")

    async def test_extraction_and_analysis_failures_use_defaults(self) -> None:
        pipeline = self._pipeline(extractor=_FakeExtractor(fail=True), analyzer=_FakeAnalyzer(fail=True))
        asset = await self._asset("a1", "broken.mp4", "video/mp4")

        metadata = await pipeline.ingest(self.repository, asset)

        self.assertEqual(asset.status, "indexed")
        self.assertEqual(self.transcriber.payloads, [])
        self.assertEqual(self.analyzer.calls[0]["blob"], b"payload-a1")
        self.assertEqual(metadata.analysis.description, "Analysis failed")
        self.assertEqual(metadata.analysis.tags, ["error"])

        # a second run over the same failing asset still completes
        await pipeline.ingest(self.repository, asset)
        self.assertEqual(asset.status, "indexed")

    async def test_reingest_updates_metadata_in_place(self) -> None:
        pipeline = self._pipeline(merge_mode="upsert")
        asset = await self._asset("a1", "clip.mp4", "video/mp4")

        await pipeline.ingest(self.repository, asset)
        metadata = await pipeline.ingest(self.repository, asset)

        self.assertEqual([h.action for h in metadata.history], ["ingested", "reingested"])
        self.assertEqual(duplicate_ids(self.repository.tree), [])
        scenes = json.loads(find_node(self.repository.tree, "scenes_json").content)
        self.assertEqual(len(scenes["assets"]), 1)

    async def test_append_mode_duplicates_scene_entry_on_reingest(self) -> None:
        pipeline = self._pipeline(merge_mode="append")
        asset = await self._asset("a1", "clip.mp4", "video/mp4")

        await pipeline.ingest(self.repository, asset)
        await pipeline.ingest(self.repository, asset)

        scenes = json.loads(find_node(self.repository.tree, "scenes_json").content)
        self.assertEqual([e["id"] for e in scenes["assets"]], ["a1", "a1"])

    async def test_sequential_assets_aggregate_in_order(self) -> None:
        pipeline = self._pipeline()
        for idx, mime in enumerate(["video/mp4", "image/jpeg", "audio/wav"]):
            asset = await self._asset(f"a{idx}", f"file{idx}", mime)
            await pipeline.ingest(self.repository, asset)

        scenes = json.loads(find_node(self.repository.tree, "scenes_json").content)
        self.assertEqual([e["id"] for e in scenes["assets"]], ["a0", "a1", "a2"])
        self.assertEqual([c.id for c in list_commits(self.repository.tree)], ["0001", "0002", "0003"])


if __name__ == "__main__":
    unittest.main()
