"""Pydantic models for repositories, trees, assets and commits."""
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

# ── Tree nodes ─────────────────────────────────────────────────────

class _NodeBase(BaseModel):
    id: str
    name: str
    locked: bool = False
    isOpen: bool = False  # display-only flag
    icon: Optional[str] = None
    iconColor: Optional[str] = None


class FolderNode(_NodeBase):
    kind: Literal["folder"] = "folder"
    children: list[Node] = Field(default_factory=list)


class FileNode(_NodeBase):
    kind: Literal["file"] = "file"
    content: Optional[str] = None


Node = Annotated[Union[FolderNode, FileNode], Field(discriminator="kind")]

FolderNode.model_rebuild()

TREE_ADAPTER = TypeAdapter(list[Node])


def load_tree(raw: list | None) -> list[FolderNode | FileNode]:
    """Validate a JSON-decoded tree into typed nodes."""
    return TREE_ADAPTER.validate_python(raw or [])


def dump_tree(tree: list[FolderNode | FileNode]) -> list[dict]:
    return TREE_ADAPTER.dump_python(tree, mode="json")


# ── Assets ─────────────────────────────────────────────────────────

AssetKind = Literal["video", "audio", "image"]
AssetStatus = Literal["pending", "transcribing", "detecting", "indexed", "ready"]


class Asset(BaseModel):
    id: str
    name: str
    kind: AssetKind = "video"
    mimeType: str = ""
    size: int = 0
    duration: Optional[float] = None
    created: str = ""
    updatedAt: str = ""
    status: AssetStatus = "pending"
    progress: int = 0  # 0-100 within the current stage
    tags: list[str] = Field(default_factory=list)
    meta: dict = Field(default_factory=dict)


class UploadedFile(BaseModel):
    """Raw upload handed to the Facade; the blob is owned by the asset store once registered."""
    name: str
    mimeType: str = ""
    data: bytes = b""


# ── Repositories & commits ─────────────────────────────────────────

class Repository(BaseModel):
    id: int
    name: str
    brief: str = ""
    created: str = ""
    updatedAt: str = ""
    assets: list[str] = Field(default_factory=list)
    tree: list[Node] = Field(default_factory=list)


class RepositorySummary(BaseModel):
    id: int
    name: str
    brief: str = ""
    created: str = ""
    updatedAt: str = ""
    assetCount: int = 0


class Commit(BaseModel):
    id: str  # zero-padded sequence, scoped to one repository
    message: str
    author: str = ""
    timestamp: str = ""
    changes: str = "filesystem_update"


# ── Collaborator results ───────────────────────────────────────────

class TranscriptSegment(BaseModel):
    index: int
    start: float
    end: float
    text: str = ""


class Transcription(BaseModel):
    text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    srt: str = ""
    language: Optional[str] = None


class AnalysisResult(BaseModel):
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    frames: list[bytes] = Field(default_factory=list)
    audio: Optional[bytes] = None


# ── Aggregation ────────────────────────────────────────────────────

class SceneEntry(BaseModel):
    id: str
    name: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class HistoryEntry(BaseModel):
    timestamp: str
    action: str


class AssetMetadata(BaseModel):
    """Content of the per-asset `<assetId>.json` file under meta/."""
    asset_id: str
    original_name: str
    analysis: Optional[AnalysisResult] = None
    transcript: str = ""
    processed_at: str = ""
    history: list[HistoryEntry] = Field(default_factory=list)
