"""Canonical tree layout for a freshly created repository."""
from __future__ import annotations

import json
from typing import Iterable

from trem.models import Asset, FileNode, FolderNode

PIPELINE_NAME = "trem-video-pipeline-v1"
REPO_VERSION = "1.0.0"

# Well-known node ids the pipeline and commit engine look up.
MEDIA_ID = "media"
MEDIA_RAW_ID = "media_raw"
MEDIA_AUDIO_ID = "media_audio"
MEDIA_TRANSCRIPTS_ID = "media_transcripts"
SCENES_ID = "scenes"
SCENES_DOC_ID = "scenes_json"
SUBTITLES_ID = "subtitles"
META_ID = "meta"
COMMITS_ID = "commits"

TOP_LEVEL_FOLDERS = (
    "media",
    "scenes",
    "subtitles",
    "descriptions",
    "meta",
    "commits",
    "builds",
    "ai",
)

_ASSET_ICONS = {"video": "movie", "audio": "music_note", "image": "image"}


def asset_icon(kind: str) -> str:
    return _ASSET_ICONS.get(kind, "description")


def asset_node(asset: Asset) -> FileNode:
    """File node for an asset; shares the asset id so previews resolve the blob."""
    return FileNode(
        id=asset.id,
        name=asset.name,
        icon=asset_icon(asset.kind),
        iconColor="text-emerald-400",
    )


def build_skeleton(name: str, brief: str, created: str, assets: Iterable[Asset] = ()) -> list:
    repo_json = {
        "name": name,
        "brief": brief,
        "created": created,
        "version": REPO_VERSION,
        "pipeline": PIPELINE_NAME,
    }
    return [
        FileNode(id="config", name="repo.json", icon="settings", iconColor="text-slate-400",
                 content=json.dumps(repo_json, indent=2)),
        FolderNode(id=MEDIA_ID, name="media", locked=True, children=[
            FolderNode(id=MEDIA_RAW_ID, name="raw", children=[asset_node(a) for a in assets]),
            FolderNode(id=MEDIA_AUDIO_ID, name="audio"),
            FolderNode(id=MEDIA_TRANSCRIPTS_ID, name="transcripts"),
            FolderNode(id="media_proxies", name="proxies"),
        ]),
        FolderNode(id=SCENES_ID, name="scenes", children=[
            FileNode(id=SCENES_DOC_ID, name="scenes.json", icon="data_object", iconColor="text-amber-400",
                     content=json.dumps({"assets": []}, indent=2)),
        ]),
        FolderNode(id=SUBTITLES_ID, name="subtitles", children=[
            FileNode(id="subtitles_main", name="main.srt", icon="subtitles", iconColor="text-slate-200", content=""),
        ]),
        FolderNode(id="descriptions", name="descriptions", children=[
            FileNode(id="desc_video", name="video.md", icon="description", iconColor="text-emerald-300",
                     content=f"# {name}\n\n{brief}\n" if brief else f"# {name}\n"),
            FileNode(id="desc_scenes", name="scenes.md", icon="description", iconColor="text-emerald-200",
                     content=""),
        ]),
        FolderNode(id=META_ID, name="meta"),
        FolderNode(id=COMMITS_ID, name="commits", locked=True),
        FolderNode(id="builds", name="builds", children=[
            FileNode(id="build_draft", name="draft.mp4", icon="movie", iconColor="text-slate-500", locked=True),
        ]),
        FolderNode(id="ai", name="ai", children=[
            FolderNode(id="ai_prompts", name="prompts"),
            FolderNode(id="ai_cache", name="cache"),
        ]),
    ]
