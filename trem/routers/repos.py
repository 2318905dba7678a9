"""Repository, tree, node and commit API."""
from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from trem.errors import (
    AssetNotFoundError,
    DuplicateNodeError,
    LockedNodeError,
    NodeNotFoundError,
    RepositoryNotFoundError,
    TremError,
    TypeMismatchError,
)
from trem.models import UploadedFile

logger = logging.getLogger("trem.api")

repos_router = APIRouter(prefix="/api/repos", tags=["repos"])


class CreateNodeRequest(BaseModel):
    parentId: Optional[str] = None
    name: str = Field(..., min_length=1)
    kind: Literal["folder", "file"] = "file"
    content: str = ""


class UpdateNodeRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    toggleOpen: bool = False


def get_service(request: Request):
    service = getattr(request.app.state, "repository_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Repository service not initialized")
    return service


def http_error(exc: TremError) -> HTTPException:
    if isinstance(exc, (RepositoryNotFoundError, NodeNotFoundError, AssetNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (TypeMismatchError, LockedNodeError, DuplicateNodeError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


async def read_uploads(files: list[UploadFile] | None) -> list[UploadedFile]:
    uploads = []
    for item in files or []:
        uploads.append(UploadedFile(
            name=item.filename or "untitled",
            mimeType=item.content_type or "",
            data=await item.read(),
        ))
    return uploads


@repos_router.get("")
async def list_repositories(request: Request):
    service = get_service(request)
    items = await service.list_repositories()
    return {"status": "ok", "count": len(items), "items": items}


@repos_router.post("", status_code=201)
async def create_repository(
    request: Request,
    name: str = Form(..., min_length=1),
    brief: str = Form(""),
    files: Optional[list[UploadFile]] = File(default=None),
):
    """Create a repository; optional files are imported as ready assets."""
    service = get_service(request)
    uploads = await read_uploads(files)
    return await service.create_repository(name, brief, uploads)


@repos_router.get("/{repository_id}")
async def get_repository(request: Request, repository_id: int):
    service = get_service(request)
    try:
        return await service.open_repository(repository_id)
    except TremError as exc:
        raise http_error(exc) from exc


@repos_router.delete("/{repository_id}")
async def delete_repository(request: Request, repository_id: int):
    service = get_service(request)
    try:
        await service.delete_repository(repository_id)
    except TremError as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "deleted": repository_id}


@repos_router.get("/{repository_id}/tree")
async def get_tree(request: Request, repository_id: int):
    service = get_service(request)
    try:
        return await service.get_tree(repository_id)
    except TremError as exc:
        raise http_error(exc) from exc


@repos_router.post("/{repository_id}/nodes", status_code=201)
async def create_node(request: Request, repository_id: int, body: CreateNodeRequest):
    service = get_service(request)
    try:
        return await service.create_node(repository_id, body.parentId, body.name, body.kind, body.content)
    except TremError as exc:
        raise http_error(exc) from exc


@repos_router.patch("/{repository_id}/nodes/{node_id}")
async def update_node(request: Request, repository_id: int, node_id: str, body: UpdateNodeRequest):
    """Rename, replace content or toggle the open flag; each change commits on its own."""
    service = get_service(request)
    if body.name is None and body.content is None and not body.toggleOpen:
        raise HTTPException(status_code=400, detail="Nothing to update")
    try:
        node = None
        if body.name is not None:
            node = await service.rename_node(repository_id, node_id, body.name)
        if body.content is not None:
            node = await service.edit_file_content(repository_id, node_id, body.content)
        if body.toggleOpen:
            node = await service.toggle_open(repository_id, node_id)
        return node
    except TremError as exc:
        raise http_error(exc) from exc


@repos_router.delete("/{repository_id}/nodes/{node_id}")
async def delete_node(request: Request, repository_id: int, node_id: str):
    service = get_service(request)
    try:
        await service.delete_node(repository_id, node_id)
    except TremError as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "deleted": node_id}


@repos_router.get("/{repository_id}/commits")
async def list_commits(request: Request, repository_id: int):
    service = get_service(request)
    try:
        items = await service.list_commits(repository_id)
    except TremError as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "count": len(items), "items": items}


@repos_router.get("/{repository_id}/commits/{commit_id}")
async def get_commit(request: Request, repository_id: int, commit_id: str):
    service = get_service(request)
    try:
        commit = await service.get_commit(repository_id, commit_id)
    except TremError as exc:
        raise http_error(exc) from exc
    if commit is None:
        raise HTTPException(status_code=404, detail=f"Commit {commit_id} not found")
    return commit
