"""Asset library API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from trem.errors import TremError
from trem.routers.repos import get_service, http_error

logger = logging.getLogger("trem.api")

assets_router = APIRouter(prefix="/api/assets", tags=["assets"])


class UpdateAssetRequest(BaseModel):
    tags: list[str] = Field(default_factory=list)


@assets_router.get("")
async def list_assets(request: Request):
    service = get_service(request)
    items = await service.list_assets()
    return {"status": "ok", "count": len(items), "items": items}


@assets_router.get("/{asset_id}")
async def get_asset(request: Request, asset_id: str):
    service = get_service(request)
    try:
        return await service.get_asset(asset_id)
    except TremError as exc:
        raise http_error(exc) from exc


@assets_router.patch("/{asset_id}")
async def update_asset(request: Request, asset_id: str, body: UpdateAssetRequest):
    service = get_service(request)
    try:
        return await service.update_asset_tags(asset_id, body.tags)
    except TremError as exc:
        raise http_error(exc) from exc


@assets_router.delete("/{asset_id}")
async def delete_asset(request: Request, asset_id: str):
    service = get_service(request)
    try:
        await service.delete_asset(asset_id)
    except TremError as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "deleted": asset_id}
