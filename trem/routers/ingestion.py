"""Upload, re-ingestion and ingestion operation API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, Query, Request, UploadFile

from trem.errors import TremError
from trem.routers.repos import get_service, http_error, read_uploads

logger = logging.getLogger("trem.api")

ingestion_router = APIRouter(prefix="/api", tags=["ingestion"])


@ingestion_router.post("/repos/{repository_id}/uploads", status_code=202)
async def upload_assets(
    request: Request,
    background_tasks: BackgroundTasks,
    repository_id: int,
    files: list[UploadFile] = File(...),
    background: bool = Form(True),
    trigger: str = Form("api"),
):
    """Register the files and run ingestion, in the background unless asked otherwise."""
    service = get_service(request)
    uploads = await read_uploads(files)
    if not uploads:
        raise HTTPException(status_code=400, detail="No files provided")

    try:
        if background:
            operation_id = await service.start_operation(
                "upload", repository_id, trigger=trigger, metadata={"files": [u.name for u in uploads]}
            )
            background_tasks.add_task(service.upload_assets, repository_id, uploads, operation_id, trigger)
            return {
                "status": "ok",
                "mode": "background",
                "message": f"Ingesting {len(uploads)} assets in background",
                "operationId": operation_id,
            }

        stats = await service.upload_assets(repository_id, uploads, None, trigger)
    except TremError as exc:
        raise http_error(exc) from exc
    operation = await service.operations.get(stats["operation_id"])
    return {
        "status": "ok",
        "mode": "foreground",
        "operationId": stats["operation_id"],
        "stats": stats,
        "operation": operation,
    }


@ingestion_router.post("/repos/{repository_id}/assets/{asset_id}/reingest")
async def reingest_asset(request: Request, repository_id: int, asset_id: str):
    service = get_service(request)
    try:
        metadata = await service.reingest_asset(repository_id, asset_id)
    except TremError as exc:
        raise http_error(exc) from exc
    return {"status": "ok", "metadata": metadata}


@ingestion_router.get("/ingestion/operations")
async def list_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    """List recent upload/re-ingest operations."""
    service = get_service(request)
    operations = await service.operations.list(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@ingestion_router.get("/ingestion/operations/{operation_id}")
async def get_operation(request: Request, operation_id: str):
    service = get_service(request)
    operation = await service.operations.get(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
