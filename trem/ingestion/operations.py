"""In-memory tracker for observable ingestion operations."""
from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("trem.ingestion")

MAX_LOG_LINES = 500


class IngestionOperations:
    """Keeps the most recent operations with their status lines, newest first."""

    def __init__(self, max_history: int = 40):
        self._ops_lock = asyncio.Lock()
        self._operations: dict[str, dict[str, Any]] = {}
        self._operation_order: list[str] = []
        self._active_operation_ids: set[str] = set()
        self._max_operation_history = max_history

    async def start(
        self,
        kind: str,
        repository_id: int,
        trigger: str = "api",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        op_id = f"OP-{uuid.uuid4()}"
        now = datetime.now(timezone.utc).isoformat()
        payload = {
            "id": op_id,
            "kind": kind,
            "repositoryId": repository_id,
            "trigger": trigger,
            "status": "running",
            "phase": "queued",
            "message": "",
            "startedAt": now,
            "updatedAt": now,
            "finishedAt": "",
            "durationMs": 0,
            "progress": {},
            "counters": {},
            "stats": {},
            "metadata": metadata or {},
            "logs": [],
            "error": "",
        }
        async with self._ops_lock:
            self._operations[op_id] = payload
            self._operation_order.insert(0, op_id)
            self._active_operation_ids.add(op_id)
            if len(self._operation_order) > self._max_operation_history:
                stale_ids = self._operation_order[self._max_operation_history :]
                self._operation_order = self._operation_order[: self._max_operation_history]
                for stale_id in stale_ids:
                    self._operations.pop(stale_id, None)
                    self._active_operation_ids.discard(stale_id)
        logger.info("Operation started [%s] %s (repository=%s trigger=%s)", op_id, kind, repository_id, trigger)
        return op_id

    async def update(
        self,
        operation_id: str | None,
        *,
        phase: str | None = None,
        message: str | None = None,
        progress: dict[str, Any] | None = None,
        counters: dict[str, Any] | None = None,
        stats: dict[str, Any] | None = None,
    ) -> None:
        if not operation_id:
            return
        now = datetime.now(timezone.utc).isoformat()
        log_needed = False
        log_phase = ""
        log_message = ""
        async with self._ops_lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            if phase and phase != operation.get("phase"):
                operation["phase"] = phase
                log_needed = True
                log_phase = phase
            if message is not None:
                operation["message"] = message
                if message:
                    log_needed = True
                    log_message = message
                    logs = operation.setdefault("logs", [])
                    logs.append(message)
                    if len(logs) > MAX_LOG_LINES:
                        del logs[: len(logs) - MAX_LOG_LINES]
            if progress:
                operation.setdefault("progress", {}).update(progress)
            if counters:
                operation.setdefault("counters", {}).update(counters)
            if stats:
                operation.setdefault("stats", {}).update(stats)
            operation["updatedAt"] = now

        if log_needed:
            if log_message:
                logger.info("Operation update [%s] %s - %s", operation_id, log_phase or "progress", log_message)
            else:
                logger.info("Operation update [%s] %s", operation_id, log_phase)

    async def finish(
        self,
        operation_id: str | None,
        *,
        status: str,
        stats: dict[str, Any] | None = None,
        error: str = "",
    ) -> None:
        if not operation_id:
            return
        now = datetime.now(timezone.utc).isoformat()
        async with self._ops_lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            operation["status"] = status
            operation["updatedAt"] = now
            operation["finishedAt"] = now
            if stats:
                operation.setdefault("stats", {}).update(stats)
            if error:
                operation["error"] = error
            try:
                started_at = datetime.fromisoformat(str(operation.get("startedAt") or ""))
                finished_at = datetime.fromisoformat(now)
                operation["durationMs"] = max(0, int((finished_at - started_at).total_seconds() * 1000))
            except ValueError:
                operation["durationMs"] = 0
            self._active_operation_ids.discard(operation_id)

        if status == "failed":
            logger.error("Operation failed [%s]: %s", operation_id, error)
        else:
            logger.info("Operation finished [%s] status=%s", operation_id, status)

    async def list(self, limit: int = 20) -> list[dict[str, Any]]:
        """Latest operation snapshots, newest first."""
        async with self._ops_lock:
            op_ids = self._operation_order[: max(1, limit)]
            return [copy.deepcopy(self._operations[op_id]) for op_id in op_ids if op_id in self._operations]

    async def get(self, operation_id: str) -> dict[str, Any] | None:
        async with self._ops_lock:
            op = self._operations.get(operation_id)
            if not op:
                return None
            return copy.deepcopy(op)

    async def active_count(self) -> int:
        async with self._ops_lock:
            return len(self._active_operation_ids)
