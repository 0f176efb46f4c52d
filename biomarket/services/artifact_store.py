from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _safe_part(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "-", value).strip("-") or "artifact"


class ArtifactStore:
    """Best-effort JSON sink for request/response artifacts."""

    def __init__(self, root_dir: str | Path):
        self.root_dir = Path(root_dir)
        self._pending: set[asyncio.Task] = set()

    def path_for(self, prefix: str, request_id: str, when: datetime | None = None) -> Path:
        ts = (when or datetime.now(UTC)).strftime("%Y%m%dT%H%M%S%fZ")
        return self.root_dir / f"{_safe_part(prefix)}_{_safe_part(request_id)}_{ts}.json"

    def write(self, prefix: str, request_id: str, payload: Any) -> Path:
        path = self.path_for(prefix, request_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        return path

    async def _write_async(self, prefix: str, request_id: str, payload: Any) -> None:
        try:
            await asyncio.to_thread(self.write, prefix, request_id, payload)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not persist %s artifact for %s: %s", prefix, request_id, e)

    def schedule(self, prefix: str, request_id: str, payload: Any) -> asyncio.Task:
        task = asyncio.create_task(self._write_async(prefix, request_id, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
