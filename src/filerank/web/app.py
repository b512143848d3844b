"""FastAPI application exposing indexing, ranking and history."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import threading
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from filerank.config import AppConfig
from filerank.errors import FileRankError, StorageError
from filerank.index.history import site_from_url
from filerank.models import HistoryEntry
from filerank.service import IndexService

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="filerank", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.db_path = None

_services: dict[Path, IndexService] = {}
_services_lock = threading.Lock()


class RankPayload(BaseModel):
    context: str
    site: str | None = None
    accept: str | None = None
    top_n: int = 5
    db: Path | None = None


class IndexPayload(BaseModel):
    root: str
    full: bool = False
    db: Path | None = None


class SelectionPayload(BaseModel):
    document_id: str
    page_url: str
    page_title: str = ""
    context: str = ""
    document_name: str = ""
    document_type: str = ""
    db: Path | None = None


class RescanConfigPayload(BaseModel):
    auto_rescan_enabled: bool | None = None
    rescan_interval_minutes: int | None = Field(default=None, ge=1)
    db: Path | None = None


def _resolve_db_path(db: Path | None) -> Path:
    default = app.state.db_path or AppConfig().db_path
    config = AppConfig(db_path=db if db is not None else default)
    return config.resolve_db_path(Path.cwd())


def _get_service(db: Path | None) -> IndexService:
    """One long-lived service per database, so requests share its lock."""
    resolved_db = _resolve_db_path(db)
    with _services_lock:
        service = _services.get(resolved_db)
        if service is None:
            try:
                service = IndexService(AppConfig(db_path=resolved_db))
            except StorageError as exc:
                raise HTTPException(status_code=500, detail=str(exc)) from exc
            _services[resolved_db] = service
        return service


def _validate_root(raw: str) -> Path:
    clean_path = raw.strip().replace("\r", "").replace("\n", "")
    if not clean_path:
        raise HTTPException(status_code=400, detail="No path provided")
    if "\0" in clean_path:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")

    root = Path(os.path.realpath(os.path.expanduser(clean_path)))
    if not root.exists():
        raise HTTPException(status_code=404, detail="Path not found: %s" % clean_path)
    if not root.is_dir():
        raise HTTPException(status_code=400, detail="Path must be a directory: %s" % clean_path)
    return root


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    with _services_lock:
        for service in _services.values():
            service.close()
        _services.clear()


@app.post("/rank")
async def rank_documents(payload: RankPayload) -> dict[str, Any]:
    context = payload.context.strip()
    if not context:
        raise HTTPException(status_code=400, detail="Empty query")

    top_n = max(1, min(payload.top_n, 50))
    service = _get_service(payload.db)
    try:
        response = await asyncio.to_thread(
            service.rank, context, payload.site, payload.accept, top_n
        )
    except FileRankError as exc:
        LOGGER.exception("Ranking failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "results": [result.as_dict() for result in response.results],
        "reason": response.reason,
    }


@app.post("/index")
async def index_folder(payload: IndexPayload) -> dict[str, Any]:
    root = _validate_root(payload.root)
    service = _get_service(payload.db)
    try:
        stats = await asyncio.to_thread(service.index_begin, root, full=payload.full)
    except FileRankError as exc:
        LOGGER.exception("Indexing failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {"status": stats.status, "db": str(service.db_path), "stats": stats.as_dict()}


@app.get("/count")
async def count_documents(db: Path | None = None) -> dict[str, int]:
    if not _resolve_db_path(db).exists():
        return {"count": 0}
    return {"count": await asyncio.to_thread(_get_service(db).count)}


@app.get("/documents")
async def list_documents(db: Path | None = None) -> dict[str, List[dict]]:
    if not _resolve_db_path(db).exists():
        return {"documents": []}
    records = await asyncio.to_thread(_get_service(db).documents)
    documents = [
        {
            "id": record.id,
            "name": record.name,
            "type": record.type,
            "size": record.size,
            "mtime": record.mtime,
        }
        for record in records
    ]
    return {"documents": documents}


@app.post("/history")
async def record_selection(payload: SelectionPayload) -> dict[str, str]:
    service = _get_service(payload.db)
    service.record_selection(
        payload.document_id,
        payload.page_url,
        page_title=payload.page_title,
        context=payload.context,
        document_name=payload.document_name,
        document_type=payload.document_type,
    )
    return {"status": "queued"}


def _read_history(service: IndexService, site: str | None, limit: int) -> List[HistoryEntry]:
    if site:
        return service.history.by_site(site_from_url(site))[-limit:][::-1]
    return service.history.all(limit=limit)


@app.get("/history")
async def list_history(
    site: str | None = None, limit: int = Query(50, ge=1), db: Path | None = None
) -> dict[str, List[dict]]:
    if not _resolve_db_path(db).exists():
        return {"history": []}
    entries = await asyncio.to_thread(_read_history, _get_service(db), site, limit)
    return {
        "history": [
            {
                "id": entry.id,
                "document_id": entry.document_id,
                "site": entry.site,
                "page_url": entry.page_url,
                "page_title": entry.page_title,
                "context": entry.context,
                "timestamp": entry.timestamp,
            }
            for entry in entries
        ]
    }


@app.get("/config")
async def get_rescan_config(db: Path | None = None) -> dict[str, Any]:
    config = await asyncio.to_thread(_get_service(db).rescan_config)
    return dataclasses.asdict(config)


@app.put("/config")
async def update_rescan_config(payload: RescanConfigPayload) -> dict[str, Any]:
    changes = payload.model_dump(exclude_none=True, exclude={"db"})
    service = _get_service(payload.db)
    config = await asyncio.to_thread(service.update_rescan_config, **changes)
    return dataclasses.asdict(config)
