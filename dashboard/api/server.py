"""FastAPI server exposing a watched checklist to dashboard clients.

Wraps a single WatchOrchestrator: the current outline, the changed-key set,
and the acknowledge / rescan / switch-target operations.

Usage:
    cd dashboard
    TODOWATCH_TARGET=~/notes/TODO.md uvicorn api.server:app --port 8010
"""
from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from todowatch.config import WatchConfig
from todowatch.identity import find_section
from todowatch.outline import default_collapsed, flatten, row_to_dict, snapshot_to_dict
from todowatch.todo_types import ScanStatus
from todowatch.watcher import WatchOrchestrator

# ---------------------------------------------------------------------------
# Globals
#
# The orchestrator serialises its own scans; endpoints only take snapshots
# or call its thread-safe operations. Blocking calls (rescan, target switch)
# are pushed to a worker thread.
# ---------------------------------------------------------------------------
_watcher: WatchOrchestrator | None = None
_initial_target = os.environ.get("TODOWATCH_TARGET", "")


def _get_watcher() -> WatchOrchestrator:
    """Get the orchestrator, raising 503 if nothing is being watched."""
    if _watcher is None or _watcher.snapshot().target is None:
        raise HTTPException(
            status_code=503,
            detail="No target loaded. Set TODOWATCH_TARGET or POST /api/target.",
        )
    return _watcher


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global _watcher  # noqa: PLW0603
    _watcher = WatchOrchestrator(WatchConfig.from_env())
    if _initial_target:
        snap = await asyncio.to_thread(_watcher.watch, Path(_initial_target))
        print(f"[dashboard] Watching {snap.target}: status={snap.status}")
    else:
        print("[dashboard] No TODOWATCH_TARGET set; waiting for POST /api/target")
    yield
    _watcher.stop()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Todo Watch API",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


class AcknowledgeRequest(BaseModel):
    keys: list[str] = Field(default_factory=list)


class SectionAcknowledgeRequest(BaseModel):
    document: str
    section_path: str = Field(min_length=1)


class TargetRequest(BaseModel):
    path: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Routes: Health / snapshot
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    snap = _watcher.snapshot() if _watcher is not None else None
    return {
        "status": "ok",
        "target": snap.target if snap else None,
        "scan_status": str(snap.status) if snap else str(ScanStatus.IDLE),
        "scan_count": snap.scan_count if snap else 0,
    }


@app.get("/api/snapshot")
async def snapshot() -> dict[str, Any]:
    """Full document tree with stable keys and the changed-key set."""
    return snapshot_to_dict(_get_watcher().snapshot())


@app.get("/api/outline")
async def outline(expand_all: bool = False) -> dict[str, Any]:
    """Flattened rows; all-completed sections are folded unless expand_all."""
    snap = _get_watcher().snapshot()
    collapsed = set() if expand_all else default_collapsed(snap.documents)
    rows = flatten(snap.documents, collapsed, snap.changed)
    return {
        "target": snap.target,
        "status": str(snap.status),
        "errors": list(snap.errors),
        "changed_count": len(snap.changed),
        "rows": [row_to_dict(r) for r in rows],
    }


@app.get("/api/changes")
async def changes() -> dict[str, Any]:
    snap = _get_watcher().snapshot()
    return {"changed": sorted(snap.changed), "scan_count": snap.scan_count}


# ---------------------------------------------------------------------------
# Routes: Acknowledge
# ---------------------------------------------------------------------------
@app.post("/api/acknowledge")
async def acknowledge(req: AcknowledgeRequest) -> dict[str, Any]:
    watcher = _get_watcher()
    removed = watcher.acknowledge(req.keys)
    return {
        "acknowledged": sorted(removed),
        "remaining": sorted(watcher.snapshot().changed),
    }


@app.post("/api/acknowledge/section")
async def acknowledge_section(req: SectionAcknowledgeRequest) -> dict[str, Any]:
    watcher = _get_watcher()
    doc = watcher.snapshot().document(req.document)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {req.document}")
    if find_section(doc.sections, req.section_path) is None:
        raise HTTPException(
            status_code=404,
            detail=f"Section not found in {req.document}: {req.section_path}",
        )
    try:
        removed = watcher.acknowledge_section(req.document, req.section_path)
    except KeyError as e:
        # Target rescanned between the lookup and the acknowledge.
        raise HTTPException(status_code=404, detail=str(e)) from None
    return {
        "acknowledged": sorted(removed),
        "remaining": sorted(watcher.snapshot().changed),
    }


# ---------------------------------------------------------------------------
# Routes: Scan control
# ---------------------------------------------------------------------------
@app.post("/api/rescan")
async def rescan() -> dict[str, Any]:
    watcher = _get_watcher()
    snap = await asyncio.to_thread(watcher.rescan)
    return snapshot_to_dict(snap)


@app.post("/api/target")
async def set_target(req: TargetRequest) -> dict[str, Any]:
    """Switch the watched file or directory; the next scan starts fresh."""
    if _watcher is None:
        raise HTTPException(status_code=503, detail="Watcher not initialised")
    target = Path(req.path).expanduser()
    if not target.exists():
        raise HTTPException(status_code=404, detail=f"Path not found: {req.path}")
    snap = await asyncio.to_thread(_watcher.watch, target)
    return snapshot_to_dict(snap)
