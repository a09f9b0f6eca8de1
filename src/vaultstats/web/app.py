"""FastAPI application exposing the live vault statistics."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from vaultstats.config import AppConfig
from vaultstats.index.collector import MetricsCollector
from vaultstats.ingestion.markdown_parser import MetadataCache
from vaultstats.ingestion.vault import FileSystemVault
from vaultstats.utils.format import format_metrics
from vaultstats.utils.text import markdown_tokenize

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="vaultstats", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class TokenizePayload(BaseModel):
    text: str


def _resolve_vault_path() -> Path:
    config = AppConfig()
    return config.resolve_vault_path(Path.cwd())


def _get_collector() -> MetricsCollector:
    collector = getattr(app.state, "collector", None)
    if collector is None:
        raise HTTPException(status_code=503, detail="Metrics collector is not running")
    return collector


def _metrics_payload(collector: MetricsCollector) -> Dict[str, Any]:
    totals = collector.metrics.snapshot()
    return {
        "vault": str(collector.vault.root),
        "metrics": totals.as_dict(),
        "formatted": format_metrics(totals),
        "backlog": len(collector.backlog),
    }


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    config = AppConfig()
    root = _resolve_vault_path()
    if not root.is_dir():
        LOGGER.error("Vault directory not found: %s", root)
        app.state.collector = None
        return

    vault = FileSystemVault(root, include_hidden=config.include_hidden)
    metadata_cache = MetadataCache(vault, note_extensions=config.note_extensions)
    await vault.scan()
    app.state.collector = MetricsCollector(
        vault,
        metadata_cache,
        interval=config.interval,
        note_extensions=config.note_extensions,
    ).start()
    app.state.poller = asyncio.create_task(vault.watch(config.poll_interval))
    LOGGER.info("Collecting statistics for %s", root)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    poller = getattr(app.state, "poller", None)
    if poller is not None:
        poller.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await poller
        app.state.poller = None
    collector = getattr(app.state, "collector", None)
    if collector is not None:
        await collector.stop()
        collector.metadata_cache.close()
        app.state.collector = None


@app.get("/metrics")
async def get_metrics() -> Dict[str, Any]:
    return _metrics_payload(_get_collector())


@app.post("/refresh")
async def refresh_metrics() -> Dict[str, Any]:
    """Drain the pending backlog now instead of waiting for the next tick."""
    collector = _get_collector()
    await collector.process_backlog()
    return _metrics_payload(collector)


@app.get("/documents")
async def list_documents() -> Dict[str, List[Dict[str, Any]]]:
    collector = _get_collector()
    documents = [
        {"path": path, **metrics.as_dict()}
        for path, metrics in sorted(collector.documents().items())
    ]
    return {"documents": documents}


@app.get("/documents/{path:path}")
async def get_document(path: str) -> Dict[str, Any]:
    collector = _get_collector()
    metrics = collector.cached(path)
    if metrics is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {path}")
    return {"path": path, **metrics.as_dict()}


@app.post("/tokenize")
async def tokenize_text(payload: TokenizePayload) -> Dict[str, Any]:
    tokens = markdown_tokenize(payload.text)
    return {"tokens": tokens, "count": len(tokens)}
