"""
KairOS -- P2P Peer Router

Lets a node serve as a peer and as a content gateway for other nodes.

Endpoints:
  GET /api/p2p/identity/{chipUID}   -- this node's verified record for a chip
  GET /api/p2p/content/{contentHash} -- a stored record by content hash
  GET /api/p2p/status               -- network status summary
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kairos.systems.registry.p2p import P2PRegistry

logger = structlog.get_logger("kairos.api.p2p")

router = APIRouter()


def _p2p(request: Request) -> P2PRegistry | None:
    service = getattr(request.app.state, "service", None)
    return service.p2p if service is not None else None


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"success": False, "error": message})


@router.get("/p2p/identity/{chip_uid}", response_model=None)
async def get_identity(chip_uid: str, request: Request) -> dict[str, Any] | JSONResponse:
    p2p = _p2p(request)
    if p2p is None:
        return _not_found("P2P registry not enabled")
    record = p2p.get_local_record(chip_uid)
    if record is None:
        return _not_found("Identity not found")
    return record


@router.get("/p2p/content/{content_hash}", response_model=None)
async def get_content(content_hash: str, request: Request) -> dict[str, Any] | JSONResponse:
    p2p = _p2p(request)
    if p2p is None:
        return _not_found("P2P registry not enabled")
    content = p2p.get_content(content_hash)
    if content is None:
        return _not_found("Content not found")
    return content


@router.get("/p2p/status")
async def get_status(request: Request) -> dict[str, Any]:
    service = getattr(request.app.state, "service", None)
    if service is None:
        return {"status": "unavailable", "error": "Service not initialized"}
    return {"status": "ok", "data": service.network_status()}
