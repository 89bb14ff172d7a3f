"""
KairOS -- Application Entry Point

FastAPI application serving the public-key registry and the P2P peer
endpoints of one node.

  uvicorn kairos.main:create_app --factory
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env file before any configuration is loaded
load_dotenv()

from kairos import __version__
from kairos.api.routers.p2p import router as p2p_router
from kairos.api.routers.registry import RegistryStore
from kairos.api.routers.registry import router as registry_router
from kairos.config import KairosConfig, load_config
from kairos.service import KairosService
from kairos.telemetry.logging import setup_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: KairosConfig = app.state.config
    setup_logging(config.logging, node_id=config.node_id)
    logger.info("kairos_starting", node_id=config.node_id, version=__version__)

    service: KairosService = app.state.service
    await service.initialize()
    logger.info("kairos_ready", **service.network_status())

    yield

    logger.info("kairos_shutting_down")
    await service.shutdown()
    logger.info("kairos_shutdown_complete")


def create_app(
    config: KairosConfig | None = None,
    service: KairosService | None = None,
) -> FastAPI:
    if config is None:
        config = load_config(os.environ.get("KAIROS_CONFIG_PATH", "config/default.yaml"))

    app = FastAPI(
        title="KairOS",
        description="NFC pendant identity: key registry and P2P discovery node",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.service = service or KairosService(config)
    app.state.registry_store = RegistryStore()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Same layout as the hosted registry: {api_url}/registry/...
    app.include_router(registry_router, prefix="/api")
    app.include_router(p2p_router, prefix="/api")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "version": __version__,
            "registryEntries": len(app.state.registry_store),
            **app.state.service.network_status(),
        }

    return app


def main() -> None:
    import uvicorn

    config = load_config(os.environ.get("KAIROS_CONFIG_PATH", "config/default.yaml"))
    uvicorn.run(
        "kairos.main:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
    )


if __name__ == "__main__":
    main()
