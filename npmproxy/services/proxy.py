"""
Proxy orchestrator: owns configuration and the lifecycle of both services.

The external service is what the package manager talks to. The internal
service is bound to loopback only and answers for overridden namespaces.
Both run on uvicorn in the same event loop and stop together when the
shared stop event is set.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

import httpx
import uvicorn
from fastapi import FastAPI

from npmproxy.api.external import router as external_router
from npmproxy.api.internal import router as internal_router
from npmproxy.core.dependencies import get_cache_dir
from npmproxy.domain.models import DEFAULT_REGISTRY, Override
from npmproxy.domain.overrides import OverrideTable
from npmproxy.services.archiver import PackageArchiver
from npmproxy.services.resolver import PackageSourceResolver

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
SHUTDOWN_GRACE_SECONDS = 5
FORWARD_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


def create_internal_app(proxy: "Proxy") -> FastAPI:
    app = FastAPI(
        title="npm proxy (internal)",
        description="Synthesized registry metadata and tarballs for local package sources.",
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.proxy = proxy
    app.include_router(internal_router)
    return app


def create_external_app(proxy: "Proxy") -> FastAPI:
    app = FastAPI(
        title="npm proxy",
        description="Routes npm requests to local sources or the upstream registry.",
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.proxy = proxy
    app.include_router(external_router)
    return app


class Proxy:
    """
    Single lifecycle handle for the external and internal services.

    Holds no mutable request state: the override table is read-only and
    resolution reads everything it needs from disk per request.
    """

    def __init__(
        self,
        overrides: Iterable[Override],
        project_root: Path,
        port: int = 1234,
        internal_port: int = 1235,
        cache_dir: Optional[Path] = None,
        default_registry: str = DEFAULT_REGISTRY,
        host: str = LOOPBACK_HOST,
        compress: bool = False,
        client: Optional[httpx.AsyncClient] = None,
        shutdown_grace: float = SHUTDOWN_GRACE_SECONDS,
    ):
        self.overrides = OverrideTable(overrides)
        self.project_root = Path(project_root)
        self.port = port
        self.internal_port = internal_port
        self.host = host
        self.default_registry = default_registry.rstrip("/")
        self.cache_dir = Path(cache_dir) if cache_dir else get_cache_dir()
        self.shutdown_grace = shutdown_grace

        self.internal_url = f"http://{LOOPBACK_HOST}:{internal_port}"
        self.external_url = f"http://{host}:{port}"

        self.archiver = PackageArchiver(self.cache_dir, compress=compress)
        self.resolver = PackageSourceResolver(self.project_root, self.archiver, self.internal_url)

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=FORWARD_TIMEOUT)

        self.internal_app = create_internal_app(self)
        self.external_app = create_external_app(self)

    def _server(self, app: FastAPI, host: str, port: int) -> uvicorn.Server:
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_config=None,
            timeout_graceful_shutdown=self.shutdown_grace,
        )
        return uvicorn.Server(config)

    async def _serve(self, server: uvicorn.Server, name: str, stop_event: asyncio.Event) -> None:
        try:
            await server.serve()
        except Exception as e:
            logger.error(f"The {name} server of the npm proxy failed: {e}", exc_info=True)
            raise
        finally:
            # Either server going away takes the other one down too.
            stop_event.set()

    async def start(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run both services until `stop_event` is set or a server exits.

        The internal service runs as a background task, the external one in
        the calling task. On stop each server gets `shutdown_grace` seconds
        for in-flight requests before connections are force-closed.
        """
        stop_event = stop_event or asyncio.Event()
        internal = self._server(self.internal_app, LOOPBACK_HOST, self.internal_port)
        external = self._server(self.external_app, self.host, self.port)

        async def _watch_stop() -> None:
            await stop_event.wait()
            internal.should_exit = True
            external.should_exit = True

        watcher = asyncio.create_task(_watch_stop())
        internal_task = asyncio.create_task(self._serve(internal, "internal", stop_event))
        logger.info(
            f"npm proxy listening on {self.external_url} (internal {self.internal_url}) "
            f"for {', '.join(self.overrides.namespaces)}"
        )

        try:
            await self._serve(external, "external", stop_event)
        finally:
            stop_event.set()
            try:
                await internal_task
            except Exception as e:
                logger.error(f"Failed to shutdown internal server for npm proxy: {e}")
            watcher.cancel()
            await self.aclose()
            logger.info("Stopped npm proxy server")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
