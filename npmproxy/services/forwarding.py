"""
Reverse-proxy a FastAPI request to another HTTP server.

Method, headers and body are passed through; the Host header becomes the
target's and X-Forwarded-Host carries the original one. The response body is
streamed back unmodified. Transport failures become a 502 and are not retried;
the package manager owns its retry policy.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

logger = logging.getLogger(__name__)

# Headers that describe a single connection and must not be forwarded.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# How much of each forwarded body is kept for the debug log.
BODY_PREVIEW_LIMIT = 4096


def build_target_url(target: str, request: Request) -> str:
    """Join the target base URL with the request's raw path and query."""
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    path = raw_path.decode("latin-1")
    url = target.rstrip("/") + "/" + path.lstrip("/")
    query = request.url.query
    if query:
        url = f"{url}?{query}"
    return url


def forwarded_request_headers(request: Request) -> dict:
    headers = {
        k: v
        for k, v in request.headers.items()
        if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() not in ("host", "content-length")
    }
    # httpx fills in Host for the target URL.
    headers["x-forwarded-host"] = request.headers.get("host", "")
    return headers


def forwarded_response_headers(response: httpx.Response) -> dict:
    return {k: v for k, v in response.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


async def bounded_tee(chunks: AsyncIterator[bytes], url: str, limit: int = BODY_PREVIEW_LIMIT) -> AsyncIterator[bytes]:
    """
    Pass chunks through while keeping at most `limit` bytes for the debug log.
    """
    if not logger.isEnabledFor(logging.DEBUG):
        async for chunk in chunks:
            yield chunk
        return

    preview = bytearray()
    total = 0
    async for chunk in chunks:
        total += len(chunk)
        if len(preview) < limit:
            preview.extend(chunk[: limit - len(preview)])
        yield chunk
    logger.debug(
        f"Response body from {url} ({total} bytes): "
        f"{preview.decode('utf-8', errors='replace')}{'...' if total > len(preview) else ''}"
    )


async def forward_request(client: httpx.AsyncClient, target: str, request: Request) -> Response:
    """
    Send `request` to `target` and stream the answer back to the caller.
    """
    url = build_target_url(target, request)
    body = await request.body()
    upstream_request = client.build_request(
        request.method,
        url,
        headers=forwarded_request_headers(request),
        content=body or None,
    )

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.TransportError as e:
        logger.error(f"Failed to forward {request.method} {url}: {e}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": f"Upstream unreachable: {e}"},
        )

    logger.debug(f"Forwarded {request.method} {url} -> {upstream.status_code}")
    return StreamingResponse(
        bounded_tee(upstream.aiter_raw(), url),
        status_code=upstream.status_code,
        headers=forwarded_response_headers(upstream),
        background=BackgroundTask(upstream.aclose),
    )
