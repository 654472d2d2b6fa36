from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, Request, Response

from npmproxy.core.dependencies import (
    get_default_registry,
    get_http_client,
    get_internal_url,
    get_override_table,
)
from npmproxy.domain.npm_utils import package_name_from_path
from npmproxy.domain.overrides import OverrideTable
from npmproxy.services.forwarding import forward_request

logger = logging.getLogger(__name__)
router = APIRouter()

PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/{path:path}", methods=PROXIED_METHODS)
async def route_npm_request(
    path: str,
    request: Request,
    overrides: OverrideTable = Depends(get_override_table),
    default_registry: str = Depends(get_default_registry),
    internal_url: str = Depends(get_internal_url),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """
    Entry point for the package manager.

    Requests for an overridden namespace go to the internal service, which
    decides between local sources and the override's upstream. Everything
    else goes to the default registry untouched.
    """
    logger.info(f"Incoming npm request for /{path}")
    package_name = package_name_from_path(path)

    if overrides.match(package_name) is None:
        return await forward_request(client, default_registry, request)

    return await forward_request(client, internal_url, request)
