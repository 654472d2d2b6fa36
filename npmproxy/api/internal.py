from __future__ import annotations

from pathlib import Path
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import FileResponse, JSONResponse

from npmproxy.core.dependencies import (
    get_archive_dir,
    get_http_client,
    get_override_table,
    get_resolver,
)
from npmproxy.domain.errors import ResolutionError
from npmproxy.domain.overrides import OverrideTable
from npmproxy.services.forwarding import forward_request
from npmproxy.services.resolver import PackageSourceResolver

logger = logging.getLogger(__name__)
router = APIRouter()


def split_package_path(path: str) -> tuple[str, str]:
    """
    Split a request path into (package name, remainder).

    `@scope/name/1.0.0` -> (`@scope/name`, `1.0.0`); `name` -> (`name`, ``).
    """
    parts = path.split("/")
    size = 2 if path.startswith("@") else 1
    return "/".join(parts[:size]), "/".join(parts[size:])


# ---------------------------------------------------------------------------
# 1. GET /files/{file_name}
# ---------------------------------------------------------------------------

@router.get("/files/{file_name}")
async def get_archive(
    file_name: str,
    cache_dir: Path = Depends(get_archive_dir),
) -> FileResponse:
    """
    Serve a tarball previously generated by the archiver.
    """
    # Only plain names inside the cache directory.
    if not file_name or file_name.startswith(".") or Path(file_name).name != file_name:
        raise HTTPException(status_code=404, detail="Archive not found")

    file_path = cache_dir / file_name
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="Archive not found")

    return FileResponse(
        path=str(file_path),
        filename=file_path.name,
        media_type="application/octet-stream",
    )


# ---------------------------------------------------------------------------
# 2. GET /{package}
# ---------------------------------------------------------------------------

@router.get("/{package_path:path}")
async def get_package_metadata(
    package_path: str,
    request: Request,
    overrides: OverrideTable = Depends(get_override_table),
    resolver: PackageSourceResolver = Depends(get_resolver),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """
    Registry package document for an overridden package.

    Any resolution failure sends the request to the override's upstream
    registry; an install should never break because of one local source.
    """
    override = overrides.match(package_path)
    if not override:
        raise HTTPException(status_code=404, detail="No override for package")

    package_name, remainder = split_package_path(package_path)
    if remainder:
        # Version documents and other sub-resources are not synthesized.
        return await forward_request(client, override.upstream, request)

    try:
        metadata = await resolver.resolve(override, package_name)
    except ResolutionError as e:
        logger.warning(f"Serving {package_name} from {override.upstream}: {e}")
        return await forward_request(client, override.upstream, request)

    logger.info(f"Serving {package_name}@{metadata.dist_tags.latest} from local sources")
    return JSONResponse(content=metadata.model_dump(by_alias=True))
