from __future__ import annotations

from pathlib import Path
import os

import httpx
from fastapi import Request

from npmproxy.domain.overrides import OverrideTable
from npmproxy.services.resolver import PackageSourceResolver

CACHE_DIR_ENV_VAR = "NPM_PROXY_CACHE_DIR"
LOG_LEVEL_ENV_VAR = "NPM_PROXY_LOG_LEVEL"
_DEFAULT_CACHE_DIR = Path("~/.npmproxy/proxy/cache")


def get_cache_dir() -> Path:
    env_path = os.environ.get(CACHE_DIR_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return _DEFAULT_CACHE_DIR.expanduser()


def get_log_level() -> str:
    return os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper()


# Request-scoped accessors. Each service app carries its owning Proxy in
# `app.state.proxy`.

def get_override_table(request: Request) -> OverrideTable:
    return request.app.state.proxy.overrides


def get_resolver(request: Request) -> PackageSourceResolver:
    return request.app.state.proxy.resolver


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.proxy.client


def get_archive_dir(request: Request) -> Path:
    return request.app.state.proxy.cache_dir


def get_default_registry(request: Request) -> str:
    return request.app.state.proxy.default_registry


def get_internal_url(request: Request) -> str:
    return request.app.state.proxy.internal_url
