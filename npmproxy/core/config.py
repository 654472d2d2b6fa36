"""
Load proxy configuration from a YAML (or JSON) build configuration file.

The file holds either one setup mapping or a list of them. Overrides from
every setup are concatenated in document order; the remaining proxy settings
come from the first setup that has an `npm_proxy` section.
"""
from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

import yaml
from pydantic import ValidationError

from npmproxy.domain.errors import ProxyConfigError
from npmproxy.domain.models import BuildSetup, NpmProxySettings, Override

logger = logging.getLogger(__name__)

EXTERNAL_PORT_RANGE = (10000, 20000)
INTERNAL_PORT_RANGE = (20001, 30000)


@dataclass
class ProxyConfig:
    project_root: Path
    settings: NpmProxySettings


def resolve_path(path: str, base_dir: Path) -> str:
    """
    Expand environment variables and `~`, then make `path` absolute.

    Relative paths are taken relative to `base_dir`. Empty stays empty.
    """
    if not path:
        return ""
    expanded = Path(os.path.expanduser(os.path.expandvars(path)))
    if not expanded.is_absolute():
        expanded = base_dir / expanded
    return str(expanded.resolve())


def _parse_setups(raw: Any) -> List[BuildSetup]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise ProxyConfigError("Configuration must be a mapping or a list of mappings")
    try:
        return [BuildSetup.model_validate(item or {}) for item in raw]
    except ValidationError as e:
        raise ProxyConfigError(f"Invalid configuration: {e}") from e


def merge_setups(setups: List[BuildSetup], base_dir: Path) -> NpmProxySettings:
    sections = [s.npm_proxy for s in setups if s.npm_proxy is not None]
    if not sections:
        return NpmProxySettings()

    overrides: List[Override] = []
    for section in sections:
        for o in section.overrides:
            overrides.append(o.model_copy(update={"package_root": resolve_path(o.package_root, base_dir)}))

    first = sections[0]
    cache_dir = resolve_path(first.cache_dir, base_dir) if first.cache_dir else None
    return first.model_copy(update={"overrides": overrides, "cache_dir": cache_dir})


def load_config(config_path: Path) -> ProxyConfig:
    """
    Read and validate the configuration file at `config_path`.

    The project root is the directory holding the file.
    """
    config_path = Path(config_path).expanduser().resolve()
    if not config_path.is_file():
        raise ProxyConfigError(f"Configuration file not found: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ProxyConfigError(f"Failed to read {config_path}: {e}") from e

    project_root = config_path.parent
    settings = merge_setups(_parse_setups(raw), project_root)
    logger.debug(f"Loaded {len(settings.overrides)} npm override(s) from {config_path}")
    return ProxyConfig(project_root=project_root, settings=settings)


def is_free_port(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(start: int, end: int, host: str = "127.0.0.1") -> int:
    """First bindable port in [start, end]. Raises ProxyConfigError if none."""
    for port in range(start, end + 1):
        if is_free_port(port, host):
            return port
    raise ProxyConfigError(f"No free port between {start} and {end}")


def pick_ports(settings: NpmProxySettings) -> tuple[int, int]:
    port = settings.port or find_free_port(*EXTERNAL_PORT_RANGE, host=settings.host)
    internal_port = settings.internal_port or find_free_port(*INTERNAL_PORT_RANGE)
    if port == internal_port:
        raise ProxyConfigError(f"External and internal port must differ (both {port})")
    return port, internal_port
