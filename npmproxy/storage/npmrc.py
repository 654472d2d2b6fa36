"""
Temporary `.npmrc` pointing overridden namespaces at the proxy.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

NPMRC_NAME = ".npmrc"
BACKUP_SUFFIX = ".npmproxy-backup"

HEADER_LINES = [
    ";CREATED BY NPMPROXY. DO NOT EDIT.",
    ";This file is used by the npm proxy server.",
    ";It is used to override the default registry for specific package namespaces.",
    ";This file will be removed after the proxy server is stopped.",
]


# Bind addresses npm reaches as localhost.
LOCAL_BIND_HOSTS = frozenset({"", "localhost", "127.0.0.1", "0.0.0.0", "::", "::1"})


def registry_host(bind_host: str) -> str:
    """Host name npm should use to reach a server bound to `bind_host`."""
    if bind_host in LOCAL_BIND_HOSTS:
        return "localhost"
    if ":" in bind_host:
        return f"[{bind_host}]"
    return bind_host


def render_npmrc(namespaces: Iterable[str], port: int, host: str = "localhost") -> str:
    lines = list(HEADER_LINES)
    registry = f"http://{registry_host(host)}:{port}"
    for namespace in namespaces:
        lines.append(f"{namespace}:registry={registry}")
    return "\n".join(lines) + "\n"


class NpmrcFile:
    """
    Writes the generated `.npmrc` into the project root and removes it again.

    An existing `.npmrc` is moved aside on write and restored on removal.
    Usable as a context manager.
    """

    def __init__(self, project_root: Path, namespaces: Iterable[str], port: int, host: str = "localhost"):
        self.path = Path(project_root) / NPMRC_NAME
        self.backup_path = Path(project_root) / (NPMRC_NAME + BACKUP_SUFFIX)
        self.namespaces: List[str] = list(namespaces)
        self.port = port
        self.host = host
        self._backed_up: Optional[bool] = None

    def write(self) -> Path:
        self._backed_up = False
        if self.path.exists():
            self.path.replace(self.backup_path)
            self._backed_up = True
            logger.info(f"Moved existing {self.path} to {self.backup_path}")

        self.path.write_text(render_npmrc(self.namespaces, self.port, self.host), encoding="utf-8")
        logger.info(f"Wrote {self.path} for {len(self.namespaces)} namespace(s)")
        return self.path

    def remove(self) -> None:
        if self._backed_up is None:
            return
        self.path.unlink(missing_ok=True)
        if self._backed_up and self.backup_path.exists():
            self.backup_path.replace(self.path)
        self._backed_up = None
        logger.info(f"Removed generated {self.path}")

    def __enter__(self) -> "NpmrcFile":
        self.write()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.remove()
