"""
Package local source directories into npm tarballs and compute their digests.
"""
from __future__ import annotations

import asyncio
import base64
import gzip
import hashlib
import logging
import os
import tarfile
import tempfile
from pathlib import Path
from typing import List, Tuple

import aiofiles

from npmproxy.domain.errors import ArchiveError
from npmproxy.domain.models import ArchiveResult, PackageJson
from npmproxy.domain.npm_utils import sanitize_archive_stem

logger = logging.getLogger(__name__)

# Directory names never shipped in a tarball: dependency caches and VCS data.
EXCLUDED_NAMES = frozenset({"node_modules", ".git", ".hg", ".svn"})

# npm installers strip the first path component of every member.
ARCHIVE_PREFIX = "package"

CHUNK_SIZE = 64 * 1024


def collect_files(source_dir: Path) -> List[Tuple[Path, str]]:
    """
    Walk `source_dir` and return (absolute path, archive name) pairs.

    Excluded directories are pruned, not descended into. The result is
    sorted so the same tree always yields the same member order.
    """
    files: List[Tuple[Path, str]] = []
    for dirpath, dirnames, filenames in os.walk(source_dir):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_NAMES)
        for filename in filenames:
            if filename in EXCLUDED_NAMES:
                continue
            full_path = Path(dirpath) / filename
            rel = full_path.relative_to(source_dir).as_posix()
            files.append((full_path, f"{ARCHIVE_PREFIX}/{rel}"))
    files.sort(key=lambda item: item[1])
    return files


def _normalize_member(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mtime = int(info.mtime)
    return info


class PackageArchiver:
    """
    Writes tarballs of local package sources into the cache directory.

    Archives are named `{name}_{version}` (sanitized) so the file name can be
    used directly as a URL path segment. Every call regenerates the archive;
    the file is written to a temporary path and renamed into place so readers
    never observe a partial archive.
    """

    def __init__(self, cache_dir: Path, compress: bool = False):
        self.cache_dir = Path(cache_dir)
        self.compress = compress

    @property
    def extension(self) -> str:
        return ".tgz" if self.compress else ".tar"

    def archive_name(self, manifest: PackageJson) -> str:
        return sanitize_archive_stem(manifest.name, manifest.version) + self.extension

    async def archive(self, source_dir: Path, manifest: PackageJson) -> ArchiveResult:
        """
        Archive `source_dir` and return the archive path plus its digests.

        Any I/O failure is raised as ArchiveError.
        """
        target = self.cache_dir / self.archive_name(manifest)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = await asyncio.to_thread(self._write_archive, Path(source_dir), target)
            try:
                integrity, shasum = await compute_digests(tmp_path)
                os.replace(tmp_path, target)
            except BaseException:
                tmp_path.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ArchiveError(f"Failed to archive {source_dir}: {e}") from e

        logger.debug(f"Archived {source_dir} to {target} ({integrity})")
        return ArchiveResult(path=str(target), integrity=integrity, shasum=shasum)

    def _write_archive(self, source_dir: Path, target: Path) -> Path:
        if not source_dir.is_dir():
            raise FileNotFoundError(f"Package source not found: {source_dir}")

        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=target.name + ".", suffix=".tmp")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as raw:
                if self.compress:
                    # Fixed gzip mtime keeps the bytes stable for an unchanged tree.
                    with gzip.GzipFile(fileobj=raw, mode="wb", mtime=0) as gz:
                        self._write_members(gz, source_dir)
                else:
                    self._write_members(raw, source_dir)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return tmp_path

    def _write_members(self, fileobj, source_dir: Path) -> None:
        with tarfile.open(fileobj=fileobj, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for full_path, arcname in collect_files(source_dir):
                tar.add(str(full_path), arcname=arcname, recursive=False, filter=_normalize_member)


async def compute_digests(path: Path) -> Tuple[str, str]:
    """
    Hash a file with SHA-512.

    Returns the registry integrity string (`sha512-<base64>`) and the hex
    digest of the same hash, used for the `shasum` field.
    """
    hasher = hashlib.sha512()
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    digest = hasher.digest()
    return "sha512-" + base64.b64encode(digest).decode("ascii"), digest.hex()
