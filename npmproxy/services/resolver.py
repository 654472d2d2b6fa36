"""
Resolve override requests to local package sources.

For a requested package this service:
- Locates the local source directory under the override's package root
- Checks the local version against the range the consuming project declares
- Archives the source and builds the registry package document for it

Every failure is raised as a ResolutionError subclass; callers fall back to
the override's upstream registry.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import semantic_version
from pydantic import ValidationError

from npmproxy.domain.errors import (
    DependencyNotDeclaredError,
    InvalidVersionError,
    ManifestNotFoundError,
    ResolutionError,
    VersionDriftError,
)
from npmproxy.domain.models import (
    Dist,
    DistTags,
    Override,
    PackageJson,
    PackageMetadata,
    VersionEntry,
)
from npmproxy.domain.npm_utils import local_dir_name, strip_version_prefix
from npmproxy.services.archiver import PackageArchiver

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
README_NAME = "README.md"


async def read_package_json(package_dir: Path) -> PackageJson:
    """Read and validate `package.json` from a directory."""
    manifest_path = Path(package_dir) / MANIFEST_NAME
    if not manifest_path.is_file():
        raise ManifestNotFoundError(f"{MANIFEST_NAME} not found in {package_dir}")

    try:
        async with aiofiles.open(manifest_path, "r", encoding="utf-8") as f:
            raw = json.loads(await f.read())
        return PackageJson.model_validate(raw)
    except (OSError, ValueError, ValidationError) as e:
        raise ResolutionError(f"Failed to read {manifest_path}: {e}") from e


def parse_version(version: str) -> semantic_version.Version:
    try:
        return semantic_version.Version(strip_version_prefix(version))
    except ValueError as e:
        raise InvalidVersionError(f"Invalid version {version!r}: {e}") from e


def parse_range(constraint: str) -> semantic_version.NpmSpec:
    try:
        return semantic_version.NpmSpec(constraint.strip() or "*")
    except ValueError as e:
        raise InvalidVersionError(f"Invalid version range {constraint!r}: {e}") from e


def satisfies(version: str, constraint: str) -> bool:
    """npm range semantics: caret, tilde, x-ranges, hyphen ranges, `||` sets."""
    return parse_range(constraint).match(parse_version(version))


async def read_readme(package_dir: Path) -> str:
    readme_path = Path(package_dir) / README_NAME
    if not readme_path.is_file():
        return ""
    try:
        async with aiofiles.open(readme_path, "r", encoding="utf-8", errors="replace") as f:
            return await f.read()
    except OSError:
        return ""


class PackageSourceResolver:
    """
    Builds registry metadata for packages served from local sources.

    Holds no per-request state; manifests are read fresh on every call.
    """

    def __init__(self, project_root: Path, archiver: PackageArchiver, tarball_base_url: str):
        self.project_root = Path(project_root)
        self.archiver = archiver
        self.tarball_base_url = tarball_base_url.rstrip("/")

    def package_dir(self, override: Override, package_name: str) -> Path:
        # Scoped names live under their last segment: @scope/widget -> <root>/widget
        return Path(override.package_root) / local_dir_name(package_name)

    async def project_constraint(self, package_name: str) -> str:
        project = await read_package_json(self.project_root)
        constraint: Optional[str] = project.declared_range(package_name)
        if constraint is None:
            raise DependencyNotDeclaredError(
                f"Package {package_name} not found in project dependencies"
            )
        return constraint

    async def resolve(self, override: Override, package_name: str) -> PackageMetadata:
        """
        Resolve `package_name` against `override`.

        Raises VersionDriftError when the local version does not satisfy the
        project's declared range, and another ResolutionError for anything
        else that prevents serving the local source.
        """
        pkg_dir = self.package_dir(override, package_name)

        constraint = await self.project_constraint(package_name)
        manifest = await read_package_json(pkg_dir)

        if not satisfies(manifest.version, constraint):
            logger.info(
                f"Version {manifest.version} in package sources for {package_name} is not meeting "
                f"the version constraint ({constraint}) of the project. Forwarding request to upstream registry."
            )
            raise VersionDriftError(
                f"{package_name}@{manifest.version} does not satisfy {constraint}"
            )

        # Published under the normalized version: "v1.0.0" is served as "1.0.0".
        manifest = manifest.model_copy(update={
            "name": manifest.name or package_name,
            "version": str(parse_version(manifest.version)),
        })
        name = manifest.name

        archive = await self.archiver.archive(pkg_dir, manifest)
        readme = await read_readme(pkg_dir)
        tarball_url = f"{self.tarball_base_url}/files/{Path(archive.path).name}"

        entry = VersionEntry(
            id=name,
            name=name,
            version=manifest.version,
            description=manifest.description,
            author=manifest.author,
            license=manifest.license,
            repository=manifest.repository,
            dependencies=manifest.dependencies,
            readme=readme,
            dist=Dist(integrity=archive.integrity, shasum=archive.shasum, tarball=tarball_url),
        )
        return PackageMetadata(
            id=name,
            name=name,
            description=manifest.description,
            dist_tags=DistTags(latest=manifest.version),
            versions={manifest.version: entry},
            readme=readme,
            repository=manifest.repository,
            author=manifest.author,
            license=manifest.license,
        )
