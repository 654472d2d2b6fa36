"""
Pydantic models for the npm proxy.

This module defines all data models used throughout the application, including:
- Proxy configuration (override rules and service settings)
- npm package manifests (package.json) as read from disk
- The registry package document synthesized for local sources

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_REGISTRY = "https://registry.npmjs.org"


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class Override(BaseModel):
    """
    Routing rule mapping a package-name namespace to local sources.

    A request path matches when it starts with `namespace`. Matching is
    first-match-wins, so more specific namespaces must be listed first.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    namespace: str = Field(
        description="Package-name prefix this rule applies to (e.g. '@acme').",
    )
    upstream: str = Field(
        description="Registry that owns the namespace; used when local resolution fails.",
    )
    package_root: str = Field(
        alias="packageRoot",
        description="Directory holding one source folder per package of the namespace.",
    )

    @field_validator("namespace")
    @classmethod
    def _namespace_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("namespace cannot be empty")
        return value

    @field_validator("upstream")
    @classmethod
    def _trim_upstream(cls, value: str) -> str:
        value = (value or "").strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"upstream must be an http(s) URL, got {value!r}")
        return value.rstrip("/")


class NpmProxySettings(BaseModel):
    """
    The `npm_proxy` section of a build configuration file.

    Ports left unset are discovered at startup by scanning for a free port.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overrides: List[Override] = Field(
        default_factory=list,
        description="Ordered override rules, most specific first.",
    )
    port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="Port of the external service the package manager talks to.",
    )
    internal_port: Optional[int] = Field(
        default=None,
        alias="internalPort",
        ge=1,
        le=65535,
        description="Port of the loopback-only internal service.",
    )
    cache_dir: Optional[str] = Field(
        default=None,
        alias="cacheDir",
        description="Where generated archives are written.",
    )
    default_registry: str = Field(
        default=DEFAULT_REGISTRY,
        alias="defaultRegistry",
        description="Registry for every request no override claims.",
    )
    host: str = Field(
        default="127.0.0.1",
        description="Interface the external service binds to.",
    )

    @field_validator("overrides", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return value or []


class BuildSetup(BaseModel):
    """One setup of a configuration file. Only the proxy section is read."""

    model_config = ConfigDict(extra="ignore")

    npm_proxy: Optional[NpmProxySettings] = None


# ---------------------------------------------------------------------------
# Manifest Models
# ---------------------------------------------------------------------------


class Author(BaseModel):
    name: str = ""


class RepositoryInfo(BaseModel):
    type: str = ""
    url: str = ""


def _dependency_map(value: Any) -> Dict[str, str]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ValueError("dependency map must be an object")
    return {str(k): str(v) for k, v in value.items()}


class PackageJson(BaseModel):
    """
    The subset of a package.json manifest the proxy relies on.

    Manifests are read fresh on every request; local sources change while
    developing.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    version: str = ""
    description: str = ""
    license: str = ""
    author: Author = Field(default_factory=Author)
    repository: RepositoryInfo = Field(default_factory=RepositoryInfo)
    dependencies: Dict[str, str] = Field(default_factory=dict)
    dev_dependencies: Dict[str, str] = Field(default_factory=dict, alias="devDependencies")
    optional_dependencies: Dict[str, str] = Field(default_factory=dict, alias="optionalDependencies")

    @field_validator("dependencies", "dev_dependencies", "optional_dependencies", mode="before")
    @classmethod
    def _normalize_dependencies(cls, value: Any) -> Dict[str, str]:
        return _dependency_map(value)

    @field_validator("author", mode="before")
    @classmethod
    def _normalize_author(cls, value: Any) -> Any:
        # "Jane Doe <jane@example.com> (https://example.com)" is the string form.
        if value is None:
            return {}
        if isinstance(value, str):
            return {"name": value.split("<")[0].split("(")[0].strip()}
        return value

    @field_validator("repository", mode="before")
    @classmethod
    def _normalize_repository(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"type": "git", "url": value}
        return value

    @field_validator("license", mode="before")
    @classmethod
    def _normalize_license(cls, value: Any) -> str:
        # Legacy manifests use {"type": "MIT", "url": ...}.
        if isinstance(value, dict):
            return str(value.get("type") or "")
        return value or ""

    @field_validator("name", "version", "description", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    def declared_range(self, package_name: str) -> Optional[str]:
        """Version range the manifest declares for `package_name`, if any."""
        for deps in (self.dependencies, self.dev_dependencies, self.optional_dependencies):
            if package_name in deps:
                return deps[package_name]
        return None


# ---------------------------------------------------------------------------
# Registry Document Models
# ---------------------------------------------------------------------------


class Dist(BaseModel):
    integrity: str
    shasum: str
    tarball: str


class DistTags(BaseModel):
    latest: str


class VersionEntry(BaseModel):
    """One entry of the `versions` map of a registry package document."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    version: str
    description: str = ""
    author: Author = Field(default_factory=Author)
    license: str = ""
    repository: RepositoryInfo = Field(default_factory=RepositoryInfo)
    dependencies: Dict[str, str] = Field(default_factory=dict)
    readme: str = ""
    dist: Dist


class PackageMetadata(BaseModel):
    """
    Registry package document synthesized for a local source.

    Holds a single version: the one currently on disk. Never persisted;
    built per request and serialized with `by_alias=True`.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    description: str = ""
    dist_tags: DistTags = Field(alias="dist-tags")
    versions: Dict[str, VersionEntry]
    readme: str = ""
    repository: RepositoryInfo = Field(default_factory=RepositoryInfo)
    author: Author = Field(default_factory=Author)
    license: str = ""


class ArchiveResult(BaseModel):
    """A generated tarball and the digests computed over its bytes."""

    path: str
    integrity: str
    shasum: str
