from typing import Optional


def package_name_from_path(path: str) -> str:
    """
    Turn a request path into a candidate package name.

    npm requests scoped packages as `/@scope%2fname`; the path we get is
    already percent-decoded, so only the leading slashes need to go.
    """
    return (path or "").lstrip("/")


def local_dir_name(package_name: str) -> str:
    """Last segment of a package name: `@scope/widget` -> `widget`."""
    return package_name.split("/")[-1]


def sanitize_archive_stem(package_name: str, version: str) -> str:
    """
    Build a URL-path-safe file stem from a package name and version.

    `@acme/ui` at `1.0.0` becomes `acme_ui_1_0_0`.
    """
    name = package_name.replace("@", "").replace("/", "_")
    version = version.replace(".", "_")
    return f"{name}_{version}"


def strip_version_prefix(version: Optional[str]) -> str:
    """Drop the `v`/`=` prefix npm tolerates in manifest versions."""
    version = (version or "").strip()
    return version.lstrip("=v").strip()
