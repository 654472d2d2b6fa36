"""
Exception hierarchy for the proxy.

Configuration errors are fatal at startup. Resolution errors are soft: the
internal service answers them by forwarding the request upstream.
"""


class NpmProxyError(Exception):
    """Base class for all proxy errors."""


class ProxyConfigError(NpmProxyError):
    """Invalid configuration or no usable port. Fatal to startup."""


class ResolutionError(NpmProxyError):
    """A local package could not be served; the request goes upstream instead."""


class ManifestNotFoundError(ResolutionError):
    pass


class DependencyNotDeclaredError(ResolutionError):
    pass


class InvalidVersionError(ResolutionError):
    """Malformed version string or unparsable range."""


class VersionDriftError(ResolutionError):
    """The local version does not satisfy the project's declared range."""


class ArchiveError(ResolutionError):
    pass
