"""
Local npm registry proxy.

Lets a package manager fetch selected namespaces from local source
directories while everything else is forwarded to the public registry:
* An external service the package manager talks to (routing only).
* An internal, loopback-only service that synthesizes registry metadata
  and serves freshly archived tarballs of the local sources.
"""

__version__ = "0.1.0"
