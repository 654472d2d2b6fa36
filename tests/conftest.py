"""
Shared fixtures: a consuming project, a local package root and a proxy whose
outbound traffic never leaves the process.

Upstream registries are served by an httpx.MockTransport; requests aimed at
the internal service are handed to its ASGI app directly.
"""

import json
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import httpx
import pytest

from npmproxy.domain.models import Override
from npmproxy.services.proxy import Proxy

UPSTREAM = "https://registry.example.com"
INTERNAL_PORT = 1235


def write_package_json(directory: Path, data: Dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "package.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def project_root(tmp_path) -> Path:
    """Consuming project declaring @acme/ui ^1.0.0."""
    root = tmp_path / "project"
    write_package_json(root, {
        "name": "consumer",
        "version": "0.0.1",
        "dependencies": {"@acme/ui": "^1.0.0", "lodash": "^4.17.0"},
        "devDependencies": {"@acme/testkit": "~2.1.0"},
    })
    return root


@pytest.fixture
def package_root(tmp_path) -> Path:
    """Local sources for the @acme namespace: ui@1.0.0 with some noise."""
    root = tmp_path / "acme-pkgs"
    ui = root / "ui"
    write_package_json(ui, {
        "name": "@acme/ui",
        "version": "1.0.0",
        "description": "Acme UI kit",
        "author": "Acme Devs <dev@acme.test>",
        "license": "MIT",
        "repository": "https://git.acme.test/ui.git",
        "dependencies": {"lit": "^3.0.0"},
    })
    (ui / "index.js").write_text("export const ui = 1;\n", encoding="utf-8")
    (ui / "src").mkdir()
    (ui / "src" / "button.js").write_text("export class Button {}\n", encoding="utf-8")
    (ui / "README.md").write_text("# Acme UI\n", encoding="utf-8")
    (ui / "node_modules" / "lit").mkdir(parents=True)
    (ui / "node_modules" / "lit" / "index.js").write_text("// dependency\n", encoding="utf-8")
    (ui / ".git").mkdir()
    (ui / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    return root


@pytest.fixture
def acme_override(package_root) -> Override:
    return Override(namespace="@acme", upstream=UPSTREAM, package_root=str(package_root))


class StubStream(httpx.AsyncByteStream):
    """Response body that is only read when the proxy streams it."""

    def __init__(self, body: bytes, chunk_size: int = 1024):
        self.body = body
        self.chunk_size = chunk_size

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self.body), self.chunk_size):
            yield self.body[start:start + self.chunk_size]


def stub_response(
    status_code: int,
    content: bytes = b"",
    json_body: Optional[Dict] = None,
    headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
    headers = dict(headers or {})
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
        headers.setdefault("content-type", "application/json")
    headers["content-length"] = str(len(content))
    return httpx.Response(status_code, headers=headers, stream=StubStream(content))


class UpstreamStub:
    """
    Stands in for every upstream registry.

    Records requests; tests replace `respond` to change the answer.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.respond = self.echo

    def echo(self, request: httpx.Request) -> httpx.Response:
        return stub_response(
            200,
            json_body={"name": request.url.path.lstrip("/"), "registry": request.url.host},
        )


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def make_proxy(tmp_path, project_root, acme_override, upstream):
    def factory(overrides=None, **kwargs) -> Proxy:
        proxy_ref = {}

        async def dispatch(request: httpx.Request) -> httpx.Response:
            if request.url.host == "127.0.0.1" and request.url.port == INTERNAL_PORT:
                transport = httpx.ASGITransport(app=proxy_ref["proxy"].internal_app)
                return await transport.handle_async_request(request)
            upstream.requests.append(request)
            return upstream.respond(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(dispatch))
        proxy = Proxy(
            overrides if overrides is not None else [acme_override],
            project_root,
            port=1234,
            internal_port=INTERNAL_PORT,
            cache_dir=tmp_path / "cache",
            client=client,
            **kwargs,
        )
        proxy_ref["proxy"] = proxy
        return proxy

    return factory
