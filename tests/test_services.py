"""
Integration tests for the external and internal HTTP services.

The package manager's view: requests enter the external service and come
back either from local sources (through the internal service) or from an
upstream registry.
"""

import io
import logging
import tarfile

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import UPSTREAM, stub_response, write_package_json
from npmproxy.services.forwarding import BODY_PREVIEW_LIMIT


@pytest.fixture
def proxy(make_proxy):
    return make_proxy()


@pytest.fixture
def external(proxy):
    with TestClient(proxy.external_app) as client:
        yield client


@pytest.fixture
def internal(proxy):
    with TestClient(proxy.internal_app) as client:
        yield client


class TestEndToEnd:
    """Overridden namespace served from local sources"""

    @pytest.mark.parametrize("path", ["/@acme/ui", "/@acme%2fui"])
    def test_metadata_from_local_source(self, external, upstream, path):
        response = external.get(path)

        assert response.status_code == 200
        doc = response.json()
        assert doc["name"] == "@acme/ui"
        assert doc["dist-tags"]["latest"] == "1.0.0"
        dist = doc["versions"]["1.0.0"]["dist"]
        assert dist["tarball"] == "http://127.0.0.1:1235/files/acme_ui_1_0_0.tar"
        assert upstream.requests == []

    def test_tarball_download(self, external, internal):
        doc = external.get("/@acme/ui").json()
        tarball_path = httpx.URL(doc["versions"]["1.0.0"]["dist"]["tarball"]).path
        assert tarball_path == "/files/acme_ui_1_0_0.tar"

        response = internal.get(tarball_path)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/octet-stream"
        with tarfile.open(fileobj=io.BytesIO(response.content)) as tar:
            names = tar.getnames()
        assert "package/package.json" in names
        assert "package/index.js" in names

    def test_version_drift_falls_back_to_override_upstream(self, external, upstream, package_root):
        write_package_json(package_root / "ui", {"name": "@acme/ui", "version": "2.0.0"})

        response = external.get("/@acme%2fui")

        assert response.status_code == 200
        assert response.json()["registry"] == "registry.example.com"
        assert len(upstream.requests) == 1
        assert str(upstream.requests[0].url).startswith(UPSTREAM)

    def test_missing_local_source_falls_back(self, external, upstream, project_root):
        write_package_json(project_root, {"dependencies": {"@acme/ghost": "^1.0.0"}})

        response = external.get("/@acme/ghost")

        assert response.status_code == 200
        assert response.json()["registry"] == "registry.example.com"

    def test_version_document_goes_upstream(self, external, upstream):
        response = external.get("/@acme/ui/1.0.0")

        assert response.status_code == 200
        assert upstream.requests[0].url.host == "registry.example.com"


class TestUnmatchedPath:
    """Requests no override claims go to the default registry"""

    def test_forwarded_unmodified(self, external, upstream):
        body = b'{"name":"lodash","versions":{}}'
        upstream.respond = lambda request: stub_response(
            200, content=body, headers={"content-type": "application/json", "x-upstream": "yes"}
        )

        response = external.get("/lodash?write=true", headers={"accept": "application/json"})

        assert response.status_code == 200
        assert response.content == body
        assert response.headers["x-upstream"] == "yes"

        sent = upstream.requests[0]
        assert str(sent.url) == "https://registry.npmjs.org/lodash?write=true"
        assert sent.headers["host"] == "registry.npmjs.org"
        assert sent.headers["x-forwarded-host"] == "testserver"
        assert sent.headers["accept"] == "application/json"

    def test_method_and_body_preserved(self, external, upstream):
        external.put("/-/npm/v1/security/audits", content=b'{"a":1}')

        sent = upstream.requests[0]
        assert sent.method == "PUT"
        assert sent.content == b'{"a":1}'

    def test_upstream_status_passed_through(self, external, upstream):
        upstream.respond = lambda request: stub_response(404, json_body={"error": "Not found"})

        response = external.get("/left-pad")

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}

    def test_custom_default_registry(self, make_proxy, upstream):
        proxy = make_proxy(default_registry="https://mirror.example.org/npm/")
        with TestClient(proxy.external_app) as client:
            client.get("/lodash")

        assert str(upstream.requests[0].url) == "https://mirror.example.org/npm/lodash"

    def test_unreachable_upstream_is_bad_gateway(self, external, upstream):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        upstream.respond = refuse

        response = external.get("/lodash")

        assert response.status_code == 502
        assert "Upstream unreachable" in response.json()["detail"]


class TestInternalService:

    def test_unknown_namespace_is_not_found(self, internal):
        assert internal.get("/lodash").status_code == 404

    def test_missing_archive_is_not_found(self, internal):
        assert internal.get("/files/nothing_1_0_0.tar").status_code == 404

    def test_hidden_archive_name_rejected(self, internal, proxy):
        proxy.cache_dir.mkdir(parents=True, exist_ok=True)
        (proxy.cache_dir / ".secret").write_text("x", encoding="utf-8")

        assert internal.get("/files/.secret").status_code == 404

    def test_metadata_route(self, internal):
        response = internal.get("/@acme%2fui")

        assert response.status_code == 200
        assert response.json()["versions"]["1.0.0"]["name"] == "@acme/ui"


class TestResponseLogging:
    """Forwarded bodies are logged at DEBUG with a bounded preview"""

    def test_large_body_preview_is_truncated(self, external, upstream, caplog):
        body = b"a" * (BODY_PREVIEW_LIMIT * 2 + 17)
        upstream.respond = lambda request: stub_response(200, content=body)
        caplog.set_level(logging.DEBUG, "npmproxy.services.forwarding")

        response = external.get("/lodash")

        assert response.status_code == 200
        assert response.content == body

        [message] = [r.getMessage() for r in caplog.records if "Response body from" in r.getMessage()]
        assert f"({len(body)} bytes)" in message
        preview = message.split("bytes): ", 1)[1]
        assert preview == "a" * BODY_PREVIEW_LIMIT + "..."

    def test_small_body_logged_whole(self, external, upstream, caplog):
        upstream.respond = lambda request: stub_response(200, content=b"tiny")
        caplog.set_level(logging.DEBUG, "npmproxy.services.forwarding")

        external.get("/lodash")

        messages = [r.getMessage() for r in caplog.records if "Response body from" in r.getMessage()]
        assert messages[0].endswith("(4 bytes): tiny")

    def test_no_preview_without_debug(self, external, upstream, caplog):
        upstream.respond = lambda request: stub_response(200, content=b"x" * 10)
        caplog.set_level(logging.INFO, "npmproxy.services.forwarding")

        assert external.get("/lodash").content == b"x" * 10
        assert not any("Response body from" in r.getMessage() for r in caplog.records)
