"""벤더 공통 HTTP 클라이언트 테스트."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest
from pytest_httpx import HTTPXMock

from activity_sync.config import VendorApiConfig
from activity_sync.vendor_http import VendorApiError, VendorClient, _backoff_wait, _parse_retry_after

BASE = "https://vendor.example.com/v1"


class _TokenClient(VendorClient):
    source = "test"

    def __init__(self, config: VendorApiConfig, *, new_token: str | None = "fresh") -> None:
        super().__init__(config)
        self.token = "stale"
        self.new_token = new_token
        self.refresh_calls = 0

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _refresh_access_token(self) -> bool:
        self.refresh_calls += 1
        if self.new_token is None:
            return False
        self.token = self.new_token
        return True


@pytest.fixture(autouse=True)
def _no_sleep():
    with patch("activity_sync.vendor_http.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture()
def client() -> _TokenClient:
    c = _TokenClient(VendorApiConfig(base_url=BASE, max_retries=2, backoff_factor=0.01))
    yield c
    c.close()


class TestRequestJson:
    def test_success_sends_auth_header(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", json={"ok": True})

        assert client._request_json("GET", "/items") == {"ok": True}
        assert httpx_mock.get_requests()[0].headers["Authorization"] == "Bearer stale"

    def test_unauthenticated_request_has_no_auth_header(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/token", method="POST", json={"access_token": "x"})

        client._request_json("POST", "/token", data={"grant_type": "refresh_token"}, authenticated=False)

        request = httpx_mock.get_requests()[0]
        assert "Authorization" not in request.headers
        assert request.content == b"grant_type=refresh_token"

    def test_absolute_url_bypasses_base(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url="https://other.example.com/oauth/token", method="POST", json={})

        client._request_json("POST", "https://other.example.com/oauth/token", json={"a": 1}, authenticated=False)

        assert httpx_mock.get_requests()[0].url == "https://other.example.com/oauth/token"

    def test_5xx_retry_then_success(self, client: _TokenClient, httpx_mock: HTTPXMock, _no_sleep) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", status_code=503)
        httpx_mock.add_response(url=f"{BASE}/items", json=[1, 2])

        assert client._request_json("GET", "/items") == [1, 2]
        assert _no_sleep.call_count == 1

    def test_5xx_exhausted(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        for _ in range(3):
            httpx_mock.add_response(url=f"{BASE}/items", status_code=500, text="server error")

        with pytest.raises(VendorApiError, match="test API error 500: server error") as exc_info:
            client._request_json("GET", "/items")
        assert exc_info.value.status_code == 500
        assert exc_info.value.source == "test"

    def test_429_waits_retry_after(self, client: _TokenClient, httpx_mock: HTTPXMock, _no_sleep) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", status_code=429, headers={"Retry-After": "7"})
        httpx_mock.add_response(url=f"{BASE}/items", json={"ok": True})

        assert client._request_json("GET", "/items") == {"ok": True}
        _no_sleep.assert_called_once_with(7.0)

    def test_429_exhausted(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        for _ in range(3):
            httpx_mock.add_response(url=f"{BASE}/items", status_code=429, text="slow down")

        with pytest.raises(VendorApiError, match="429"):
            client._request_json("GET", "/items")

    def test_401_refreshes_once(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", status_code=401)
        httpx_mock.add_response(url=f"{BASE}/items", json={"ok": True})

        assert client._request_json("GET", "/items") == {"ok": True}
        assert client.refresh_calls == 1
        assert httpx_mock.get_requests()[1].headers["Authorization"] == "Bearer fresh"

    def test_401_after_refresh_raises(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", status_code=401, text="expired")
        httpx_mock.add_response(url=f"{BASE}/items", status_code=401, text="expired")

        with pytest.raises(VendorApiError, match="401"):
            client._request_json("GET", "/items")
        assert client.refresh_calls == 1

    def test_401_without_refresh_raises(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", status_code=401, text="expired")

        with _TokenClient(VendorApiConfig(base_url=BASE), new_token=None) as c:
            with pytest.raises(VendorApiError, match="401"):
                c._request_json("GET", "/items")

    def test_4xx_not_retried(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", status_code=404, text="missing")

        with pytest.raises(VendorApiError, match="404: missing"):
            client._request_json("GET", "/items")
        assert len(httpx_mock.get_requests()) == 1

    def test_invalid_json(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{BASE}/items", text="<html>maintenance</html>")

        with pytest.raises(VendorApiError, match="Invalid JSON response"):
            client._request_json("GET", "/items")

    def test_transport_error_retried(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=f"{BASE}/items")
        httpx_mock.add_response(url=f"{BASE}/items", json={"ok": True})

        assert client._request_json("GET", "/items") == {"ok": True}

    def test_transport_error_exhausted(self, client: _TokenClient, httpx_mock: HTTPXMock) -> None:
        for _ in range(3):
            httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=f"{BASE}/items")

        with pytest.raises(VendorApiError, match="ReadTimeout") as exc_info:
            client._request_json("GET", "/items")
        assert exc_info.value.status_code == 0


class TestHelpers:
    def test_parse_retry_after(self) -> None:
        assert _parse_retry_after(httpx.Response(429, headers={"Retry-After": "3"})) == 3.0
        assert _parse_retry_after(httpx.Response(429)) == 5.0
        assert _parse_retry_after(httpx.Response(429, headers={"Retry-After": "soon"})) == 5.0

    def test_backoff_wait_range(self) -> None:
        for attempt in range(3):
            base = 2.0 * (2**attempt)
            assert base <= _backoff_wait(attempt, 2.0) <= base * 1.5
