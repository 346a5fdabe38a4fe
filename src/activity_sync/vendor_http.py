"""벤더 REST API 공통 HTTP 클라이언트.

Oura, Steam, Strava, Withings 클라이언트가 상속한다.
- 429: Retry-After만큼 대기 후 재시도 (재시도 횟수에 포함하지 않음)
- 5xx, 타임아웃, 연결 오류: 지수 백오프 + 지터 재시도
- 401: 하위 클래스가 토큰을 갱신하면 한 번 재요청
- 그 밖의 4xx, JSON이 아닌 응답은 VendorApiError
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any

import httpx

from activity_sync.config import VendorApiConfig

logger = logging.getLogger(__name__)

_DEFAULT_RETRY_AFTER = 5.0


class VendorApiError(Exception):
    """벤더 API 호출 실패."""

    def __init__(self, source: str, status_code: int, message: str):
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source} API error {status_code}: {message}")


class VendorClient:
    """벤더 API 클라이언트 기반 클래스."""

    source = "vendor"

    def __init__(self, config: VendorApiConfig, *, base_url: str | None = None) -> None:
        self._config = config
        base = config.base_url if base_url is None else base_url
        self._client = httpx.Client(base_url=base.rstrip("/"), timeout=config.request_timeout_sec)

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def _refresh_access_token(self) -> bool:
        """401 응답 시 호출된다. 새 토큰을 받았으면 True."""
        return False

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """요청을 보내고 JSON 본문을 반환한다.

        Raises:
            VendorApiError: 재시도 후에도 실패한 경우
        """
        max_retries = self._config.max_retries
        attempt = 0
        rate_limited = 0
        refreshed = False

        while True:
            headers = self._auth_headers() if authenticated else {}
            try:
                resp = self._client.request(method, url, params=params, data=data, json=json, headers=headers)
            except httpx.TransportError as exc:
                if attempt < max_retries:
                    wait = _backoff_wait(attempt, self._config.backoff_factor)
                    logger.warning(
                        "%s retry %d/%d after %.1fs: %s",
                        type(exc).__name__,
                        attempt + 1,
                        max_retries,
                        wait,
                        exc,
                        extra={"source": self.source},
                    )
                    time.sleep(wait)
                    attempt += 1
                    continue
                raise VendorApiError(self.source, 0, f"{type(exc).__name__}: {exc}") from exc

            status = resp.status_code

            if status == 401 and authenticated and not refreshed:
                refreshed = True
                if self._refresh_access_token():
                    continue

            if status == 429 and rate_limited < max_retries:
                rate_limited += 1
                wait = _parse_retry_after(resp)
                logger.warning(
                    "Rate limited (429). Waiting %.1fs",
                    wait,
                    extra={"source": self.source, "event_code": "RATE_LIMITED"},
                )
                time.sleep(wait)
                continue

            if status >= 500 and attempt < max_retries:
                wait = _backoff_wait(attempt, self._config.backoff_factor)
                logger.warning(
                    "Retry %d/%d after %.1fs: HTTP %d",
                    attempt + 1,
                    max_retries,
                    wait,
                    status,
                    extra={"source": self.source},
                )
                time.sleep(wait)
                attempt += 1
                continue

            if status >= 400:
                raise VendorApiError(self.source, status, resp.text[:200] or resp.reason_phrase)

            try:
                return resp.json()
            except ValueError as exc:
                raise VendorApiError(self.source, status, f"Invalid JSON response: {exc}") from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> VendorClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _parse_retry_after(resp: httpx.Response) -> float:
    try:
        return float(resp.headers.get("Retry-After", _DEFAULT_RETRY_AFTER))
    except ValueError:
        return _DEFAULT_RETRY_AFTER


def _backoff_wait(attempt: int, backoff_factor: float) -> float:
    """지수 백오프 + 지터 대기 시간을 계산한다."""
    base = backoff_factor * (2**attempt)
    return base + random.uniform(0, base * 0.5)
