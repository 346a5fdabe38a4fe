"""GitHub REST API 동기 클라이언트.

커밋 활동 수집에 필요한 엔드포인트만 감싼다.
- 작성자 기준 커밋 검색 + work repo 커밋 목록
- 커밋 상세 (stats, files), 커밋에 연결된 PR, PR의 커밋 목록
- rate limit 사전 대기 (buffer 기반), 429/5xx 지수 백오프 재시도
- 403 + X-RateLimit-Remaining: 0 은 reset 대기 후 재시도
- Link 헤더 기반 pagination
"""

from __future__ import annotations

import logging
import os
import random
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from activity_sync.config import GitHubApiConfig
from activity_sync.models import PullRequestRef, RawCommit

logger = logging.getLogger(__name__)


@dataclass
class GitHubApiResult:
    """API 호출 결과. next_url은 Link 헤더의 rel="next"."""

    url: str
    status_code: int
    data: dict[str, Any] | list[Any] | None = None
    next_url: str | None = None
    error: str | None = None
    skipped: bool = False


class GitHubApiError(Exception):
    """GitHub API 호출 실패 (재시도 후)."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"GitHub API error {status_code}: {message}")


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _is_rate_limit_exhausted(resp: httpx.Response) -> bool:
    """primary rate limit 소진 응답 (GitHub는 429 대신 403을 돌려준다)."""
    return resp.status_code == 403 and resp.headers.get("X-RateLimit-Remaining") == "0"


class GitHubApiClient:
    """GitHub REST API 동기 클라이언트."""

    def __init__(self, config: GitHubApiConfig) -> None:
        token = os.environ.get(config.token_env_var, "")
        if not token:
            raise RuntimeError(f"환경변수 {config.token_env_var}이 설정되지 않았습니다")
        if not config.username:
            raise RuntimeError("GitHub 사용자명이 설정되지 않았습니다 (github.username 또는 GITHUB_USERNAME)")

        self._config = config
        self._client = httpx.Client(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "activity-sync/0.1.0",
            },
            timeout=config.request_timeout_sec,
        )
        self._rate_remaining: int | None = None
        self._rate_reset: float | None = None

    @property
    def username(self) -> str:
        return self._config.username

    @property
    def work_repos(self) -> list[str]:
        return list(self._config.work_repos)

    def _wait_for_rate_limit(self, resp: httpx.Response) -> float:
        """남은 호출 수가 buffer 이하이면 reset 시각까지 잠든다.

        Returns:
            실제로 대기한 초 (대기하지 않았으면 0)
        """
        if (remaining := resp.headers.get("X-RateLimit-Remaining")) is not None:
            self._rate_remaining = int(remaining)
        if (reset_at := resp.headers.get("X-RateLimit-Reset")) is not None:
            self._rate_reset = float(reset_at)

        if self._rate_remaining is None or self._rate_reset is None:
            return 0.0
        if self._rate_remaining > self._config.rate_limit_buffer:
            return 0.0

        wait_seconds = max(0.0, self._rate_reset - time.time()) + 1
        logger.warning(
            "GitHub quota low (%d calls left), sleeping %.0fs until reset",
            self._rate_remaining,
            wait_seconds,
            extra={"event_code": "RATE_LIMIT_WAIT", "counts": {"remaining": self._rate_remaining}},
        )
        time.sleep(wait_seconds)
        return wait_seconds

    def _backoff(self, attempt: int) -> float:
        return self._config.backoff_factor ** (attempt + 1) + random.uniform(0, 1)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> GitHubApiResult:
        """공통 요청 메서드.

        - 429: Retry-After(없으면 백오프)만큼 기다린 뒤 재시도
        - 403 + quota 소진: reset까지 기다린 뒤 재시도
        - 그 외 4xx: 재시도 없이 skipped 결과 (404 삭제된 커밋, 409 빈 저장소 등)
        - 5xx, 전송 오류: 지수 백오프 + 지터 재시도
        - 2xx인데 본문이 JSON이 아니면 error 결과 (프록시 오류 페이지 등)
        """
        max_retries = self._config.max_retries

        last_exc: Exception | None = None
        for attempt in range(max_retries + 1):
            try:
                resp = self._client.request(method, path, params=params)
            except httpx.TransportError as exc:
                last_exc = exc
                if attempt < max_retries:
                    delay = self._backoff(attempt)
                    logger.warning("%s %s transport error, retry %d/%d in %.1fs: %s",
                                   method, path, attempt + 1, max_retries, delay, exc)
                    time.sleep(delay)
                    continue
                break

            waited = self._wait_for_rate_limit(resp)
            url = str(resp.url)

            if resp.status_code == 429:
                retry_after = resp.headers.get("Retry-After")
                wait = float(retry_after) if retry_after else self._config.backoff_factor ** (attempt + 1)
                logger.warning("GitHub answered 429 for %s, waiting %.0fs", path, wait)
                if attempt < max_retries:
                    time.sleep(wait)
                    continue
                return GitHubApiResult(url=url, status_code=429, error="Rate limited after max retries")

            if _is_rate_limit_exhausted(resp) and attempt < max_retries:
                if not waited:
                    # reset 헤더가 없으면 백오프만큼 대기
                    time.sleep(self._backoff(attempt))
                logger.warning("GitHub quota exhausted for %s, retrying after reset", path)
                continue

            if 400 <= resp.status_code < 500:
                return GitHubApiResult(
                    url=url,
                    status_code=resp.status_code,
                    skipped=True,
                    error=f"Client error ({resp.status_code})",
                )

            if resp.status_code >= 500:
                if attempt < max_retries:
                    delay = self._backoff(attempt)
                    logger.warning("GitHub %d for %s, retry %d/%d in %.1fs",
                                   resp.status_code, path, attempt + 1, max_retries, delay)
                    time.sleep(delay)
                    continue
                return GitHubApiResult(
                    url=url,
                    status_code=resp.status_code,
                    error=f"Server error ({resp.status_code}) after {max_retries} retries",
                )

            try:
                data = resp.json() if resp.content else None
            except ValueError as exc:
                logger.warning(
                    "Non-JSON body from %s (%d): %s",
                    path,
                    resp.status_code,
                    resp.text[:80],
                    extra={"event_code": "INVALID_JSON"},
                )
                return GitHubApiResult(
                    url=url,
                    status_code=resp.status_code,
                    error=f"Invalid JSON response ({resp.status_code}): {exc}",
                )

            return GitHubApiResult(
                url=url,
                status_code=resp.status_code,
                data=data,
                next_url=(resp.links.get("next") or {}).get("url"),
            )

        return GitHubApiResult(
            url=path,
            status_code=0,
            error=f"Request failed after {max_retries} retries: {last_exc}",
        )

    def _get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        """GET 후 오류면 GitHubApiError를 던진다."""
        result = self._request("GET", path, params=params)
        if result.error:
            raise GitHubApiError(result.status_code, result.error)
        return result.data

    def _paginated_get(
        self,
        path: str,
        *,
        extra_params: dict[str, Any] | None = None,
        items_key: str | None = None,
        max_pages: int | None = None,
    ) -> list[dict[str, Any]]:
        """rel="next"를 따라가며 전체 결과를 모은다.

        items_key가 주어지면 응답 dict의 해당 키(search API의 "items")에서 항목을 꺼낸다.
        어느 페이지든 실패하면 GitHubApiError를 던진다.
        """
        items: list[dict[str, Any]] = []
        url: str | None = path
        params: dict[str, Any] | None = {"per_page": self._config.per_page, **(extra_params or {})}

        pages = 0
        while url and (max_pages is None or pages < max_pages):
            result = self._request("GET", url, params=params)
            if result.error:
                raise GitHubApiError(result.status_code, result.error)
            data = result.data
            if items_key and isinstance(data, dict):
                data = data.get(items_key) or []
            if isinstance(data, list):
                items.extend(data)
            pages += 1
            url = result.next_url
            params = None  # next URL에 query 포함

        return items

    # ── 응답 변환 ───────────────────────────────────────────

    @staticmethod
    def _to_raw_commit(data: dict[str, Any], repository: str) -> RawCommit:
        """커밋 응답(검색/목록/상세/PR 커밋)을 RawCommit으로 변환한다."""
        commit = data.get("commit") or {}
        author_date = (commit.get("author") or {}).get("date")
        committer_date = (commit.get("committer") or {}).get("date")
        return RawCommit(
            sha=data.get("sha") or "",
            message=commit.get("message"),
            author_date=author_date or committer_date,
            committer_date=committer_date or author_date,
            stats=data.get("stats"),
            files=[f.get("filename") for f in data.get("files") or [] if f.get("filename")],
            repository=repository,
        )

    @staticmethod
    def _to_pull_request(data: dict[str, Any]) -> PullRequestRef:
        return PullRequestRef(
            number=data["number"],
            title=data.get("title"),
            state=data.get("state"),
            url=data.get("html_url"),
        )

    def _convert_commits(self, items: list[dict[str, Any]], repository: str | None = None) -> list[RawCommit]:
        """변환 실패 항목은 로그를 남기고 건너뛴다."""
        commits: list[RawCommit] = []
        for item in items:
            repo = repository or (item.get("repository") or {}).get("full_name", "")
            try:
                commits.append(self._to_raw_commit(item, repo))
            except ValidationError as exc:
                logger.warning("Failed to normalize commit %s: %s", item.get("sha", "unknown"), exc)
        return commits

    # ── 공개 API 메서드 ──────────────────────────────────────

    def get_authenticated_user(self) -> dict[str, Any]:
        """GET /user: 토큰 소유자 정보."""
        return self._get("/user")

    def test_connection(self) -> bool:
        try:
            user = self.get_authenticated_user()
        except GitHubApiError as exc:
            logger.error("GitHub connection failed: %s", exc)
            return False
        logger.info("GitHub connection successful: %s (@%s)", user.get("name"), user.get("login"))
        return True

    def search_commits_by_author(self, start: datetime, end: datetime) -> list[RawCommit]:
        """GET /search/commits: [start, end) 구간에 커밋된 사용자 작성 커밋."""
        # committer-date 범위는 양 끝 포함
        query = f"author:{self.username} committer-date:{_iso(start)}..{_iso(end - timedelta(seconds=1))}"
        logger.info("Searching commits: %s", query)
        items = self._paginated_get(
            "/search/commits",
            extra_params={"q": query, "sort": "committer-date", "order": "desc"},
            items_key="items",
            max_pages=self._config.max_search_pages,
        )
        return self._convert_commits(items)

    def list_repo_commits(self, repository: str, start: datetime, end: datetime) -> list[RawCommit]:
        """GET /repos/{repo}/commits: 사용자 작성 커밋 목록."""
        items = self._paginated_get(
            f"/repos/{repository}/commits",
            extra_params={
                "author": self.username,
                "since": _iso(start),
                "until": _iso(end - timedelta(seconds=1)),
            },
        )
        return self._convert_commits(items, repository)

    def list_work_repo_commits(self, start: datetime, end: datetime) -> list[RawCommit]:
        """설정된 work repo 각각에서 커밋을 수집한다. 실패한 repo는 건너뛴다."""
        commits: list[RawCommit] = []
        for repository in self._config.work_repos:
            try:
                repo_commits = self.list_repo_commits(repository, start, end)
            except GitHubApiError as exc:
                # 409: 빈 저장소
                if exc.status_code != 409:
                    logger.warning("Failed to list commits for %s: %s", repository, exc)
                continue
            if repo_commits:
                logger.info("Found %d commits in %s", len(repo_commits), repository)
            commits.extend(repo_commits)
        return commits

    def get_commit_detail(self, repository: str, sha: str) -> RawCommit:
        """GET /repos/{repo}/commits/{sha}: stats, files 포함."""
        data = self._get(f"/repos/{repository}/commits/{sha}")
        if not isinstance(data, dict):
            raise GitHubApiError(0, f"Unexpected commit payload for {repository}@{sha}")
        try:
            return self._to_raw_commit(data, repository)
        except ValidationError as exc:
            raise GitHubApiError(0, f"Invalid commit payload for {repository}@{sha}: {exc}") from exc

    def get_pull_requests_for_commit(self, repository: str, sha: str) -> list[PullRequestRef]:
        """GET /repos/{repo}/commits/{sha}/pulls: API 반환 순서 유지."""
        data = self._get(f"/repos/{repository}/commits/{sha}/pulls")
        if not isinstance(data, list):
            return []
        return [self._to_pull_request(pr) for pr in data if pr.get("number") is not None]

    def get_pull_request_commits(self, repository: str, pr_number: int) -> list[RawCommit]:
        """GET /repos/{repo}/pulls/{n}/commits."""
        items = self._paginated_get(f"/repos/{repository}/pulls/{pr_number}/commits")
        return self._convert_commits(items, repository)

    @property
    def rate_remaining(self) -> int | None:
        """현재 남은 rate limit."""
        return self._rate_remaining

    def close(self) -> None:
        """httpx.Client를 종료한다."""
        self._client.close()

    def __enter__(self) -> GitHubApiClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
