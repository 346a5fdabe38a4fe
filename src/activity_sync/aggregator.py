"""커밋 → 활동 집계 파이프라인.

커밋 목록을 (repository, 로컬 날짜, PR 또는 없음) 단위의 Activity로 접는다.
- 검색 API + work repo 목록 병합 (sha 기준 중복 제거, 검색 결과 우선)
- work repo의 squash 커밋을 PR의 개별 커밋으로 확장
- PR별 / repo+날짜별 그룹핑
- 그룹 → Activity 변환 (stats 합산, 메시지 포맷, uniqueId 해시)

처리는 커밋 하나씩 순차적으로 진행하며, 호출 간 공유 상태는 없다.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Protocol

from activity_sync.dates import local_date_key, local_midnight, to_local
from activity_sync.github_api import GitHubApiError
from activity_sync.models import Activity, CommitStats, PullRequestRef, RawCommit

logger = logging.getLogger(__name__)

UNIQUE_ID_LENGTH = 16


class CommitSource(Protocol):
    """집계 파이프라인이 사용하는 GitHub API 메서드."""

    def search_commits_by_author(self, start: datetime, end: datetime) -> list[RawCommit]: ...

    def list_work_repo_commits(self, start: datetime, end: datetime) -> list[RawCommit]: ...

    def get_commit_detail(self, repository: str, sha: str) -> RawCommit: ...

    def get_pull_requests_for_commit(self, repository: str, sha: str) -> list[PullRequestRef]: ...

    def get_pull_request_commits(self, repository: str, pr_number: int) -> list[RawCommit]: ...


@dataclass(frozen=True)
class GroupKey:
    repository: str
    date: str  # YYYY-MM-DD (로컬)
    pr_number: int | None = None


@dataclass
class CommitGroup:
    """그룹핑 중간 상태. 파이프라인 호출 안에서만 사용된다."""

    key: GroupKey
    commits: list[RawCommit] = field(default_factory=list)
    pull_request: PullRequestRef | None = None

    @property
    def repository(self) -> str:
        return self.key.repository

    @property
    def date(self) -> str:
        return self.key.date

    @property
    def is_pr_record(self) -> bool:
        return self.pull_request is not None


# ── 그룹핑 ──────────────────────────────────────────────


def group_commits(commits: Iterable[RawCommit], tz: tzinfo) -> list[CommitGroup]:
    """커밋을 PR별 / repo+날짜별 그룹으로 나눈다.

    날짜 키는 committer_date의 로컬 날짜다. PR이 여러 개 연결된 커밋은
    PR마다 한 번씩 들어가지만, 한 그룹 안에서 같은 sha는 한 번만 센다
    (같은 PR에 속한 커밋 여러 개가 각각 PR 전체로 확장되는 경우).
    반환 순서: PR 그룹(첫 등장 순) → PR 없는 그룹(첫 등장 순).
    """
    pr_groups: dict[GroupKey, CommitGroup] = {}
    plain_groups: dict[GroupKey, CommitGroup] = {}
    seen: dict[GroupKey, set[str]] = {}

    def _add(groups: dict[GroupKey, CommitGroup], key: GroupKey, commit: RawCommit,
             pr: PullRequestRef | None = None) -> None:
        shas = seen.setdefault(key, set())
        if commit.sha in shas:
            return
        shas.add(commit.sha)
        groups.setdefault(key, CommitGroup(key=key, pull_request=pr)).commits.append(commit)

    for commit in commits:
        date_key = local_date_key(commit.committer_date, tz)
        if commit.pull_requests:
            for pr in commit.pull_requests:
                _add(pr_groups, GroupKey(commit.repository, date_key, pr.number), commit, pr)
        else:
            _add(plain_groups, GroupKey(commit.repository, date_key), commit)

    return [*pr_groups.values(), *plain_groups.values()]


# ── 그룹 → Activity ─────────────────────────────────────


def compute_unique_id(group: CommitGroup) -> str:
    """그룹의 결정적 해시 ID.

    - PR 그룹: sha256("{repo}-{date}-PR{number}")
    - 그 외: sha256("{repo}-{date}-{정렬된 sha를 '-'로 연결}")
    """
    if group.pull_request is not None:
        hash_input = f"{group.repository}-{group.date}-PR{group.pull_request.number}"
    else:
        shas = "-".join(sorted(commit.sha for commit in group.commits))
        hash_input = f"{group.repository}-{group.date}-{shas}"
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()[:UNIQUE_ID_LENGTH]


def _activity_id(group: CommitGroup) -> str:
    base = f"{group.repository}-{group.date}"
    if group.pull_request is not None:
        base += f"-PR{group.pull_request.number}"
    return re.sub(r"[^a-zA-Z0-9-]", "-", base)


def _sum_stats(commits: list[RawCommit]) -> CommitStats:
    return CommitStats(
        additions=sum(c.stats.additions for c in commits),
        deletions=sum(c.stats.deletions for c in commits),
        total=sum(c.stats.changes for c in commits),
    )


def _unique_files(commits: list[RawCommit]) -> list[str]:
    # 첫 등장 순서 유지
    return list(dict.fromkeys(filename for c in commits for filename in c.files))


def _format_commit_messages(commits: list[RawCommit], tz: tzinfo) -> str:
    return ", ".join(
        f"{c.subject} ({to_local(c.author_date, tz):%H:%M:%S})" for c in commits
    )


def to_activity(group: CommitGroup, tz: tzinfo, *, project_type: str = "Personal") -> Activity:
    """그룹을 Activity로 변환한다. 선택 필드가 비어 있어도 예외를 던지지 않는다."""
    commits = group.commits
    stats = _sum_stats(commits)
    files = _unique_files(commits)

    if commits:
        times = [to_local(c.author_date, tz) for c in commits]
        start_time, end_time = min(times), max(times)
    else:
        start_time = end_time = local_midnight(datetime.strptime(group.date, "%Y-%m-%d").date(), tz)

    minutes = (end_time - start_time).total_seconds() / 60
    duration = max(1, math.floor(minutes + 0.5))

    pr = group.pull_request
    if pr is not None:
        name = f"{group.repository} - {pr.label}"
        pr_titles = pr.label
        pull_requests_count = 1
    else:
        name = group.repository
        pr_titles = ""
        pull_requests_count = 0

    return Activity(
        name=name,
        activity_id=_activity_id(group),
        unique_id=compute_unique_id(group),
        repository=group.repository,
        project_type=project_type,
        date=group.date,
        commits_count=len(commits),
        commit_messages=_format_commit_messages(commits, tz),
        pr_titles=pr_titles,
        pull_requests_count=pull_requests_count,
        files_changed=len(files),
        files_changed_list=", ".join(files),
        total_lines_added=stats.additions,
        total_lines_deleted=stats.deletions,
        total_changes=stats.changes,
        is_pr_record=pr is not None,
        pr_number=pr.number if pr else None,
        pr_title=pr.title if pr else "",
        pr_state=pr.state if pr else "",
        pr_url=pr.url if pr else "",
        start_time=start_time,
        end_time=end_time,
        duration=duration,
    )


def merge_commits(primary: list[RawCommit], secondary: list[RawCommit]) -> list[RawCommit]:
    """sha 기준 병합. primary가 우선이며 secondary는 처음 보는 sha만 추가된다."""
    merged: list[RawCommit] = []
    seen: set[str] = set()
    for commit in [*primary, *secondary]:
        if commit.sha not in seen:
            seen.add(commit.sha)
            merged.append(commit)
    return merged


# ── 파이프라인 ──────────────────────────────────────────


class CommitAggregator:
    """GitHub 커밋을 Activity 목록으로 집계한다.

    Args:
        source: GitHub API 클라이언트 (테스트에서는 대역 객체)
        tz: 로컬 날짜 계산 기준 타임존
        work_repos: 명시적으로 커밋 목록을 조회하는 work repo (owner/name)
        work_owners: 이 owner의 저장소도 work repo로 취급
    """

    def __init__(
        self,
        source: CommitSource,
        tz: tzinfo,
        *,
        work_repos: Iterable[str] = (),
        work_owners: Iterable[str] = (),
    ) -> None:
        self._source = source
        self._tz = tz
        self._work_repos = frozenset(work_repos)
        self._work_owners = frozenset(work_owners)

    def is_work_repository(self, repository: str) -> bool:
        owner = repository.split("/", 1)[0]
        return repository in self._work_repos or owner in self._work_owners

    def project_type(self, repository: str) -> str:
        return "Work" if self.is_work_repository(repository) else "Personal"

    def expand_if_squashed(self, repository: str, commit: RawCommit) -> list[RawCommit]:
        """work repo의 squash 커밋을 PR의 개별 커밋으로 확장한다.

        확장된 커밋은 원본 squash 커밋의 stats/files와 committer_date를 그대로 가진다
        (squash 이후에는 개별 커밋의 diff를 알 수 없다). 조회 실패 시 원본 커밋만 반환한다.
        """
        if not self.is_work_repository(repository):
            return [commit]

        try:
            prs = self._source.get_pull_requests_for_commit(repository, commit.sha)
            if not prs:
                return [commit]

            # API 반환 순서상 첫 PR 기준
            pr = prs[0]
            logger.info("Commit %s belongs to PR #%d: %s", commit.sha[:7], pr.number, pr.title)

            pr_commits = self._source.get_pull_request_commits(repository, pr.number)
        except GitHubApiError as exc:
            logger.warning(
                "Failed to expand commit %s: %s",
                commit.sha[:7],
                exc,
                extra={"event_code": "EXPANSION_FAILED", "repository": repository},
            )
            return [commit]

        if len(pr_commits) <= 1:
            return [commit]

        logger.info("Expanding squashed commit %s into %d commits", commit.sha[:7], len(pr_commits))
        return [
            pr_commit.model_copy(
                update={
                    "repository": repository,
                    "committer_date": commit.committer_date,
                    "stats": commit.stats,
                    "files": list(commit.files),
                    "pull_requests": [pr],
                }
            )
            for pr_commit in pr_commits
        ]

    def _attach_pull_requests(self, repository: str, commit: RawCommit) -> RawCommit:
        """확장되지 않은 커밋에 연결된 PR 정보를 붙인다. 조회 실패 시 PR 없음으로 처리."""
        try:
            prs = self._source.get_pull_requests_for_commit(repository, commit.sha)
        except GitHubApiError as exc:
            logger.warning("Failed to fetch PRs for commit %s: %s", commit.sha[:7], exc)
            return commit
        if not prs:
            return commit
        return commit.model_copy(update={"pull_requests": prs})

    def fetch_commits(self, start: datetime, end: datetime) -> list[RawCommit]:
        """검색 API와 work repo 목록을 병합한다. 한쪽이 실패해도 나머지 결과는 사용한다."""
        try:
            search_commits = self._source.search_commits_by_author(start, end)
        except GitHubApiError as exc:
            logger.error("Commit search failed: %s", exc, extra={"event_code": "SEARCH_FAILED"})
            search_commits = []

        work_commits = self._source.list_work_repo_commits(start, end)
        merged = merge_commits(search_commits, work_commits)
        logger.info(
            "Total unique commits (search + work repos): %d",
            len(merged),
            extra={"counts": {"search": len(search_commits), "work": len(work_commits)}},
        )
        return merged

    def expand_commit(self, listed: RawCommit) -> list[RawCommit]:
        """상세 조회 → squash 확장 → PR 연결. 상세 조회 실패는 GitHubApiError로 전파된다."""
        repository = listed.repository
        detail = self._source.get_commit_detail(repository, listed.sha)
        expanded = self.expand_if_squashed(repository, detail)
        if len(expanded) == 1 and not expanded[0].pull_requests:
            expanded = [self._attach_pull_requests(repository, expanded[0])]
        return expanded

    def get_activities(self, start: datetime, end: datetime) -> list[Activity]:
        """[start, end) 구간 사용자 커밋을 Activity 목록으로 집계한다."""
        listed_commits = self.fetch_commits(start, end)
        if not listed_commits:
            return []

        processed: list[RawCommit] = []
        for listed in listed_commits:
            try:
                processed.extend(self.expand_commit(listed))
            except GitHubApiError as exc:
                logger.warning(
                    "Skipping commit %s: %s",
                    listed.sha[:7],
                    exc,
                    extra={"event_code": "COMMIT_DETAIL_FAILED", "repository": listed.repository},
                )

        groups = group_commits(processed, self._tz)
        activities = [
            to_activity(group, self._tz, project_type=self.project_type(group.repository))
            for group in groups
        ]
        logger.info("Aggregated %d commits into %d activities", len(processed), len(activities))
        return activities
