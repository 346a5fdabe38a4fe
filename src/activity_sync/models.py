"""커밋/활동, 벤더 기록 데이터 모델 (Pydantic)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class CommitStats(BaseModel):
    additions: int = 0
    deletions: int = 0
    total: int | None = None

    @field_validator("additions", "deletions", mode="before")
    @classmethod
    def none_as_zero(cls, v: int | None) -> int:
        return v or 0

    @property
    def changes(self) -> int:
        """변경 라인 수. total이 없으면 additions + deletions."""
        if self.total is None:
            return self.additions + self.deletions
        return self.total


class PullRequestRef(BaseModel):
    number: int
    title: str = ""
    state: str = ""
    url: str = ""

    @field_validator("title", "state", "url", mode="before")
    @classmethod
    def none_as_empty(cls, v: str | None) -> str:
        return v or ""

    @property
    def label(self) -> str:
        return f"{self.title} (#{self.number})"


class RawCommit(BaseModel):
    """GitHub에서 가져온 커밋 (squash 확장으로 만들어진 합성 커밋 포함).

    - committer_date: 그룹 날짜 키 기준 (커밋이 브랜치에 반영된 시각)
    - author_date: 활동 시작/종료 시각 계산 기준
    """

    model_config = {"frozen": True}

    sha: str = Field(..., min_length=1)
    message: str = ""
    author_date: datetime
    committer_date: datetime
    stats: CommitStats = Field(default_factory=CommitStats)
    files: list[str] = Field(default_factory=list)
    repository: str = ""
    pull_requests: list[PullRequestRef] = Field(default_factory=list)

    @field_validator("message", "repository", mode="before")
    @classmethod
    def none_as_empty(cls, v: str | None) -> str:
        return v or ""

    @field_validator("stats", mode="before")
    @classmethod
    def none_as_empty_stats(cls, v: object) -> object:
        return v if v is not None else {}

    @field_validator("files", "pull_requests", mode="before")
    @classmethod
    def none_as_empty_list(cls, v: object) -> object:
        return v if v is not None else []

    @property
    def subject(self) -> str:
        """커밋 메시지 첫 줄."""
        return self.message.split("\n", 1)[0]


class Activity(BaseModel):
    """(repository, 로컬 날짜, PR 또는 없음) 단위의 작업 기록.

    unique_id는 Notion 적재 시 중복 방지 키로 사용된다.
    """

    name: str
    type: str = "Development"
    activity_id: str
    unique_id: str = Field(..., description="콘텐츠 해시 16자리 (멱등성 키)")

    repository: str
    project_type: str
    date: str  # YYYY-MM-DD (로컬)
    commits_count: int = 0
    commit_messages: str = ""
    pr_titles: str = ""
    pull_requests_count: int = 0
    files_changed: int = 0
    files_changed_list: str = ""
    total_lines_added: int = 0
    total_lines_deleted: int = 0
    total_changes: int = 0

    is_pr_record: bool = False
    pr_number: int | None = None
    pr_title: str = ""
    pr_state: str = ""
    pr_url: str = ""

    start_time: datetime
    end_time: datetime
    duration: int = Field(..., ge=1, description="분 단위, 최소 1")


class PendingRecord(BaseModel):
    """Notion 적재 대기 중인 벤더 기록 한 건.

    date는 window 필터 기준 로컬 날짜 (Oura는 잠든 밤 날짜).
    """

    source: str
    record_id: str
    date: str
    label: str
    properties: dict[str, Any]
    payload: dict[str, Any] = Field(default_factory=dict)
