"""GitHub 커밋 활동을 Notion 데이터베이스와 Google Calendar로 동기화한다."""

__version__ = "0.1.0"
