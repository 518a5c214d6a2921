"""
SQLAlchemy models for the analysis service.

- AnalysisRecord: one row per analysis job (the persisted job record)
- ModelRecord: AI models that jobs may run with
- TeamRecord / UserRecord: owners carrying default-model settings
- InstallationRecord / RepositoryRecord: GitHub App installations
- FeedbackRecord: reviewer feedback captured from comment replies
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Integer, LargeBinary, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class AnalysisRecord(Base, TimestampMixin):
    __tablename__ = "analyses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    team_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    repo_url: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    repository_ref: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    sandbox_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", index=True)
    pr_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pr_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    pr_title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    reply_comments_posted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    exit_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    compressed_logs: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    compression: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AnalysisRecord(id={self.id}, kind={self.kind}, status={self.status})>"


class ModelRecord(Base, TimestampMixin):
    __tablename__ = "ai_models"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    model_id: Mapped[str] = mapped_column(String(256), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allowed_modes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)


class TeamRecord(Base, TimestampMixin):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class UserRecord(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    username: Mapped[str | None] = mapped_column(String(256), nullable=True)
    settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class InstallationRecord(Base, TimestampMixin):
    __tablename__ = "github_installations"

    installation_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    account_login: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    account_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sender_login: Mapped[str | None] = mapped_column(String(256), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    team_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class RepositoryRecord(Base, TimestampMixin):
    __tablename__ = "github_repositories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    github_repository_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    installation_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    track_issues: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    analysis_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_merged_pr: Mapped[int | None] = mapped_column(Integer, nullable=True)


class FeedbackRecord(Base, TimestampMixin):
    __tablename__ = "feedback"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    repo_full_name: Mapped[str] = mapped_column(String(512), nullable=False)
    pr_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    comment_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reply_author: Mapped[str] = mapped_column(String(256), nullable=False)
    intent: Mapped[str] = mapped_column(String(32), nullable=False)
    reply_body: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    severity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issue_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
