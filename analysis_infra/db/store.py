"""
Async stores over the SQLAlchemy models.

SQLAlchemy sessions are synchronous; every public method runs its query in a
worker thread so callers on the event loop never block.
"""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..errors import FinalizeError
from ..log_config import get_logger
from ..types import AnalysisKind, DefaultModelSettings, JobMetadata, JobStatus
from .models import (
    AnalysisRecord,
    FeedbackRecord,
    InstallationRecord,
    ModelRecord,
    RepositoryRecord,
    TeamRecord,
    UserRecord,
)
from .session import Database

log = get_logger("store")

T = TypeVar("T")

_METADATA_COLUMNS = (
    "kind",
    "user_id",
    "team_id",
    "repo_url",
    "repository_ref",
    "model",
    "prompt",
    "pr_number",
    "pr_url",
    "pr_title",
)


class _Store:
    def __init__(self, db: Database):
        self.db = db

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def call() -> T:
            with self.db.session() as session:
                return fn(session)

        return await asyncio.to_thread(call)


def _metadata_values(metadata: JobMetadata) -> dict[str, Any]:
    values = metadata.model_dump(include=set(_METADATA_COLUMNS))
    if metadata.kind is not None:
        values["kind"] = metadata.kind.value
    return values


class JobStore(_Store):
    """Persisted analysis job records."""

    async def create(
        self,
        job_id: str,
        metadata: JobMetadata,
        status: JobStatus = JobStatus.RUNNING,
    ) -> AnalysisRecord:
        if not metadata.is_complete:
            raise ValueError("Cannot create a job record without complete metadata")

        def op(session: Session) -> AnalysisRecord:
            record = AnalysisRecord(id=job_id, status=status.value, **_metadata_values(metadata))
            session.add(record)
            return record

        return await self._run(op)

    async def get(self, job_id: str) -> AnalysisRecord | None:
        return await self._run(lambda session: session.get(AnalysisRecord, job_id))

    async def get_status(self, job_id: str) -> JobStatus | None:
        record = await self.get(job_id)
        if record is None:
            return None
        return JobStatus(record.status)

    async def mark_running(self, job_id: str) -> bool:
        """Promote a draft record to running. Returns False if it was not a draft."""

        def op(session: Session) -> bool:
            record = session.get(AnalysisRecord, job_id, with_for_update=True)
            if record is None or record.status != JobStatus.DRAFT:
                return False
            record.status = JobStatus.RUNNING.value
            return True

        return await self._run(op)

    async def set_sandbox_id(self, job_id: str, sandbox_id: str) -> None:
        def op(session: Session) -> None:
            record = session.get(AnalysisRecord, job_id)
            if record is not None:
                record.sandbox_id = sandbox_id

        await self._run(op)

    async def latest_for_repository(
        self,
        repo_url: str,
        repository_ref: str | None = None,
        exclude_job_id: str | None = None,
    ) -> AnalysisRecord | None:
        """Most recent job for the same repository, by reference when known."""

        def op(session: Session) -> AnalysisRecord | None:
            query = select(AnalysisRecord)
            if repository_ref:
                query = query.where(AnalysisRecord.repository_ref == repository_ref)
            else:
                query = query.where(AnalysisRecord.repo_url == repo_url)
            if exclude_job_id:
                query = query.where(AnalysisRecord.id != exclude_job_id)
            query = query.order_by(AnalysisRecord.created_at.desc()).limit(1)
            return session.scalars(query).first()

        return await self._run(op)

    async def running_for_pull_request(self, repo_url: str, pr_number: int) -> list[AnalysisRecord]:
        def op(session: Session) -> list[AnalysisRecord]:
            query = select(AnalysisRecord).where(
                AnalysisRecord.repo_url == repo_url,
                AnalysisRecord.pr_number == pr_number,
                AnalysisRecord.status == JobStatus.RUNNING.value,
            )
            return list(session.scalars(query))

        return await self._run(op)

    async def upsert_final(
        self,
        job_id: str,
        fields: dict[str, Any],
        metadata: JobMetadata | None = None,
        reply_comments: int = 0,
    ) -> bool:
        """Write terminal fields for a job, creating the record when needed.

        reply_comments is added to the stored count. An interrupted record is
        never overwritten by a different status, and only a running record
        can become interrupted; otherwise nothing is written and False is
        returned.
        """
        status = fields["status"]

        def op(session: Session) -> bool:
            record = session.get(AnalysisRecord, job_id, with_for_update=True)
            include_metadata = metadata is not None and metadata.is_complete
            if record is None:
                if not include_metadata:
                    raise FinalizeError(
                        f"Analysis {job_id} does not exist and metadata is incomplete"
                    )
                record = AnalysisRecord(id=job_id, **_metadata_values(metadata))
                session.add(record)
            elif record.status == JobStatus.INTERRUPTED and status != JobStatus.INTERRUPTED:
                return False
            elif status == JobStatus.INTERRUPTED and record.status not in (
                JobStatus.RUNNING,
                JobStatus.INTERRUPTED,
            ):
                return False
            elif include_metadata:
                for key, value in _metadata_values(metadata).items():
                    setattr(record, key, value)

            for key, value in fields.items():
                setattr(record, key, value.value if isinstance(value, JobStatus) else value)
            record.reply_comments_posted = (record.reply_comments_posted or 0) + reply_comments
            return True

        return await self._run(op)


class SettingsStore(_Store):
    """Default-model settings and the model registry."""

    async def default_models(self, user_id: str, team_id: str | None) -> DefaultModelSettings | None:
        """Team settings when the job belongs to a team, otherwise the user's."""

        def op(session: Session) -> dict[str, Any] | None:
            owner = session.get(TeamRecord, team_id) if team_id else session.get(UserRecord, user_id)
            return owner.settings if owner is not None else None

        raw = await self._run(op)
        if not raw:
            return None
        try:
            return DefaultModelSettings.model_validate(raw)
        except ValidationError as e:
            log.warn("settings.invalid", exc=e, user_id=user_id, team_id=team_id)
            return None

    async def get_model(self, model_ref: str) -> ModelRecord | None:
        return await self._run(lambda session: session.get(ModelRecord, model_ref))

    async def resolve_model(self, model_ref: str, kind: AnalysisKind) -> ModelRecord | None:
        """Model record usable for the given kind, or None."""
        model = await self.get_model(model_ref)
        if model is None or not model.is_active:
            return None
        if model.allowed_modes and kind.value not in model.allowed_modes:
            return None
        return model

    async def get_user(self, user_id: str) -> UserRecord | None:
        return await self._run(lambda session: session.get(UserRecord, user_id))


class InstallationStore(_Store):
    """GitHub App installations and the repositories they grant."""

    async def upsert_installation(
        self,
        installation_id: int,
        account_login: str,
        account_type: str | None = None,
        sender_login: str | None = None,
        repositories: list[dict[str, Any]] | None = None,
    ) -> None:
        def op(session: Session) -> None:
            record = session.get(InstallationRecord, installation_id)
            if record is None:
                record = InstallationRecord(installation_id=installation_id, account_login=account_login)
                session.add(record)
            record.account_login = account_login
            record.account_type = account_type
            record.sender_login = sender_login

            for repo in repositories or []:
                existing = session.scalars(
                    select(RepositoryRecord).where(
                        RepositoryRecord.github_repository_id == repo["id"]
                    )
                ).first()
                if existing is None:
                    existing = RepositoryRecord(
                        github_repository_id=repo["id"],
                        full_name=repo["full_name"],
                        installation_id=installation_id,
                    )
                    session.add(existing)
                existing.full_name = repo["full_name"]
                existing.installation_id = installation_id
                existing.private = bool(repo.get("private", False))

        await self._run(op)

    async def delete_installation(self, installation_id: int) -> None:
        def op(session: Session) -> None:
            session.execute(
                delete(RepositoryRecord).where(RepositoryRecord.installation_id == installation_id)
            )
            session.execute(
                delete(InstallationRecord).where(
                    InstallationRecord.installation_id == installation_id
                )
            )

        await self._run(op)

    async def get_installation(self, installation_id: int) -> InstallationRecord | None:
        return await self._run(lambda session: session.get(InstallationRecord, installation_id))

    async def find_installation_for_account(self, account_login: str) -> InstallationRecord | None:
        def op(session: Session) -> InstallationRecord | None:
            query = select(InstallationRecord).where(
                InstallationRecord.account_login == account_login
            )
            return session.scalars(query).first()

        return await self._run(op)

    async def get_repository(self, full_name: str) -> RepositoryRecord | None:
        def op(session: Session) -> RepositoryRecord | None:
            query = select(RepositoryRecord).where(RepositoryRecord.full_name == full_name)
            return session.scalars(query).first()

        return await self._run(op)

    async def mark_merged(self, full_name: str, pr_number: int) -> None:
        def op(session: Session) -> None:
            query = select(RepositoryRecord).where(RepositoryRecord.full_name == full_name)
            record = session.scalars(query).first()
            if record is not None:
                record.last_merged_pr = pr_number

        await self._run(op)


class FeedbackStore(_Store):
    async def save(self, **values: Any) -> None:
        await self._run(lambda session: session.add(FeedbackRecord(**values)))
