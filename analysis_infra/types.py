"""Shared types for analysis jobs."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AnalysisKind(str, Enum):
    """What an analysis job looks at."""

    PR_ANALYSIS = "pr_analysis"
    FULL_REPO_ANALYSIS = "full_repo_analysis"
    EXTENSION_ANALYSIS = "extension_analysis"


class JobStatus(str, Enum):
    """Status of an analysis job.

    Transitions: draft -> running -> completed | error. interrupted is only
    written by the stop procedure and is never overwritten afterwards.
    """

    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.INTERRUPTED, JobStatus.ERROR)


class JobMetadata(BaseModel):
    """Immutable fields of a job record, written once."""

    kind: AnalysisKind | None = None
    user_id: str | None = None
    team_id: str | None = None
    repo_url: str | None = None
    repository_ref: str | None = None
    model: str | None = None
    prompt: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    pr_title: str | None = None

    @property
    def is_complete(self) -> bool:
        """True when every field required to create a record is present."""
        return all(
            value is not None
            for value in (self.kind, self.user_id, self.repo_url, self.model, self.prompt)
        )


class DefaultModelSettings(BaseModel):
    """Per-kind default model ids from a team or user settings document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    default_model_repo: str | None = Field(default=None, alias="defaultModelRepo")
    default_model_pr: str | None = Field(default=None, alias="defaultModelPr")
    default_model_extension: str | None = Field(default=None, alias="defaultModelExtension")

    def for_kind(self, kind: AnalysisKind) -> str | None:
        value = {
            AnalysisKind.FULL_REPO_ANALYSIS: self.default_model_repo,
            AnalysisKind.PR_ANALYSIS: self.default_model_pr,
            AnalysisKind.EXTENSION_ANALYSIS: self.default_model_extension,
        }[kind]
        return value or None


class ResolvedModel(BaseModel):
    """A model record selected for a job."""

    name: str
    model_id: str
    provider: str


class PullRequestData(BaseModel):
    """Normalized pull request payload handed to the analyzer."""

    repo_full_name: str
    repo_url: str
    github_repository_id: int | None = None
    installation_id: int | None = None
    pr_number: int
    pr_title: str = ""
    pr_body: str | None = None
    pr_url: str | None = None
    author_login: str
    author_type: str | None = None
    head_sha: str
    head_ref: str | None = None
    base_ref: str | None = None
    base_sha: str | None = None
    action: str | None = None
    changed_files: int | None = None
    additions: int | None = None
    deletions: int | None = None


class AnalysisRequest(BaseModel):
    """Input to AnalysisOrchestrator.run."""

    repo_url: str
    user_id: str
    kind: AnalysisKind = AnalysisKind.FULL_REPO_ANALYSIS
    prompt: str = ""
    branch: str | None = None
    team_id: str | None = None
    repository_ref: str | None = None
    github_repository_id: int | None = None
    job_id: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    pr_title: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def metadata(self, model: str) -> JobMetadata:
        is_pr = self.kind == AnalysisKind.PR_ANALYSIS
        return JobMetadata(
            kind=self.kind,
            user_id=self.user_id,
            team_id=self.team_id,
            repo_url=self.repo_url,
            repository_ref=self.repository_ref,
            model=model,
            prompt=self.prompt,
            pr_number=self.pr_number if is_pr else None,
            pr_url=self.pr_url if is_pr else None,
            pr_title=self.pr_title if is_pr else None,
        )


class AnalysisResult(BaseModel):
    """Outcome of one orchestrated run."""

    success: bool
    job_id: str | None = None
    exit_code: int | None = None
    sandbox_id: str | None = None
    error: str | None = None
    interrupted: bool = False


ChunkCallback = Callable[[str], Awaitable[None]]


@dataclass
class AnalysisCallbacks:
    """Async hooks invoked with redacted output while a job runs."""

    on_stdout: ChunkCallback | None = None
    on_stderr: ChunkCallback | None = None
    on_progress: ChunkCallback | None = None
