"""Type definitions for sandbox management."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SandboxStatus(str, Enum):
    """Lifecycle of a sandbox handle held by this process."""

    RUNNING = "running"
    PAUSED = "paused"
    KILLED = "killed"


@dataclass
class SandboxConfig:
    """Configuration for creating a sandbox."""

    template: str | None = None
    timeout_seconds: int = 60 * 60
    envs: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class SandboxHandle:
    """A remote sandbox owned by one job."""

    sandbox_id: str
    timeout_seconds: int
    sandbox: Any
    reconnected: bool = False
    status: SandboxStatus = SandboxStatus.RUNNING


@dataclass
class CommandResult:
    exit_code: int
    error: str | None = None
