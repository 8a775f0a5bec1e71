"""Data models for backup targets, outcomes and configuration."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Engine(str, Enum):
    """Supported database engines."""
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"

    @property
    def default_port(self) -> int:
        if self is Engine.MARIADB:
            return 3306
        return 5432


class ConnectionDetails(BaseModel):
    """Parameters needed to reach one database."""
    host: str = "localhost"
    port: int
    user: str
    password: Optional[str] = None
    database: str


class Target(BaseModel):
    """One configured backup job."""
    name: str
    engine: Engine
    connection: ConnectionDetails
    schedule: str = "daily"
    output_dir: str = "./backups"
    retention_count: int = Field(default=5, ge=0)
    enabled: bool = True
    last_run_at: Optional[datetime] = None
    last_success_fingerprint: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Skipped(BaseModel):
    """The dump was not needed."""
    kind: Literal["skipped"] = "skipped"
    reason: str


class Succeeded(BaseModel):
    """The dump completed and produced an artifact."""
    kind: Literal["succeeded"] = "succeeded"
    fingerprint: Optional[str] = None
    artifact_path: str


class FailedRetryable(BaseModel):
    """The dump hit lock contention and may be retried."""
    kind: Literal["failed_retryable"] = "failed_retryable"
    error: str


class FailedFatal(BaseModel):
    """The dump failed for good."""
    kind: Literal["failed_fatal"] = "failed_fatal"
    error: str


BackupOutcome = Union[Skipped, Succeeded, FailedRetryable, FailedFatal]


def describe_outcome(outcome: BackupOutcome) -> str:
    """Human readable detail for an outcome."""
    if isinstance(outcome, Skipped):
        return outcome.reason
    if isinstance(outcome, Succeeded):
        return outcome.artifact_path
    if isinstance(outcome, (FailedRetryable, FailedFatal)):
        return outcome.error
    raise TypeError(f"Unknown outcome: {outcome!r}")


class RecordKind(str, Enum):
    """Kinds of entries written to the history log."""
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FATAL = "failed_fatal"
    DISCARDED = "discarded"
    PERSIST_FAILED = "persist_failed"
    CONFIG_ERROR = "config_error"


class HistoryRecord(BaseModel):
    """Structured log entry for one attempt, retry or daemon event."""
    timestamp: datetime = Field(default_factory=utcnow)
    target_name: str
    outcome_kind: RecordKind
    detail: str = ""
    attempt: Optional[int] = None


class DaemonState(str, Enum):
    """Scheduler daemon lifecycle states."""
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    SHUTTING_DOWN = "shutting_down"


DEFAULT_LOCK_SIGNATURES = [
    "Lock wait timeout exceeded",
    "Deadlock found",
    "could not obtain lock",
    "canceling statement due to lock timeout",
    "lock timeout",
]


class Config(BaseModel):
    """Scheduling, retry and tool configuration."""
    poll_interval: float = Field(default=60.0, gt=0)
    max_concurrency: int = Field(default=2, ge=1)
    max_attempts: int = Field(default=3, ge=1, le=100)
    backoff_base_delay: float = Field(default=5.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    backoff_max_delay: float = Field(default=300.0, ge=0)
    skip_lock_tables_on_retry: bool = True
    lock_error_signatures: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LOCK_SIGNATURES)
    )
    shutdown_grace_period: float = Field(default=30.0, ge=0)
    dump_timeout: float = Field(default=3600.0, ge=0)  # 0 disables the timeout
    persist_retries: int = Field(default=3, ge=1)
    persist_retry_delay: float = Field(default=0.5, ge=0)
    lock_wait_timeout_ms: int = Field(default=30000, ge=0)
    fingerprint_timeout: float = Field(default=30.0, gt=0)
    mysqldump_path: str = "mysqldump"
    pg_dump_path: str = "pg_dump"
    mysql_path: str = "mysql"

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given failed attempt."""
        try:
            delay = self.backoff_base_delay * self.backoff_multiplier ** (attempt - 1)
        except OverflowError:
            return self.backoff_max_delay
        return min(delay, self.backoff_max_delay)
