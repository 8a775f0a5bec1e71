"""Runs one backup job for one target."""

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from .dedup import Fingerprinter, should_skip
from .dumptools import ProcessRunner, build_dump_command
from .errors import FingerprintUnavailable
from .history import HistoryLog
from .models import (
    BackupOutcome,
    Config,
    FailedFatal,
    FailedRetryable,
    HistoryRecord,
    RecordKind,
    Skipped,
    Succeeded,
    Target,
    describe_outcome,
)

logger = logging.getLogger(__name__)

TERMINATED_ON_SHUTDOWN = "terminated on shutdown"


def artifact_pattern(target_name: str) -> "re.Pattern":
    return re.compile(rf"^{re.escape(target_name)}_\d{{8}}_\d{{6}}(_\d+)?\.sql$")


def rotate_artifacts(target: Target) -> List[Path]:
    """Delete the oldest artifacts beyond the target's retention count."""
    if target.retention_count <= 0:
        return []
    output_dir = Path(target.output_dir)
    if not output_dir.is_dir():
        return []
    pattern = artifact_pattern(target.name)
    artifacts = sorted(
        (p for p in output_dir.iterdir() if p.is_file() and pattern.match(p.name)),
        key=lambda p: (p.stat().st_mtime, p.name),
    )
    removed = []
    for path in artifacts[: max(0, len(artifacts) - target.retention_count)]:
        logger.info(f"Rotating backup: removing {path}")
        path.unlink()
        removed.append(path)
    return removed


class BackupExecutor:
    """Fingerprints, dumps, classifies and retries backups for targets."""

    def __init__(
        self,
        config: Config,
        history: HistoryLog,
        fingerprinter: Optional[Fingerprinter] = None,
        runner: Optional[ProcessRunner] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.history = history
        self.fingerprinter = fingerprinter or Fingerprinter(config)
        self.runner = runner or ProcessRunner()
        self.stop_event = stop_event or threading.Event()

    def is_lock_error(self, stderr: str) -> bool:
        text = stderr.lower()
        return any(sig.lower() in text for sig in self.config.lock_error_signatures if sig)

    def execute(self, target: Target) -> BackupOutcome:
        """Run one backup job for the target and report its outcome."""
        logger.info(f"Backing up database: {target.name}")

        fingerprint: Optional[str] = None
        try:
            fingerprint = self.fingerprinter.fingerprint(target.engine, target.connection)
        except FingerprintUnavailable as e:
            logger.warning(f"Fingerprint unavailable for {target.name}, dumping anyway: {e}")

        if should_skip(fingerprint, target.last_success_fingerprint):
            return self._finish(target, Skipped(reason="no data change"), None)

        try:
            Path(target.output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._finish(
                target, FailedFatal(error=f"Cannot create {target.output_dir}: {e}"), None
            )

        max_attempts = self.config.max_attempts
        for attempt in range(1, max_attempts + 1):
            if self.stop_event.is_set():
                return self._finish(target, FailedFatal(error=TERMINATED_ON_SHUTDOWN), attempt)

            skip_lock = self.config.skip_lock_tables_on_retry and attempt > 1
            outcome = self._attempt(target, fingerprint, skip_lock)

            if not isinstance(outcome, FailedRetryable):
                return self._finish(target, outcome, attempt)

            if attempt == max_attempts:
                exhausted = FailedFatal(
                    error=f"lock contention persisted after {max_attempts} attempts: {outcome.error}"
                )
                return self._finish(target, exhausted, attempt)

            self._record(target, RecordKind.FAILED_RETRYABLE, outcome.error, attempt)

            delay = self.config.backoff_delay(attempt)
            mode = " with non-locking dump" if self.config.skip_lock_tables_on_retry else ""
            self._record(target, RecordKind.RETRYING, f"retrying in {delay:.1f}s{mode}", attempt)
            if self.stop_event.wait(delay):
                return self._finish(target, FailedFatal(error=TERMINATED_ON_SHUTDOWN), attempt)

        raise AssertionError("retry loop exited without an outcome")

    def _attempt(self, target: Target, fingerprint: Optional[str], skip_lock: bool) -> BackupOutcome:
        """One dump subprocess; never leaves a partial artifact behind."""
        final_path = self._artifact_path(target)
        partial_path = final_path.with_name(final_path.name + ".partial")
        command = build_dump_command(target, partial_path, skip_lock, self.config)

        result = self.runner.run(target.name, command, timeout=self.config.dump_timeout or None)

        if result.returncode == 0 and not result.terminated and not result.timed_out:
            size = partial_path.stat().st_size if partial_path.exists() else 0
            if size > 0:
                partial_path.rename(final_path)
                logger.info(f"Backup created at: {final_path} ({size} bytes)")
                return Succeeded(fingerprint=fingerprint, artifact_path=str(final_path))

        partial_path.unlink(missing_ok=True)
        if result.terminated:
            return FailedFatal(error=TERMINATED_ON_SHUTDOWN)
        if result.timed_out:
            return FailedFatal(error=f"dump timed out after {self.config.dump_timeout:.0f}s")
        if result.returncode == 0:
            return FailedFatal(error="dump produced an empty artifact")

        error = result.stderr.strip() or f"exit code {result.returncode}"
        if self.is_lock_error(result.stderr):
            return FailedRetryable(error=error)
        return FailedFatal(error=error)

    def _artifact_path(self, target: Target) -> Path:
        output_dir = Path(target.output_dir)
        stem = f"{target.name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        path = output_dir / f"{stem}.sql"
        counter = 1
        while path.exists() or path.with_name(path.name + ".partial").exists():
            path = output_dir / f"{stem}_{counter}.sql"
            counter += 1
        return path

    def _finish(self, target: Target, outcome: BackupOutcome, attempt: Optional[int]) -> BackupOutcome:
        self._record(target, RecordKind(outcome.kind), describe_outcome(outcome), attempt)
        if isinstance(outcome, Succeeded):
            try:
                rotate_artifacts(target)
            except OSError as e:
                logger.error(f"Retention cleanup failed for {target.name}: {e}")
        return outcome

    def _record(self, target: Target, kind: RecordKind, detail: str, attempt: Optional[int]) -> None:
        self.history.append(
            HistoryRecord(target_name=target.name, outcome_kind=kind, detail=detail, attempt=attempt)
        )
