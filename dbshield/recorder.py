"""Applies execution outcomes to the config store."""

import logging
import time
from typing import Any, Dict, Optional
from .dispatch import Completion
from .errors import PersistenceError, TargetNotFoundError
from .history import HistoryLog
from .models import (
    Config,
    FailedFatal,
    FailedRetryable,
    HistoryRecord,
    RecordKind,
    Skipped,
    Succeeded,
    Target,
)
from .storage import Storage

logger = logging.getLogger(__name__)


class OutcomeRecorder:
    """Single persistence point for outcomes reported by workers."""

    def __init__(self, storage: Storage, history: HistoryLog, config: Config):
        self.storage = storage
        self.history = history
        self.config = config

    def record(self, completion: Completion) -> Optional[Target]:
        """Persist one outcome. Returns the updated target, or None if dropped."""
        name = completion.target.name
        outcome = completion.outcome
        state: Dict[str, Any] = {"last_run_at": completion.started_at}
        if isinstance(outcome, Succeeded):
            state["fingerprint"] = outcome.fingerprint
        elif not isinstance(outcome, (Skipped, FailedRetryable, FailedFatal)):
            raise TypeError(f"Unknown outcome: {outcome!r}")

        last_error: Optional[PersistenceError] = None
        for attempt in range(1, self.config.persist_retries + 1):
            try:
                return self.storage.update_state(name, **state)
            except TargetNotFoundError:
                self._append(name, RecordKind.DISCARDED, "target deleted during execution; result discarded")
                return None
            except PersistenceError as e:
                last_error = e
                logger.warning(f"Persisting outcome for {name} failed (attempt {attempt}): {e}")
                if attempt < self.config.persist_retries:
                    time.sleep(self.config.persist_retry_delay)

        self._append(
            name,
            RecordKind.PERSIST_FAILED,
            f"integrity warning: outcome '{outcome.kind}' not persisted after "
            f"{self.config.persist_retries} attempts: {last_error}",
        )
        return None

    def _append(self, name: str, kind: RecordKind, detail: str) -> None:
        self.history.append(HistoryRecord(target_name=name, outcome_kind=kind, detail=detail))
