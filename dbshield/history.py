"""Append-only structured history of backup attempts."""

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional
from .errors import PersistenceError
from .models import HistoryRecord, RecordKind

logger = logging.getLogger(__name__)

_LEVELS = {
    RecordKind.SKIPPED: logging.INFO,
    RecordKind.SUCCEEDED: logging.INFO,
    RecordKind.RETRYING: logging.WARNING,
    RecordKind.FAILED_RETRYABLE: logging.WARNING,
    RecordKind.FAILED_FATAL: logging.ERROR,
    RecordKind.DISCARDED: logging.WARNING,
    RecordKind.PERSIST_FAILED: logging.CRITICAL,
    RecordKind.CONFIG_ERROR: logging.ERROR,
}


class HistoryLog:
    """JSON-lines sink for history records, mirrored to the logger."""

    def __init__(self, data_dir: str = ".dbshield"):
        self.path = Path(data_dir) / "history.jsonl"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record: HistoryRecord) -> None:
        """Write one record. Failures to write are logged, not raised."""
        attempt = f" attempt={record.attempt}" if record.attempt is not None else ""
        logger.log(
            _LEVELS[record.outcome_kind],
            f"target={record.target_name} outcome={record.outcome_kind.value}{attempt} {record.detail}",
        )
        line = record.model_dump_json()
        with self._lock:
            try:
                with open(self.path, "a") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.error(f"Cannot append to {self.path}: {e}")

    def read(self, limit: Optional[int] = None, target_name: Optional[str] = None) -> List[HistoryRecord]:
        """Read records, newest last, optionally filtered by target."""
        if not self.path.exists():
            return []
        records = []
        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    record = HistoryRecord.model_validate_json(line)
                    if target_name is None or record.target_name == target_name:
                        records.append(record)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records
