"""Bounded hand-off between the daemon loop and its workers."""

import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Set
from .models import BackupOutcome, Target


@dataclass
class Completion:
    """A finished execution waiting to be persisted."""
    target: Target
    outcome: BackupOutcome
    started_at: datetime


class DispatchQueue:
    """Pending targets, the in-flight set and the completion channel.

    A target name stays in flight from ``enqueue`` until ``mark_finished``,
    so the same target is never queued or executed twice at once.
    """

    def __init__(self):
        self._pending: "queue.Queue[Target]" = queue.Queue()
        self._completed: "queue.Queue[Completion]" = queue.Queue()
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def enqueue(self, target: Target) -> bool:
        """Queue a target. Returns False if it is already pending or running."""
        with self._lock:
            if target.name in self._in_flight:
                return False
            self._in_flight.add(target.name)
        self._pending.put(target)
        return True

    def get_next(self, timeout: float = 0.5) -> Optional[Target]:
        """Get the next pending target, waiting up to ``timeout`` seconds."""
        try:
            return self._pending.get(timeout=timeout)
        except queue.Empty:
            return None

    def complete(self, completion: Completion) -> None:
        self._completed.put(completion)

    def next_completion(self, timeout: Optional[float] = None) -> Optional[Completion]:
        try:
            if timeout is not None and timeout <= 0:
                return self._completed.get_nowait()
            return self._completed.get(timeout=timeout)
        except queue.Empty:
            return None

    def mark_finished(self, name: str) -> None:
        with self._lock:
            self._in_flight.discard(name)

    def cancel_pending(self) -> List[str]:
        """Drop every target that no worker has picked up yet."""
        cancelled = []
        while True:
            try:
                target = self._pending.get_nowait()
            except queue.Empty:
                break
            cancelled.append(target.name)
            self.mark_finished(target.name)
        return cancelled

    def is_in_flight(self, name: str) -> bool:
        with self._lock:
            return name in self._in_flight

    def in_flight(self) -> Set[str]:
        with self._lock:
            return set(self._in_flight)
