"""Scheduler daemon: polls schedules and dispatches due backups."""

import logging
import signal
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple
from .dedup import Fingerprinter
from .dispatch import Completion, DispatchQueue
from .dumptools import ProcessRunner
from .errors import ConfigError, PersistenceError, StartupError
from .executor import TERMINATED_ON_SHUTDOWN, BackupExecutor
from .history import HistoryLog
from .models import (
    BackupOutcome,
    Config,
    DaemonState,
    FailedFatal,
    HistoryRecord,
    RecordKind,
    Target,
    utcnow,
)
from .recorder import OutcomeRecorder
from .schedule import Schedule, is_due, parse_schedule
from .storage import Storage
from .worker import Worker

logger = logging.getLogger(__name__)


class SchedulerDaemon:
    """Control loop owning the worker pool and the single store writer.

    Lifecycle: ``start`` loads the store and enters IDLE; every poll tick
    moves through POLLING and DISPATCHING; ``stop`` (or SIGTERM/SIGINT)
    leads to SHUTTING_DOWN, after which the daemon cannot be reused.
    """

    def __init__(
        self,
        storage: Storage,
        history: HistoryLog,
        fingerprinter: Optional[Fingerprinter] = None,
        runner: Optional[ProcessRunner] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.history = history
        self.clock = clock
        self._fingerprinter = fingerprinter
        self._runner = runner
        self.state = DaemonState.IDLE
        self.stop_event = threading.Event()
        self.config: Config = Config()
        self.dispatch = DispatchQueue()
        self.executor: Optional[BackupExecutor] = None
        self.recorder: Optional[OutcomeRecorder] = None
        self.workers: List[Worker] = []
        self.targets: List[Target] = []
        self.schedules: Dict[str, Schedule] = {}
        self.outcomes: Dict[str, BackupOutcome] = {}
        self._reported_errors: Set[Tuple[str, str]] = set()
        self._started = False

    def start(self) -> None:
        """Load the config store and start the worker pool."""
        if self._started:
            return
        try:
            self.config = self.storage.get_config()
            targets = self.storage.load_all()
        except PersistenceError as e:
            raise StartupError(f"Config store unreadable: {e}") from e

        self._apply_targets(targets)
        runner = self._runner or ProcessRunner()
        self._runner = runner
        self.executor = BackupExecutor(
            self.config,
            self.history,
            fingerprinter=self._fingerprinter,
            runner=runner,
            stop_event=self.stop_event,
        )
        self.recorder = OutcomeRecorder(self.storage, self.history, self.config)
        self.workers = [
            Worker(self.dispatch, self.executor, worker_id=i + 1)
            for i in range(self.config.max_concurrency)
        ]
        for w in self.workers:
            w.start()
        self._started = True
        self.state = DaemonState.IDLE
        logger.info(
            f"Daemon started with {len(self.targets)} target(s), "
            f"{self.config.max_concurrency} worker(s), poll every {self.config.poll_interval:.0f}s"
        )

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signal gracefully."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    def stop(self) -> None:
        """Request shutdown; the control loop exits after draining."""
        self.stop_event.set()

    def run_forever(self, install_signal_handlers: bool = True) -> None:
        """Run the control loop until stopped."""
        self.start()
        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._handle_shutdown)
            signal.signal(signal.SIGINT, self._handle_shutdown)

        next_tick = time.monotonic()
        try:
            while not self.stop_event.is_set():
                if time.monotonic() >= next_tick:
                    self.tick()
                    next_tick = time.monotonic() + self.config.poll_interval
                wait = min(max(0.0, next_tick - time.monotonic()), 1.0)
                self.drain_completions(timeout=wait)
        finally:
            self.shutdown()

    def tick(self) -> List[str]:
        """Poll every target once and dispatch the due ones."""
        self.state = DaemonState.POLLING
        try:
            self._apply_targets(self.storage.load_all())
        except PersistenceError as e:
            logger.error(f"Config error, skipping this tick: {e}")
            self._settle_state()
            return []

        due = self.select_due(self.clock())
        dispatched = self._dispatch(due)
        self._settle_state()
        return dispatched

    def select_due(self, now: datetime) -> List[Target]:
        """Enabled targets whose schedule is due and that are not in flight."""
        due = []
        for target in self.targets:
            if not target.enabled:
                continue
            schedule = self.schedules.get(target.name)
            if schedule is None:
                continue
            if self.dispatch.is_in_flight(target.name):
                continue
            if is_due(schedule, now, target.last_run_at):
                due.append(target)
        return due

    def run_now(self, names: Optional[Iterable[str]] = None) -> Dict[str, BackupOutcome]:
        """Back up targets immediately, ignoring schedules.

        With ``names`` only those targets run (enabled or not); otherwise
        every enabled target runs. Dedup and retry still apply.
        """
        self.start()
        try:
            if names is None:
                selected = [t for t in self.targets if t.enabled]
            else:
                by_name = {t.name: t for t in self.targets}
                selected = [by_name[n] for n in names if n in by_name]
            self.outcomes = {}
            self._dispatch(selected)
            self._settle_state()
            while self.dispatch.in_flight() and not self.stop_event.is_set():
                self.drain_completions(timeout=0.5)
        finally:
            self.shutdown()
        return dict(self.outcomes)

    def drain_completions(self, timeout: Optional[float] = None) -> int:
        """Persist finished executions. Waits up to ``timeout`` for the first."""
        count = 0
        completion = self.dispatch.next_completion(timeout=timeout)
        while completion is not None:
            name = completion.target.name
            self.outcomes[name] = completion.outcome
            try:
                self.recorder.record(completion)
            finally:
                self.dispatch.mark_finished(name)
            count += 1
            completion = self.dispatch.next_completion(timeout=0)
        if count:
            self._settle_state(busy=DaemonState.POLLING)
        return count

    def shutdown(self) -> None:
        """Cancel pending work, wait for in-flight jobs, then terminate them."""
        if self.state is DaemonState.SHUTTING_DOWN or not self._started:
            self.state = DaemonState.SHUTTING_DOWN
            return
        self.state = DaemonState.SHUTTING_DOWN
        self.stop_event.set()

        cancelled = self.dispatch.cancel_pending()
        if cancelled:
            logger.info(f"Cancelled pending backups: {', '.join(sorted(cancelled))}")
        for w in self.workers:
            w.stop()

        deadline = time.monotonic() + self.config.shutdown_grace_period
        while self.dispatch.in_flight() and time.monotonic() < deadline:
            self.drain_completions(timeout=min(0.5, max(0.0, deadline - time.monotonic())))

        if self.dispatch.in_flight():
            logger.warning(
                f"Grace period expired, terminating: {', '.join(sorted(self.dispatch.in_flight()))}"
            )
            self._runner.terminate_all()
            for w in self.workers:
                w.join(timeout=10)
            self.drain_completions(timeout=0)
            for name in self.dispatch.in_flight():
                # Worker never reported back; record the forced termination ourselves
                target = next((t for t in self.targets if t.name == name), None)
                if target is not None:
                    self._record_forced_termination(target)
                self.dispatch.mark_finished(name)

        for w in self.workers:
            w.join(timeout=5)
        logger.info("Daemon stopped")

    def _record_forced_termination(self, target: Target) -> None:
        outcome = FailedFatal(error=TERMINATED_ON_SHUTDOWN)
        self.history.append(
            HistoryRecord(
                target_name=target.name,
                outcome_kind=RecordKind.FAILED_FATAL,
                detail=TERMINATED_ON_SHUTDOWN,
            )
        )
        self.outcomes[target.name] = outcome
        self.recorder.record(Completion(target=target, outcome=outcome, started_at=self.clock()))

    def _dispatch(self, targets: Iterable[Target]) -> List[str]:
        self.state = DaemonState.DISPATCHING
        dispatched = []
        for target in targets:
            if self.dispatch.enqueue(target):
                logger.info(f"Executing scheduled backup for {target.name}")
                dispatched.append(target.name)
        return dispatched

    def _apply_targets(self, targets: List[Target]) -> None:
        schedules: Dict[str, Schedule] = {}
        for target in targets:
            try:
                schedules[target.name] = parse_schedule(target.schedule)
            except ConfigError as e:
                key = (target.name, target.schedule)
                if key not in self._reported_errors:
                    self._reported_errors.add(key)
                    self.history.append(
                        HistoryRecord(
                            target_name=target.name,
                            outcome_kind=RecordKind.CONFIG_ERROR,
                            detail=str(e),
                        )
                    )
        self.targets = targets
        self.schedules = schedules

    def _settle_state(self, busy: DaemonState = DaemonState.DISPATCHING) -> None:
        """Enter IDLE once nothing is in flight, otherwise ``busy``."""
        if self.state is DaemonState.SHUTTING_DOWN:
            return
        self.state = busy if self.dispatch.in_flight() else DaemonState.IDLE
