"""Worker threads executing dispatched backup jobs."""

import logging
import threading
from typing import Optional
from .dispatch import Completion, DispatchQueue
from .executor import BackupExecutor
from .models import FailedFatal, Target, utcnow

logger = logging.getLogger(__name__)


class Worker(threading.Thread):
    """Executes targets from the dispatch queue."""

    def __init__(self, dispatch: DispatchQueue, executor: BackupExecutor, worker_id: int = 1):
        super().__init__(name=f"dbshield-worker-{worker_id}", daemon=True)
        self.dispatch = dispatch
        self.executor = executor
        self.worker_id = worker_id
        self.running = True
        self.current_target: Optional[Target] = None

    def stop(self) -> None:
        """Finish the current job, then exit."""
        self.running = False
        if self.current_target:
            logger.info(f"[Worker {self.worker_id}] Finishing current job {self.current_target.name}...")

    def run(self, poll_interval: float = 0.5) -> None:
        """Run the worker loop."""
        logger.debug(f"[Worker {self.worker_id}] Started")
        while self.running:
            target = self.dispatch.get_next(timeout=poll_interval)
            if target is not None:
                self._execute_job(target)
        logger.debug(f"[Worker {self.worker_id}] Stopped")

    def _execute_job(self, target: Target) -> None:
        """Execute a single job and hand its outcome to the daemon."""
        started_at = utcnow()
        self.current_target = target
        try:
            outcome = self.executor.execute(target)
        except Exception as e:
            logger.exception(f"[Worker {self.worker_id}] Job {target.name} error")
            outcome = FailedFatal(error=f"unexpected error: {e}")
        finally:
            self.current_target = None
        self.dispatch.complete(Completion(target=target, outcome=outcome, started_at=started_at))
