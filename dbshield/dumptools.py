"""Dump tool invocation and subprocess supervision."""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set
from .models import Config, Engine, Target

logger = logging.getLogger(__name__)


@dataclass
class DumpCommand:
    """A fully resolved dump tool invocation."""
    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)
    stdout_path: Optional[Path] = None


@dataclass
class DumpResult:
    """What the executor needs to know about a finished dump process."""
    returncode: int
    stderr: str = ""
    terminated: bool = False
    timed_out: bool = False


def build_dump_command(
    target: Target, artifact_path: Path, skip_lock_tables: bool, config: Config
) -> DumpCommand:
    """Map a target to the dump tool invocation for its engine."""
    conn = target.connection
    env = os.environ.copy()

    if target.engine is Engine.MARIADB:
        argv = [
            config.mysqldump_path,
            f"-h{conn.host}",
            f"-P{conn.port}",
            f"-u{conn.user}",
            "--column-statistics=0",
            "--skip-dump-date",
        ]
        if skip_lock_tables:
            argv += ["--skip-lock-tables", "--single-transaction", "--quick"]
        argv.append(conn.database)
        if conn.password:
            env["MYSQL_PWD"] = conn.password
        return DumpCommand(argv=argv, env=env, stdout_path=artifact_path)

    if target.engine is Engine.POSTGRESQL:
        env.update(
            PGHOST=conn.host,
            PGPORT=str(conn.port),
            PGUSER=conn.user,
            PGDATABASE=conn.database,
        )
        if conn.password:
            env["PGPASSWORD"] = conn.password
        argv = [config.pg_dump_path, "--no-password", "-f", str(artifact_path)]
        if skip_lock_tables:
            # pg_dump cannot skip its ACCESS SHARE locks; fail fast instead of queueing
            argv.append(f"--lock-wait-timeout={config.lock_wait_timeout_ms}")
        return DumpCommand(argv=argv, env=env)

    raise ValueError(f"Unsupported engine: {target.engine}")


class ProcessRunner:
    """Runs dump processes and terminates them on shutdown."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, subprocess.Popen] = {}
        self._terminated: Set[str] = set()
        self._closed = False

    def run(self, name: str, command: DumpCommand, timeout: Optional[float] = None) -> DumpResult:
        """Run one dump process for the named target and wait for it."""
        stdout = open(command.stdout_path, "wb") if command.stdout_path else subprocess.DEVNULL
        try:
            proc = subprocess.Popen(
                command.argv,
                env=command.env or None,
                stdout=stdout,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            if command.stdout_path:
                stdout.close()
            return DumpResult(returncode=127, stderr=f"Failed to execute {command.argv[0]}: {e}")

        with self._lock:
            self._active[name] = proc
            if self._closed:
                self._terminated.add(name)
                proc.terminate()

        timed_out = False
        try:
            try:
                _, stderr = proc.communicate(timeout=timeout or None)
            except subprocess.TimeoutExpired:
                timed_out = True
                proc.kill()
                _, stderr = proc.communicate()
        finally:
            if command.stdout_path:
                stdout.close()
            with self._lock:
                self._active.pop(name, None)
                terminated = name in self._terminated
                self._terminated.discard(name)

        return DumpResult(
            returncode=proc.returncode,
            stderr=stderr or "",
            terminated=terminated,
            timed_out=timed_out,
        )

    def active_names(self) -> List[str]:
        with self._lock:
            return list(self._active)

    def terminate_all(self, kill_after: float = 5.0) -> List[str]:
        """Terminate every running dump and refuse to start new ones."""
        with self._lock:
            self._closed = True
            procs = dict(self._active)
            self._terminated.update(procs)
        for name, proc in procs.items():
            logger.warning(f"Terminating dump for {name} (pid {proc.pid})")
            proc.terminate()
        for proc in procs.values():
            try:
                proc.wait(timeout=kill_after)
            except subprocess.TimeoutExpired:
                proc.kill()
        return list(procs)
