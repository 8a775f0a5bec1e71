"""Test suite for the backup executor, scheduler daemon and CLI."""

import os
import sys
import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest
from click.testing import CliRunner

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from dbshield import cli as cli_module
from dbshield.daemon import SchedulerDaemon
from dbshield.dispatch import Completion, DispatchQueue
from dbshield.dumptools import DumpResult
from dbshield.errors import FingerprintUnavailable, PersistenceError, StartupError
from dbshield.executor import TERMINATED_ON_SHUTDOWN, BackupExecutor, rotate_artifacts
from dbshield.history import HistoryLog
from dbshield.models import (
    Config,
    ConnectionDetails,
    DaemonState,
    Engine,
    FailedFatal,
    RecordKind,
    Skipped,
    Succeeded,
    Target,
    utcnow,
)
from dbshield.recorder import OutcomeRecorder
from dbshield.storage import Storage

LOCK_ERROR = "mysqldump: Got error: 1205: Lock wait timeout exceeded; try restarting transaction"


def make_target(name="shop", **overrides) -> Target:
    data = dict(
        name=name,
        engine=Engine.MARIADB,
        connection=ConnectionDetails(host="db.local", port=3306, user="backup", database=name),
        schedule="daily",
    )
    data.update(overrides)
    return Target(**data)


def fast_config(**overrides) -> Config:
    data = dict(
        backoff_base_delay=0.0,
        persist_retry_delay=0.0,
        shutdown_grace_period=2.0,
        poll_interval=0.1,
    )
    data.update(overrides)
    return Config(**data)


class FakeFingerprinter:
    """Returns a fixed fingerprint, or raises FingerprintUnavailable."""

    def __init__(self, value="fp-new", error=None):
        self.value = value
        self.error = error
        self.calls = 0

    def fingerprint(self, engine, connection):
        self.calls += 1
        if self.error:
            raise FingerprintUnavailable(self.error)
        return self.value


def artifact_of(command) -> Path:
    if command.stdout_path is not None:
        return Path(command.stdout_path)
    return Path(command.argv[command.argv.index("-f") + 1])


class FakeRunner:
    """Stands in for the dump subprocess, replaying scripted results."""

    def __init__(self, results=None, output=b"-- MariaDB dump\nCREATE TABLE t (id int);\n"):
        self.results = list(results or [])
        self.output = output
        self.calls = []

    def run(self, name, command, timeout=None):
        self.calls.append(command)
        result = self.results.pop(0) if self.results else DumpResult(returncode=0)
        artifact = artifact_of(command)
        artifact.write_bytes(self.output if result.returncode == 0 else b"-- partial")
        return result

    def terminate_all(self, kill_after=5.0):
        return []


class BlockingRunner(FakeRunner):
    """Holds every dump open until released or terminated."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()
        self.terminated = False
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def run(self, name, command, timeout=None):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        self.release.wait(10)
        with self._lock:
            self.active -= 1
        if self.terminated:
            self.calls.append(command)
            return DumpResult(returncode=-15, terminated=True)
        return super().run(name, command, timeout)

    def terminate_all(self, kill_after=5.0):
        self.terminated = True
        self.release.set()
        return []


def drain(daemon, timeout=10.0):
    deadline = time.monotonic() + timeout
    while daemon.dispatch.in_flight() and time.monotonic() < deadline:
        daemon.drain_completions(timeout=0.2)
    assert not daemon.dispatch.in_flight(), "executions did not finish"


@pytest.fixture
def history(tmp_path):
    return HistoryLog(str(tmp_path / "state"))


@pytest.fixture
def storage(tmp_path):
    storage = Storage(str(tmp_path / "state"))
    storage.set_config(fast_config())
    return storage


# ------------------------------------------------------------------
# Executor
# ------------------------------------------------------------------


def test_identical_fingerprint_skips_without_dump(tmp_path, history):
    """Test: Unchanged data produces Skipped and never spawns the dump tool."""
    runner = FakeRunner()
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter("same"), runner)
    target = make_target(output_dir=str(tmp_path), last_success_fingerprint="same")

    outcome = executor.execute(target)

    assert isinstance(outcome, Skipped)
    assert outcome.reason == "no data change"
    assert runner.calls == []
    assert [r.outcome_kind for r in history.read()] == [RecordKind.SKIPPED]


def test_changed_fingerprint_dumps_once(tmp_path, history):
    runner = FakeRunner()
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter("fp-new"), runner)
    target = make_target(output_dir=str(tmp_path), last_success_fingerprint="fp-old")

    outcome = executor.execute(target)

    assert isinstance(outcome, Succeeded)
    assert outcome.fingerprint == "fp-new"
    assert len(runner.calls) == 1
    artifact = Path(outcome.artifact_path)
    assert artifact.exists() and artifact.stat().st_size > 0
    assert artifact.name.startswith("shop_") and artifact.suffix == ".sql"
    assert not list(tmp_path.glob("*.partial"))


def test_unavailable_fingerprint_never_skips(tmp_path, history):
    runner = FakeRunner()
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter(error="connection refused"), runner)
    target = make_target(output_dir=str(tmp_path), last_success_fingerprint="fp-old")

    outcome = executor.execute(target)

    assert isinstance(outcome, Succeeded)
    assert outcome.fingerprint is None
    assert len(runner.calls) == 1


def test_persistent_lock_errors_exhaust_retries(tmp_path, history):
    """Test: Lock errors on every attempt end in FailedFatal after max_attempts dumps."""
    runner = FakeRunner([DumpResult(returncode=2, stderr=LOCK_ERROR)] * 3)
    executor = BackupExecutor(fast_config(max_attempts=3), history, FakeFingerprinter(), runner)

    outcome = executor.execute(make_target(output_dir=str(tmp_path)))

    assert isinstance(outcome, FailedFatal)
    assert "Lock wait timeout exceeded" in outcome.error
    assert len(runner.calls) == 3
    assert not list(tmp_path.glob("shop_*"))
    kinds = [r.outcome_kind for r in history.read()]
    assert kinds == [
        RecordKind.FAILED_RETRYABLE,
        RecordKind.RETRYING,
        RecordKind.FAILED_RETRYABLE,
        RecordKind.RETRYING,
        RecordKind.FAILED_FATAL,
    ]


def test_lock_errors_then_success_switches_to_non_locking_dump(tmp_path, history):
    runner = FakeRunner(
        [
            DumpResult(returncode=2, stderr=LOCK_ERROR),
            DumpResult(returncode=2, stderr=LOCK_ERROR),
            DumpResult(returncode=0),
        ]
    )
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter("fp-3"), runner)

    outcome = executor.execute(make_target(output_dir=str(tmp_path)))

    assert isinstance(outcome, Succeeded)
    assert outcome.fingerprint == "fp-3"
    assert len(runner.calls) == 3
    assert "--skip-lock-tables" not in runner.calls[0].argv
    assert "--skip-lock-tables" in runner.calls[1].argv
    assert "--skip-lock-tables" in runner.calls[2].argv
    assert len(list(tmp_path.glob("shop_*.sql"))) == 1


def test_non_lock_error_is_fatal_without_retry(tmp_path, history):
    runner = FakeRunner([DumpResult(returncode=2, stderr="Access denied for user 'backup'")])
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter(), runner)

    outcome = executor.execute(make_target(output_dir=str(tmp_path)))

    assert isinstance(outcome, FailedFatal)
    assert "Access denied" in outcome.error
    assert len(runner.calls) == 1


def test_empty_artifact_is_fatal(tmp_path, history):
    runner = FakeRunner(output=b"")
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter(), runner)

    outcome = executor.execute(make_target(output_dir=str(tmp_path)))

    assert isinstance(outcome, FailedFatal)
    assert "empty" in outcome.error
    assert not list(tmp_path.glob("shop_*"))


def test_custom_lock_signatures(tmp_path, history):
    runner = FakeRunner([DumpResult(returncode=1, stderr="ERROR: table is busy"), DumpResult(returncode=0)])
    config = fast_config(lock_error_signatures=["table is busy"])
    executor = BackupExecutor(config, history, FakeFingerprinter(), runner)

    assert isinstance(executor.execute(make_target(output_dir=str(tmp_path))), Succeeded)
    assert len(runner.calls) == 2


def test_terminated_dump_is_not_retried(tmp_path, history):
    runner = FakeRunner([DumpResult(returncode=-15, stderr=LOCK_ERROR, terminated=True)])
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter(), runner)

    outcome = executor.execute(make_target(output_dir=str(tmp_path)))

    assert outcome == FailedFatal(error=TERMINATED_ON_SHUTDOWN)
    assert len(runner.calls) == 1


def test_stop_during_backoff_abandons_retry(tmp_path, history):
    stop = threading.Event()

    class StoppingRunner(FakeRunner):
        def run(self, name, command, timeout=None):
            stop.set()
            return super().run(name, command, timeout)

    runner = StoppingRunner([DumpResult(returncode=2, stderr=LOCK_ERROR)])
    config = fast_config(backoff_base_delay=60.0)
    executor = BackupExecutor(config, history, FakeFingerprinter(), runner, stop_event=stop)

    started = time.monotonic()
    outcome = executor.execute(make_target(output_dir=str(tmp_path)))

    assert outcome == FailedFatal(error=TERMINATED_ON_SHUTDOWN)
    assert len(runner.calls) == 1
    assert time.monotonic() - started < 5


def test_postgres_target_uses_file_output(tmp_path, history):
    runner = FakeRunner()
    executor = BackupExecutor(fast_config(), history, FakeFingerprinter(), runner)
    target = make_target(engine=Engine.POSTGRESQL, output_dir=str(tmp_path))

    outcome = executor.execute(target)

    assert isinstance(outcome, Succeeded)
    assert "-f" in runner.calls[0].argv
    assert Path(outcome.artifact_path).exists()


def test_retention_keeps_newest_artifacts(tmp_path, history):
    """Test: Successful runs rotate old artifacts beyond retention_count."""
    old = []
    for i, stamp in enumerate(["20260101_000000", "20260102_000000", "20260103_000000"]):
        path = tmp_path / f"shop_{stamp}.sql"
        path.write_text("-- old")
        os.utime(path, (1_700_000_000 + i, 1_700_000_000 + i))
        old.append(path)
    unrelated = tmp_path / "shop_eu_20260101_000000.sql"
    unrelated.write_text("-- other target")

    executor = BackupExecutor(fast_config(), history, FakeFingerprinter(), FakeRunner())
    outcome = executor.execute(make_target(output_dir=str(tmp_path), retention_count=2))

    remaining = sorted(p.name for p in tmp_path.glob("shop_2*.sql"))
    assert len(remaining) == 2
    assert Path(outcome.artifact_path).name in remaining
    assert old[2].name in remaining
    assert unrelated.exists()


def test_retention_zero_keeps_everything(tmp_path):
    for stamp in ["20260101_000000", "20260102_000000"]:
        (tmp_path / f"shop_{stamp}.sql").write_text("-- old")
    assert rotate_artifacts(make_target(output_dir=str(tmp_path), retention_count=0)) == []
    assert len(list(tmp_path.iterdir())) == 2


# ------------------------------------------------------------------
# Dispatch queue and recorder
# ------------------------------------------------------------------


def test_dispatch_queue_rejects_in_flight_target():
    dispatch = DispatchQueue()
    assert dispatch.enqueue(make_target())
    assert not dispatch.enqueue(make_target())
    assert dispatch.get_next(timeout=0.1).name == "shop"
    assert not dispatch.enqueue(make_target())
    dispatch.mark_finished("shop")
    assert dispatch.enqueue(make_target())


def test_dispatch_queue_cancel_pending():
    dispatch = DispatchQueue()
    dispatch.enqueue(make_target("a"))
    dispatch.enqueue(make_target("b"))
    assert sorted(dispatch.cancel_pending()) == ["a", "b"]
    assert dispatch.in_flight() == set()
    assert dispatch.get_next(timeout=0.05) is None


def test_recorder_retries_then_reports_integrity_warning(history):
    class BrokenStorage:
        calls = 0

        def update_state(self, name, **state):
            BrokenStorage.calls += 1
            raise PersistenceError("disk full")

    recorder = OutcomeRecorder(BrokenStorage(), history, fast_config(persist_retries=2))
    completion = Completion(target=make_target(), outcome=Skipped(reason="no data change"), started_at=utcnow())

    assert recorder.record(completion) is None
    assert BrokenStorage.calls == 2
    records = history.read()
    assert records[-1].outcome_kind is RecordKind.PERSIST_FAILED
    assert "disk full" in records[-1].detail


def test_recorder_leaves_fingerprint_on_failure(storage, history):
    storage.add_target(make_target(last_success_fingerprint="fp-good"))
    recorder = OutcomeRecorder(storage, history, fast_config())
    started = utcnow()

    updated = recorder.record(
        Completion(target=make_target(), outcome=FailedFatal(error="boom"), started_at=started)
    )

    assert updated.last_run_at == started
    assert updated.last_success_fingerprint == "fp-good"


# ------------------------------------------------------------------
# Daemon
# ------------------------------------------------------------------


def test_daily_target_with_identical_fingerprint_is_skipped(storage, history, tmp_path):
    """Test: Daily target last run 25h ago with unchanged data is skipped and stamped."""
    last_run = utcnow() - timedelta(hours=25)
    storage.add_target(
        make_target(output_dir=str(tmp_path / "b"), last_run_at=last_run, last_success_fingerprint="same")
    )
    runner = FakeRunner()
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter("same"), runner)

    daemon.start()
    try:
        assert daemon.state is DaemonState.IDLE
        assert daemon.tick() == ["shop"]
        drain(daemon)
    finally:
        daemon.shutdown()

    stored = storage.get_target("shop")
    assert isinstance(daemon.outcomes["shop"], Skipped)
    assert runner.calls == []
    assert stored.last_run_at > last_run
    assert stored.last_success_fingerprint == "same"


def test_successful_run_updates_fingerprint(storage, history, tmp_path):
    storage.add_target(make_target(output_dir=str(tmp_path / "b"), last_success_fingerprint="old"))
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter("new"), FakeRunner())

    daemon.start()
    try:
        daemon.tick()
        drain(daemon)
        assert daemon.state is DaemonState.IDLE
    finally:
        daemon.shutdown()

    stored = storage.get_target("shop")
    assert stored.last_success_fingerprint == "new"
    assert stored.last_run_at is not None


def test_recently_run_target_is_not_due(storage, history):
    storage.add_target(make_target(last_run_at=utcnow() - timedelta(hours=1)))
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), FakeRunner())
    daemon.start()
    try:
        assert daemon.tick() == []
    finally:
        daemon.shutdown()


def test_disabled_target_is_not_dispatched(storage, history):
    """Test: Disabling a due target keeps it out of the next poll."""
    storage.add_target(make_target())
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), FakeRunner())
    daemon.start()
    try:
        storage.update_state("shop", enabled=False)
        assert daemon.tick() == []
        assert daemon.dispatch.in_flight() == set()
    finally:
        daemon.shutdown()


def test_in_flight_target_is_not_dispatched_twice(storage, history, tmp_path):
    storage.add_target(make_target(output_dir=str(tmp_path / "b")))
    runner = BlockingRunner()
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), runner)
    daemon.start()
    try:
        assert daemon.tick() == ["shop"]
        assert runner.started.wait(5)
        assert daemon.tick() == []
        assert daemon.state is DaemonState.DISPATCHING
        runner.release.set()
        drain(daemon)
    finally:
        daemon.shutdown()
    assert len(runner.calls) == 1


def test_completion_with_work_in_flight_returns_to_polling(storage, history, tmp_path):
    """Test: A completion leaves the daemon Polling while others run, Idle once all finish."""
    storage.add_target(make_target("a", output_dir=str(tmp_path / "b")))
    storage.add_target(make_target("b", output_dir=str(tmp_path / "b")))
    release_b = threading.Event()

    class SlowForB(FakeRunner):
        def run(self, name, command, timeout=None):
            if name == "b":
                release_b.wait(10)
            return super().run(name, command, timeout)

    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), SlowForB())
    daemon.start()
    try:
        assert sorted(daemon.tick()) == ["a", "b"]
        assert daemon.drain_completions(timeout=5) == 1
        assert "a" in daemon.outcomes
        assert daemon.state is DaemonState.POLLING
        release_b.set()
        drain(daemon)
        assert daemon.state is DaemonState.IDLE
    finally:
        release_b.set()
        daemon.shutdown()


def test_concurrency_limit_is_respected(storage, history, tmp_path):
    storage.set_config(fast_config(max_concurrency=1))
    storage.add_target(make_target("a", output_dir=str(tmp_path / "b")))
    storage.add_target(make_target("b", output_dir=str(tmp_path / "b")))
    runner = BlockingRunner()
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), runner)
    daemon.start()
    try:
        assert sorted(daemon.tick()) == ["a", "b"]
        assert runner.started.wait(5)
        time.sleep(0.3)
        assert runner.active == 1
        runner.release.set()
        drain(daemon)
    finally:
        daemon.shutdown()
    assert runner.max_active == 1
    assert len(runner.calls) == 2


def test_malformed_schedule_logged_once(storage, history):
    storage.add_target(make_target(schedule="every tuesday-ish"))
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), FakeRunner())
    daemon.start()
    try:
        assert daemon.tick() == []
        assert daemon.tick() == []
    finally:
        daemon.shutdown()
    errors = [r for r in history.read() if r.outcome_kind is RecordKind.CONFIG_ERROR]
    assert len(errors) == 1
    assert errors[0].target_name == "shop"


def test_deleted_target_result_is_discarded(storage, history, tmp_path):
    storage.add_target(make_target(output_dir=str(tmp_path / "b")))
    runner = BlockingRunner()
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), runner)
    daemon.start()
    try:
        daemon.tick()
        assert runner.started.wait(5)
        storage.delete_target("shop")
        runner.release.set()
        drain(daemon)
    finally:
        daemon.shutdown()
    assert storage.get_target("shop") is None
    assert history.read()[-1].outcome_kind is RecordKind.DISCARDED


def test_shutdown_terminates_in_flight_dumps(storage, history, tmp_path):
    storage.set_config(fast_config(shutdown_grace_period=0.2))
    storage.add_target(make_target(output_dir=str(tmp_path / "b")))
    runner = BlockingRunner()
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), runner)
    daemon.start()
    daemon.tick()
    assert runner.started.wait(5)

    daemon.shutdown()

    assert daemon.state is DaemonState.SHUTTING_DOWN
    assert daemon.outcomes["shop"] == FailedFatal(error=TERMINATED_ON_SHUTDOWN)
    assert storage.get_target("shop").last_run_at is not None
    assert not list((tmp_path / "b").glob("*.sql"))


def test_run_forever_exits_on_stop(storage, history, tmp_path):
    storage.add_target(make_target(output_dir=str(tmp_path / "b")))
    runner = FakeRunner()
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), runner)

    thread = threading.Thread(target=daemon.run_forever, kwargs={"install_signal_handlers": False})
    thread.start()
    deadline = time.monotonic() + 10
    while storage.get_target("shop").last_run_at is None and time.monotonic() < deadline:
        time.sleep(0.05)
    daemon.stop()
    thread.join(timeout=10)

    assert not thread.is_alive()
    assert daemon.state is DaemonState.SHUTTING_DOWN
    assert len(runner.calls) == 1


def test_run_now_bypasses_schedule(storage, history, tmp_path):
    recent = utcnow() - timedelta(minutes=5)
    storage.add_target(make_target("a", output_dir=str(tmp_path / "b"), last_run_at=recent))
    storage.add_target(make_target("b", output_dir=str(tmp_path / "b"), last_success_fingerprint="fp-new"))
    storage.add_target(make_target("c", output_dir=str(tmp_path / "b"), enabled=False))
    runner = FakeRunner()

    outcomes = SchedulerDaemon(storage, history, FakeFingerprinter("fp-new"), runner).run_now()

    assert sorted(outcomes) == ["a", "b"]
    assert isinstance(outcomes["a"], Succeeded)
    assert isinstance(outcomes["b"], Skipped)
    assert len(runner.calls) == 1
    assert storage.get_target("a").last_run_at > recent


def test_run_now_named_targets_include_disabled(storage, history, tmp_path):
    storage.add_target(make_target("c", output_dir=str(tmp_path / "b"), enabled=False))
    outcomes = SchedulerDaemon(storage, history, FakeFingerprinter(), FakeRunner()).run_now(["c"])
    assert isinstance(outcomes["c"], Succeeded)


def test_unreadable_store_is_startup_error(storage, history):
    storage.targets_file.write_text("[{broken")
    daemon = SchedulerDaemon(storage, history, FakeFingerprinter(), FakeRunner())
    with pytest.raises(StartupError):
        daemon.start()


def test_fatal_failure_does_not_stop_other_targets(storage, history, tmp_path):
    storage.add_target(make_target("bad", output_dir=str(tmp_path / "b")))
    storage.add_target(make_target("good", output_dir=str(tmp_path / "b")))

    class PickyRunner(FakeRunner):
        def run(self, name, command, timeout=None):
            if name == "bad":
                self.calls.append(command)
                return DumpResult(returncode=2, stderr="Unknown database 'bad'")
            return super().run(name, command, timeout)

    outcomes = SchedulerDaemon(storage, history, FakeFingerprinter(), PickyRunner()).run_now()

    assert isinstance(outcomes["bad"], FailedFatal)
    assert isinstance(outcomes["good"], Succeeded)


# ------------------------------------------------------------------
# CLI
# ------------------------------------------------------------------


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DBSHIELD_DATA_DIR", str(tmp_path / "cli-state"))
    monkeypatch.setattr(cli_module, "_storage", None)
    return CliRunner()


def test_cli_add_list_disable_delete(cli_env, tmp_path):
    add = ["add", "prod-db", "--engine", "mariadb", "--user", "backup", "--database", "shop",
           "--schedule", "0 2 * * *", "--output-dir", str(tmp_path / "b")]
    result = cli_env.invoke(cli_module.cli, add)
    assert result.exit_code == 0, result.output
    assert "prod-db added" in result.output

    result = cli_env.invoke(cli_module.cli, add)
    assert result.exit_code == 1

    result = cli_env.invoke(cli_module.cli, ["list"])
    assert "prod-db" in result.output and "Enabled" in result.output

    result = cli_env.invoke(cli_module.cli, ["disable", "prod-db"])
    assert result.exit_code == 0
    assert cli_module.get_storage().get_target("prod-db").enabled is False

    result = cli_env.invoke(cli_module.cli, ["delete", "prod-db", "--yes"])
    assert result.exit_code == 0
    assert cli_module.get_storage().load_all() == []


def test_cli_rejects_invalid_schedule(cli_env):
    result = cli_env.invoke(
        cli_module.cli,
        ["add", "x", "--engine", "postgresql", "--user", "u", "--database", "d", "--schedule", "whenever"],
    )
    assert result.exit_code == 1
    assert cli_module.get_storage().load_all() == []


def test_cli_add_uses_engine_default_port(cli_env):
    cli_env.invoke(cli_module.cli, ["add", "pg", "--engine", "postgresql", "--user", "u", "--database", "d"])
    assert cli_module.get_storage().get_target("pg").connection.port == 5432


def test_cli_edit_and_rename(cli_env):
    cli_env.invoke(cli_module.cli, ["add", "pg", "--engine", "postgresql", "--user", "u", "--database", "d"])
    result = cli_env.invoke(cli_module.cli, ["edit", "pg", "--schedule", "weekly", "--rename", "pg-main"])
    assert result.exit_code == 0, result.output
    storage = cli_module.get_storage()
    assert storage.get_target("pg") is None
    assert storage.get_target("pg-main").schedule == "weekly"


def test_cli_config_set(cli_env):
    result = cli_env.invoke(cli_module.cli, ["config", "set", "max-attempts", "5"])
    assert result.exit_code == 0, result.output
    assert cli_module.get_storage().get_config().max_attempts == 5

    result = cli_env.invoke(cli_module.cli, ["config", "set", "lock-error-signatures", "busy, locked"])
    assert cli_module.get_storage().get_config().lock_error_signatures == ["busy", "locked"]

    assert cli_env.invoke(cli_module.cli, ["config", "set", "no-such-key", "1"]).exit_code == 1
    assert cli_env.invoke(cli_module.cli, ["config", "set", "max-attempts", "zero"]).exit_code == 1
