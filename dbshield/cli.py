"""CLI interface for dbshield."""

import click
import logging
import sys
from typing import Optional, Tuple
from .daemon import SchedulerDaemon
from .errors import DbShieldError, StartupError
from .history import HistoryLog
from .models import ConnectionDetails, Engine, Target, describe_outcome
from .schedule import next_run_at, parse_schedule
from .settings import get_settings
from .storage import Storage


# Global storage instance
_storage: Optional[Storage] = None


def get_storage() -> Storage:
    """Get or create storage instance."""
    global _storage
    if _storage is None:
        _storage = Storage(get_settings().data_dir)
    return _storage


def get_history() -> HistoryLog:
    return HistoryLog(get_settings().data_dir)


def configure_logging() -> None:
    settings = get_settings()
    handlers = [logging.StreamHandler(sys.stderr)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


def _check_schedule(schedule: str) -> None:
    try:
        parse_schedule(schedule)
    except DbShieldError as e:
        _fail(str(e))


@click.group()
def cli():
    """dbshield - Scheduled database backups"""
    configure_logging()


@cli.command()
@click.argument("name")
@click.option("--engine", type=click.Choice([e.value for e in Engine]), prompt=True, help="Database engine")
@click.option("--host", default="localhost", show_default=True)
@click.option("--port", type=int, default=None, help="Defaults to the engine's standard port")
@click.option("--user", prompt=True)
@click.option("--password", default="", help="Leave empty for none")
@click.option("--database", prompt="Database name")
@click.option("--output-dir", default="./backups", show_default=True)
@click.option("--retention", type=click.IntRange(min=0), default=5, show_default=True, help="Artifacts to keep (0 keeps all)")
@click.option("--schedule", default="daily", show_default=True,
              help="hourly, daily, weekly, monthly or a cron expression")
@click.option("--disabled", is_flag=True, help="Create the target disabled")
def add(name, engine, host, port, user, password, database, output_dir, retention, schedule, disabled):
    """Add a new backup target.

    Example:
        dbshield add prod-db --engine mariadb --user backup --database shop --schedule "0 2 * * *"
    """
    _check_schedule(schedule)
    engine = Engine(engine)
    target = Target(
        name=name,
        engine=engine,
        connection=ConnectionDetails(
            host=host,
            port=port or engine.default_port,
            user=user,
            password=password or None,
            database=database,
        ),
        schedule=schedule,
        output_dir=output_dir,
        retention_count=retention,
        enabled=not disabled,
    )
    try:
        get_storage().add_target(target)
    except DbShieldError as e:
        _fail(str(e))
    click.echo(f"✓ Target {name} added")


@cli.command()
@click.argument("name")
@click.option("--rename", default=None, help="New target name")
@click.option("--host", default=None)
@click.option("--port", type=int, default=None)
@click.option("--user", default=None)
@click.option("--password", default=None, help="New password; 'clear' removes it")
@click.option("--database", default=None)
@click.option("--output-dir", default=None)
@click.option("--retention", type=click.IntRange(min=0), default=None)
@click.option("--schedule", default=None)
def edit(name, rename, host, port, user, password, database, output_dir, retention, schedule):
    """Edit an existing backup target.

    Example:
        dbshield edit prod-db --schedule weekly --retention 10
    """
    storage = get_storage()
    target = storage.get_target(name)
    if target is None:
        _fail(f"Target {name} not found")

    if schedule is not None:
        _check_schedule(schedule)
        target.schedule = schedule
    conn = target.connection
    if host is not None:
        conn.host = host
    if port is not None:
        conn.port = port
    if user is not None:
        conn.user = user
    if password is not None:
        conn.password = None if password == "clear" else password
    if database is not None:
        conn.database = database
    if output_dir is not None:
        target.output_dir = output_dir
    if retention is not None:
        target.retention_count = retention

    try:
        if rename and rename != name:
            target.name = rename
            storage.rename_target(name, target)
        else:
            storage.put_target(target)
    except DbShieldError as e:
        _fail(str(e))
    click.echo(f"✓ Target {target.name} updated")


@cli.command()
@click.argument("name")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def delete(name: str, yes: bool):
    """Delete a backup target (its artifacts are kept)."""
    if not yes:
        click.confirm(f"Are you sure you want to delete '{name}'?", abort=True)
    if get_storage().delete_target(name):
        click.echo(f"✓ Target {name} deleted")
    else:
        _fail(f"Target {name} not found")


def _set_enabled(name: str, enabled: bool) -> None:
    try:
        get_storage().update_state(name, enabled=enabled)
    except DbShieldError as e:
        _fail(str(e))
    click.echo(f"✓ {'Enabled' if enabled else 'Disabled'} backup for {name}")


@cli.command()
@click.argument("name")
def enable(name: str):
    """Enable a backup target."""
    _set_enabled(name, True)


@cli.command()
@click.argument("name")
def disable(name: str):
    """Disable a backup target (its history is kept)."""
    _set_enabled(name, False)


@cli.command(name="list")
def list_targets():
    """List backup targets.

    Example:
        dbshield list
    """
    targets = get_storage().load_all()
    if not targets:
        click.echo("No targets configured")
        return

    click.echo(f"\n{'Name':<20} {'Engine':<11} {'Database':<16} {'Schedule':<16} {'Status':<9} {'Last Run':<20} {'Next Run':<20}")
    click.echo("-" * 118)
    for t in targets:
        last = t.last_run_at.astimezone().strftime("%Y-%m-%d %H:%M:%S") if t.last_run_at else "Never"
        try:
            upcoming = next_run_at(parse_schedule(t.schedule), t.last_run_at)
            nxt = upcoming.astimezone().strftime("%Y-%m-%d %H:%M:%S") if t.last_run_at else "Now"
        except DbShieldError:
            nxt = "Invalid schedule"
        status = "Enabled" if t.enabled else "Disabled"
        click.echo(
            f"{t.name:<20} {t.engine.value:<11} {t.connection.database:<16} "
            f"{t.schedule:<16} {status:<9} {last:<20} {nxt:<20}"
        )
    click.echo()


def _build_daemon() -> SchedulerDaemon:
    return SchedulerDaemon(get_storage(), get_history())


@cli.command()
@click.argument("names", nargs=-1)
def run(names: Tuple[str, ...]):
    """Run backups immediately for all enabled targets, or the named ones.

    Example:
        dbshield run
        dbshield run prod-db staging-db
    """
    storage = get_storage()
    if not storage.load_all():
        click.echo("No targets configured. Run `add` command first.")
        return
    for name in names:
        if storage.get_target(name) is None:
            _fail(f"Target {name} not found")

    try:
        outcomes = _build_daemon().run_now(list(names) or None)
    except StartupError as e:
        _fail(str(e))

    failed = False
    for name, outcome in outcomes.items():
        symbol = "✓" if outcome.kind in ("succeeded", "skipped") else "✗"
        failed = failed or symbol == "✗"
        click.echo(f"{symbol} {name}: {outcome.kind} - {describe_outcome(outcome)}")
    if failed:
        sys.exit(1)


@cli.command()
def daemon():
    """Run in daemon mode (scheduled backups until SIGTERM/SIGINT)."""
    try:
        _build_daemon().run_forever()
    except StartupError as e:
        _fail(str(e))


@cli.command()
@click.option("--target", default=None, help="Only show this target")
@click.option("--limit", default=20, help="Maximum records to display")
def history(target: Optional[str], limit: int):
    """Show recent backup attempts.

    Example:
        dbshield history --target prod-db --limit 50
    """
    records = get_history().read(limit=limit, target_name=target)
    if not records:
        click.echo("No history yet")
        return

    click.echo(f"\n{'Time':<20} {'Target':<20} {'Outcome':<17} {'Try':<4} {'Detail'}")
    click.echo("-" * 100)
    for r in records:
        when = r.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        attempt = str(r.attempt) if r.attempt is not None else "-"
        click.echo(f"{when:<20} {r.target_name:<20} {r.outcome_kind.value:<17} {attempt:<4} {r.detail[:80]}")
    click.echo()


@cli.group()
def config():
    """Manage configuration"""
    pass


@config.command()
def show():
    """Show current configuration.

    Example:
        dbshield config show
    """
    cfg = get_storage().get_config()
    click.echo("\nCurrent Configuration:")
    for key, value in cfg.model_dump().items():
        click.echo(f"  {key.replace('_', '-')}: {value}")
    click.echo()


@config.command(name="set")
@click.argument("key")
@click.argument("value")
def set_config(key: str, value: str):
    """Set a configuration value.

    Example:
        dbshield config set max-attempts 5
        dbshield config set lock-error-signatures "Lock wait timeout exceeded,could not obtain lock"
    """
    storage = get_storage()
    cfg = storage.get_config()
    field = key.replace("-", "_")
    if field not in type(cfg).model_fields:
        _fail(f"Unknown config key: {key}")

    data = cfg.model_dump()
    if field == "lock_error_signatures":
        data[field] = [s.strip() for s in value.split(",") if s.strip()]
    else:
        data[field] = value
    try:
        storage.set_config(type(cfg).model_validate(data))
    except (ValueError, DbShieldError) as e:
        _fail(f"Invalid value: {e}")
    click.echo(f"✓ Configuration updated: {key} = {value}")


if __name__ == "__main__":
    cli()
