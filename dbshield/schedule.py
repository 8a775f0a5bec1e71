"""Schedule parsing and due-time evaluation.

A schedule is either a named preset or a cron expression. Presets are fixed
intervals measured from the last run; ``monthly`` is a 30 day approximation
rather than a calendar month. Cron expressions are evaluated in the local
timezone of the host running the daemon and may have five fields
(minute precision) or six fields with seconds first, e.g. ``0 30 2 * * *``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union
from croniter import croniter
from .errors import ConfigError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SchedulePreset(str, Enum):
    """Named fixed-interval schedules."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


PRESET_INTERVALS = {
    SchedulePreset.HOURLY: timedelta(hours=1),
    SchedulePreset.DAILY: timedelta(days=1),
    SchedulePreset.WEEKLY: timedelta(days=7),
    SchedulePreset.MONTHLY: timedelta(days=30),
}


@dataclass(frozen=True)
class PresetSchedule:
    preset: SchedulePreset

    @property
    def interval(self) -> timedelta:
        return PRESET_INTERVALS[self.preset]


@dataclass(frozen=True)
class CronSchedule:
    expression: str

    @property
    def croniter_expression(self) -> str:
        # croniter expects seconds as the trailing sixth field
        fields = self.expression.split()
        if len(fields) == 6:
            fields = fields[1:] + fields[:1]
        return " ".join(fields)


Schedule = Union[PresetSchedule, CronSchedule]


def parse_schedule(text: str) -> Schedule:
    """Parse a preset name or cron expression.

    Raises:
        ConfigError: if the text is neither a preset nor a valid cron
            expression with five or six fields.
    """
    value = (text or "").strip()
    try:
        return PresetSchedule(SchedulePreset(value.lower()))
    except ValueError:
        pass

    fields = value.split()
    if len(fields) not in (5, 6):
        raise ConfigError(
            f"Invalid schedule '{text}': expected a preset "
            f"({', '.join(p.value for p in SchedulePreset)}) or a 5/6 field cron expression"
        )
    schedule = CronSchedule(" ".join(fields))
    if not croniter.is_valid(schedule.croniter_expression):
        raise ConfigError(f"Invalid cron expression '{text}'")
    return schedule


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def next_run_at(schedule: Schedule, last_run_at: Optional[datetime]) -> datetime:
    """First scheduled instant after ``last_run_at`` (or the epoch)."""
    start = _as_utc(last_run_at) if last_run_at is not None else EPOCH
    if isinstance(schedule, PresetSchedule):
        if last_run_at is None:
            return start
        return start + schedule.interval
    if isinstance(schedule, CronSchedule):
        itr = croniter(schedule.croniter_expression, start.astimezone())
        return _as_utc(itr.get_next(datetime))
    raise TypeError(f"Unknown schedule: {schedule!r}")


def is_due(schedule: Schedule, now: datetime, last_run_at: Optional[datetime]) -> bool:
    """Whether a target with this schedule should run at ``now``."""
    if last_run_at is None:
        return True
    return next_run_at(schedule, last_run_at) <= _as_utc(now)
