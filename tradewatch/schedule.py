# tradewatch/schedule.py
"""Schedule expressions parsed once into trigger descriptors.

A schedule is either a 5-field crontab expression, a symbolic tag
(``daily``, ``weekly`` ...) that resolves to one, or a fixed interval written
``@every 30m``. The parsed `TriggerSpec` is what gets stored and turned into an
APScheduler trigger; raw strings are never re-parsed on fire.
"""
import re
from dataclasses import dataclass
from typing import Optional
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from .errors import InvalidSchedule

SYMBOLIC_SCHEDULES = {
    "hourly": "0 * * * *",
    "daily": "0 0 * * *",
    "weekly": "0 0 * * 0",
    "monthly": "0 0 1 * *",
}

MIN_INTERVAL_SECONDS = 60

_INTERVAL_RE = re.compile(r"^@every\s+(\d+)\s*([smhd])$", re.I)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}

# crontab numbering: 0 and 7 are Sunday
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _weekday_number(token):
    token = token.lower()
    if token in _WEEKDAYS:
        return _WEEKDAYS.index(token)
    if not token.isdigit() or int(token) > 7:
        raise ValueError(f"invalid day of week {token!r}")
    return int(token)


def day_of_week_names(field):
    """Rewrite a crontab day-of-week field as APScheduler weekday names.

    APScheduler counts numeric weekdays from Monday, crontab from Sunday, so
    numbers are never passed through. Ranges and steps are expanded.
    """
    if field == "*":
        return field
    days = set()
    for part in field.split(","):
        base, slash, step = part.partition("/")
        step = int(step) if slash else 1
        if step < 1:
            raise ValueError(f"invalid step in {part!r}")
        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            lo, hi = base.split("-", 1)
            first, last = _weekday_number(lo), _weekday_number(hi)
        else:
            first = _weekday_number(base)
            last = 6 if slash else first
        if last < first:
            raise ValueError(f"invalid day-of-week range {part!r}")
        days.update(d % 7 for d in range(first, last + 1, step))
    return ",".join(_WEEKDAYS[d] for d in sorted(days))


def cron_trigger(expression, timezone="UTC"):
    minute, hour, day, month, dow = expression.split(" ")
    return CronTrigger(
        minute=minute, hour=hour, day=day, month=month,
        day_of_week=day_of_week_names(dow), timezone=timezone,
    )


@dataclass(frozen=True)
class TriggerSpec:
    kind: str  # "cron" | "interval"
    expression: str
    seconds: Optional[int] = None

    def to_trigger(self, timezone="UTC"):
        if self.kind == "interval":
            return IntervalTrigger(seconds=self.seconds, timezone=timezone)
        return cron_trigger(self.expression, timezone)


def parse_schedule(expr, job_id=None) -> TriggerSpec:
    if not isinstance(expr, str) or not expr.strip():
        raise InvalidSchedule(job_id, expr, "empty schedule")
    text = " ".join(expr.split())

    symbolic = SYMBOLIC_SCHEDULES.get(text.lower())
    if symbolic:
        return TriggerSpec("cron", symbolic)

    m = _INTERVAL_RE.match(text)
    if m:
        seconds = int(m.group(1)) * _UNIT_SECONDS[m.group(2).lower()]
        if seconds < MIN_INTERVAL_SECONDS:
            raise InvalidSchedule(job_id, expr, f"interval must be at least {MIN_INTERVAL_SECONDS}s")
        return TriggerSpec("interval", f"@every {seconds}s", seconds)

    if len(text.split(" ")) != 5:
        raise InvalidSchedule(job_id, expr, "expected 5 cron fields")
    try:
        cron_trigger(text)
    except ValueError as e:
        raise InvalidSchedule(job_id, expr, str(e))
    return TriggerSpec("cron", text)
