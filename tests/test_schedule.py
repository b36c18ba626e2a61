from datetime import datetime, timezone
import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from tradewatch.errors import InvalidSchedule
from tradewatch.schedule import day_of_week_names, parse_schedule


def test_cron_expression_is_normalized():
    spec = parse_schedule("0  0 * *   *")
    assert spec.kind == "cron"
    assert spec.expression == "0 0 * * *"
    assert isinstance(spec.to_trigger("UTC"), CronTrigger)


@pytest.mark.parametrize("tag,expected", [
    ("daily", "0 0 * * *"),
    ("Weekly", "0 0 * * 0"),
    ("hourly", "0 * * * *"),
])
def test_symbolic_tags_resolve_to_cron(tag, expected):
    spec = parse_schedule(tag)
    assert spec.kind == "cron"
    assert spec.expression == expected


def _next_fire(expr, after):
    return parse_schedule(expr).to_trigger("UTC").get_next_fire_time(None, after)


# 2024-03-06 is a Wednesday, 2024-03-09 a Saturday
@pytest.mark.parametrize("expr,after,expected", [
    ("weekly", datetime(2024, 3, 6, tzinfo=timezone.utc), datetime(2024, 3, 10, tzinfo=timezone.utc)),
    ("0 0 * * 0", datetime(2024, 3, 6, tzinfo=timezone.utc), datetime(2024, 3, 10, tzinfo=timezone.utc)),
    ("0 0 * * 7", datetime(2024, 3, 6, tzinfo=timezone.utc), datetime(2024, 3, 10, tzinfo=timezone.utc)),
    ("0 0 * * 1", datetime(2024, 3, 6, tzinfo=timezone.utc), datetime(2024, 3, 11, tzinfo=timezone.utc)),
    ("30 9 * * 1-5", datetime(2024, 3, 9, tzinfo=timezone.utc), datetime(2024, 3, 11, 9, 30, tzinfo=timezone.utc)),
    ("0 0 * * sat", datetime(2024, 3, 6, tzinfo=timezone.utc), datetime(2024, 3, 9, tzinfo=timezone.utc)),
])
def test_day_of_week_uses_crontab_numbering(expr, after, expected):
    fire = _next_fire(expr, after)
    assert fire == expected
    assert fire.strftime("%A") == expected.strftime("%A")


@pytest.mark.parametrize("field,names", [
    ("*", "*"),
    ("0", "sun"),
    ("7", "sun"),
    ("1-5", "mon,tue,wed,thu,fri"),
    ("5-7", "sun,fri,sat"),
    ("*/2", "sun,tue,thu,sat"),
    ("1,3,Fri", "mon,wed,fri"),
])
def test_day_of_week_names(field, names):
    assert day_of_week_names(field) == names


def test_fixed_interval():
    spec = parse_schedule("@every 30m")
    assert spec.kind == "interval"
    assert spec.seconds == 1800
    assert spec.expression == "@every 1800s"
    trigger = spec.to_trigger("UTC")
    assert isinstance(trigger, IntervalTrigger)
    assert trigger.interval.total_seconds() == 1800


@pytest.mark.parametrize("expr", [
    "",
    "   ",
    None,
    "every day",
    "0 0 * *",
    "61 0 * * *",
    "0 0 32 * *",
    "@every 10s",
    "@every 5x",
    "0 0 * * 8",
    "0 0 * * 5-1",
    "0 0 * * funday",
])
def test_invalid_schedules_are_rejected(expr):
    with pytest.raises(InvalidSchedule) as exc:
        parse_schedule(expr, job_id="bad")
    assert exc.value.job_id == "bad"
