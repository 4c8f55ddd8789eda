from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sploit_core.errors import ConfigError
from sploit_core.scheduler.triggers import TriggerBackend, parse_duration, parse_trigger

NOW = datetime(2024, 3, 1, 12, 30, 15, tzinfo=timezone.utc)


def _next(trigger):
    return trigger.get_next_fire_time(None, NOW)


class TestParseDuration:
    @pytest.mark.parametrize("text,seconds", [
        ("90s", 90),
        ("1h30m", 5400),
        ("1.5h", 5400),
        ("500ms", 0.5),
        ("2h", 7200),
    ])
    def test_valid(self, text, seconds):
        assert parse_duration(text) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("text", ["", "10", "1d", "h", "0s", "1h 30m"])
    def test_invalid(self, text):
        with pytest.raises(ConfigError):
            parse_duration(text)


class TestParseTrigger:
    def test_five_field_crontab(self):
        t = parse_trigger("*/15 * * * *", timezone=timezone.utc)
        assert isinstance(t, CronTrigger)
        assert _next(t) == datetime(2024, 3, 1, 12, 45, 0, tzinfo=timezone.utc)

    def test_six_field_seconds_first(self):
        t = parse_trigger("30 0 3 * * *", timezone=timezone.utc)
        assert _next(t) == datetime(2024, 3, 2, 3, 0, 30, tzinfo=timezone.utc)

    def test_descriptors(self):
        assert _next(parse_trigger("@hourly", timezone=timezone.utc)) == datetime(
            2024, 3, 1, 13, 0, 0, tzinfo=timezone.utc)
        assert _next(parse_trigger("@daily", timezone=timezone.utc)) == datetime(
            2024, 3, 2, 0, 0, 0, tzinfo=timezone.utc)
        # 2024-03-01 is a Friday
        assert _next(parse_trigger("@weekly", timezone=timezone.utc)) == datetime(
            2024, 3, 3, 0, 0, 0, tzinfo=timezone.utc)

    def test_every(self):
        t = parse_trigger("@every 1h30m", timezone=timezone.utc)
        assert isinstance(t, IntervalTrigger)
        assert t.interval == timedelta(minutes=90)

    @pytest.mark.parametrize("spec", ["", "   ", None, "@sometimes", "* * *", "61 * * * *", "@every soon"])
    def test_invalid(self, spec):
        with pytest.raises(ConfigError):
            parse_trigger(spec)


class TestTriggerBackend:
    @pytest.fixture
    def backend(self):
        b = TriggerBackend(max_workers=2)
        b.start()
        yield b
        b.shutdown()

    def test_schedule_and_cancel(self, backend):
        handle = backend.schedule("@hourly", lambda: None, name="http/http_version")
        assert handle.startswith("http/http_version#")
        assert backend.next_fire(handle) is not None
        assert backend.cancel(handle) is True
        assert backend.cancel(handle) is False
        assert backend.next_fire(handle) is None

    def test_handles_are_unique(self, backend):
        a = backend.schedule("@daily", lambda: None, name="same")
        b = backend.schedule("@daily", lambda: None, name="same")
        assert a != b

    def test_bad_spec_schedules_nothing(self, backend):
        with pytest.raises(ConfigError):
            backend.schedule("nonsense", lambda: None, name="x")
        assert backend.scheduler.get_jobs() == []
