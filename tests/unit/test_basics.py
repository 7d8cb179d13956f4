from datetime import date, datetime, timedelta, timezone
from time import sleep

import pytest
from pydantic import ValidationError

from querymonitor import config
from querymonitor.domain.models import ConnectionProfile
from querymonitor.utils import profiler, timeutil
from scripts import simulate_slow_queries


def test_get_settings_defaults():
    settings = config.get_settings()
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.sample_interval_seconds == 60
    assert settings.leaderboard_size == 20
    assert settings.candidate_window == 50
    assert settings.live_catalogue_limit == 100
    assert settings.metrics_retention == timedelta(hours=24)
    assert settings.metrics_window == timedelta(hours=1)
    assert settings.profile_path.name == config.PROFILE_FILENAME


def test_settings_expose_only_monitor_options():
    fields = set(config.Settings.model_fields)
    assert "app_env" not in fields
    assert {"store_url", "leaderboard_size", "monitor_timezone"} <= fields


def test_settings_timezone_is_optional():
    assert config.Settings(monitor_timezone=None).day_timezone() is None


def test_profile_block_measures_time():
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    # cpu_percent may be None in restricted containers; only assert type when present
    if stats.cpu_percent is not None:
        assert isinstance(stats.cpu_percent, float)


def test_profile_block_records_duration_on_error():
    with pytest.raises(RuntimeError):
        with profiler.profile_block("failing") as stats:
            raise RuntimeError("boom")
    assert stats.end_ts >= stats.start_ts


class TestConnectionProfile:
    def test_accepts_user_alias_and_numeric_string_port(self):
        profile = ConnectionProfile.model_validate(
            {"host": "h", "port": "6543", "user": "u", "password": "p", "database": "d"}
        )
        assert profile.username == "u"
        assert profile.port == 6543
        assert profile.label == "u@h:6543/d"

    def test_password_is_hidden(self):
        profile = ConnectionProfile(host="h", username="u", password="hunter2", database="d")
        assert "hunter2" not in repr(profile)
        assert "hunter2" not in str(profile.redacted())
        assert profile.connect_kwargs()["password"] == "hunter2"
        assert profile.to_persisted()["password"] == "hunter2"

    @pytest.mark.parametrize(
        "payload",
        [
            {"port": 5432, "user": "u", "database": "d"},
            {"host": "h", "port": 70000, "user": "u", "database": "d"},
            {"host": "h", "user": "u", "database": ""},
        ],
    )
    def test_rejects_invalid_profiles(self, payload):
        with pytest.raises(ValidationError):
            ConnectionProfile.model_validate(payload)


class TestTimeutil:
    def test_epoch_ms_round_trip(self):
        moment = datetime(2026, 10, 17, 12, 30, 15, 123000, tzinfo=timezone.utc)
        assert timeutil.from_epoch_ms(timeutil.to_epoch_ms(moment)) == moment

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError):
            timeutil.to_epoch_ms(datetime(2026, 10, 17))

    def test_day_key_follows_timezone(self):
        late_evening = datetime(2026, 10, 17, 23, 30, tzinfo=timezone.utc)
        ahead = timezone(timedelta(hours=2))
        assert timeutil.day_key(late_evening, timezone.utc) == date(2026, 10, 17)
        assert timeutil.day_key(late_evening, ahead) == date(2026, 10, 18)

    def test_utc_now_is_aware_and_millisecond_precise(self):
        now = timeutil.utc_now()
        assert now.tzinfo is not None
        assert now.microsecond % 1000 == 0


def test_workload_is_deterministic():
    first = simulate_slow_queries._pick_workload(10, max_sleep=0.2, seed=123)
    second = simulate_slow_queries._pick_workload(10, max_sleep=0.2, seed=123)
    assert first == second
    assert len(first) == 10
    for statement, sleep_seconds in first:
        assert statement in simulate_slow_queries.SLOW_STATEMENTS
        assert 0.01 <= sleep_seconds <= 0.2
