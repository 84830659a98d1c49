from __future__ import annotations

import pytest

from app.settings import settings_from_env


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("CORPSE_GRACE_PERIOD_SECONDS", "2.5")
    monkeypatch.setenv("CORPSE_MAX_RECONNECT_ATTEMPTS", "5")
    monkeypatch.setenv("CORPSE_LOG_LEVEL", "debug")

    s = settings_from_env()

    assert s.grace_period_seconds == 2.5
    assert s.max_reconnect_attempts == 5
    assert s.room_ttl_seconds == 86_400
    assert s.log_level == "DEBUG"


@pytest.mark.parametrize("value", ["soon", "0", "-3"])
def test_settings_reject_bad_numbers(monkeypatch, value: str) -> None:
    monkeypatch.setenv("CORPSE_MAX_RECONNECT_ATTEMPTS", value)
    with pytest.raises(ValueError):
        settings_from_env()
