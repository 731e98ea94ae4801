import pytest
from pydantic import ValidationError
from jobengine.config.settings import Settings, get_settings

def test_defaults(monkeypatch):
    monkeypatch.delenv("DISABLE_JOB_SCHEDULER", raising=False)
    settings = Settings()
    assert settings.dispatch_interval == 5.0
    assert settings.scheduler_interval == 60.0
    assert settings.disable_scheduler is False

def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("JOBENGINE_DISPATCH_INTERVAL", "0.5")
    monkeypatch.setenv("JOBENGINE_SCHEDULER_INTERVAL", "10")
    settings = Settings()
    assert settings.dispatch_interval == 0.5
    assert settings.scheduler_interval == 10.0

def test_legacy_disable_switch(monkeypatch):
    monkeypatch.setenv("DISABLE_JOB_SCHEDULER", "true")
    assert Settings().disable_scheduler is True

def test_explicit_overrides_skip_none():
    settings = get_settings(database_url=None, log_level="DEBUG")
    assert settings.log_level == "DEBUG"

def test_backoff_cap_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(max_backoff_ms=0)
