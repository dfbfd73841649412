import pytest
from pydantic import ValidationError

from awaitlite.config import EngineSettings


def test_defaults_without_environment():
    settings = EngineSettings.from_env({})
    assert settings.busy_timeout == 5.0
    assert settings.cached_statements == 128


def test_reads_prefixed_variables(monkeypatch):
    monkeypatch.setenv("AWAITLITE_BUSY_TIMEOUT", "0.5")
    monkeypatch.setenv("AWAITLITE_CACHED_STATEMENTS", " 16 ")
    settings = EngineSettings.from_env()
    assert settings.busy_timeout == 0.5
    assert settings.cached_statements == 16


def test_blank_variable_keeps_default():
    assert EngineSettings.from_env({"AWAITLITE_BUSY_TIMEOUT": "  "}).busy_timeout == 5.0


def test_invalid_value_raises():
    with pytest.raises(ValidationError):
        EngineSettings.from_env({"AWAITLITE_CACHED_STATEMENTS": "-1"})
    with pytest.raises(ValidationError):
        EngineSettings.from_env({"AWAITLITE_BUSY_TIMEOUT": "soon"})
