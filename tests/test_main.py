# tests/test_main.py
from __future__ import annotations

import pytest

from taskhub.main import bootstrap, load_configuration, main

ENV_KEYS = (
    "DATABASE_PATH", "SCHEMA_FILE", "DB_CONNECTION_TIMEOUT", "DB_RETRY_ATTEMPTS", "LOG_LEVEL",
    "LOG_FILE", "MAX_CLONE_DEPTH", "ACTIVITY_WINDOW_DAYS", "VALIDATION_ENABLED",
)


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = load_configuration()
    assert config["database_path"] == "output/taskhub.sqlite"
    assert config["max_clone_depth"] is None
    assert config["retry_attempts"] == 3
    assert config["validation_enabled"] is True


def test_overrides(clean_env):
    clean_env.setenv("MAX_CLONE_DEPTH", "4")
    clean_env.setenv("VALIDATION_ENABLED", "false")
    clean_env.setenv("ACTIVITY_WINDOW_DAYS", "7")
    config = load_configuration()
    assert config["max_clone_depth"] == 4
    assert config["validation_enabled"] is False
    assert config["activity_window_days"] == 7


@pytest.mark.parametrize("key,value", [
    ("MAX_CLONE_DEPTH", "0"),
    ("MAX_CLONE_DEPTH", "deep"),
    ("DB_RETRY_ATTEMPTS", "0"),
    ("DB_CONNECTION_TIMEOUT", "soon"),
])
def test_invalid_values(clean_env, key, value):
    clean_env.setenv(key, value)
    with pytest.raises(ValueError):
        load_configuration()


def test_bootstrap_prepares_database(config):
    config = dict(config, validation_enabled=True)
    services = bootstrap(config)

    names = {u.username for u in services["users"].list_users()}
    assert names == {"test_admin", "test_client"}

    # running it again neither fails nor duplicates users
    services = bootstrap(config)
    assert len(services["users"].list_users()) == 2


def test_main_exits_on_bad_configuration(clean_env):
    clean_env.setenv("MAX_CLONE_DEPTH", "0")
    with pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 1
