"""
Test conftest — isolate TASKGATE_* environment variables and .env files so
Settings() behaves the same on a developer machine and in CI.
"""
import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove TASKGATE_* env vars for every test and disable .env loading.
    Tests that need an override set it explicitly with monkeypatch.setenv."""
    for var in list(os.environ):
        if var.upper().startswith("TASKGATE_"):
            monkeypatch.delenv(var, raising=False)

    import taskgate.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_prefix="TASKGATE_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)

    settings_module.reset_settings()
    yield
    settings_module.reset_settings()
