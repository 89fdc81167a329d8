from taskgate.config.settings import (
    ConfigError,
    LoggingConfig,
    RetryBackoffConfig,
    RunnerConfig,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)

__all__ = [
    "ConfigError",
    "LoggingConfig",
    "RetryBackoffConfig",
    "RunnerConfig",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
]
