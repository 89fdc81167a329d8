from taskgate.observability.logger import (
    bind_call,
    get_logger,
    setup_logging,
    setup_logging_from_settings,
)

__all__ = ["bind_call", "get_logger", "setup_logging", "setup_logging_from_settings"]
