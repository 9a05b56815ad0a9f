import os
from logging.config import dictConfig
from typing import Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Transport loggers are chatty at INFO (one line per upstream request).
_TRANSPORT_LOGGERS = ("httpx", "httpcore")


def _logger_levels(debug_http: bool, telemetry_level: str) -> Dict[str, Dict[str, str]]:
    transport_level = "DEBUG" if debug_http else "WARNING"
    levels = {name: {"level": transport_level} for name in _TRANSPORT_LOGGERS}
    if debug_http:
        levels["uvicorn.access"] = {"level": "DEBUG"}
    levels["codemetrics.telemetry"] = {"level": telemetry_level}
    return levels


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging from ``CODEMETRICS_LOG_LEVEL`` and related flags.

    ``CODEMETRICS_DEBUG_HTTP=1`` surfaces every upstream request;
    ``CODEMETRICS_TELEMETRY_LOG_LEVEL`` can silence ``TELEMETRY`` lines
    independently of the rest of the app.
    """
    root_level = (level or os.getenv("CODEMETRICS_LOG_LEVEL", "INFO")).upper()
    telemetry_level = os.getenv("CODEMETRICS_TELEMETRY_LOG_LEVEL", root_level).upper()
    debug_http = os.getenv("CODEMETRICS_DEBUG_HTTP", "0") == "1"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": _logger_levels(debug_http, telemetry_level),
            "root": {
                "handlers": ["default"],
                "level": root_level,
            },
        }
    )
