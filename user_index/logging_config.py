import os
from logging.config import dictConfig
from typing import Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Client libraries that log every request at INFO.
HTTP_LOGGERS = ("httpx", "httpcore", "elastic_transport")


def _logger_levels(debug_http: bool) -> Dict[str, Dict[str, object]]:
    http_level = "DEBUG" if debug_http else "WARNING"
    loggers: Dict[str, Dict[str, object]] = {name: {"level": http_level} for name in HTTP_LOGGERS}
    loggers["user_index.telemetry"] = {"level": os.getenv("USER_INDEX_TELEMETRY_LOG_LEVEL", "INFO").upper()}
    if debug_http:
        loggers["uvicorn.access"] = {"level": "DEBUG"}
    return loggers


def configure_logging(level: Optional[str] = None) -> None:
    """Set up the root handler and the verbosity of telemetry and client libraries.

    ``USER_INDEX_LOG_LEVEL`` picks the root level unless ``level`` is given.
    ``USER_INDEX_DEBUG_HTTP=1`` opens up request logging for httpx and the
    Elasticsearch transport.
    """
    root_level = (level or os.getenv("USER_INDEX_LOG_LEVEL", "INFO")).upper()
    debug_http = os.getenv("USER_INDEX_DEBUG_HTTP", "0") == "1"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": DEFAULT_LOG_FORMAT},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": root_level,
            },
            "loggers": _logger_levels(debug_http),
        }
    )
