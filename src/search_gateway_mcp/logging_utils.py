import logging
import os
import time
from logging.config import dictConfig
from contextlib import contextmanager

DEFAULT_LEVEL = os.getenv("GATEWAY_LOG_LEVEL", "INFO").upper()
JSON = os.getenv("GATEWAY_LOG_JSON", "0") in {"1", "true", "True"}
LOG_FILE = os.getenv("GATEWAY_LOG_FILE")  # optional path

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Third-party loggers that are chatty at INFO (httpx logs every request).
NOISY_LOGGERS = ("httpx", "httpcore", "mcp.server.lowlevel.server")


def setup_logging(
    level: str | None = None, json: bool | None = None, file: str | None = None
):
    """Configure root logging for the gateway processes.

    Console output always goes to stderr: stdout carries the MCP stdio
    protocol and must stay clean.
    """
    level = (level or DEFAULT_LEVEL).upper()
    json = JSON if json is None else json
    file = file or LOG_FILE
    formatter = "json" if json else "plain"

    handlers = {
        "stderr": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": formatter,
            "level": level,
        }
    }
    if file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": file,
            "maxBytes": 5_000_000,
            "backupCount": 5,
            "formatter": formatter,
            "level": level,
        }

    dictConfig(
        {
            "version": 1,
            "formatters": {
                "plain": {"format": PLAIN_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
                "json": {
                    "()": "pythonjsonlogger.json.JsonFormatter",
                    "fmt": JSON_FORMAT,
                    "rename_fields": {"levelname": "level", "name": "logger"},
                    "json_ensure_ascii": False,
                },
            },
            "handlers": handlers,
            "root": {"level": level, "handlers": list(handlers)},
            "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
            "disable_existing_loggers": False,
        }
    )


def mask_secret(value: str | None) -> str:
    """Show only a short prefix of a token in logs."""
    if not value:
        return "not set"
    return f"{value[:5]}..."


@contextmanager
def time_block(logger: logging.Logger, msg: str):
    t0 = time.perf_counter()
    try:
        yield
    finally:
        logger.info("%s | duration=%.3fs", msg, time.perf_counter() - t0)
