# modelhub/core/log_config.py
from __future__ import annotations
import contextvars
import logging
import logging.config

from .config import settings

# ==== Correlation / Request ID ====
request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIDFilter(logging.Filter):
    """Attach the current request id to every record."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get("-")
        return True


SENSITIVE_KEYS = {
    "password", "currentpassword", "newpassword", "token", "access_token",
    "authorization", "secret", "jwt_secret",
}


def scrub_for_log(obj, depth=0):
    if depth > 3:
        return "<deep>"
    if isinstance(obj, dict):
        return {
            k: ("***" if str(k).lower() in SENSITIVE_KEYS else scrub_for_log(v, depth + 1))
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [scrub_for_log(x, depth + 1) for x in list(obj)[:50]]
    return obj


class ScrubFilter(logging.Filter):
    """Masks credential fields when a dict is passed as a log argument."""
    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, dict):
            record.args = scrub_for_log(args)
        elif isinstance(args, tuple):
            record.args = tuple(scrub_for_log(a) for a in args)
        return True


VERBOSE_FMT = "[%(asctime)s] [%(levelname)s] [%(name)s] [req=%(request_id)s] %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"


def build_logging_config(level: str | None = None) -> dict:
    level = (level or settings.log_level).upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIDFilter},
            "scrub": {"()": ScrubFilter},
        },
        "formatters": {
            "verbose": {"format": VERBOSE_FMT, "datefmt": DATE_FMT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "verbose",
                "filters": ["request_id", "scrub"],
            },
        },
        "loggers": {
            "modelhub": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn.error": {"handlers": ["console"], "level": level, "propagate": False},
            # pymongo is chatty at DEBUG
            "pymongo": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig(build_logging_config(level))
