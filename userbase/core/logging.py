import logging
from logging.config import dictConfig
import sys

from .config import Settings, settings as default_settings


def build_log_config(settings: Settings) -> dict:
    level = "DEBUG" if settings.DEBUG else "INFO"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "default",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            # Propagates to the root console handler so test log capture sees it
            "userbase": {
                "level": level,
                "propagate": True,
            },
            # SQL echo is noisy; keep it behind DEBUG
            "sqlalchemy.engine": {
                "level": "INFO" if settings.DEBUG else "WARNING",
            },
        },
        "root": {
            "handlers": ["console"],
            "level": level,
        },
    }


def configure_logging(settings: Settings = default_settings) -> logging.Logger:
    dictConfig(build_log_config(settings))
    return logging.getLogger("userbase")


logger = logging.getLogger("userbase")
