import logging
import logging.config
import os

from educrm.core.context import current_request_id

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(process)d %(module)s"

_LEVELS = {"debug": "DEBUG", "info": "INFO", "warn": "WARNING", "error": "ERROR"}
_configured = False


class RequestIdFilter(logging.Filter):
    """Stamp each record with the correlation id of the current request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = current_request_id() or "-"
        return True


def build_logging_config(cfg) -> dict:
    level = _LEVELS.get(str(cfg.LOG_LEVEL).lower(), "INFO")
    formatter = "json" if cfg.LOG_FORMAT == "json" else "pretty"

    handlers: dict = {}
    if cfg.LOG_OUTPUT in ("stdout", "both"):
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "filters": ["request_id"],
            "stream": "ext://sys.stdout",
        }
    if cfg.LOG_OUTPUT in ("file", "both"):
        log_dir = os.path.dirname(cfg.LOG_FILE_PATH)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": formatter,
            "filters": ["request_id"],
            "filename": cfg.LOG_FILE_PATH,
            "maxBytes": int(cfg.LOG_MAX_SIZE) * 1024 * 1024,
            "backupCount": int(cfg.LOG_MAX_BACKUPS),
            "encoding": "utf-8",
        }
    names = list(handlers)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": "educrm.app_logger.RequestIdFilter"},
        },
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "fmt": JSON_FORMAT,
            },
            "pretty": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "": {"handlers": names, "level": level},
            "educrm": {"handlers": names, "level": level, "propagate": False},
            "uvicorn": {"handlers": names, "level": level, "propagate": False},
            "uvicorn.error": {"handlers": names, "level": level, "propagate": False},
            # access lines come from our own middleware
            "uvicorn.access": {"handlers": names, "level": "WARNING", "propagate": False},
        },
    }


def setup_logging(cfg=None, *, force: bool = False) -> logging.Logger:
    global _configured
    if cfg is None:
        from educrm.core.config import settings as cfg
    if not _configured or force:
        logging.config.dictConfig(build_logging_config(cfg))
        _configured = True
    return logging.getLogger("educrm")


def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger("educrm")
    return base.getChild(name) if name else base
