"""
Logging builder: create and apply a dictConfig logging configuration and
optionally move log IO to a background thread.

    setup_logging(settings)     # once, at application startup
    stop_queue_logging()        # at shutdown, flushes the background listener

With `LOG_USE_QUEUE=True` the real handlers run inside a `QueueListener`
thread; request handlers only enqueue records. Producer-side filters
(RequestIdFilter, RedactFilter) are attached to the QueueHandler so the
request id contextvar is read in the producing task, not in the listener
thread.
"""
from pathlib import Path
import logging
import logging.config
import queue as _queue
from logging.handlers import QueueHandler, QueueListener

from chatline.config.settings import Settings
from chatline.utils.project import get_project_name
from .formatters import JsonFormatter, ColorFormatter
from .filters import RequestIdFilter, RedactFilter
from .handlers import (
    get_console_handler,
    get_file_handler,
    get_error_file_handler,
    get_error_console_handler,
)

_QUEUE_LISTENER: QueueListener | None = None


def _writes_files(settings: Settings) -> bool:
    return (not settings.LOG_TO_STDOUT) and bool(settings.LOG_DIR)


def make_dict_config(settings: Settings) -> dict:
    """
    Build the dictConfig mapping:
      - formatters: "standard" (colored in text mode) and "json"
      - filters: "request_id", "redact"
      - handlers: console plus either rotating files or an error console
      - loggers: root, uvicorn, sqlalchemy.engine, httpx
    """
    formatters = {
        "standard": {
            "()": ColorFormatter if settings.LOG_FORMAT == "text" else logging.Formatter,
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | %(message)s",
        },
        "json": {
            "()": JsonFormatter,
            "env": settings.ENV,
            "service": get_project_name(),
        },
    }

    filters = {
        "request_id": {"()": RequestIdFilter},
        "redact": {"()": RedactFilter},
    }

    handlers: dict[str, dict] = {"console": get_console_handler(settings)}
    if _writes_files(settings):
        handlers["file"] = get_file_handler(settings)
        handlers["error_file"] = get_error_file_handler(settings)
    else:
        handlers["error_console"] = get_error_console_handler(settings)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": list(handlers.keys()),
                "level": settings.LOG_LEVEL,
                "propagate": True,
            },
            "uvicorn.error": {
                "level": settings.LOG_LEVEL,
                "handlers": list(handlers.keys()),
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "DEBUG" if settings.ENABLE_SQL_LOGGING else "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
            # httpx logs every request URL at INFO; provider calls are logged by the services
            "httpx": {
                "level": "WARNING",
                "propagate": True,
            },
        },
    }


def setup_logging(settings: Settings) -> None:
    """
    Apply the dictConfig and, when `LOG_USE_QUEUE` is set, switch the root
    logger to queue-backed logging.
    """
    global _QUEUE_LISTENER

    if _writes_files(settings):
        Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)

    stop_queue_logging()
    logging.config.dictConfig(make_dict_config(settings))

    # Safety net for records created by loggers configured elsewhere
    logging.getLogger().addFilter(RequestIdFilter())

    if not settings.LOG_USE_QUEUE:
        return

    root_logger = logging.getLogger()
    current_handlers = list(root_logger.handlers)
    if not current_handlers:
        return

    # Real handlers run only in the listener thread from now on
    for logger_obj in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(logger_obj, logging.Logger):
            for h in list(logger_obj.handlers):
                if h in current_handlers:
                    logger_obj.removeHandler(h)
    for h in current_handlers:
        root_logger.removeHandler(h)

    log_queue: _queue.Queue = _queue.Queue()
    listener = QueueListener(log_queue, *current_handlers, respect_handler_level=True)
    listener.start()

    qh = QueueHandler(log_queue)
    qh.addFilter(RequestIdFilter())
    qh.addFilter(RedactFilter())
    root_logger.addHandler(qh)

    _QUEUE_LISTENER = listener


def stop_queue_logging() -> None:
    """Stop the QueueListener (flushing pending records). No-op when queue logging is off."""
    global _QUEUE_LISTENER
    listener = _QUEUE_LISTENER
    if listener is None:
        return
    try:
        listener.stop()
    except Exception:
        logging.getLogger(__name__).exception("logging.queue_listener_stop_failed")
    finally:
        _QUEUE_LISTENER = None


def is_queue_logging_active() -> bool:
    return _QUEUE_LISTENER is not None
