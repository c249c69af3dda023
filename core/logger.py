"""CourierLogger — Singleton JSON logger with console and rotating file output.

Every module of the dispatch engine, the SDK and the state stores logs through
one ``courier`` logger.  Records are rendered as single-line JSON and written
to stdout and to ``logs/courier.log``.  Child loggers (``courier.polling``,
``courier.webhook`` …) propagate into the same handlers.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class _JsonFormatter(logging.Formatter):
    """Format every log record as a single-line JSON object.

    Standard fields (timestamp, level, logger, message, module, func_name)
    are always present.  Keys passed through ``extra`` are merged in, so
    dispatch code can attach ``update_id``, ``kind``, ``handler`` or
    ``api_endpoint`` next to the message::

        logger.warning("Handler skipped", extra={"update_id": 7, "kind": "message"})
    """

    # Standard LogRecord attributes; anything else came in through ``extra``.
    _BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None,
    ))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        """Serialize *record* to a JSON string."""
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
        }

        for key, value in record.__dict__.items():
            if key not in self._BUILTIN_ATTRS and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CourierLogger:
    """Singleton logger with dual handlers (console + rotating file).

    Usage::

        from core.logger import CourierLogger

        logger = CourierLogger.get_logger()
        polling_logger = CourierLogger.get_logger("polling")
    """

    _instance: Optional["CourierLogger"] = None
    _logger: Optional[logging.Logger] = None

    _ROOT_NAME: str = "courier"

    # Rotation settings
    _LOG_DIR: str = os.environ.get("COURIER_LOG_DIR", "logs")
    _LOG_FILE: str = "courier.log"
    _MAX_BYTES: int = 5 * 1024 * 1024  # 5 MB
    _BACKUP_COUNT: int = 5

    def __new__(cls, level: int = logging.INFO) -> "CourierLogger":
        """Ensure only one instance is ever created (Singleton)."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init_logger(level)
        return cls._instance

    # ------------------------------------------------------------------
    # Initialisation helpers
    # ------------------------------------------------------------------

    def _init_logger(self, level: int) -> None:
        """Create the root ``courier`` logger and attach handlers."""
        self._logger = logging.getLogger(self._ROOT_NAME)
        self._logger.setLevel(self._level_from_env(level))

        # Avoid duplicate handlers if the module is reloaded.
        if self._logger.handlers:
            return

        formatter = _JsonFormatter()
        for handler in self._build_handlers():
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    @staticmethod
    def _level_from_env(default: int) -> int:
        """``COURIER_LOG_LEVEL`` (a level name such as ``DEBUG``) overrides *default*."""
        name = os.environ.get("COURIER_LOG_LEVEL", "").strip().upper()
        level = logging.getLevelName(name) if name else default
        return level if isinstance(level, int) else default

    def _build_handlers(self) -> list[logging.Handler]:
        """Console handler, plus a rotating file unless COURIER_LOG_DIR is empty."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if self._LOG_DIR:
            os.makedirs(self._LOG_DIR, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    os.path.join(self._LOG_DIR, self._LOG_FILE),
                    maxBytes=self._MAX_BYTES,
                    backupCount=self._BACKUP_COUNT,
                    encoding="utf-8",
                )
            )
        return handlers

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def get_logger(name: str | None = None, level: int = logging.INFO) -> logging.Logger:
        """Return the shared logger, or a ``courier.<name>`` child of it.

        Creates the singleton on first call; subsequent calls ignore *level*.
        """
        instance = CourierLogger(level)
        assert instance._logger is not None  # guaranteed by __new__
        if name:
            return instance._logger.getChild(name)
        return instance._logger

    def cleanup(self) -> None:
        """Flush and close all handlers attached to the logger."""
        if self._logger is None:
            return
        for handler in list(self._logger.handlers):
            handler.flush()
            handler.close()
            self._logger.removeHandler(handler)
