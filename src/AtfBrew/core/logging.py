"""Logging setup for the ATF pipeline."""

import logging
import logging.handlers
import os
import threading

logger = logging.getLogger("atf_pipeline")

# 10 MB max per log file, keep 3 rotated backups
_LOG_MAX_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 3
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_RED = "\x1b[31m"
_RESET = "\x1b[0m"
_setup_lock = threading.Lock()


class HighlightFormatter(logging.Formatter):
    """Render ERROR and above in red when writing to a terminal."""

    def __init__(self, fmt=None, datefmt=None, use_color: bool = True):
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record):
        text = super().format(record)
        if self.use_color and record.levelno >= logging.ERROR:
            return f"{_RED}{text}{_RESET}"
        return text


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    isatty = getattr(handler.stream, "isatty", None)
    use_color = bool(isatty and isatty()) and not os.environ.get("NO_COLOR")
    handler.setFormatter(HighlightFormatter(_LOG_FORMAT, use_color=use_color))
    return handler


def setup_logging(level: str = "INFO", log_file: str = None, force: bool = False):
    """Configure logging without clobbering host-app handlers by default."""
    with _setup_lock:
        _setup_logging_impl(level, log_file, force)


def _setup_logging_impl(level: str, log_file: str, force: bool):
    """Internal implementation of setup_logging (called under _setup_lock)."""
    handlers = [_console_handler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handlers.append(file_handler)
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        print(f"Warning: Invalid log level '{level}', defaulting to INFO")
        numeric_level = logging.INFO

    root = logging.getLogger()
    if force or not root.handlers:
        logger.debug("Initializing logging with %d handler(s), force=%s", len(handlers), force)
        logging.basicConfig(level=numeric_level, handlers=handlers, force=force)
        return

    # Embedded mode: only update the atf_pipeline logger hierarchy so we
    # don't affect unrelated libraries that share the root logger.
    pipeline_logger = logging.getLogger("atf_pipeline")
    pipeline_logger.setLevel(numeric_level)
    if log_file:
        existing_files = {
            getattr(h, "baseFilename", None)
            for h in pipeline_logger.handlers
            if isinstance(h, logging.FileHandler)
        }
        file_handler = handlers[1]
        if getattr(file_handler, "baseFilename", None) not in existing_files:
            logger.info("Adding file handler: %s", file_handler.baseFilename)
            pipeline_logger.addHandler(file_handler)
