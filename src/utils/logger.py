"""
Logger Utility Module
Root logger setup for the maintenance engine.

Every record is stamped with the organization, schedule and asset it
concerns (``N/A`` when unknown). Services push those ids with
``LogContext`` around per-item work, so sweep output can be filtered
per schedule without threading ids through every call.
"""

import logging
import logging.handlers
import sys
import threading
import time
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional

import colorlog

CONTEXT_FIELDS = ('organization_id', 'schedule_id', 'asset_id')

CONSOLE_FORMAT = '%(log_color)s%(asctime)s %(levelname)-8s %(name)s: %(message)s%(reset)s'
PLAIN_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'
FILE_FORMAT = ('%(asctime)s %(levelname)-8s %(name)s '
               '[org=%(organization_id)s schedule=%(schedule_id)s asset=%(asset_id)s] %(message)s')
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Per-thread context; LogContext saves and restores context.extra
context = threading.local()


class ContextFilter(logging.Filter):
    """Copy the current thread's engine ids onto each record"""

    def filter(self, record):
        extra = getattr(context, 'extra', {})
        for name in CONTEXT_FIELDS:
            setattr(record, name, extra.get(name, 'N/A'))
        return True


class LoggerManager:
    """Installs the engine handlers on the root logger once per process"""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if getattr(self, 'initialized', False):
            return
        self.initialized = True
        self.config = self._load_config()
        self.install()

    @staticmethod
    def _load_config() -> Dict[str, Any]:
        """The ``logging`` section of the settings, flattened"""
        from config.settings import settings

        section = settings.get('logging', {}) or {}
        file_section = section.get('file') if isinstance(section.get('file'), dict) else {}
        return {
            'level': str(section.get('level', settings.get('system.log_level', 'INFO'))).upper(),
            'console': section.get('enable_console', True),
            'color': section.get('enable_color', True),
            'file': section.get('enable_file', False),
            'path': file_section.get('path', 'logs/maintenance_engine.log'),
            'max_bytes': file_section.get('max_bytes', 10 * 1024 * 1024),
            'backup_count': file_section.get('backup_count', 10),
        }

    def install(self):
        root = logging.getLogger()
        root.setLevel(self.config['level'])

        for handler in list(root.handlers):
            if getattr(handler, '_engine_handler', False):
                root.removeHandler(handler)

        handlers = []
        if self.config['console']:
            handlers.append(self._console_handler())
        if self.config['file']:
            handlers.append(self._file_handler())

        context_filter = ContextFilter()
        for handler in handlers:
            handler.addFilter(context_filter)
            handler.setLevel(self.config['level'])
            handler._engine_handler = True
            root.addHandler(handler)

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        if self.config['color']:
            handler.setFormatter(colorlog.ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT,
                                                           log_colors=LOG_COLORS))
        else:
            handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
        return handler

    def _file_handler(self) -> logging.Handler:
        path = Path(self.config['path'])
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=self.config['max_bytes'], backupCount=self.config['backup_count']
        )
        handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        return handler


_logger_manager: Optional[LoggerManager] = None


def setup_logging() -> LoggerManager:
    """Install the engine's handlers on the root logger (idempotent)"""
    global _logger_manager
    if _logger_manager is None:
        _logger_manager = LoggerManager()
    return _logger_manager


def set_level(level: str, logger_name: Optional[str] = None):
    """Change the level of one logger, or of the root logger and its engine handlers"""
    level = level.upper()
    if logger_name:
        logging.getLogger(logger_name).setLevel(level)
        return
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if getattr(handler, '_engine_handler', False):
            handler.setLevel(level)


def log_execution_time(func):
    """Log how long a sweep or batch call took, and failures with their duration"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__)
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"{func.__name__} failed after {time.perf_counter() - started:.3f}s: {e}")
            raise
        logger.info(f"{func.__name__} completed in {time.perf_counter() - started:.3f}s")
        return result

    return wrapper


class LogContext:
    """Temporarily attach engine ids to every record logged by this thread

    Example:
        with LogContext(schedule_id=schedule.id, asset_id=schedule.asset_id):
            logger.info("evaluating")
    """

    def __init__(self, **ids):
        self.ids = {k: v for k, v in ids.items() if v is not None}
        self.saved: Dict[str, Any] = {}

    def __enter__(self):
        self.saved = dict(getattr(context, 'extra', {}))
        context.extra = {**self.saved, **self.ids}
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        context.extra = self.saved
        return False
