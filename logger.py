"""
Logging for the NMF Subtype Statistics Core

Every module takes its logger from `get_logger(__name__)`. Handlers are
installed once, on the package logger `nmf_stats` (the root logger of the host
process is left alone), from the `logging` section of CONFIG:
- stdout at `logging.console_level`
- a rotating file under `logging.log_dir` when `logging.file_enabled` is set

The heavier analyses (clustering, PCA, log-rank, Cox, stepwise) run inside
`track_time`, which records wall-clock durations per operation name.

Usage:
    from logger import get_logger

    logger = get_logger(__name__)
    with logger.track_time("compute_pca"):
        result = compute_pca(matrix)
"""

import logging
import logging.handlers
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import ClassVar, Dict, List, Optional

from config import CONFIG

PACKAGE_LOGGER = "nmf_stats"


def _level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    if isinstance(level, int):
        return level
    print(f"[WARNING] Unknown log level '{name}', using INFO", file=sys.stderr)
    return logging.INFO


class PerformanceLogger:
    """
    Wall-clock durations per operation name.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.timings: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Time the enclosed block and log "<operation> completed in Xs".

        A no-op when `logging.log_performance` is off. The duration is recorded
        even when the block raises.
        """
        if not CONFIG.get("logging.log_performance"):
            yield
            return

        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            with self._lock:
                self.timings.setdefault(operation, []).append(elapsed)
            self.logger.log(_level(log_level), "%s completed in %.3fs", operation, elapsed)

    def summary(self) -> Dict[str, Dict[str, float]]:
        """count / mean / min / max seconds for every tracked operation."""
        with self._lock:
            return {
                operation: {
                    "count": len(times),
                    "mean": sum(times) / len(times),
                    "min": min(times),
                    "max": max(times),
                }
                for operation, times in self.timings.items()
                if times
            }

    def reset(self) -> None:
        with self._lock:
            self.timings.clear()


class LoggerFactory:
    """
    Creates the named loggers and installs the handlers on first use.
    """

    _loggers: ClassVar[Dict[str, "Logger"]] = {}
    _perf_logger: ClassVar[Optional[PerformanceLogger]] = None
    _configured: ClassVar[bool] = False
    _lock: ClassVar = threading.RLock()

    @classmethod
    def configure(cls) -> None:
        """
        Install handlers on the `nmf_stats` logger, once.

        `logging.enabled = False` silences the package loggers; `debug.enabled`
        lowers the level to DEBUG. A file handler that cannot be opened is
        reported on stderr and skipped.
        """
        if cls._configured:
            return
        cls._configured = True

        if not CONFIG.get("logging.enabled", True):
            logging.getLogger(PACKAGE_LOGGER).setLevel(logging.CRITICAL + 1)
            return

        level_name = "DEBUG" if CONFIG.get("debug.enabled") else CONFIG.get("logging.level", "INFO")
        formatter = logging.Formatter(
            CONFIG.get("logging.format"),
            datefmt=CONFIG.get("logging.date_format"),
        )
        package = logging.getLogger(PACKAGE_LOGGER)
        package.setLevel(_level(level_name))

        if CONFIG.get("logging.console_enabled", True):
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(_level(CONFIG.get("logging.console_level", "INFO")))
            console.setFormatter(formatter)
            package.addHandler(console)

        if CONFIG.get("logging.file_enabled"):
            try:
                cls._add_file_handler(package, formatter)
            except OSError as e:
                print(f"[WARNING] File logging disabled: {e}", file=sys.stderr)

    @staticmethod
    def _add_file_handler(target: logging.Logger, formatter: logging.Formatter) -> None:
        log_dir = Path(CONFIG.get("logging.log_dir", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_dir / CONFIG.get("logging.log_file", "nmf_stats.log"),
            maxBytes=CONFIG.get("logging.max_log_size", 10485760),
            backupCount=CONFIG.get("logging.backup_count", 5),
        )
        handler.setFormatter(formatter)
        target.addHandler(handler)

    @classmethod
    def get_logger(cls, name: str) -> "Logger":
        cls.configure()
        with cls._lock:
            if name not in cls._loggers:
                cls._loggers[name] = Logger(logging.getLogger(name))
            return cls._loggers[name]

    @classmethod
    def get_performance_logger(cls) -> PerformanceLogger:
        with cls._lock:
            if cls._perf_logger is None:
                cls._perf_logger = PerformanceLogger(logging.getLogger(f"{PACKAGE_LOGGER}.performance"))
            return cls._perf_logger


class Logger:
    """
    Standard logger plus analysis summaries and timing.
    """

    def __init__(self, standard_logger: logging.Logger):
        self._logger = standard_logger
        self._perf_logger = LoggerFactory.get_performance_logger()

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(msg, *args, **kwargs)

    def log_analysis(self, analysis_type: str, n_groups: int, n_samples: int, **details) -> None:
        """
        One-line summary of a finished analysis, e.g.
        "log-rank: groups=3, n=240, chi_square=12.1".

        Only emitted when `logging.log_analysis_operations` is on.
        """
        if not CONFIG.get("logging.log_analysis_operations"):
            return
        extra = "".join(f", {k}={v}" for k, v in details.items())
        self._logger.info("%s: groups=%d, n=%d%s", analysis_type, n_groups, n_samples, extra)

    def track_time(self, operation: str, log_level: str = "DEBUG"):
        return self._perf_logger.track_time(operation, log_level)

    def timing_summary(self) -> Dict[str, Dict[str, float]]:
        return self._perf_logger.summary()


def get_logger(name: str) -> Logger:
    """Logger for a module, usually `get_logger(__name__)`."""
    return LoggerFactory.get_logger(name)
