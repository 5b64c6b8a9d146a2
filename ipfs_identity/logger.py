"""Structured logging to time-rotated files under a dated directory tree."""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Union

DEFAULT_ROTATE_TIME = timedelta(minutes=10)
FATAL = logging.CRITICAL

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": FATAL,
}

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    FATAL: "fatal",
}

_LEVEL_COLORS = {
    logging.DEBUG: 35,
    logging.INFO: 34,
    logging.WARNING: 33,
    logging.ERROR: 31,
    FATAL: 31,
}


@dataclass(frozen=True)
class Config:
    """Logging configuration."""

    level: str = "info"
    format: str = "console"
    base_dir: str = "logs"
    rotate_time: timedelta = DEFAULT_ROTATE_TIME


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from LOG_LEVEL, LOG_FORMAT and BASE_DIR."""
    env = os.environ if environ is None else environ
    return Config(
        level=env.get("LOG_LEVEL") or "info",
        format=env.get("LOG_FORMAT") or "console",
        base_dir=env.get("BASE_DIR") or "logs",
        rotate_time=DEFAULT_ROTATE_TIME,
    )


def parse_level(level: str) -> int:
    """Map a level name to a logging level; unknown names mean INFO."""
    return _LEVELS.get(level.lower(), logging.INFO)


def log_file_path(base_dir: Union[str, Path], now: Optional[datetime] = None) -> Path:
    """Return the log file path for ``now``, creating its date directory."""
    now = now or datetime.now()
    date_dir = Path(base_dir) / now.strftime("%Y-%m-%d")
    try:
        date_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"failed to create date directory: {exc}", file=sys.stderr)
    return date_dir / f"log-{now:%H-%M}.log"


class Writer(Protocol):
    def write(self, data: bytes) -> int: ...

    def sync(self) -> None: ...


class RotatingFileWriter:
    """Appends to a log file, switching to a new one every ``rotate_time``."""

    def __init__(
        self,
        base_dir: Union[str, Path],
        rotate_time: timedelta = DEFAULT_ROTATE_TIME,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.rotate_time = rotate_time
        self._clock = clock
        self._file = None
        self._last_rotate: Optional[datetime] = None
        self._lock = threading.Lock()
        self.path: Optional[Path] = None

    def write(self, data: Union[bytes, str]) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._lock:
            now = self._clock()
            if self._file is None or now - self._last_rotate >= self.rotate_time:
                if self._file is not None:
                    self._file.close()
                    self._file = None
                self.path = log_file_path(self.base_dir, now)
                self._file = open(self.path, "ab")
                self._last_rotate = now
            written = self._file.write(data)
            self._file.flush()
            return written

    def sync(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.flush()
                os.fsync(self._file.fileno())

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> "RotatingFileWriter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class Logger:
    """Leveled logger writing one line per entry with structured fields."""

    def __init__(
        self,
        writer: Writer,
        level: int = logging.INFO,
        fmt: str = "console",
        fields: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._writer = writer
        self.level = level
        self.format = fmt
        self.fields = dict(fields or {})
        self._clock = clock

    def _render(self, level: int, msg: str, fields: Mapping[str, Any]) -> str:
        timestamp = self._clock()
        name = _LEVEL_NAMES[level]
        if self.format == "console":
            stamp = datetime.fromtimestamp(timestamp).astimezone().isoformat(
                timespec="milliseconds"
            )
            label = f"\x1b[{_LEVEL_COLORS[level]}m{name.upper()}\x1b[0m"
        else:
            stamp = repr(float(timestamp))
            label = name
        parts = [stamp, label, msg]
        if fields:
            parts.append(json.dumps(fields, default=str, separators=(",", ":")))
        return "\t".join(parts) + "\n"

    def _log(self, level: int, msg: str, fields: Mapping[str, Any]) -> None:
        if level < self.level:
            return
        merged = {**self.fields, **fields}
        self._writer.write(self._render(level, msg, merged).encode("utf-8"))

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warn(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def fatal(self, msg: str, **kwargs: Any) -> None:
        """Log at fatal level, flush, and exit with status 1."""
        self._log(FATAL, msg, kwargs)
        self.sync()
        raise SystemExit(1)

    def with_fields(self, **kwargs: Any) -> "Logger":
        return Logger(
            self._writer, self.level, self.format, {**self.fields, **kwargs}, self._clock
        )

    def sync(self) -> None:
        self._writer.sync()


def new_logger(config: Config) -> Logger:
    """Create a Logger writing rotated files under ``config.base_dir``."""
    if not config.base_dir:
        raise ValueError("base directory must be specified")
    try:
        Path(config.base_dir).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OSError(f"failed to create base directory: {exc}") from exc
    log_file_path(config.base_dir)
    writer = RotatingFileWriter(config.base_dir, config.rotate_time)
    return Logger(writer, parse_level(config.level), config.format)