"""Plain-text logger writing debug, output and error files."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, TextIO

_DEFAULT_PATH = "./logs"
_DEFAULT_MAX_SIZE = 16 * 1024 * 1024
_LEVELS = frozenset(
    {"DEBUG", "TRACE", "INFO", "NOTICE", "WARNING", "ERROR", "FATAL", "CRITICAL"}
)


class FallbackError(Exception):
    """Error reported by the fallback store."""


@dataclass
class LogConfig:
    """Where and how to log; ``max_size`` is in bytes."""

    path: str = _DEFAULT_PATH
    stdout: bool = False
    max_size: int = _DEFAULT_MAX_SIZE


class _Target:
    def __init__(self, file: TextIO, echo: Optional[TextIO]) -> None:
        self.file = file
        self.echo = echo

    def write(self, line: str) -> None:
        stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S.%f")
        text = f"{stamp} {line}\n"
        self.file.write(text)
        self.file.flush()
        if self.echo is not None:
            self.echo.write(text)


class Logger:
    """Writes levelled, tree-shaped messages to three log files."""

    def __init__(self, config: Optional[LogConfig] = None) -> None:
        if config is None:
            config = LogConfig()
        self.path = config.path or _DEFAULT_PATH
        self.max_size = config.max_size if config.max_size != 0 else _DEFAULT_MAX_SIZE
        self.stdout = config.stdout
        self.closed = False
        self._lock = threading.Lock()
        self._files: list[TextIO] = []

        try:
            os.makedirs(self.path, exist_ok=True)
        except OSError as exc:
            raise FallbackError(f"Failed to create log: {exc}") from exc

        try:
            debug_file = self._open_log("debug.log")
            output_file = self._open_log("output.log")
            error_file = self._open_log("error.log")
        except FallbackError:
            self.close()
            raise

        self._debug = _Target(debug_file, sys.stdout if self.stdout else None)
        self._output = _Target(output_file, sys.stdout if self.stdout else None)
        self._error = _Target(error_file, sys.stderr if self.stdout else None)

    def _open_log(self, filename: str) -> TextIO:
        full_path = os.path.join(self.path, filename)
        try:
            size = os.path.getsize(full_path)
        except OSError:
            size = -1
        if size > self.max_size:
            backup = f"{full_path}.{datetime.now().strftime('%Y%m%d_%H%M%S')}"
            try:
                os.replace(full_path, backup)
            except OSError as exc:
                raise FallbackError(f"Failed to rotate {filename}: {exc}") from exc
        try:
            handle = open(full_path, "a", encoding="utf-8")
        except OSError as exc:
            raise FallbackError(f"Failed to open {filename}: {exc}") from exc
        self._files.append(handle)
        return handle

    def _write(self, target: _Target, level: str, messages: tuple[Any, ...]) -> None:
        level = level.upper()
        if level not in _LEVELS:
            return
        with self._lock:
            if self.closed or not messages:
                return
            prefix = "" if level == "INFO" else f"[{level}] "
            last = len(messages) - 1
            for index, message in enumerate(messages):
                if index == 0:
                    target.write(f"{prefix}{message}")
                elif index == last:
                    target.write(f"└── {message}")
                else:
                    target.write(f"├── {message}")

    def _failure(self, target: _Target, level: str, err: Any, messages: tuple[Any, ...]) -> FallbackError:
        parts = [str(m) for m in messages]
        if err is not None:
            parts.append(str(err))
        self._write(target, level, tuple(parts))
        return FallbackError(" ".join(parts))

    def debug(self, *args: Any) -> None:
        self._write(self._debug, "DEBUG", args)

    def trace(self, *args: Any) -> None:
        self._write(self._debug, "TRACE", args)

    def info(self, *args: Any) -> None:
        self._write(self._output, "INFO", args)

    def notice(self, *args: Any) -> None:
        self._write(self._output, "NOTICE", args)

    def warning(self, *args: Any) -> None:
        self._write(self._output, "WARNING", args)

    def error(self, err: Any, *args: Any) -> FallbackError:
        """Log at ERROR level and return the matching exception."""
        return self._failure(self._error, "ERROR", err, args)

    def fatal(self, err: Any, *args: Any) -> FallbackError:
        """Log at FATAL level and return the matching exception."""
        return self._failure(self._error, "FATAL", err, args)

    def critical(self, err: Any, *args: Any) -> FallbackError:
        """Log at CRITICAL level and return the matching exception."""
        return self._failure(self._error, "CRITICAL", err, args)

    def close(self) -> None:
        """Close all log files; later writes are ignored."""
        with self._lock:
            if self.closed:
                return
            self.closed = True
            errors = []
            for handle in self._files:
                try:
                    handle.close()
                except OSError as exc:
                    errors.append(exc)
        if errors:
            raise FallbackError(f"Closing log files: {errors}")

    def flush(self) -> None:
        """Force buffered log data to disk."""
        with self._lock:
            if self.closed:
                raise FallbackError("Logger is closed")
            errors = []
            for handle in self._files:
                try:
                    handle.flush()
                    os.fsync(handle.fileno())
                except OSError as exc:
                    errors.append(exc)
        if errors:
            raise FallbackError(f"Flushing log files: {errors}")

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()