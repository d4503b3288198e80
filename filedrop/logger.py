"""Levelled, coloured logging to the console and to a log file."""

from __future__ import annotations

import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import TextIO

SYSTEM = "SYSTEM"
UPLOAD = "UPLOAD"
HOME = "HOME"
DELETE = "DELETE"
STORAGE = "STORAGE"
MIDDLEWARE = "MIDDLEWARE"
DATABASE = "DATABASE"
JANITOR = "JANITOR"

BLUE = "\033[34m"
BLUE_BOLD = "\033[34;1m"
YELLOW = "\033[33m"
YELLOW_BOLD = "\033[33;1m"
RED = "\033[31m"
RED_BOLD = "\033[31;1m"
BOLD = "\033[1m"
RESET = "\033[0m"


class Logger:
    """Writes info lines to a stream and warnings and errors to a file.

    ``info``, ``warn`` and ``error`` select the level and module and return
    the logger itself, so a line is written as ``log.info(UPLOAD).write(msg)``.
    """

    def __init__(self, log_file_path: str | Path, stream: TextIO | None = None) -> None:
        self._file = open(log_file_path, "a", encoding="utf-8")
        self._stream = stream
        self._lock = threading.Lock()
        self._prefix = f"[{BLUE_BOLD}{SYSTEM} INFO{RESET}] "
        self._to_file = False

    def __enter__(self) -> Logger:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _select(self, level: str, colour: str, module: str | None, to_file: bool) -> Logger:
        name = module or SYSTEM
        self._prefix = f"{BOLD}[{colour}{name} {level}{RESET}{BOLD}]{RESET} "
        self._to_file = to_file
        return self

    def info(self, module: str | None = None) -> Logger:
        """Select the info level; lines go to the console stream."""
        return self._select("INFO", BLUE_BOLD, module, to_file=False)

    def error(self, module: str | None = None) -> Logger:
        """Select the error level; lines go to the log file."""
        return self._select("ERR", RED_BOLD, module, to_file=True)

    def warn(self, module: str | None = None) -> Logger:
        """Select the warning level; lines go to the log file."""
        return self._select("WARN", YELLOW_BOLD, module, to_file=True)

    def _emit(self, msg: str) -> None:
        frame = sys._getframe(2)
        location = f"{Path(frame.f_code.co_filename).name}:{frame.f_lineno}"
        stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S")
        line = f"{self._prefix}{stamp} {location}: {msg}"
        if not line.endswith("\n"):
            line += "\n"
        with self._lock:
            out = self._file if self._to_file else (self._stream or sys.stdout)
            out.write(line)
            out.flush()

    def write(self, msg: str) -> None:
        """Write one line with the current prefix."""
        self._emit(msg)

    def writef(self, msg: str, err: object) -> None:
        """Write ``msg`` followed by the error it describes."""
        self._emit(f"{msg}: {err}")

    def close(self) -> None:
        """Close the log file."""
        self._file.close()