"""
Per-test and run-level log files for the test run orchestrator.

Every job gets its own append-only log file at its log_file_path, and
every entry is mirrored into one aggregate run.log. Handles are scoped:
open_test_log() closes the file on every exit path.

Copyright (C) 2025, David Beckett https://www.dajobe.org/

This package is Free Software and part of Redland http://librdf.org/

It is licensed under the following three licenses as alternatives:
  1. GNU Lesser General Public License (LGPL) V2.1 or any newer version
  2. GNU General Public License (GPL) V2 or any newer version
  3. Apache License, V2.0 or any newer version

You may not use this file except in compliance with at least one of
the above three licenses.

See LICENSE.html or LICENSE.txt at the top of this package for the
complete terms and further detail along with the license texts for
the licenses in COPYING.LIB, COPYING and LICENSE-2.0.txt respectively.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import IO, Dict, Iterator, Optional

from .result_types import TestJob
from .utils import slugify_name

logger = logging.getLogger(__name__)

RUN_LOG_NAME = "run.log"


def log_file_name(test_name: str) -> str:
    """File name of a test's own log."""
    return f"{slugify_name(test_name)}.log"


class Severity(Enum):
    """Severity tag written with each log entry."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    def __str__(self):
        return self.value

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.value)


def format_entry(message: str, severity: Severity, now: Optional[datetime] = None) -> str:
    """Format one log line: timestamp, severity tag, message."""
    now = now or datetime.now()
    stamp = now.strftime("%Y-%m-%d %H:%M:%S.") + f"{now.microsecond // 1000:03d}"
    return f"{stamp} [{severity.value}] {message}"


class TestLogHandle:
    """Append-only destination for one test's log entries."""

    __test__ = False

    def __init__(self, test_name: str, path: Path):
        self.test_name = test_name
        self.path = path
        self._lock = threading.Lock()
        self._stream: Optional[IO[str]] = path.open("a", encoding="utf-8")
        self.entries = 0

    @property
    def closed(self) -> bool:
        return self._stream is None

    def write_line(self, line: str) -> None:
        with self._lock:
            if self._stream is None:
                raise ValueError(f"Log for test {self.test_name} is closed")
            self._stream.write(line + "\n")
            self._stream.flush()
            self.entries += 1

    def close(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.close()
                self._stream = None


class LogRecorder:
    """Owns run.log and hands out per-test log handles."""

    def __init__(self, logs_path: Path):
        """
        Initialize the recorder.

        Args:
            logs_path: Directory that receives run.log and <test-name>.log files
        """
        self.logs_path = Path(logs_path)
        self.logs_path.mkdir(parents=True, exist_ok=True)
        self.run_log_path = self.logs_path / RUN_LOG_NAME
        self._run_lock = threading.Lock()
        self._run_stream: Optional[IO[str]] = self.run_log_path.open(
            "a", encoding="utf-8"
        )
        self._counts_lock = threading.Lock()
        self._severity_counts: Dict[Severity, int] = {s: 0 for s in Severity}

    @contextmanager
    def open_test_log(self, job: TestJob) -> Iterator[TestLogHandle]:
        """Yield a handle on job.log_file_path, closing it however the block exits."""
        job.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        handle = TestLogHandle(job.test_name, job.log_file_path)
        try:
            yield handle
        finally:
            handle.close()

    def append(
        self,
        handle: Optional[TestLogHandle],
        message: str,
        severity: Severity = Severity.INFO,
        mirror: bool = True,
    ) -> None:
        """
        Write one timestamped entry to a test's log and to run.log.

        Passing None as the handle writes to run.log only; mirror=False keeps
        a test entry out of run.log.
        """
        line = format_entry(message, severity)
        if handle is not None:
            handle.write_line(line)
            if mirror:
                self._write_run_line(format_entry(f"[{handle.test_name}] {message}", severity))
        else:
            self._write_run_line(line)

        with self._counts_lock:
            self._severity_counts[severity] += 1

        name = handle.test_name if handle is not None else "run"
        logger.log(severity.logging_level, f"{name}: {message}")

    def log_run(self, message: str, severity: Severity = Severity.INFO) -> None:
        """Write an entry to run.log only."""
        self.append(None, message, severity)

    def _write_run_line(self, line: str) -> None:
        with self._run_lock:
            if self._run_stream is None:
                raise ValueError(f"Run log {self.run_log_path} is closed")
            self._run_stream.write(line + "\n")
            self._run_stream.flush()

    def severity_counts(self) -> Dict[Severity, int]:
        with self._counts_lock:
            return dict(self._severity_counts)

    def close(self) -> None:
        with self._run_lock:
            if self._run_stream is not None:
                self._run_stream.close()
                self._run_stream = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit closing run.log."""
        self.close()
