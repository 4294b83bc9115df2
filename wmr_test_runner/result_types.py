"""
Type definitions for the test run orchestrator

This module contains the job, raw execution result, parsed result and run
summary types that flow between the executor, runner, parser, aggregator
and orchestrator, together with the status enumeration and the rule that
derives a status from a raw execution result.

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

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from .exceptions import AggregateFailure


class TestStatus(Enum):
    """Enumeration of possible job outcomes."""

    __test__ = False

    PASSED = "Passed"
    FAILED = "Failed"
    ERROR = "Error"
    EXCEPTION = "Exception"
    TIMEOUT = "Timeout"

    def __str__(self):
        return self.value

    def display_char(self) -> str:
        """Returns a single character for compact progress display."""
        display_chars = {
            "Passed": ".",
            "Failed": "F",
            "Error": "E",
            "Exception": "X",
            "Timeout": "T",
        }
        return display_chars.get(self.value, "?")

    def display_name(self) -> str:
        """Returns a more verbose name for display."""
        return self.value if self is TestStatus.PASSED else self.value.upper()

    @property
    def is_error(self) -> bool:
        """True for statuses that count as errored rather than failed."""
        return self in (TestStatus.ERROR, TestStatus.EXCEPTION, TestStatus.TIMEOUT)


@dataclass(frozen=True)
class TestJob:
    """One test file's unit of work."""

    __test__ = False

    test_name: str
    test_file_path: Path
    log_file_path: Path


@dataclass
class RawExecutionResult:
    """What the timeout-bounded runner observed for one job."""

    exit_code: Optional[int] = None
    combined_output: List[str] = field(default_factory=list)
    completed: bool = False
    timed_out: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def crashed_before_start(self) -> bool:
        return not self.completed and not self.timed_out


@dataclass
class ParsedTestResult:
    """Structured outcome of one job."""

    __test__ = False

    test_name: str
    passed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    status: TestStatus = TestStatus.PASSED
    failure_messages: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    missing_counters: List[str] = field(default_factory=list)
    detail: str = ""

    @property
    def is_degraded(self) -> bool:
        """True when the parser had to default one or more counters."""
        return bool(self.missing_counters)

    @property
    def succeeded(self) -> bool:
        return self.status is TestStatus.PASSED

    def to_dict(self) -> dict:
        return {
            "name": self.test_name,
            "passedCount": self.passed_count,
            "failedCount": self.failed_count,
            "skippedCount": self.skipped_count,
            "status": self.status.value,
            "durationSeconds": round(self.duration_seconds, 3),
            "failureMessages": list(self.failure_messages),
            "detail": self.detail,
        }


def determine_status(raw: RawExecutionResult, failed_count: int) -> TestStatus:
    """
    Derive a job status from what the runner observed.

    Timeout wins over everything; a job that never started is an
    Exception; a non-zero exit is an Error even if no failures were
    counted; a clean exit with counted failures is Failed.
    """
    if raw.timed_out:
        return TestStatus.TIMEOUT
    if raw.crashed_before_start:
        return TestStatus.EXCEPTION
    if raw.exit_code != 0:
        return TestStatus.ERROR
    if failed_count > 0:
        return TestStatus.FAILED
    return TestStatus.PASSED


@dataclass(frozen=True)
class RunSummary:
    """Finalized aggregate result of one orchestrator invocation."""

    suite_name: str
    total_tests: int
    passed_tests: int
    failed_tests: int
    errored_tests: int
    total_duration_seconds: float
    per_test_results: Tuple[ParsedTestResult, ...] = ()

    @property
    def passed_count(self) -> int:
        return sum(r.passed_count for r in self.per_test_results)

    @property
    def failed_count(self) -> int:
        return sum(r.failed_count for r in self.per_test_results)

    @property
    def skipped_count(self) -> int:
        return sum(r.skipped_count for r in self.per_test_results)

    @property
    def success(self) -> bool:
        return self.failed_tests == 0 and self.errored_tests == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def failing_results(self) -> List[ParsedTestResult]:
        return [r for r in self.per_test_results if not r.succeeded]

    def raise_for_status(self) -> None:
        """Raise AggregateFailure if any job did not pass."""
        if self.success:
            return
        failing = [r.test_name for r in self.failing_results()]
        raise AggregateFailure(
            f"{len(failing)} of {self.total_tests} test(s) did not pass in suite "
            f"{self.suite_name}: {', '.join(failing)}",
            failing_tests=failing,
        )

    def to_dict(self) -> dict:
        return {
            "suite": self.suite_name,
            "totalTests": self.total_tests,
            "passedTests": self.passed_tests,
            "failedTests": self.failed_tests,
            "erroredTests": self.errored_tests,
            "passedCount": self.passed_count,
            "failedCount": self.failed_count,
            "skippedCount": self.skipped_count,
            "totalDurationSeconds": round(self.total_duration_seconds, 3),
            "results": [r.to_dict() for r in self.per_test_results],
        }
