"""
Test engine output parsing for the test run orchestrator

Turns the human-readable text emitted by the test engine into counters and
failure messages. Each counter is an independent pattern with a default of
zero, so output cut short by a crash still yields a usable result.

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
import re
import warnings
from typing import Iterable, List, Optional, Union

from .exceptions import ParseDegradedWarning
from .result_types import (
    ParsedTestResult,
    RawExecutionResult,
    TestJob,
    TestStatus,
    determine_status,
)
from .utils import get_signal_description, is_signal_termination

logger = logging.getLogger(__name__)

# Counter name -> pattern; the first line matching wins
COUNTER_PATTERNS = {
    "passed": re.compile(r"\bpassed\s*[:=]\s*(\d+)", re.IGNORECASE),
    "failed": re.compile(r"\bfailed\s*[:=]\s*(\d+)", re.IGNORECASE),
    "skipped": re.compile(r"\bskipped\s*[:=]\s*(\d+)", re.IGNORECASE),
}

# Lines kept verbatim as failure messages
FAILURE_LINE_PATTERNS = [
    re.compile(r"^\s*\[-\]"),  # Pester failed test marker
    re.compile(r"^\s*(?:Error|Exception|RuntimeException)\b\s*:"),
    re.compile(r"^\s*Expected\b"),
    re.compile(r"^\s*FAIL(?:ED)?\s*:"),
]

# How much trailing output to quote when a job dies without saying why
TAIL_LINES = 10


def _as_lines(output: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(output, str):
        return output.splitlines()
    return list(output)


def extract_counter(lines: List[str], name: str) -> Optional[int]:
    """Return the first value of a named counter, or None if absent."""
    pattern = COUNTER_PATTERNS[name]
    for line in lines:
        match = pattern.search(line)
        if match:
            return int(match.group(1))
    return None


def extract_failure_messages(lines: List[str]) -> List[str]:
    """Collect failure lines in output order, unchanged."""
    return [
        line
        for line in lines
        if any(pattern.search(line) for pattern in FAILURE_LINE_PATTERNS)
    ]


def parse_output(
    output: Union[str, Iterable[str]], test_name: str = ""
) -> ParsedTestResult:
    """
    Parse raw engine output into a ParsedTestResult.

    Missing counters default to 0 and are listed in missing_counters. The
    status assumes the engine exited cleanly; build_test_result() applies
    the full rule once the exit code and timeout state are known.

    Args:
        output: Raw output text or sequence of lines
        test_name: Name to put on the result

    Returns:
        ParsedTestResult with counters, failure messages and a provisional status
    """
    lines = _as_lines(output)
    counts = {}
    missing = []
    for name in COUNTER_PATTERNS:
        value = extract_counter(lines, name)
        if value is None:
            missing.append(name)
            value = 0
        counts[name] = value

    if missing:
        logger.debug(
            f"{test_name or 'output'} has no {', '.join(missing)} counter(s); "
            f"defaulting to 0"
        )

    return ParsedTestResult(
        test_name=test_name,
        passed_count=counts["passed"],
        failed_count=counts["failed"],
        skipped_count=counts["skipped"],
        status=TestStatus.FAILED if counts["failed"] > 0 else TestStatus.PASSED,
        failure_messages=extract_failure_messages(lines),
        missing_counters=missing,
    )


def _tail(lines: List[str]) -> str:
    return "\n".join(lines[-TAIL_LINES:])


def describe_outcome(raw: RawExecutionResult, status: TestStatus) -> str:
    """Human-readable detail explaining a non-passing status."""
    if status is TestStatus.TIMEOUT:
        return raw.error or "Test exceeded its deadline"
    if status is TestStatus.EXCEPTION:
        return raw.error or "Test could not be started"
    if status is TestStatus.ERROR:
        # Engines are spawned without a shell; a high exit code is just a count
        is_signal, signal_num = is_signal_termination(raw.exit_code)
        if is_signal:
            detail = f"CRASH: Terminated by {get_signal_description(signal_num)}"
        else:
            detail = f"Test engine exited with code {raw.exit_code}"
        if raw.combined_output:
            detail += "\nLast output:\n" + _tail(raw.combined_output)
        return detail
    return ""


def build_test_result(job: TestJob, raw: RawExecutionResult) -> ParsedTestResult:
    """
    Combine a job's raw execution result with its parsed output.

    Output of a timed-out job is parsed for failure messages only; its
    counters are never reported.
    """
    result = parse_output(raw.combined_output, job.test_name)
    result.status = determine_status(raw, result.failed_count)
    result.duration_seconds = raw.duration_seconds

    if raw.timed_out:
        result.passed_count = result.failed_count = result.skipped_count = 0

    result.detail = describe_outcome(raw, result.status)
    if result.status is not TestStatus.PASSED and not result.failure_messages:
        if result.detail:
            result.failure_messages = [result.detail.splitlines()[0]]

    if result.is_degraded and raw.completed:
        warnings.warn(
            f"Output of {job.test_name} lacked {', '.join(result.missing_counters)} "
            f"counter(s); counts may be incomplete",
            ParseDegradedWarning,
            stacklevel=2,
        )
    return result


def exception_result(job: TestJob, error: BaseException, duration: float = 0.0) -> ParsedTestResult:
    """Result for a job whose processing raised before producing output."""
    message = f"{type(error).__name__}: {error}"
    return ParsedTestResult(
        test_name=job.test_name,
        status=TestStatus.EXCEPTION,
        failure_messages=[message],
        duration_seconds=duration,
        missing_counters=list(COUNTER_PATTERNS),
        detail=message,
    )
