"""
Run-level aggregation for the test run orchestrator.

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

import dataclasses
import logging
import time
from typing import List, Optional

from .result_types import ParsedTestResult, RunSummary, TestStatus

logger = logging.getLogger(__name__)


class RunAggregator:
    """Accumulates per-test results into a RunSummary."""

    def __init__(self, suite_name: str):
        self.suite_name = suite_name
        self._results: List[ParsedTestResult] = []
        self._started_at = time.monotonic()
        self._summary: Optional[RunSummary] = None

    @property
    def finalized(self) -> bool:
        return self._summary is not None

    def add(self, result: ParsedTestResult) -> None:
        if self._summary is not None:
            raise RuntimeError(
                f"Cannot add {result.test_name}: run summary already finalized"
            )
        # Kept by value; the summary shares no state with the caller
        self._results.append(
            dataclasses.replace(
                result,
                failure_messages=list(result.failure_messages),
                missing_counters=list(result.missing_counters),
            )
        )
        logger.debug(f"Recorded {result.test_name}: {result.status}")

    def __len__(self):
        return len(self._results)

    def finalize(self, total_duration_seconds: Optional[float] = None) -> RunSummary:
        """Freeze the collected results; later calls return the same summary."""
        if self._summary is not None:
            return self._summary

        if total_duration_seconds is None:
            total_duration_seconds = time.monotonic() - self._started_at

        statuses = [r.status for r in self._results]
        self._summary = RunSummary(
            suite_name=self.suite_name,
            total_tests=len(self._results),
            passed_tests=statuses.count(TestStatus.PASSED),
            failed_tests=statuses.count(TestStatus.FAILED),
            errored_tests=sum(1 for s in statuses if s.is_error),
            total_duration_seconds=total_duration_seconds,
            per_test_results=tuple(self._results),
        )
        return self._summary
