"""
Exception types for the test run orchestrator.

Only EnvironmentSetupError is fatal to a whole run; the other errors are
raised inside a single job and converted into a per-job result by the
orchestrator.

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

from typing import List, Optional


class OrchestratorError(Exception):
    """Base exception for test orchestrator errors."""

    pass


class EnvironmentSetupError(OrchestratorError):
    """Raised when the test environment cannot be created or locked."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class ExecutionError(OrchestratorError):
    """Raised when a test process could not be started."""

    def __init__(
        self,
        message: str,
        test_name: Optional[str] = None,
        command: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.test_name = test_name
        self.command = command


class JobTimeoutError(OrchestratorError):
    """Raised when a job exceeds its deadline."""

    def __init__(self, message: str, test_name: str = None, timeout: float = None):
        super().__init__(message)
        self.test_name = test_name
        self.timeout = timeout


class AggregateFailure(OrchestratorError):
    """Raised when one or more jobs of a finished run did not pass."""

    def __init__(self, message: str, failing_tests: Optional[List[str]] = None):
        super().__init__(message)
        self.failing_tests = failing_tests or []


class UnknownTestError(OrchestratorError):
    """Raised when a requested test name is not among the discovered jobs."""

    def __init__(self, name: str, available: List[str]):
        super().__init__(f"Unknown test '{name}'")
        self.name = name
        self.available = available


class ParseDegradedWarning(UserWarning):
    """Emitted when expected counters were absent from test output."""

    pass
