"""
WindowsMelodyRecovery Test Runner

Runs the WindowsMelodyRecovery test suites one test file at a time, each in
its own process under a deadline, inside an isolated per-suite environment,
and reports the aggregated outcome as an exit code and optional JUnit XML.

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

# Package metadata
__version__ = "1.0.0"
__author__ = "David Beckett"
__email__ = "dave@dajobe.org"
__license__ = "LGPL/GPL/Apache"

# Re-export main classes for convenience
from .config import (
    RunConfig,
    TestSuiteConfig,
    KNOWN_TEST_SUITES,
    get_test_suite_config,
    get_available_test_suites,
    validate_test_suite_name,
    resolve_engine_command,
)
from .exceptions import (
    OrchestratorError,
    EnvironmentSetupError,
    ExecutionError,
    JobTimeoutError,
    AggregateFailure,
    UnknownTestError,
    ParseDegradedWarning,
)
from .result_types import (
    TestStatus,
    TestJob,
    RawExecutionResult,
    ParsedTestResult,
    RunSummary,
    determine_status,
)
from .environment import EnvironmentManager, TestEnvironment
from .log_recorder import LogRecorder, TestLogHandle, Severity
from .execution import SingleTestExecutor
from .runner import TimeoutBoundedRunner, RunnerState
from .result_parser import parse_output, build_test_result
from .aggregator import RunAggregator
from .report import write_reports, write_junit_report
from .orchestrator import TestOrchestrator, RunContext, main

__all__ = [
    # Configuration
    "RunConfig",
    "TestSuiteConfig",
    "KNOWN_TEST_SUITES",
    "get_test_suite_config",
    "get_available_test_suites",
    "validate_test_suite_name",
    "resolve_engine_command",
    # Errors
    "OrchestratorError",
    "EnvironmentSetupError",
    "ExecutionError",
    "JobTimeoutError",
    "AggregateFailure",
    "UnknownTestError",
    "ParseDegradedWarning",
    # Types
    "TestStatus",
    "TestJob",
    "RawExecutionResult",
    "ParsedTestResult",
    "RunSummary",
    "determine_status",
    # Components
    "EnvironmentManager",
    "TestEnvironment",
    "LogRecorder",
    "TestLogHandle",
    "Severity",
    "SingleTestExecutor",
    "TimeoutBoundedRunner",
    "RunnerState",
    "parse_output",
    "build_test_result",
    "RunAggregator",
    "write_reports",
    "write_junit_report",
    "TestOrchestrator",
    "RunContext",
    "main",
]
