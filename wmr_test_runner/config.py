"""
Run configuration and suite management for the test run orchestrator

This module contains the suite definitions (where each category of test
files lives, how they are matched, how long they may run and where their
report goes) and the per-invocation run configuration.

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

import argparse
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

# Environment variables consulted when no command line value is given
ENGINE_ENV_VAR = "WMR_TEST_ENGINE"
ENVIRONMENT_ROOT_ENV_VAR = "WMR_TEST_ENVIRONMENT_ROOT"

DEFAULT_ENGINE_COMMAND = [
    "pwsh",
    "-NoProfile",
    "-NonInteractive",
    "-Command",
    "Invoke-Pester -Path '{test_file}' -Output Detailed -CI",
]
DEFAULT_PATTERN = "*.Tests.ps1"
DEFAULT_GRACE_SECONDS = 5.0
DEFAULT_ENVIRONMENT_DIR = "test-environment"
DEFAULT_RESULTS_DIR = "test-results"


@dataclass
class TestSuiteConfig:
    """Configuration for a test suite defining where its jobs come from."""

    __test__ = False

    name: str
    directory: str  # Relative to the project root
    pattern: str = DEFAULT_PATTERN
    timeout_minutes: float = 5
    report_name: Optional[str] = None

    def get_report_name(self) -> str:
        """File name of the JUnit report for this suite."""
        return self.report_name or f"{self.name}-test-results.xml"

    def job_name_for(self, test_file: Path) -> str:
        """Derive the job name from a test file name by dropping the pattern suffix."""
        suffix = self.pattern.lstrip("*")
        name = test_file.name
        if suffix and name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
        return test_file.stem


# Define known test suites
KNOWN_TEST_SUITES = {
    "unit": TestSuiteConfig(
        name="unit",
        directory="tests/unit",
        timeout_minutes=5,
        report_name="unit-test-results.xml",
    ),
    "file-operations": TestSuiteConfig(
        name="file-operations",
        directory="tests/file-operations",
        timeout_minutes=10,
        report_name="file-operations-test-results.xml",
    ),
    "integration": TestSuiteConfig(
        name="integration",
        directory="tests/integration",
        timeout_minutes=15,
        report_name="integration-test-results.xml",
    ),
    "end-to-end": TestSuiteConfig(
        name="end-to-end",
        directory="tests/end-to-end",
        timeout_minutes=30,
        report_name="e2e-test-results.xml",
    ),
}


def get_test_suite_config(suite_name: str) -> TestSuiteConfig:
    """Get configuration for a test suite by name.

    Args:
        suite_name: Name of the test suite

    Returns:
        TestSuiteConfig for the named suite, or a default config rooted at
        tests/<suite_name> for unknown suites
    """
    if suite_name not in KNOWN_TEST_SUITES:
        return TestSuiteConfig(name=suite_name, directory=f"tests/{suite_name}")
    return KNOWN_TEST_SUITES[suite_name]


def get_available_test_suites() -> List[str]:
    """Get list of available test suite names."""
    return list(KNOWN_TEST_SUITES.keys())


def validate_test_suite_name(suite_name: str) -> bool:
    """Validate if a test suite name is known."""
    return suite_name in KNOWN_TEST_SUITES


def resolve_engine_command(engine: Optional[str] = None) -> List[str]:
    """
    Work out the test engine command line.

    An explicit value wins, then the WMR_TEST_ENGINE environment variable,
    then the Pester default. String values are split with shlex.
    """
    value = engine or os.environ.get(ENGINE_ENV_VAR)
    if value:
        return shlex.split(value)
    return list(DEFAULT_ENGINE_COMMAND)


@dataclass
class RunConfig:
    """Everything one orchestrator invocation needs to know."""

    project_root: Path
    suite: TestSuiteConfig
    engine_command: List[str] = field(default_factory=resolve_engine_command)
    tests_dir: Optional[Path] = None
    timeout_minutes: Optional[float] = None
    workers: int = 1
    grace_seconds: float = DEFAULT_GRACE_SECONDS
    environment_base: Optional[Path] = None
    results_dir: Optional[Path] = None
    force: bool = False
    generate_report: bool = False
    verbose: int = 0
    debug: int = 0

    def __post_init__(self):
        self.project_root = Path(self.project_root).resolve()
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if self.timeout_minutes is not None and self.timeout_minutes <= 0:
            raise ValueError(
                f"timeout must be a positive number of minutes, got {self.timeout_minutes}"
            )

    def get_tests_dir(self) -> Path:
        if self.tests_dir is not None:
            return Path(self.tests_dir)
        return self.project_root / self.suite.directory

    def get_timeout_seconds(self) -> float:
        minutes = self.timeout_minutes
        if minutes is None:
            minutes = self.suite.timeout_minutes
        return minutes * 60.0

    def get_environment_base(self) -> Path:
        if self.environment_base is not None:
            return Path(self.environment_base)
        from_env = os.environ.get(ENVIRONMENT_ROOT_ENV_VAR)
        if from_env:
            return Path(from_env)
        return self.project_root / DEFAULT_ENVIRONMENT_DIR

    def get_results_dir(self) -> Path:
        if self.results_dir is not None:
            return Path(self.results_dir)
        return self.project_root / DEFAULT_RESULTS_DIR

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RunConfig":
        """Build a RunConfig from parsed command line arguments."""
        return cls(
            project_root=args.project_root or Path.cwd(),
            suite=get_test_suite_config(args.suite),
            engine_command=resolve_engine_command(args.engine),
            tests_dir=args.tests_dir,
            timeout_minutes=args.timeout_minutes,
            workers=args.workers,
            grace_seconds=args.grace_seconds,
            environment_base=args.environment_root,
            results_dir=args.results_dir,
            force=args.force,
            generate_report=args.generate_report,
            verbose=args.verbose,
            debug=args.debug,
        )
