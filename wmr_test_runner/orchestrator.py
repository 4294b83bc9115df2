#!/usr/bin/env python3
"""
Test run orchestrator for WindowsMelodyRecovery test suites

This module provides the main orchestration for running one category of
test files: it provisions an isolated environment, discovers the suite's
test files, runs each under a deadline, parses and aggregates the results,
optionally writes a report, and always tears the environment down.

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
import concurrent.futures
import logging
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .aggregator import RunAggregator
from .config import (
    DEFAULT_GRACE_SECONDS,
    RunConfig,
    get_available_test_suites,
    validate_test_suite_name,
)
from .environment import EnvironmentManager, TestEnvironment
from .exceptions import AggregateFailure, EnvironmentSetupError, UnknownTestError
from .execution import SingleTestExecutor
from .log_recorder import LogRecorder, Severity, log_file_name
from .report import preserve_logs, write_reports
from .result_parser import build_test_result, exception_result
from .result_types import ParsedTestResult, RunSummary, TestJob, TestStatus
from .runner import JobExecution, TimeoutBoundedRunner
from .utils import kill_process_tree, setup_logging

logger = logging.getLogger(__name__)

# Formatting constants for output
LINE_WRAP = 78
BANNER_WIDTH = LINE_WRAP - 10
INDENT_STR = "  "

ABORTED_DETAIL = "Aborted by user."


@dataclass
class RunContext:
    """State shared by every stage of one run."""

    config: RunConfig
    env_manager: EnvironmentManager
    environment: TestEnvironment
    log_recorder: LogRecorder


def format_run_summary(
    file_handle,
    summary: RunSummary,
    indent_prefix: str,
    verbose_format: int,
):
    """
    Formats and prints a run summary to the given file handle.
    """
    failing = summary.failing_results()
    if failing:
        file_handle.write(f"{indent_prefix}Failed tests:\n")
        for result in failing:
            if verbose_format:
                file_handle.write(f"{indent_prefix}{INDENT_STR}{'=' * BANNER_WIDTH}\n")
            file_handle.write(
                f"{indent_prefix}{INDENT_STR}{result.test_name}: "
                f"{result.status.display_name()}\n"
            )
            for message in result.failure_messages:
                file_handle.write(f"{indent_prefix}{INDENT_STR * 2}{message}\n")
            if verbose_format and result.detail:
                for line in result.detail.splitlines():
                    file_handle.write(f"{indent_prefix}{INDENT_STR * 2}{line}\n")
            if verbose_format:
                file_handle.write(f"{indent_prefix}{INDENT_STR}{'=' * BANNER_WIDTH}\n")

    file_handle.write(
        f"{indent_prefix}Passed: {summary.passed_count}    "
        f"Failed: {summary.failed_count}    Skipped: {summary.skipped_count}\n"
    )
    file_handle.write(
        f"{indent_prefix}Test files: {summary.total_tests}    "
        f"Passed: {summary.passed_tests}    Failed: {summary.failed_tests}    "
        f"Errored: {summary.errored_tests}    "
        f"Duration: {summary.total_duration_seconds:.1f}s\n"
    )


class TestOrchestrator:
    """Main test orchestrator for running one suite of test files."""

    __test__ = False

    def __init__(self, config: Optional[RunConfig] = None):
        self.config = config
        self.args = None
        self.context: Optional[RunContext] = None
        self.runner: Optional[TimeoutBoundedRunner] = None
        self.aborted = False
        self._in_flight: Dict[str, JobExecution] = {}
        self._in_flight_lock = threading.Lock()
        self._aborted_names = set()
        self._column = 0

    def setup_argument_parser(self) -> argparse.ArgumentParser:
        """Setup argument parser for the orchestrator."""
        parser = argparse.ArgumentParser(
            prog="run-tests",
            description="Run WindowsMelodyRecovery test suites",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  %(prog)s --suite unit
  %(prog)s --suite integration --name Backup-Restore --timeout-minutes 20
  %(prog)s --suite end-to-end --generate-report --workers 4
            """,
        )

        parser.add_argument(
            "--suite",
            default="unit",
            help=f"Test suite to run (known: {', '.join(get_available_test_suites())}; "
            "default: unit)",
        )
        parser.add_argument(
            "--name",
            help="Run only the test file with this name (file name without the "
            "suite's pattern suffix)",
        )
        parser.add_argument(
            "--timeout-minutes",
            type=float,
            help="Per-test deadline in minutes (default: the suite's own)",
        )
        parser.add_argument(
            "--grace-seconds",
            type=float,
            default=DEFAULT_GRACE_SECONDS,
            help="How long a timed-out test gets to exit before it is killed "
            f"(default: {DEFAULT_GRACE_SECONDS:g})",
        )
        parser.add_argument(
            "--generate-report",
            action="store_true",
            help="Write JUnit XML and JSON reports and keep the logs in the results directory",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Take over the suite's test environment even if another run holds it",
        )
        parser.add_argument(
            "--workers",
            type=int,
            default=1,
            help="Number of test files to run at once (default: 1)",
        )
        parser.add_argument(
            "--tests-dir",
            type=Path,
            help="Directory containing the test files (default: the suite's directory)",
        )
        parser.add_argument(
            "--project-root",
            type=Path,
            help="Project root the tests run in (default: current directory)",
        )
        parser.add_argument(
            "--results-dir",
            type=Path,
            help="Where reports are written (default: <project-root>/test-results)",
        )
        parser.add_argument(
            "--environment-root",
            type=Path,
            help="Base directory for test environments "
            "(default: $WMR_TEST_ENVIRONMENT_ROOT or <project-root>/test-environment)",
        )
        parser.add_argument(
            "--engine",
            help="Test engine command line; {test_file} is replaced by the test "
            "file path (default: $WMR_TEST_ENGINE or Invoke-Pester via pwsh)",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="List the suite's test files and exit",
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Enable extra verbosity (use multiple -v for more detail).\n"
            "  -v: Show each test name and its status on a new line.\n"
            "  -vv: In addition to -v, show failure details in the summary.",
        )
        parser.add_argument(
            "-d",
            "--debug",
            action="count",
            default=0,
            help="Enable extra debugging output (use multiple -d for more detail).\n"
            "  -d: DEBUG level for logger, echoing every line of test output.",
        )

        return parser

    def process_arguments(self, args: argparse.Namespace) -> None:
        """Process arguments and setup orchestrator state."""
        self.args = args

        setup_logging(level=logging.WARNING)
        logging.captureWarnings(True)
        if args.debug > 0:
            logging.getLogger().setLevel(logging.DEBUG)
        elif args.verbose > 0:
            logging.getLogger().setLevel(logging.INFO)
        else:
            logging.getLogger().setLevel(logging.WARNING)

        if not validate_test_suite_name(args.suite):
            logger.warning(
                f"Suite '{args.suite}' is not a known suite; "
                f"looking for tests in tests/{args.suite}"
            )

        self.config = RunConfig.from_args(args)

    def _logs_path(self, env_manager: EnvironmentManager) -> Path:
        suite_name = self.config.suite.name
        return TestEnvironment.for_root(
            suite_name, env_manager.root_for(suite_name)
        ).logs_path

    def discover(
        self, name: Optional[str] = None, logs_path: Optional[Path] = None
    ) -> List[TestJob]:
        """
        Find the suite's test files.

        Args:
            name: Only return the job with this name
            logs_path: Directory the jobs' log files will live in

        Returns:
            Jobs sorted by test file name

        Raises:
            UnknownTestError: If name does not match any discovered job
        """
        suite = self.config.suite
        tests_dir = self.config.get_tests_dir()
        if logs_path is None:
            logs_path = self._logs_path(
                EnvironmentManager(self.config.get_environment_base())
            )

        if not tests_dir.is_dir():
            logger.warning(f"Test directory {tests_dir} does not exist")
            test_files = []
        else:
            test_files = sorted(
                (p for p in tests_dir.glob(suite.pattern) if p.is_file()),
                key=lambda p: p.name,
            )

        jobs = []
        for test_file in test_files:
            test_name = suite.job_name_for(test_file)
            jobs.append(
                TestJob(
                    test_name=test_name,
                    test_file_path=test_file.resolve(),
                    log_file_path=logs_path / log_file_name(test_name),
                )
            )
        logger.debug(f"Discovered {len(jobs)} test file(s) in {tests_dir}")

        if name is not None:
            selected = [job for job in jobs if job.test_name == name]
            if not selected:
                raise UnknownTestError(name, [job.test_name for job in jobs])
            return selected
        return jobs

    def run_job(self, job: TestJob, timeout_seconds: Optional[float]) -> ParsedTestResult:
        """
        Run one job and turn whatever happens into a result.

        Only KeyboardInterrupt escapes; any other error becomes an
        Exception result so the rest of the batch still runs.
        """
        recorder = self.context.log_recorder
        started = time.monotonic()
        try:
            with recorder.open_test_log(job) as handle:
                recorder.append(handle, f"Starting {job.test_file_path}")
                execution = self.runner.start(job)
                with self._in_flight_lock:
                    self._in_flight[job.test_name] = execution
                try:
                    raw = execution.wait(timeout_seconds)
                finally:
                    with self._in_flight_lock:
                        self._in_flight.pop(job.test_name, None)

                for line in raw.combined_output:
                    recorder.append(handle, line, Severity.DEBUG, mirror=False)

                result = build_test_result(job, raw)
                severity = Severity.INFO if result.succeeded else Severity.ERROR
                recorder.append(
                    handle,
                    f"Finished with status {result.status} "
                    f"(passed {result.passed_count}, failed {result.failed_count}, "
                    f"skipped {result.skipped_count}) in {result.duration_seconds:.2f}s",
                    severity,
                )
                if raw.error:
                    recorder.append(handle, raw.error, Severity.ERROR)
                return result
        except Exception as e:
            logger.error(f"Error running test {job.test_name}: {e}")
            return exception_result(job, e, time.monotonic() - started)

    def _abort_in_flight(self) -> None:
        with self._in_flight_lock:
            executions = list(self._in_flight.values())
            self._aborted_names.update(self._in_flight)
        for execution in executions:
            if execution.process is not None:
                kill_process_tree(execution.process, self.config.grace_seconds)

    def _aborted_result(self, job: TestJob) -> ParsedTestResult:
        return ParsedTestResult(
            test_name=job.test_name,
            status=TestStatus.EXCEPTION,
            failure_messages=[ABORTED_DETAIL],
            detail=ABORTED_DETAIL,
        )

    def _show_progress(self, result: ParsedTestResult, indent_prefix: str) -> None:
        if self.config.verbose:
            detail_str = ""
            if not result.succeeded and result.failure_messages:
                detail_str = f" - {result.failure_messages[0]}"
            print(
                f"{indent_prefix}{result.test_name}: "
                f"{result.status.display_name()}{detail_str}"
            )
            return

        if self._column == 0:
            print(indent_prefix, end="")
            self._column = len(indent_prefix)
        print(result.status.display_char(), end="", flush=True)
        self._column += 1
        if self._column >= LINE_WRAP:
            print()
            self._column = 0

    def run_all(
        self, jobs: List[TestJob], timeout_seconds: Optional[float]
    ) -> RunSummary:
        """
        Run every job and fold the results into a RunSummary.

        Results are added in discovery order on the calling thread no
        matter how many workers ran them. Ctrl-C kills the running jobs,
        records them as aborted and stops the batch.
        """
        aggregator = RunAggregator(self.config.suite.name)
        results: List[Optional[ParsedTestResult]] = [None] * len(jobs)
        started = time.monotonic()
        indent_prefix = INDENT_STR

        try:
            if self.config.workers == 1:
                for i, job in enumerate(jobs):
                    results[i] = self.run_job(job, timeout_seconds)
                    self._show_progress(results[i], indent_prefix)
            else:
                with concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.config.workers, thread_name_prefix="test-job"
                ) as pool:
                    futures = {
                        pool.submit(self.run_job, job, timeout_seconds): i
                        for i, job in enumerate(jobs)
                    }
                    try:
                        for future in concurrent.futures.as_completed(futures):
                            i = futures[future]
                            results[i] = future.result()
                            self._show_progress(results[i], indent_prefix)
                    except KeyboardInterrupt:
                        pool.shutdown(wait=False, cancel_futures=True)
                        self._abort_in_flight()
                        raise
        except KeyboardInterrupt:
            logger.warning(
                f"\n{indent_prefix}Test execution aborted by user (SIGINT received)."
            )
            self.aborted = True
            self._abort_in_flight()
            for i, job in enumerate(jobs):
                if results[i] is None and (
                    job.test_name in self._aborted_names or self.config.workers == 1
                ):
                    results[i] = self._aborted_result(job)
                    if self.config.workers == 1:
                        break

        if self._column:
            print()
            self._column = 0

        for result in results:
            if result is not None:
                aggregator.add(result)
        return aggregator.finalize(time.monotonic() - started)

    def _write_artifacts(self, summary: RunSummary) -> None:
        results_dir = self.config.get_results_dir()
        try:
            report = write_reports(
                summary, results_dir, self.config.suite.get_report_name()
            )
            print(f"Report written to {report}")
        except OSError as e:
            logger.error(f"Could not write report to {results_dir}: {e}")
        preserve_logs(
            self.context.environment.logs_path, results_dir, self.config.suite.name
        )

    def run(self, name: Optional[str] = None) -> RunSummary:
        """
        Provision, run and tear down one suite.

        Unknown test names are rejected before anything is created. The
        environment is torn down exactly once however the run ends.

        Raises:
            UnknownTestError: If name is not a discovered job
            EnvironmentSetupError: If the environment cannot be provisioned
        """
        config = self.config
        suite_name = config.suite.name
        env_manager = EnvironmentManager(config.get_environment_base())
        jobs = self.discover(name, logs_path=self._logs_path(env_manager))

        environment = env_manager.initialize(suite_name, force=config.force)
        recorder = None
        try:
            recorder = LogRecorder(environment.logs_path)
            self.context = RunContext(
                config=config,
                env_manager=env_manager,
                environment=environment,
                log_recorder=recorder,
            )
            executor = SingleTestExecutor(
                config.engine_command,
                config.project_root,
                env_vars=environment.as_env_vars(),
            )
            self.runner = TimeoutBoundedRunner(executor, config.grace_seconds)

            timeout_seconds = config.get_timeout_seconds()
            recorder.log_run(
                f"Running {len(jobs)} test file(s) from suite {suite_name} "
                f"with a {timeout_seconds:g}s deadline each"
            )
            print(f"Running {suite_name} tests ({len(jobs)} file(s)):")
            summary = self.run_all(jobs, timeout_seconds)
            recorder.log_run(
                f"Finished: {summary.passed_tests} passed, {summary.failed_tests} "
                f"failed, {summary.errored_tests} errored",
                Severity.INFO if summary.success else Severity.ERROR,
            )

            if config.generate_report:
                self._write_artifacts(summary)
            return summary
        finally:
            if recorder is not None:
                recorder.close()
            env_manager.teardown(environment)

    def main(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point for test orchestration."""
        parser = self.setup_argument_parser()
        args = parser.parse_args(argv)
        try:
            self.process_arguments(args)
        except ValueError as e:
            parser.error(str(e))

        if args.list:
            for job in self.discover():
                print(job.test_name)
            return 0

        try:
            summary = self.run(args.name)
        except UnknownTestError as e:
            print(f"{e}. Available tests in suite {self.config.suite.name}:")
            for available in e.available:
                print(f"{INDENT_STR}{available}")
            return 1
        except EnvironmentSetupError as e:
            logger.error(f"Could not set up test environment: {e}")
            return 1

        print("---")
        print(f"Summary for suite {summary.suite_name}:")
        format_run_summary(sys.stdout, summary, INDENT_STR, self.config.verbose > 1)

        if self.aborted:
            logger.warning(ABORTED_DETAIL)
        try:
            summary.raise_for_status()
        except AggregateFailure as e:
            logger.error(str(e))
        return summary.exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for test orchestration."""
    orchestrator = TestOrchestrator()
    return orchestrator.main(argv)


if __name__ == "__main__":
    sys.exit(main())
