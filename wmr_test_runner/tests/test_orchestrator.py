"""
Tests for TestOrchestrator: discovery, batch runs, teardown and the
command line surface.

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

import io
import logging
import shlex
import sys
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

from wmr_test_runner.environment import EnvironmentManager
from wmr_test_runner.exceptions import EnvironmentSetupError, UnknownTestError
from wmr_test_runner.orchestrator import TestOrchestrator, format_run_summary
from wmr_test_runner.result_parser import build_test_result
from wmr_test_runner.result_types import ParsedTestResult, TestStatus

from .test_base import RunnerTestBase


class TestDiscovery(RunnerTestBase):
    """Test finding test files for a suite."""

    def setUp(self):
        super().setUp()
        self.orchestrator = TestOrchestrator(self.make_config())

    def test_sorted_and_filtered_by_pattern(self):
        self.write_test_script("Zeta")
        self.write_test_script("Alpha")
        (self.tests_dir / "helper.py").write_text("")
        (self.tests_dir / "Nested.Tests.py").mkdir()

        jobs = self.orchestrator.discover()

        self.assertEqual([job.test_name for job in jobs], ["Alpha", "Zeta"])
        self.assertTrue(all(job.test_file_path.is_absolute() for job in jobs))
        self.assertEqual(jobs[0].log_file_path.name, "Alpha.log")
        self.assertEqual(jobs[0].log_file_path.parent.name, "logs")

    def test_single_name(self):
        self.write_test_script("Alpha")
        self.write_test_script("Beta")

        jobs = self.orchestrator.discover("Beta")

        self.assertEqual([job.test_name for job in jobs], ["Beta"])

    def test_unknown_name_lists_available(self):
        self.write_test_script("Alpha")

        with self.assertRaises(UnknownTestError) as cm:
            self.orchestrator.discover("Gamma")
        self.assertEqual(cm.exception.available, ["Alpha"])

    def test_missing_directory_yields_no_jobs(self):
        orchestrator = TestOrchestrator(self.make_config(tests_dir=self.temp_dir / "none"))
        with self.assertLogs("wmr_test_runner.orchestrator", level="WARNING"):
            self.assertEqual(orchestrator.discover(), [])


class TestRun(RunnerTestBase):
    """Run whole batches of real child processes."""

    def run_quietly(self, orchestrator, name=None):
        with redirect_stdout(io.StringIO()):
            return orchestrator.run(name)

    def test_fault_isolation_across_batch(self):
        self.write_test_script("A", passed=3)
        self.write_test_script(
            "B", summary=False, body="raise RuntimeError('crash in test file')"
        )
        self.write_test_script("C", passed=2, skipped=1)
        orchestrator = TestOrchestrator(self.make_config())

        summary = self.run_quietly(orchestrator)

        self.assertEqual(summary.total_tests, 3)
        statuses = {r.test_name: r.status for r in summary.per_test_results}
        self.assertEqual(
            statuses,
            {"A": TestStatus.PASSED, "B": TestStatus.ERROR, "C": TestStatus.PASSED},
        )
        self.assertEqual(summary.passed_count, 5)
        self.assertEqual(summary.skipped_count, 1)
        self.assertEqual(summary.exit_code, 1)

    def test_results_in_discovery_order_with_workers(self):
        for name, delay in (("A", 0.6), ("B", 0.0), ("C", 0.3), ("D", 0.0)):
            self.write_test_script(name, passed=1, body=f"time.sleep({delay})")
        orchestrator = TestOrchestrator(self.make_config(workers=3))

        summary = self.run_quietly(orchestrator)

        self.assertEqual([r.test_name for r in summary.per_test_results], ["A", "B", "C", "D"])
        self.assertTrue(summary.success)

    def test_environment_and_logs(self):
        self.write_test_script(
            "Env", passed=1, body="print('TEMP=' + os.environ['WMR_TEST_TEMP'], flush=True)"
        )
        orchestrator = TestOrchestrator(self.make_config(generate_report=True))

        summary = self.run_quietly(orchestrator)

        self.assertTrue(summary.success)
        env_root = self.environment_base / "sample"
        self.assertFalse(env_root.exists())
        self.assertFalse((self.environment_base / ".sample.lock").exists())

        preserved = self.results_dir / "logs" / "sample"
        test_log = (preserved / "Env.log").read_text()
        self.assertIn(f"TEMP={env_root.resolve() / 'temp'}", test_log)
        run_log = (preserved / "run.log").read_text()
        self.assertIn("[Env] Finished with status Passed", run_log)
        self.assertNotIn("TEMP=", run_log)
        self.assertTrue((self.results_dir / "sample-test-results.xml").exists())
        self.assertTrue((self.results_dir / "sample-test-results.json").exists())

    def test_no_report_without_flag(self):
        self.write_test_script("A", passed=1)
        self.run_quietly(TestOrchestrator(self.make_config()))
        self.assertFalse(self.results_dir.exists())

    def test_timeout_recorded(self):
        self.write_test_script("Hang", body="time.sleep(10)")
        self.write_test_script("Quick", passed=1)
        orchestrator = TestOrchestrator(self.make_config(timeout_minutes=1 / 60))

        summary = self.run_quietly(orchestrator)

        results = {r.test_name: r for r in summary.per_test_results}
        self.assertIs(results["Hang"].status, TestStatus.TIMEOUT)
        self.assertEqual(results["Hang"].passed_count, 0)
        self.assertIs(results["Quick"].status, TestStatus.PASSED)
        self.assertEqual(summary.errored_tests, 1)

    def test_job_error_becomes_exception_result(self):
        self.write_test_script("A", passed=1)
        self.write_test_script("B", passed=1)
        orchestrator = TestOrchestrator(self.make_config())

        def flaky_build(job, raw):
            if job.test_name == "A":
                raise ValueError("parser exploded")
            return build_test_result(job, raw)

        with patch("wmr_test_runner.orchestrator.build_test_result", side_effect=flaky_build):
            with self.assertLogs("wmr_test_runner.orchestrator", level="ERROR"):
                summary = self.run_quietly(orchestrator)

        statuses = [r.status for r in summary.per_test_results]
        self.assertEqual(statuses, [TestStatus.EXCEPTION, TestStatus.PASSED])
        self.assertEqual(
            summary.per_test_results[0].failure_messages, ["ValueError: parser exploded"]
        )

    def test_teardown_exactly_once_when_run_all_raises(self):
        self.write_test_script("A", passed=1)
        orchestrator = TestOrchestrator(self.make_config())

        calls = []
        real_teardown = EnvironmentManager.teardown

        def counting_teardown(manager, env):
            calls.append(env)
            return real_teardown(manager, env)

        with patch.object(EnvironmentManager, "teardown", counting_teardown), patch(
            "wmr_test_runner.orchestrator.RunAggregator.add",
            side_effect=RuntimeError("aggregator broke"),
        ):
            with self.assertRaises(RuntimeError):
                self.run_quietly(orchestrator)

        self.assertEqual(len(calls), 1)
        self.assertFalse((self.environment_base / "sample").exists())
        self.assertFalse((self.environment_base / ".sample.lock").exists())

    def test_unknown_name_does_no_work(self):
        self.write_test_script("A")
        orchestrator = TestOrchestrator(self.make_config())

        with self.assertRaises(UnknownTestError):
            self.run_quietly(orchestrator, "Missing")
        self.assertFalse(self.environment_base.exists())

    def test_interrupt_aborts_batch(self):
        self.write_test_script("A", passed=1)
        self.write_test_script("B", passed=1)
        self.write_test_script("C", passed=1)
        orchestrator = TestOrchestrator(self.make_config())
        real_run_job = orchestrator.run_job

        def interrupting(job, timeout):
            if job.test_name == "B":
                raise KeyboardInterrupt
            return real_run_job(job, timeout)

        with patch.object(orchestrator, "run_job", side_effect=interrupting):
            with self.assertLogs("wmr_test_runner.orchestrator", level="WARNING"):
                summary = self.run_quietly(orchestrator)

        self.assertTrue(orchestrator.aborted)
        self.assertEqual([r.test_name for r in summary.per_test_results], ["A", "B"])
        self.assertIs(summary.per_test_results[1].status, TestStatus.EXCEPTION)
        self.assertEqual(summary.per_test_results[1].detail, "Aborted by user.")
        self.assertFalse((self.environment_base / "sample").exists())


class TestFormatRunSummary(unittest.TestCase):
    def test_summary_lines(self):
        from wmr_test_runner.aggregator import RunAggregator

        aggregator = RunAggregator("unit")
        aggregator.add(ParsedTestResult("Good", passed_count=4, skipped_count=1))
        aggregator.add(
            ParsedTestResult(
                "Bad",
                passed_count=1,
                failed_count=2,
                status=TestStatus.FAILED,
                failure_messages=["[-] first", "[-] second"],
            )
        )
        out = io.StringIO()

        format_run_summary(out, aggregator.finalize(2.0), "  ", False)

        text = out.getvalue()
        self.assertIn("Failed tests:\n    Bad: FAILED\n      [-] first\n      [-] second\n", text)
        self.assertIn("Passed: 5    Failed: 2    Skipped: 1", text)
        self.assertIn("Test files: 2    Passed: 1    Failed: 1    Errored: 0", text)


class TestCommandLine(RunnerTestBase):
    """Test the run-tests command line surface."""

    def base_args(self):
        return [
            "--suite",
            "sample",
            "--tests-dir",
            str(self.tests_dir),
            "--project-root",
            str(self.temp_dir),
            "--environment-root",
            str(self.environment_base),
            "--results-dir",
            str(self.results_dir),
            "--engine",
            shlex.quote(sys.executable),
            "--grace-seconds",
            "1",
        ]

    def run_main(self, extra):
        out = io.StringIO()
        with redirect_stdout(out), patch(
            "wmr_test_runner.orchestrator.setup_logging"
        ), patch("wmr_test_runner.orchestrator.logging.captureWarnings"):
            code = TestOrchestrator().main(self.base_args() + extra)
        return code, out.getvalue()

    def setUp(self):
        super().setUp()
        self.addCleanup(logging.getLogger().setLevel, logging.getLogger().level)
        # Known suites use the Pester naming; point the ad hoc suite at our scripts
        patcher = patch(
            "wmr_test_runner.config.get_test_suite_config",
            side_effect=lambda name: self.make_suite(name),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_parser_options(self):
        parser = TestOrchestrator().setup_argument_parser()
        args = parser.parse_args(
            ["--suite", "integration", "--name", "X", "--timeout-minutes", "2.5",
             "--workers", "4", "--force", "--generate-report", "-vv", "-d"]
        )
        self.assertEqual(args.suite, "integration")
        self.assertEqual(args.name, "X")
        self.assertEqual(args.timeout_minutes, 2.5)
        self.assertEqual(args.workers, 4)
        self.assertTrue(args.force)
        self.assertTrue(args.generate_report)
        self.assertEqual(args.verbose, 2)
        self.assertEqual(args.debug, 1)
        self.assertFalse(args.list)

        defaults = parser.parse_args([])
        self.assertEqual(defaults.suite, "unit")
        self.assertEqual(defaults.workers, 1)
        self.assertEqual(defaults.grace_seconds, 5.0)

    def test_all_pass_exits_zero(self):
        self.write_test_script("A", passed=2)
        self.write_test_script("B", passed=1)

        code, out = self.run_main([])

        self.assertEqual(code, 0)
        self.assertIn("Summary for suite sample:", out)
        self.assertIn("Passed: 3    Failed: 0    Skipped: 0", out)

    def test_failure_exits_one(self):
        self.write_test_script("A", passed=2)
        self.write_test_script("B", passed=1, failed=1, body="print('[-] it broke', flush=True)")

        code, out = self.run_main([])

        self.assertEqual(code, 1)
        self.assertIn("B: FAILED", out)
        self.assertIn("[-] it broke", out)

    def test_unknown_name_prints_jobs_and_exits_one(self):
        self.write_test_script("Alpha")
        self.write_test_script("Beta")

        code, out = self.run_main(["--name", "Gamma"])

        self.assertEqual(code, 1)
        self.assertIn("Unknown test 'Gamma'", out)
        self.assertIn("  Alpha\n  Beta\n", out)
        self.assertFalse(self.environment_base.exists())

    def test_list(self):
        self.write_test_script("Beta")
        self.write_test_script("Alpha")

        code, out = self.run_main(["--list"])

        self.assertEqual(code, 0)
        self.assertEqual(out, "Alpha\nBeta\n")

    def test_environment_setup_error_exits_one(self):
        self.write_test_script("A", passed=1)
        with patch.object(
            EnvironmentManager, "initialize", side_effect=EnvironmentSetupError("locked")
        ):
            code, _ = self.run_main([])
        self.assertEqual(code, 1)

    def test_invalid_workers_is_usage_error(self):
        with self.assertRaises(SystemExit) as cm:
            with redirect_stdout(io.StringIO()), patch("sys.stderr", io.StringIO()):
                self.run_main(["--workers", "0"])
        self.assertEqual(cm.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
