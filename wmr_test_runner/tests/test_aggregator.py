"""
Tests for RunAggregator and RunSummary.

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
import unittest

from wmr_test_runner.aggregator import RunAggregator
from wmr_test_runner.exceptions import AggregateFailure
from wmr_test_runner.result_types import ParsedTestResult, TestStatus


def make_result(name, status=TestStatus.PASSED, passed=1, failed=0, skipped=0):
    return ParsedTestResult(
        test_name=name,
        passed_count=passed,
        failed_count=failed,
        skipped_count=skipped,
        status=status,
    )


class TestRunAggregator(unittest.TestCase):
    """Test folding results into a summary."""

    def test_n_results_in_n_out(self):
        aggregator = RunAggregator("unit")
        names = [f"Test{i}" for i in range(7)]
        for name in names:
            aggregator.add(make_result(name))

        summary = aggregator.finalize(3.0)

        self.assertEqual(summary.total_tests, 7)
        self.assertEqual([r.test_name for r in summary.per_test_results], names)
        self.assertEqual(summary.total_duration_seconds, 3.0)

    def test_status_counts(self):
        aggregator = RunAggregator("unit")
        aggregator.add(make_result("a"))
        aggregator.add(make_result("b", TestStatus.FAILED, passed=2, failed=1))
        aggregator.add(make_result("c", TestStatus.ERROR, passed=0))
        aggregator.add(make_result("d", TestStatus.EXCEPTION, passed=0))
        aggregator.add(make_result("e", TestStatus.TIMEOUT, passed=0))

        summary = aggregator.finalize()

        self.assertEqual(summary.passed_tests, 1)
        self.assertEqual(summary.failed_tests, 1)
        self.assertEqual(summary.errored_tests, 3)
        self.assertEqual(summary.passed_count, 3)
        self.assertEqual(summary.failed_count, 1)
        self.assertEqual([r.test_name for r in summary.failing_results()], ["b", "c", "d", "e"])

    def test_exit_code_law(self):
        cases = [
            ([TestStatus.PASSED, TestStatus.PASSED], 0),
            ([], 0),
            ([TestStatus.PASSED, TestStatus.FAILED], 1),
            ([TestStatus.ERROR], 1),
            ([TestStatus.EXCEPTION], 1),
            ([TestStatus.TIMEOUT, TestStatus.PASSED], 1),
        ]
        for statuses, expected in cases:
            with self.subTest(statuses=statuses):
                aggregator = RunAggregator("unit")
                for i, status in enumerate(statuses):
                    aggregator.add(make_result(f"t{i}", status))
                summary = aggregator.finalize()
                self.assertEqual(summary.exit_code, expected)
                self.assertEqual(
                    summary.exit_code == 0,
                    summary.failed_tests == 0 and summary.errored_tests == 0,
                )

    def test_finalize_is_idempotent_and_freezes(self):
        aggregator = RunAggregator("unit")
        aggregator.add(make_result("a"))

        summary = aggregator.finalize()

        self.assertIs(aggregator.finalize(), summary)
        self.assertTrue(aggregator.finalized)
        with self.assertRaises(RuntimeError):
            aggregator.add(make_result("late"))
        with self.assertRaises(dataclasses.FrozenInstanceError):
            summary.total_tests = 5

    def test_summary_unaffected_by_later_result_changes(self):
        aggregator = RunAggregator("unit")
        result = make_result("a", passed=3)
        aggregator.add(result)
        summary = aggregator.finalize(1.0)

        result.status = TestStatus.FAILED
        result.failed_count = 5
        result.failure_messages.append("[-] changed afterwards")

        stored = summary.per_test_results[0]
        self.assertIsNot(stored, result)
        self.assertIs(stored.status, TestStatus.PASSED)
        self.assertEqual(stored.failed_count, 0)
        self.assertEqual(stored.failure_messages, [])
        self.assertEqual(summary.failed_tests, 0)
        self.assertEqual(summary.failed_count, 0)
        self.assertEqual(summary.exit_code, 0)

    def test_raise_for_status(self):
        aggregator = RunAggregator("integration")
        aggregator.add(make_result("ok"))
        aggregator.add(make_result("bad", TestStatus.FAILED, failed=2))
        summary = aggregator.finalize()

        with self.assertRaises(AggregateFailure) as cm:
            summary.raise_for_status()
        self.assertEqual(cm.exception.failing_tests, ["bad"])
        self.assertIn("1 of 2", str(cm.exception))

    def test_to_dict(self):
        aggregator = RunAggregator("unit")
        aggregator.add(make_result("a", skipped=2))
        data = aggregator.finalize(1.23456).to_dict()

        self.assertEqual(data["suite"], "unit")
        self.assertEqual(data["totalTests"], 1)
        self.assertEqual(data["skippedCount"], 2)
        self.assertEqual(data["totalDurationSeconds"], 1.235)
        self.assertEqual(data["results"][0]["status"], "Passed")


if __name__ == "__main__":
    unittest.main()
