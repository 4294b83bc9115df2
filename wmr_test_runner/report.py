"""
Report artifacts for the test run orchestrator

Writes a finished RunSummary as a JUnit XML report (the format CI test
reporters consume) with a JSON twin for scripting, and preserves the run's
log files next to them before the environment is torn down.

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

import json
import logging
import shutil
import socket
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path
from typing import Optional

from .result_types import ParsedTestResult, RunSummary, TestStatus

logger = logging.getLogger(__name__)


def _testcase_element(suite_name: str, result: ParsedTestResult) -> ET.Element:
    case = ET.Element(
        "testcase",
        {
            "name": result.test_name,
            "classname": f"{suite_name}.{result.test_name}",
            "time": f"{result.duration_seconds:.3f}",
        },
    )

    properties = ET.SubElement(case, "properties")
    for key, value in (
        ("status", result.status.value),
        ("passedCount", result.passed_count),
        ("failedCount", result.failed_count),
        ("skippedCount", result.skipped_count),
    ):
        ET.SubElement(properties, "property", {"name": key, "value": str(value)})

    message = result.failure_messages[0] if result.failure_messages else result.detail
    body = "\n".join(result.failure_messages)
    if result.detail and result.detail not in body:
        body = f"{body}\n{result.detail}" if body else result.detail

    if result.status is TestStatus.FAILED:
        failure = ET.SubElement(
            case, "failure", {"message": message or "", "type": result.status.value}
        )
        failure.text = body
    elif result.status.is_error:
        error = ET.SubElement(
            case, "error", {"message": message or "", "type": result.status.value}
        )
        error.text = body
    elif result.passed_count == 0 and result.skipped_count > 0:
        ET.SubElement(case, "skipped", {"message": "all tests in file skipped"})
    return case


def build_junit_tree(summary: RunSummary, timestamp: Optional[datetime] = None) -> ET.ElementTree:
    """Build a JUnit XML document for a summary."""
    timestamp = timestamp or datetime.now()
    skipped_jobs = sum(
        1
        for r in summary.per_test_results
        if r.status is TestStatus.PASSED and r.passed_count == 0 and r.skipped_count > 0
    )
    attrs = {
        "name": summary.suite_name,
        "tests": str(summary.total_tests),
        "failures": str(summary.failed_tests),
        "errors": str(summary.errored_tests),
        "skipped": str(skipped_jobs),
        "time": f"{summary.total_duration_seconds:.3f}",
    }

    root = ET.Element("testsuites", attrs)
    suite = ET.SubElement(
        root,
        "testsuite",
        dict(
            attrs,
            timestamp=timestamp.strftime("%Y-%m-%dT%H:%M:%S"),
            hostname=socket.gethostname(),
        ),
    )
    for result in summary.per_test_results:
        suite.append(_testcase_element(summary.suite_name, result))
    return ET.ElementTree(root)


def write_junit_report(summary: RunSummary, path: Path) -> Path:
    """Write the JUnit XML report, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tree = build_junit_tree(summary)
    ET.indent(tree)
    tree.write(path, encoding="utf-8", xml_declaration=True)
    logger.info(f"Wrote JUnit report {path}")
    return path


def write_json_report(summary: RunSummary, path: Path) -> Path:
    """Write the summary as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(summary.to_dict(), f, indent=2)
        f.write("\n")
    logger.info(f"Wrote JSON report {path}")
    return path


def write_reports(summary: RunSummary, results_dir: Path, report_name: str) -> Path:
    """Write both report formats; returns the XML path."""
    xml_path = Path(results_dir) / report_name
    write_junit_report(summary, xml_path)
    write_json_report(summary, xml_path.with_suffix(".json"))
    return xml_path


def preserve_logs(logs_path: Path, results_dir: Path, suite_name: str) -> Optional[Path]:
    """
    Copy a run's log directory into the results directory.

    Failures are logged and reported as None: losing logs must not change
    the outcome of the run.
    """
    target = Path(results_dir) / "logs" / suite_name
    try:
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(logs_path, target)
    except OSError as e:
        logger.warning(f"Could not preserve logs from {logs_path}: {e}")
        return None
    logger.debug(f"Preserved logs in {target}")
    return target
