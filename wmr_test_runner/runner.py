"""
Deadline-bounded job execution for the test run orchestrator

Each job runs on its own background worker while the calling thread waits
for whichever comes first: the job finishing or its deadline passing. A job
that loses the race has its whole process group terminated, then killed.

    IDLE -> RUNNING -> COMPLETED
                    -> TIMED_OUT
                    -> CRASHED_BEFORE_START

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

import concurrent.futures
import logging
import subprocess
import threading
import time
from enum import Enum
from typing import List, Optional

from .config import DEFAULT_GRACE_SECONDS
from .exceptions import ExecutionError, JobTimeoutError
from .execution import SingleTestExecutor
from .result_types import RawExecutionResult, TestJob
from .utils import kill_process_tree, slugify_name

logger = logging.getLogger(__name__)


class RunnerState(Enum):
    """Lifecycle of one bounded job."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed-out"
    CRASHED_BEFORE_START = "crashed-before-start"

    def __str__(self):
        return self.value


class JobExecution:
    """One job handed to a background worker, raced against its deadline."""

    def __init__(
        self,
        job: TestJob,
        executor: SingleTestExecutor,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self.job = job
        self.executor = executor
        self.grace_seconds = grace_seconds
        self.state = RunnerState.IDLE
        self.output: List[str] = []
        self.process: Optional[subprocess.Popen] = None
        self._spawned = threading.Event()
        self._spawn_lock = threading.Lock()
        self._cancelled = False
        self._future: Optional[concurrent.futures.Future] = None
        self._started_at = 0.0

    def _on_spawn(self, process: subprocess.Popen) -> None:
        with self._spawn_lock:
            self.process = process
            cancelled = self._cancelled
        self._spawned.set()
        if cancelled:
            logger.warning(
                f"Job {self.job.test_name} started after it was cancelled; killing it"
            )
            kill_process_tree(process, self.grace_seconds)

    def _mark_cancelled(self) -> Optional[subprocess.Popen]:
        """Flag the job as cancelled and return its process, if spawned yet."""
        with self._spawn_lock:
            self._cancelled = True
            return self.process

    def _elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def start(self) -> "JobExecution":
        if self.state is not RunnerState.IDLE:
            raise RuntimeError(f"Job {self.job.test_name} already started")

        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"job-{slugify_name(self.job.test_name)}"
        )
        self._started_at = time.monotonic()
        self._future = pool.submit(
            self.executor.run, self.job, self.output, self._on_spawn
        )
        # The worker thread lives on until the submitted call returns
        pool.shutdown(wait=False)
        self.state = RunnerState.RUNNING
        return self

    def cancel(self) -> None:
        """Kill the job's process tree and let its worker wind down."""
        self._spawned.wait(self.grace_seconds)
        # A process spawned after this point is killed by _on_spawn
        process = self._mark_cancelled()
        if process is None:
            logger.warning(
                f"Job {self.job.test_name} has not spawned a process yet; "
                f"it will be killed on start"
            )
        else:
            hard_killed = kill_process_tree(process, self.grace_seconds)
            if hard_killed:
                logger.warning(f"Job {self.job.test_name} had to be force-killed")

        try:
            self._future.result(timeout=self.grace_seconds)
        except concurrent.futures.TimeoutError:
            logger.error(
                f"Worker for {self.job.test_name} still busy {self.grace_seconds}s "
                f"after its process was killed"
            )
        except (ExecutionError, OSError) as e:
            logger.debug(f"Cancelled job {self.job.test_name} ended with: {e}")

    def wait(self, timeout_seconds: Optional[float] = None) -> RawExecutionResult:
        """
        Block until the job finishes or the deadline passes.

        Args:
            timeout_seconds: Wall-clock deadline; None waits indefinitely

        Returns:
            RawExecutionResult describing how the race ended
        """
        if self.state is not RunnerState.RUNNING:
            raise RuntimeError(
                f"Job {self.job.test_name} is {self.state}, not running"
            )

        try:
            exit_code, lines = self._future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            error = JobTimeoutError(
                f"Test {self.job.test_name} exceeded its {timeout_seconds:g}s deadline",
                test_name=self.job.test_name,
                timeout=timeout_seconds,
            )
            logger.warning(str(error))
            self.cancel()
            self.state = RunnerState.TIMED_OUT
            return RawExecutionResult(
                exit_code=self.process.returncode if self.process else None,
                combined_output=list(self.output),
                timed_out=True,
                error=str(error),
                duration_seconds=self._elapsed(),
            )
        except ExecutionError as e:
            logger.error(f"Could not run {self.job.test_name}: {e}")
            self.state = RunnerState.CRASHED_BEFORE_START
            return RawExecutionResult(
                combined_output=list(self.output),
                error=str(e),
                duration_seconds=self._elapsed(),
            )
        except BaseException:
            # Interrupted or failed while the child may still be running
            process = self._mark_cancelled()
            if process is not None:
                kill_process_tree(process, self.grace_seconds)
            raise

        self.state = RunnerState.COMPLETED
        return RawExecutionResult(
            exit_code=exit_code,
            combined_output=lines,
            completed=True,
            duration_seconds=self._elapsed(),
        )


class TimeoutBoundedRunner:
    """Runs jobs through a SingleTestExecutor under a per-job deadline."""

    def __init__(
        self,
        executor: SingleTestExecutor,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self.executor = executor
        self.grace_seconds = grace_seconds

    def start(self, job: TestJob) -> JobExecution:
        return JobExecution(job, self.executor, self.grace_seconds).start()

    def run(
        self, job: TestJob, timeout_seconds: Optional[float] = None
    ) -> RawExecutionResult:
        """Run one job and return once it has finished or been cancelled."""
        logger.debug(f"Starting {job.test_name} with deadline {timeout_seconds}")
        return self.start(job).wait(timeout_seconds)
