"""
Single test file execution for the test run orchestrator

This module launches the external test engine on one test file and
collects its merged stdout/stderr. It imposes no time limit of its own:
bounding a job is the TimeoutBoundedRunner's job.

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
import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import ExecutionError
from .result_types import TestJob
from .utils import new_session_kwargs

logger = logging.getLogger(__name__)

TEST_FILE_PLACEHOLDER = "{test_file}"


class SingleTestExecutor:
    """Runs one test file through the test engine as a child process."""

    def __init__(
        self,
        engine_command: List[str],
        project_root: Path,
        env_vars: Optional[Dict[str, str]] = None,
    ):
        if not engine_command:
            raise ValueError("engine_command must not be empty")
        self.engine_command = list(engine_command)
        self.project_root = Path(project_root)
        self.env_vars = dict(env_vars or {})

    def build_command(self, job: TestJob) -> List[str]:
        """
        Build the engine command line for a job.

        Every {test_file} placeholder is replaced by the test file path;
        without a placeholder the path is appended as the last argument.
        """
        test_file = str(job.test_file_path)
        if any(TEST_FILE_PLACEHOLDER in arg for arg in self.engine_command):
            return [
                arg.replace(TEST_FILE_PLACEHOLDER, test_file)
                for arg in self.engine_command
            ]
        return self.engine_command + [test_file]

    def _child_environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env_vars)
        return env

    def run(
        self,
        job: TestJob,
        output: Optional[List[str]] = None,
        on_spawn: Optional[Callable[[subprocess.Popen], None]] = None,
    ) -> Tuple[int, List[str]]:
        """
        Run a job to completion.

        Args:
            job: The job to run
            output: List that receives output lines as they are read, so a
                caller can see partial output of a job it gives up on
            on_spawn: Called with the Popen object right after the child starts

        Returns:
            Tuple of (exit_code, output_lines); the exit code is not interpreted

        Raises:
            ExecutionError: If the test file is missing or the engine cannot start
        """
        if not job.test_file_path.is_file():
            raise ExecutionError(
                f"Test file not found: {job.test_file_path}", test_name=job.test_name
            )

        cmd = self.build_command(job)
        logger.debug(f"Running test '{job.test_name}' in {self.project_root}: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                cwd=self.project_root,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=self._child_environment(),
                **new_session_kwargs(),
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Test engine not found: '{cmd[0]}'. Please ensure it is installed and in your PATH.",
                test_name=job.test_name,
                command=cmd,
            ) from e
        except OSError as e:
            raise ExecutionError(
                f"Could not start test engine for {job.test_name}: {e}",
                test_name=job.test_name,
                command=cmd,
            ) from e

        if on_spawn is not None:
            on_spawn(process)

        lines = output if output is not None else []
        with process.stdout:
            for line in process.stdout:
                lines.append(line.rstrip("\r\n"))

        return_code = process.wait()
        logger.debug(
            f"Test '{job.test_name}' exited with code {return_code} "
            f"after {len(lines)} output lines"
        )
        return return_code, list(lines)
