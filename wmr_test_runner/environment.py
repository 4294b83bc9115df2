"""
Test environment manager for the test run orchestrator.

This module provides the per-suite isolated directory tree that test jobs
run against (restore, backup, scratch, mock data and logs areas), with
clean-slate creation, a lock so that two concurrent runs of the same suite
cannot share a root, and best-effort teardown.

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
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .exceptions import EnvironmentSetupError
from .utils import slugify_name

logger = logging.getLogger(__name__)

# Sub-directory names under each environment root
RESTORE_DIR = "restore"
BACKUP_DIR = "backup"
TEMP_DIR = "temp"
MOCK_DATA_DIR = "mock-data"
LOGS_DIR = "logs"


@dataclass(frozen=True)
class TestEnvironment:
    """Paths of one suite's isolated working tree."""

    __test__ = False

    suite_name: str
    root_path: Path
    restore_path: Path
    backup_path: Path
    temp_path: Path
    mock_data_path: Path
    logs_path: Path

    @classmethod
    def for_root(cls, suite_name: str, root: Path) -> "TestEnvironment":
        return cls(
            suite_name=suite_name,
            root_path=root,
            restore_path=root / RESTORE_DIR,
            backup_path=root / BACKUP_DIR,
            temp_path=root / TEMP_DIR,
            mock_data_path=root / MOCK_DATA_DIR,
            logs_path=root / LOGS_DIR,
        )

    def sub_paths(self) -> List[Path]:
        return [
            self.restore_path,
            self.backup_path,
            self.temp_path,
            self.mock_data_path,
            self.logs_path,
        ]

    def as_env_vars(self) -> Dict[str, str]:
        """Environment variables that expose this tree to test processes."""
        return {
            "WMR_TEST_ROOT": str(self.root_path),
            "WMR_TEST_RESTORE": str(self.restore_path),
            "WMR_TEST_BACKUP": str(self.backup_path),
            "WMR_TEST_TEMP": str(self.temp_path),
            "WMR_TEST_MOCK_DATA": str(self.mock_data_path),
            "WMR_TEST_LOGS": str(self.logs_path),
        }


def _pid_is_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if sys.platform == "win32":
        # os.kill(pid, 0) terminates the target on Windows; assume alive
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class EnvironmentManager:
    """Creates and destroys per-suite test environments under a base directory."""

    def __init__(self, base_dir: Path):
        """
        Initialize the environment manager.

        Args:
            base_dir: Directory under which every suite gets its own root
        """
        self.base_dir = Path(base_dir).resolve()
        self._active: Dict[Path, TestEnvironment] = {}
        self._locks: Dict[Path, Path] = {}

    def root_for(self, suite_name: str) -> Path:
        slug = slugify_name(suite_name)
        root = (self.base_dir / slug).resolve()
        if root.parent != self.base_dir:
            raise EnvironmentSetupError(
                f"Suite name '{suite_name}' does not map to a directory inside {self.base_dir}",
                path=root,
            )
        return root

    def _lock_path(self, root: Path) -> Path:
        return self.base_dir / f".{root.name}.lock"

    def _acquire_lock(self, root: Path, force: bool) -> None:
        lock_path = self._lock_path(root)
        my_pid = os.getpid()
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            try:
                owner = int(lock_path.read_text().strip() or 0)
            except (OSError, ValueError):
                owner = 0
            if owner != my_pid and _pid_is_alive(owner):
                if not force:
                    raise EnvironmentSetupError(
                        f"Environment {root} is in use by process {owner} "
                        f"(remove {lock_path} or use --force)",
                        path=root,
                    )
                logger.warning(
                    f"Taking over environment {root} from running process {owner}"
                )
            elif owner != my_pid:
                logger.info(f"Removing stale environment lock left by process {owner}")
            lock_path.write_text(f"{my_pid}\n")
        else:
            with os.fdopen(fd, "w") as f:
                f.write(f"{my_pid}\n")
        self._locks[root] = lock_path

    def _release_lock(self, root: Path) -> None:
        lock_path = self._locks.pop(root, None)
        if lock_path is None:
            return
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove environment lock {lock_path}: {e}")

    def initialize(self, suite_name: str, force: bool = False) -> TestEnvironment:
        """
        Create a clean environment tree for a suite.

        Any previous tree for the suite is wiped first: data left behind by
        an earlier run is never reused.

        Args:
            suite_name: Suite the environment belongs to
            force: Take over the environment even if another live process holds it

        Returns:
            The created TestEnvironment

        Raises:
            EnvironmentSetupError: If the tree cannot be locked, wiped or created
        """
        root = self.root_for(suite_name)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EnvironmentSetupError(
                f"Could not create environment base {self.base_dir}: {e}",
                path=self.base_dir,
            ) from e

        self._acquire_lock(root, force)

        env = TestEnvironment.for_root(suite_name, root)
        try:
            if root.exists():
                logger.info(f"Resetting existing test environment at {root}")
                shutil.rmtree(root)
            for path in env.sub_paths():
                path.mkdir(parents=True)
        except OSError as e:
            self._release_lock(root)
            raise EnvironmentSetupError(
                f"Could not create test environment at {root}: {e}", path=root
            ) from e

        self._active[root] = env
        logger.debug(f"Initialized test environment for suite {suite_name} at {root}")
        return env

    def reset(self, env: TestEnvironment) -> TestEnvironment:
        """Empty every area of an active environment without releasing it."""
        if env.root_path not in self._active:
            raise EnvironmentSetupError(
                f"Environment {env.root_path} is not active", path=env.root_path
            )
        try:
            for path in env.sub_paths():
                if path.exists():
                    shutil.rmtree(path)
                path.mkdir(parents=True)
        except OSError as e:
            raise EnvironmentSetupError(
                f"Could not reset test environment at {env.root_path}: {e}",
                path=env.root_path,
            ) from e
        logger.debug(f"Reset test environment at {env.root_path}")
        return env

    def teardown(self, env: Optional[TestEnvironment]) -> bool:
        """
        Remove an environment tree.

        Removal failures are logged as warnings and never raised. Repeated
        calls for the same environment are no-ops.

        Returns:
            True if the tree is gone afterwards
        """
        if env is None:
            return True
        if self._active.pop(env.root_path, None) is None:
            logger.debug(f"Environment {env.root_path} already torn down")
            return not env.root_path.exists()

        removed = True
        try:
            shutil.rmtree(env.root_path)
            logger.debug(f"Removed test environment {env.root_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            removed = False
            logger.warning(f"Failed to remove test environment {env.root_path}: {e}")
        finally:
            self._release_lock(env.root_path)
        return removed

    def teardown_all(self) -> None:
        """Tear down every environment this manager still owns."""
        for env in list(self._active.values()):
            self.teardown(env)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.teardown_all()
