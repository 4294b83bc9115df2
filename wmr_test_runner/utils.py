"""
Utility functions for the test run orchestrator.

Logging setup, test name slugs, process group termination and
signal decoding shared by the executor, runner and orchestrator.

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
import re
import signal
import subprocess
import sys
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


def setup_logging(
    debug: bool = False, level: Optional[int] = None, stream=sys.stderr
) -> logging.Logger:
    """Setup logging configuration and return logger."""
    if level is None:
        level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", stream=stream)
    return logging.getLogger(__name__)


def slugify_name(name: str) -> str:
    """Turn a test name into something safe to use as a file name."""
    if not name:
        return "unnamed-test"
    slug = re.sub(r"[^\w\-.]", "-", name).strip(".")
    return slug or "unnamed-test"


def is_signal_termination(
    return_code: int, shell_wrapped: bool = False
) -> Tuple[bool, Optional[int]]:
    """
    Check if a process was terminated by a signal.

    Args:
        return_code: The process return code
        shell_wrapped: The process ran under a shell, so 128 + N also means
            signal N. Engines such as Pester exit with a failure count instead.

    Returns:
        Tuple of (is_signal, signal_number)
    """
    if return_code is None:
        return False, None
    if return_code < 0:
        # subprocess reports signal deaths as negative return codes
        return True, abs(return_code)
    elif shell_wrapped and return_code > 128 and return_code - 128 < 65:
        # Shell wrappers report them as 128 + signal number
        return True, return_code - 128
    return False, None


def get_signal_description(signal_num: int) -> str:
    """
    Get a human-readable description of a signal.

    Args:
        signal_num: The signal number

    Returns:
        Human-readable signal description
    """
    descriptions = {
        signal.SIGABRT: "Aborted",
        signal.SIGFPE: "Floating point exception",
        signal.SIGILL: "Illegal instruction",
        signal.SIGINT: "Interrupt",
        signal.SIGSEGV: "Segmentation fault",
        signal.SIGTERM: "Terminated",
    }
    if hasattr(signal, "SIGKILL"):
        descriptions[signal.SIGKILL] = "Killed"
    if hasattr(signal, "SIGBUS"):
        descriptions[signal.SIGBUS] = "Bus error"

    try:
        sig = signal.Signals(signal_num)
    except ValueError:
        return f"Signal {signal_num}"

    detail = descriptions.get(sig)
    return f"{sig.name} ({detail})" if detail else sig.name


def new_session_kwargs() -> dict:
    """Popen keyword arguments that put the child in its own process group."""
    if sys.platform == "win32":
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


def signal_process_tree(process: subprocess.Popen, hard: bool = False) -> None:
    """
    Send a termination signal to a process and everything in its group.

    The child is a session leader (see new_session_kwargs), so its process
    group id is its pid and stays valid for signalling grandchildren even
    after the leader itself has exited.

    Args:
        process: Process started with new_session_kwargs()
        hard: Use SIGKILL (or taskkill /F) instead of SIGTERM
    """
    if sys.platform == "win32":
        if process.poll() is not None:
            return
        cmd = ["taskkill", "/T", "/PID", str(process.pid)]
        if hard:
            cmd.insert(1, "/F")
        subprocess.run(
            cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, timeout=5
        )
        return

    sig = signal.SIGKILL if hard else signal.SIGTERM
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        # Nothing left in the group
        pass
    except PermissionError:
        if process.poll() is None:
            process.send_signal(sig)


def kill_process_tree(process: subprocess.Popen, grace_seconds: float = 5.0) -> bool:
    """
    Terminate a process group, escalating to a hard kill after a grace window.

    The hard kill is always sent to the group at the end so that children
    which outlived a cooperative leader are not left running.

    Returns:
        True if the leader ignored the graceful termination request
    """
    escalated = False
    signal_process_tree(process)
    try:
        process.wait(timeout=grace_seconds)
        logger.debug(f"Process {process.pid} terminated within grace window")
    except subprocess.TimeoutExpired:
        logger.warning(
            f"Process {process.pid} ignored termination for {grace_seconds}s, killing"
        )
        escalated = True

    signal_process_tree(process, hard=True)
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.error(f"Process {process.pid} survived SIGKILL")
    return escalated
