"""Thin wrapper for running external commands."""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Callable, Optional, Sequence

LOGGER = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


def run_command(
    args: Sequence[str],
    *,
    timeout: Optional[float] = 30,
    merge_stderr: bool = False,
    runner: Runner = subprocess.run,
) -> Optional[str]:
    """Run ``args`` and return its standard output.

    Args:
        args: Command and arguments.
        timeout: Seconds before the command is abandoned.
        merge_stderr: Capture standard error into the returned text.
        runner: Injection point for tests.

    Returns:
        Optional[str]: Standard output, or ``None`` when the command cannot be
        launched, times out, or exits non-zero.
    """
    command = list(args)
    try:
        completed = runner(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.DEVNULL,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        LOGGER.debug("Command %s could not run: %s", shlex.join(command), exc)
        return None
    if completed.returncode != 0:
        LOGGER.debug("Command %s exited with %s", shlex.join(command), completed.returncode)
        return None
    return completed.stdout or ""


__all__ = ["Runner", "run_command"]
