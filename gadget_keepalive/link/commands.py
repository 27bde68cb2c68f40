"""Thin subprocess wrapper shared by the prober and gadget lifecycle."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 10.0  # seconds


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command.

    A command that could not be started or timed out has returncode -1.
    """
    args: tuple
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[..., CommandResult]


def run_command(args: Sequence[str],
                timeout: float = DEFAULT_COMMAND_TIMEOUT) -> CommandResult:
    """Run a command without a shell and capture its output.

    Never raises for a missing binary, a non-zero exit or a timeout.

    Args:
        args: Program and arguments
        timeout: Seconds before the command is killed

    Returns:
        CommandResult describing the outcome
    """
    args = tuple(args)
    try:
        proc = subprocess.run(
            args,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.debug(f"Command timed out after {timeout}s: {' '.join(args)}")
        return CommandResult(args=args, returncode=-1, stderr="timeout")
    except OSError as e:
        logger.debug(f"Command failed to start: {' '.join(args)}: {e}")
        return CommandResult(args=args, returncode=-1, stderr=str(e))

    if proc.returncode != 0:
        logger.debug(
            f"Command exited {proc.returncode}: {' '.join(args)}: {proc.stderr.strip()}"
        )
    return CommandResult(
        args=args,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )
