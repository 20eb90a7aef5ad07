# ============================================================================
# PROCESS RESULT MODEL
# ============================================================================
# STATUS: Core - Outcome of a supervised command
# PURPOSE: Exit status and signal delivery of the protected command
# CREATED: 19 OCT 2026
# ============================================================================
"""
Process Result Model

What happened to the command run under the lock: how it exited, which
signal (if any) was delivered on cancellation, and whether it had to be
killed after the grace period.
"""

import shlex
import signal
from typing import List, Optional

from pydantic import BaseModel, Field


class ProcessResult(BaseModel):
    """Fate of a supervised command."""

    args: List[str] = Field(default_factory=list)
    pid: Optional[int] = None
    returncode: Optional[int] = Field(
        default=None,
        description="Exit status; negative -N when terminated by signal N"
    )
    signal_sent: Optional[signal.Signals] = Field(
        default=None,
        description="Cancel signal delivered to the command, if any"
    )
    killed: bool = Field(
        default=False,
        description="True if the command was forcibly killed"
    )

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    @property
    def terminated_by(self) -> Optional[signal.Signals]:
        """Signal that terminated the command, if it died from one."""
        if self.returncode is None or self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode)
        except ValueError:
            return None

    @property
    def exit_code(self) -> int:
        """
        Exit status suitable for sys.exit().

        Death by signal N maps to 128 + N, like a shell reports it.
        """
        if self.returncode is None:
            return 1
        if self.returncode < 0:
            return 128 - self.returncode
        return self.returncode

    def describe(self) -> str:
        command = shlex.join(self.args) if self.args else "<command>"
        if self.returncode is None:
            return f"{command}: did not run"
        if self.killed:
            return f"{command}: killed after cancellation (exit status {self.exit_code})"
        if self.terminated_by is not None:
            return f"{command}: terminated by {self.terminated_by.name}"
        return f"{command}: exit status {self.returncode}"


__all__ = ["ProcessResult"]
