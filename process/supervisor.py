# ============================================================================
# PROCESS SUPERVISOR
# ============================================================================
# STATUS: Core - Run the protected command
# PURPOSE: Start a command, forward cancellation as a signal, kill on grace expiry
# CREATED: 19 OCT 2026
# ============================================================================
"""
Process Supervisor

Runs an external command as the body of the critical section:

    supervisor = ProcessSupervisor(["pg_dump", "app"], kill_after=30)
    result = await supervisor.run(stop)

Standard streams are inherited unless given. When stop is set while the
command runs:

- with a cancel signal: deliver it, then kill the command if it is still
  running kill_after seconds later (kill_after None or 0 waits forever)
- without a cancel signal: kill the command right away

A non-zero exit raises SubprocessFailure carrying the ProcessResult.
"""

import asyncio
import shlex
import signal
from typing import IO, Any, Optional, Sequence, Union

from core.config.defaults import ProcessDefaults
from core.errors import ExternalCancellation, InvalidConfiguration, SubprocessFailure
from core.logging import get_logger
from core.models import ProcessResult
from .signals import parse_signal, signal_name

logger = get_logger(__name__)

StreamSpec = Union[int, IO[Any], None]


class ProcessSupervisor:
    """Run one command and stop it when asked."""

    def __init__(
        self,
        args: Sequence[str],
        cancel_signal: Union[str, int, signal.Signals, None] = signal.SIGTERM,
        kill_after: Optional[float] = None,
        stdin: StreamSpec = None,
        stdout: StreamSpec = None,
        stderr: StreamSpec = None,
    ):
        """
        Initialize supervisor.

        Args:
            args: Command and arguments
            cancel_signal: Signal sent on cancellation; None kills immediately
            kill_after: Grace period after the signal before killing;
                None or 0 waits indefinitely
            stdin: Standard input (inherited if None)
            stdout: Standard output (inherited if None)
            stderr: Standard error (inherited if None)

        Raises:
            InvalidConfiguration for an empty command, an unknown signal or
            a negative kill_after
        """
        if not args:
            raise InvalidConfiguration("Command must not be empty")
        if kill_after is not None and kill_after < 0:
            raise InvalidConfiguration(f"kill_after must not be negative: {kill_after}")

        sig = None
        if cancel_signal is not None:
            sig = parse_signal(cancel_signal)
            if sig is None:
                raise InvalidConfiguration(f"Unknown signal: {cancel_signal}")

        self.args = [str(arg) for arg in args]
        self.cancel_signal: Optional[signal.Signals] = sig
        self.kill_after = kill_after
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr

    @classmethod
    def from_defaults(cls, args: Sequence[str], defaults: Optional[ProcessDefaults] = None, **kwargs) -> "ProcessSupervisor":
        """Build a supervisor using ProcessDefaults for signal and grace period."""
        defaults = defaults or ProcessDefaults.from_env()
        kwargs.setdefault("cancel_signal", defaults.cancel_signal)
        kwargs.setdefault("kill_after", defaults.kill_after_sec)
        return cls(args, **kwargs)

    @property
    def command(self) -> str:
        return shlex.join(self.args)

    async def run(self, stop: Optional[asyncio.Event] = None) -> ProcessResult:
        """
        Run the command to completion or until stopped.

        Args:
            stop: Cancellation; set to signal (then kill) the command

        Returns:
            ProcessResult of a command that exited 0

        Raises:
            ExternalCancellation if stop was set before the command started
            SubprocessFailure if the command could not start, exited
            non-zero or died from a signal
        """
        if stop is not None and stop.is_set():
            raise ExternalCancellation(f"Cancelled before starting: {self.command}")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.args,
                stdin=self.stdin,
                stdout=self.stdout,
                stderr=self.stderr,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.command}: {e}")
            raise SubprocessFailure(ProcessResult(args=self.args)) from e

        logger.debug(f"Started {self.command} (pid {process.pid})")

        signal_sent: Optional[signal.Signals] = None
        killed = False
        waiter = asyncio.ensure_future(process.wait())
        try:
            if stop is not None:
                stopper = asyncio.ensure_future(stop.wait())
                try:
                    await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    stopper.cancel()

                if not waiter.done():
                    signal_sent, killed = await self._terminate(process, waiter)

            returncode = await waiter
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise

        result = ProcessResult(
            args=self.args,
            pid=process.pid,
            returncode=returncode,
            signal_sent=signal_sent,
            killed=killed,
        )
        if not result.succeeded:
            logger.debug(f"Command failed: {result.describe()}")
            raise SubprocessFailure(result)

        logger.debug(f"Command finished: {result.describe()}")
        return result

    async def _terminate(self, process: asyncio.subprocess.Process, waiter: asyncio.Future):
        """
        Stop a running command.

        Returns:
            (signal delivered or None, whether the command was killed)
        """
        if self.cancel_signal is None:
            logger.info(f"Killing {self.command} (pid {process.pid})")
            return None, self._kill(process)

        name = signal_name(self.cancel_signal)
        logger.info(f"Sending {name} to {self.command} (pid {process.pid})")
        try:
            process.send_signal(self.cancel_signal)
        except ProcessLookupError:
            return None, False

        if not self.kill_after:
            return self.cancel_signal, False

        try:
            await asyncio.wait_for(asyncio.shield(waiter), self.kill_after)
            return self.cancel_signal, False
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.command} (pid {process.pid}) still running "
                f"{self.kill_after}s after {name}, killing"
            )
            return self.cancel_signal, self._kill(process)

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> bool:
        try:
            process.kill()
        except ProcessLookupError:
            return False
        return True


__all__ = ["ProcessSupervisor"]
