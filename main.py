# ============================================================================
# LEASELOCK - COMMAND LINE ENTRY POINT
# ============================================================================
# STATUS: Core - CLI entry point
# PURPOSE: Run a command under a lease lock from shell scripts
# CREATED: 19 OCT 2026
# ============================================================================
"""
leaselock -- manage lease locks from shell scripts

Runs the given command with mutual exclusion guaranteed by a lease in a
shared PostgreSQL table. The lease is created if it does not exist.

Usage:
    leaselock [flags] -- command [arguments]

    # Never run two backups at once, give up after 30s
    leaselock -l nightly-backup -w 30s -E 75 -- ./backup.sh

    # Single-host lock without a database
    leaselock --memory -- make release

Exit status:
    0 on success
    the exit status of the command, if leaselock ran it
    --conflict-exit-code if the lock was not acquired within --wait
    1 on any other failure
"""

import argparse
import asyncio
import re
import signal
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from __version__ import __version__, BUILD_DATE
from core.config import Defaults, get_defaults
from core.config.defaults import EXIT_CODE_FAILURE
from core.errors import ElectionTimeout, InvalidConfiguration, SubprocessFailure, find_error, flatten_errors
from core.labels import common_labels, format_labels, parse_labels
from core.logging import configure_logging, get_logger
from orchestrator import Locker
from process import ProcessSupervisor, parse_signal
from repositories import DatabasePool, LeaseRepository, MemoryLeaseRepository, PostgresLeaseRepository

logger = get_logger("leaselock")

STOP_SIGNALS = ("SIGINT", "SIGTERM", "SIGPIPE")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def parse_duration(text: str) -> float:
    """
    Parse a duration like "500ms", "1.5s", "1h30m" or "0" into seconds.

    A bare number is taken as seconds.

    Raises:
        ValueError if text is not a duration
    """
    text = text.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        while pos < len(text):
            match = _DURATION_PART.match(text, pos)
            if match is None:
                raise ValueError(f"invalid duration: {text}")
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
    if seconds < 0:
        raise ValueError(f"negative duration: {text}")
    return seconds


def _duration_arg(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _signal_arg(text: str) -> signal.Signals:
    sig = parse_signal(text)
    if sig is None:
        raise argparse.ArgumentTypeError(f"unknown signal: {text}")
    return sig


def _labels_arg(text: str):
    try:
        return parse_labels(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _exit_code_arg(text: str) -> int:
    try:
        code = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an exit status: {text}")
    if not 0 <= code <= 255:
        raise argparse.ArgumentTypeError(f"exit status out of range 0-255: {text}")
    return code


def load_defaults() -> Defaults:
    """
    Load LEASELOCK_* defaults from the environment.

    Raises:
        InvalidConfiguration (or ValueError for unparsable numbers) if an
        environment value is malformed
    """
    defaults = get_defaults()
    if parse_signal(defaults.process.cancel_signal) is None:
        raise InvalidConfiguration(f"Unknown signal in LEASELOCK_SIGNAL: {defaults.process.cancel_signal}")
    if defaults.process.kill_after_sec < 0:
        raise InvalidConfiguration(f"LEASELOCK_KILL_AFTER must not be negative: {defaults.process.kill_after_sec}")
    if not 0 <= defaults.lock.conflict_exit_code <= 255:
        raise InvalidConfiguration(
            f"LEASELOCK_CONFLICT_EXIT_CODE out of range 0-255: {defaults.lock.conflict_exit_code}"
        )
    return defaults


def build_parser(defaults: Optional[Defaults] = None) -> argparse.ArgumentParser:
    defaults = defaults or load_defaults()

    parser = argparse.ArgumentParser(
        prog="leaselock",
        usage="leaselock [flags] -- command [arguments]",
        description=(
            "Run a command with mutual exclusion guaranteed by a lease. "
            f"Leases created by leaselock carry the labels: {format_labels(common_labels())}"
        ),
        epilog=(
            f"Exit status: {EXIT_CODE_FAILURE} on failure, or the exit status of "
            "the command if leaselock ran it."
        ),
    )
    parser.add_argument("-n", "--namespace", default=defaults.lock.namespace,
                        help="Namespace of the lease (default: %(default)s)")
    parser.add_argument("-l", "--lease", default=defaults.lock.lease_name,
                        help="Name of the lease (default: %(default)s)")
    parser.add_argument("-i", "--identity", default=None,
                        help="Holder identity (default: <hostname>-<pid>)")
    parser.add_argument("--cleanup-lease", action="store_true",
                        help="Delete the lease after the command finishes")
    parser.add_argument("-u", "--unlock", action="store_true",
                        help="Same as --cleanup-lease")
    parser.add_argument("-w", "--wait", type=_duration_arg, default=0.0,
                        help="Fail if the lock is not acquired within this duration; 0 waits forever")
    parser.add_argument("--timeout", type=_duration_arg, default=0.0,
                        help="Same as --wait")
    parser.add_argument("-E", "--conflict-exit-code", type=_exit_code_arg,
                        default=defaults.lock.conflict_exit_code,
                        help="Exit status when --wait elapses (default: %(default)s)")
    parser.add_argument("-k", "--kill-after", type=_duration_arg,
                        default=defaults.process.kill_after_sec,
                        help="Also send KILL if the command is still running this long after the signal")
    parser.add_argument("-s", "--signal", type=_signal_arg,
                        default=_signal_arg(defaults.process.cancel_signal),
                        help="Signal sent to the command on cancel, a name like HUP or a number (default: TERM)")
    parser.add_argument("--labels", type=_labels_arg, default=None,
                        help="Additional lease labels, e.g. team=infra,env=prod")
    parser.add_argument("--database-url", default=None,
                        help="PostgreSQL connection string (default: LEASELOCK_DATABASE_URL, DATABASE_URL or POSTGRES_*)")
    parser.add_argument("--init-schema", action="store_true",
                        help="Create the lease table if it does not exist")
    parser.add_argument("--memory", action="store_true",
                        help="Use an in-process lease store (no database, no cross-process exclusion)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--verbose", action="store_true", help="Same as --debug")
    parser.add_argument("--log-format", choices=["text", "json"], default="text",
                        help="Log output format (default: %(default)s)")
    parser.add_argument("-V", "--version", action="store_true", help="Display version and exit")
    return parser


def split_command(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Split argv at the first "--" into (flags, command)."""
    argv = list(argv)
    if "--" not in argv:
        return argv, []
    dash = argv.index("--")
    return argv[:dash], argv[dash + 1:]


# ============================================================================
# RUN
# ============================================================================

def exit_code_for(error: BaseException, conflict_exit_code: int) -> int:
    """
    Exit status for a failed lock run.

    Args:
        error: The error raised by the run (possibly a group)
        conflict_exit_code: Status for an election timeout

    Returns:
        conflict_exit_code on timeout, the command's status if it ran, else 1
    """
    if find_error(error, ElectionTimeout) is not None:
        return conflict_exit_code
    failure = find_error(error, SubprocessFailure)
    if failure is not None and failure.result.returncode is not None:
        return failure.exit_code
    return EXIT_CODE_FAILURE


@asynccontextmanager
async def open_repository(args: argparse.Namespace) -> AsyncIterator[LeaseRepository]:
    """Lease store selected by the command line."""
    if args.memory:
        yield MemoryLeaseRepository()
        return

    async with DatabasePool(connection_string=args.database_url) as pool:
        repository = PostgresLeaseRepository(pool)
        if args.init_schema:
            await repository.ensure_schema()
        yield repository


async def run_locked(args: argparse.Namespace, command: List[str], defaults: Optional[Defaults] = None) -> None:
    """Run command under the lock described by args."""
    defaults = defaults or load_defaults()
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def on_signal(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, stopping")
        stop.set()

    installed = []
    for name in STOP_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, on_signal, sig)
            installed.append(sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        supervisor = ProcessSupervisor(
            command,
            cancel_signal=args.signal,
            kill_after=args.kill_after,
        )
        async with open_repository(args) as repository:
            locker = Locker(
                args.namespace,
                args.lease,
                args.identity or defaults.lock.default_identity(),
                repository,
                labels=args.labels,
                timings=defaults.timings,
                delete_timeout=defaults.lock.lease_delete_timeout_sec,
            )
            await locker.acquire_and_run(
                supervisor.run,
                wait_timeout=max(args.wait, args.timeout) or None,
                delete_lease_on_exit=args.cleanup_lease or args.unlock,
                stop=stop,
            )
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Command line entry point.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Process exit status
    """
    flags, command = split_command(sys.argv[1:] if argv is None else argv)
    try:
        defaults = load_defaults()
    except ValueError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CODE_FAILURE
    args = build_parser(defaults).parse_args(flags)

    if args.version:
        print(f"leaselock {__version__} (build {BUILD_DATE})")
        return 0

    configure_logging(
        level="DEBUG" if args.debug or args.verbose else "INFO",
        json_output=args.log_format == "json",
    )

    if not command:
        logger.error("No command given: leaselock [flags] -- command [arguments]")
        return EXIT_CODE_FAILURE

    try:
        asyncio.run(run_locked(args, command, defaults))
    except Exception as e:
        for cause in flatten_errors(e):
            logger.error(str(cause))
        return exit_code_for(e, args.conflict_exit_code)
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
