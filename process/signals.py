# ============================================================================
# SIGNAL NAMES
# ============================================================================
# STATUS: Support - Signal name parsing
# PURPOSE: Map "TERM", "SIGTERM", "15" to signal.Signals and back
# CREATED: 19 OCT 2026
# ============================================================================
"""
Signal name helpers for the --signal flag and log messages.
"""

import signal
from typing import Optional, Union


def parse_signal(value: Union[str, int, signal.Signals, None]) -> Optional[signal.Signals]:
    """
    Resolve a signal by name or number.

    Accepts "TERM", "SIGTERM", "sigterm", "15" or 15.

    Returns:
        The signal, or None if value does not name one on this platform
    """
    if value is None:
        return None
    if isinstance(value, signal.Signals):
        return value
    if isinstance(value, int):
        try:
            return signal.Signals(value)
        except ValueError:
            return None

    text = value.strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return parse_signal(int(text))

    name = text.upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    return signal.Signals.__members__.get(name)


def signal_name(sig: Union[signal.Signals, int]) -> str:
    """Name of sig ("SIGTERM"), or its number if unknown."""
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(int(sig))


__all__ = ["parse_signal", "signal_name"]
