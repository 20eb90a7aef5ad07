# ============================================================================
# PROCESS MODULE
# ============================================================================
# STATUS: Core - Supervised command execution
# PURPOSE: Run the protected command and forward cancellation as a signal
# CREATED: 19 OCT 2026
# ============================================================================

from .signals import parse_signal, signal_name
from .supervisor import ProcessSupervisor

__all__ = ["ProcessSupervisor", "parse_signal", "signal_name"]
