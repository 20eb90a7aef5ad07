# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for leaselock.
"""

from core.config.defaults import (
    ElectionTimings,
    ProcessDefaults,
    LockDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "ElectionTimings",
    "ProcessDefaults",
    "LockDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
