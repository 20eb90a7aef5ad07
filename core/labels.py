# ============================================================================
# LEASE LABELS
# ============================================================================
# STATUS: Core - Label handling for lease records
# PURPOSE: Managed-by label plus caller labels, selector parsing/formatting
# CREATED: 19 OCT 2026
# ============================================================================
"""
Lease Labels

Every lease written by leaselock carries the managed-by label so that
leases created by the tool can be told apart from others in the same
store. Callers may add labels with a selector string:

    parse_labels("team=infra,job=backup") -> {"team": "infra", "job": "backup"}
    format_labels({"b": "2", "a": "1"})    -> "a=1,b=2"
"""

import re
from typing import Dict, Mapping, Optional

from core.errors import InvalidConfiguration

TOOL_NAME = "leaselock"
MANAGED_BY = "managed-by"

# Optional DNS-style prefix, then a name of up to 63 characters
_KEY_RE = re.compile(
    r"^([a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*/)?"
    r"[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$"
)
_VALUE_RE = re.compile(r"^([A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?)?$")


def common_labels() -> Dict[str, str]:
    """Labels applied to every lease created by leaselock."""
    return {MANAGED_BY: TOOL_NAME}


def merge_labels(labels: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Caller labels with the common labels applied on top."""
    merged = dict(labels or {})
    merged.update(common_labels())
    return merged


def validate_label(key: str, value: str) -> None:
    """
    Validate a single label.

    Raises:
        InvalidConfiguration if key or value is malformed
    """
    if not _KEY_RE.match(key):
        raise InvalidConfiguration(f"invalid label key: {key!r}")
    if not _VALUE_RE.match(value):
        raise InvalidConfiguration(f"invalid label value for {key}: {value!r}")


def parse_labels(selector: str) -> Dict[str, str]:
    """
    Parse a "k1=v1,k2=v2" selector into a label dict.

    "==" is accepted as an alias of "=". Empty input gives no labels.

    Raises:
        InvalidConfiguration on malformed or duplicate entries
    """
    labels: Dict[str, str] = {}
    for part in selector.split(","):
        part = part.strip()
        if not part:
            continue
        if "==" in part:
            key, _, value = part.partition("==")
        elif "=" in part:
            key, _, value = part.partition("=")
        else:
            raise InvalidConfiguration(f"invalid label selector term: {part!r}")
        key, value = key.strip(), value.strip()
        validate_label(key, value)
        if key in labels and labels[key] != value:
            raise InvalidConfiguration(f"conflicting values for label {key}")
        labels[key] = value
    return labels


def format_labels(labels: Optional[Mapping[str, str]]) -> str:
    """Format labels as a sorted "k1=v1,k2=v2" string."""
    if not labels:
        return "<none>"
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


__all__ = [
    "TOOL_NAME",
    "MANAGED_BY",
    "common_labels",
    "merge_labels",
    "validate_label",
    "parse_labels",
    "format_labels",
]
