"""
Optimistic concurrency for mutable aggregates.

Every update supplies the version it believes is current. The store applies
the write only if the stored version still matches (a DynamoDB condition
expression), and writes `version + 1` in the same request. A failed condition
is the conflict signal; no lock is ever held.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import VersionConflict


def coerce_version(value: Any) -> int:
    # DynamoDB hands numbers back as Decimal.
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def check_and_bump(current_version: Any, supplied_version: Any, *, proposal_id: str | None = None) -> int:
    """Return the next version, or raise VersionConflict if `supplied_version` is stale."""
    current = coerce_version(current_version)
    supplied = coerce_version(supplied_version)
    if current != supplied:
        raise VersionConflict(
            message="Version conflict; reload and try again",
            proposal_id=proposal_id,
            expected_version=supplied,
            current_version=current,
        )
    return current + 1


@dataclass(frozen=True, slots=True)
class GuardedWrite:
    """Condition/update fragments that make a write version-guarded."""

    condition: str
    set_clause: str
    values: dict[str, Any]
    next_version: int


def guarded_write(expected_version: Any) -> GuardedWrite:
    """Fragments for `version = :expected` + `SET version = :next`.

    Callers AND `condition` into their ConditionExpression and append
    `set_clause` to their SET list.
    """
    expected = coerce_version(expected_version)
    nxt = expected + 1
    return GuardedWrite(
        condition="version = :expectedVersion",
        set_clause="version = :nextVersion",
        values={":expectedVersion": expected, ":nextVersion": nxt},
        next_version=nxt,
    )
