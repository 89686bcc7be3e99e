from __future__ import annotations

from enum import Enum


class ProposalStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    WON = "WON"
    LOST = "LOST"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: object) -> "ProposalStatus | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return None


INITIAL_STATUS = ProposalStatus.DRAFT

# Forward-only. SUBMITTED is the sole gateway to WON/LOST, and nothing leads
# back into DRAFT. Conversion of a WON proposal is not a status transition.
_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.PENDING, ProposalStatus.CANCELLED}),
    ProposalStatus.PENDING: frozenset({ProposalStatus.SUBMITTED, ProposalStatus.CANCELLED}),
    ProposalStatus.SUBMITTED: frozenset(
        {ProposalStatus.WON, ProposalStatus.LOST, ProposalStatus.CANCELLED}
    ),
    ProposalStatus.WON: frozenset(),
    ProposalStatus.LOST: frozenset(),
    ProposalStatus.CANCELLED: frozenset(),
}

# Stable ordering for messages and API payloads.
_ORDER = list(ProposalStatus)

def allowed_targets(from_status: ProposalStatus | str) -> list[ProposalStatus]:
    src = ProposalStatus.parse(from_status)
    if src is None:
        return []
    targets = _TRANSITIONS[src]
    return [s for s in _ORDER if s in targets]


def is_terminal(status: ProposalStatus | str) -> bool:
    return not allowed_targets(status)


def is_allowed(from_status: ProposalStatus | str, to_status: ProposalStatus | str) -> bool:
    src = ProposalStatus.parse(from_status)
    dst = ProposalStatus.parse(to_status)
    if src is None or dst is None:
        return False
    if src == dst:
        return False
    return dst in _TRANSITIONS[src]


def transition_error(from_status: ProposalStatus | str, to_status: ProposalStatus | str) -> str:
    """Human-readable reason a transition is refused."""
    src = ProposalStatus.parse(from_status)
    dst = ProposalStatus.parse(to_status)

    if dst is None:
        return f"Invalid status: {to_status}"
    if src == dst:
        return "Status unchanged"

    src_label = src.value if src else str(from_status)
    targets = allowed_targets(src) if src else []
    if not targets:
        return f"Status {src_label} cannot transition to any other status"

    allowed = ", ".join(s.value for s in targets)
    return f"Transition from {src_label} to {dst.value} is not allowed. Allowed transitions: {allowed}"
