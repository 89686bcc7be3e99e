"""
Proposal lifecycle: validated status transitions with an audit ledger.

A transition is one TransactWriteItems call (status update + ledger append),
conditioned on the status and version this request observed. Concurrent
transitions on the same proposal are therefore linearized by DynamoDB: exactly
one commits, the other gets a conditional-check failure which is re-read and
reported as a stale InvalidTransition or a VersionConflict.
"""

from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict
from ..domain.proposals import status_table
from ..domain.proposals.errors import (
    InvalidTransition,
    ProposalNotFound,
    ValidationFailed,
    VersionConflict,
)
from ..domain.proposals.models import Actor
from ..domain.proposals.status_table import ProposalStatus
from ..domain.proposals.version_guard import check_and_bump, coerce_version
from ..observability.logging import get_logger
from ..repositories.proposals import proposals_repo, status_history_repo
from ..settings import settings

log = get_logger("proposal_lifecycle")


def load_owned_proposal(proposal_id: str, actor: Actor) -> dict[str, Any]:
    """Stored proposal, or ProposalNotFound if absent or owned by another company."""
    pid = str(proposal_id or "").strip()
    item = proposals_repo.get_proposal_item(pid) if pid else None
    if not item or not actor.owns(item):
        raise ProposalNotFound(message="Proposal not found", proposal_id=pid or None)
    return item


def _invalid(from_status: str, to_status: str, proposal_id: str, message: str | None = None) -> InvalidTransition:
    return InvalidTransition(
        message=message or status_table.transition_error(from_status, to_status),
        proposal_id=proposal_id,
        from_status=from_status,
        to_status=to_status,
        allowed=[s.value for s in status_table.allowed_targets(from_status)],
    )


def _normalize_note(note: str | None) -> str | None:
    n = str(note or "").strip()
    if not n:
        return None
    if len(n) > settings.status_note_max_length:
        raise ValidationFailed(
            message=f"note must be at most {settings.status_note_max_length} characters",
            field="note",
        )
    return n


def transition(
    proposal_id: str,
    requested_status: str,
    actor: Actor,
    note: str | None = None,
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Move a proposal to `requested_status`; returns the stored proposal as written."""
    proposal = load_owned_proposal(proposal_id, actor)
    pid = str(proposal.get("proposalId"))
    current = str(proposal.get("status"))
    requested_raw = str(requested_status or "").strip()

    if requested_raw.upper() == current:
        raise _invalid(current, current, pid, message="Status unchanged")

    requested = ProposalStatus.parse(requested_raw)
    if requested is None:
        raise ValidationFailed(message=f"Invalid status: {requested_raw}", proposal_id=pid, field="status")

    if not status_table.is_allowed(current, requested):
        raise _invalid(current, requested.value, pid)

    if expected_version is not None:
        check_and_bump(proposal.get("version"), expected_version, proposal_id=pid)

    clean_note = _normalize_note(note)

    try:
        updated = proposals_repo.apply_status_transition(
            proposal,
            to_status=requested.value,
            actor_id=actor.user_id,
            note=clean_note,
        )
    except DdbConflict as e:
        raise _lost_race(proposal, requested.value) from e

    log.info(
        "proposal_status_changed",
        proposal_id=pid,
        from_status=current,
        to_status=requested.value,
        version=coerce_version(updated.get("version")),
        user_id=actor.user_id,
    )
    return updated


def _lost_race(observed: dict[str, Any], requested: str) -> Exception:
    """Explain a failed conditional write by re-reading the proposal."""
    pid = str(observed.get("proposalId"))
    latest = proposals_repo.get_proposal_item(pid)

    log.warning(
        "proposal_status_change_conflict",
        proposal_id=pid,
        observed_status=observed.get("status"),
        observed_version=coerce_version(observed.get("version")),
        latest_status=(latest or {}).get("status"),
        latest_version=coerce_version((latest or {}).get("version")) if latest else None,
        requested_status=requested,
    )

    if not latest:
        return ProposalNotFound(message="Proposal not found", proposal_id=pid)

    latest_status = str(latest.get("status"))
    if latest_status != str(observed.get("status")):
        if latest_status == requested:
            return _invalid(latest_status, requested, pid, message="Status unchanged")
        return _invalid(
            latest_status,
            requested,
            pid,
            message=(
                f"Proposal status changed concurrently to {latest_status}; "
                + status_table.transition_error(latest_status, requested)
            ),
        )

    return VersionConflict(
        message="Proposal was modified concurrently; reload and try again",
        proposal_id=pid,
        expected_version=coerce_version(observed.get("version")),
        current_version=coerce_version(latest.get("version")),
    )


def history(proposal_id: str, actor: Actor) -> dict[str, Any]:
    proposal = load_owned_proposal(proposal_id, actor)
    pid = str(proposal.get("proposalId"))
    entries = status_history_repo.list_for(pid)
    return {
        "proposal_id": pid,
        "current_status": proposal.get("status"),
        "history": [e for e in (status_history_repo.normalize_entry_for_api(it) for it in entries) if e],
    }
