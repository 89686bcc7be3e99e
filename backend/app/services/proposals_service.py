from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict
from ..domain.proposals.errors import DeleteNotAllowed, ProposalNotFound, ValidationFailed, VersionConflict
from ..domain.proposals.models import (
    Actor,
    CreateProposalRequest,
    UpdateProposalRequest,
    parse_iso_date,
    validate_tags,
)
from ..domain.proposals.status_table import ProposalStatus
from ..domain.proposals.version_guard import check_and_bump, coerce_version
from ..observability.logging import get_logger
from ..repositories.proposals import proposals_repo
from .proposal_lifecycle import load_owned_proposal

log = get_logger("proposals_service")

# Once submitted, a proposal is part of the company's bid record.
_DELETABLE = {ProposalStatus.DRAFT.value, ProposalStatus.PENDING.value}


def _version_conflict(proposal_id: str, expected: int) -> Exception:
    latest = proposals_repo.get_proposal_item(proposal_id)
    if not latest:
        return ProposalNotFound(message="Proposal not found", proposal_id=proposal_id)
    return VersionConflict(
        message="Proposal version conflict; reload and try again",
        proposal_id=proposal_id,
        expected_version=int(expected),
        current_version=coerce_version(latest.get("version")),
    )


def create(body: CreateProposalRequest, actor: Actor) -> dict[str, Any]:
    deadline = parse_iso_date(body.deadline, field_name="deadline")
    item = proposals_repo.create_proposal(
        company_id=str(actor.company_id),
        created_by=actor.user_id,
        title=body.proposal_title.strip(),
        client_name=body.client_name.strip(),
        deadline=deadline.isoformat() if deadline else None,
        estimated_amount=body.estimated_amount,
        description=body.description,
        tags=validate_tags(body.tags),
        content=body.content,
    )
    log.info("proposal_created", proposal_id=item.get("proposalId"), user_id=actor.user_id)
    return item


def get(proposal_id: str, actor: Actor) -> dict[str, Any]:
    return load_owned_proposal(proposal_id, actor)


def list_for_company(
    actor: Actor,
    *,
    limit: int = 50,
    next_token: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    st = ProposalStatus.parse(status) if status else None
    if status and st is None:
        raise ValidationFailed(message=f"Invalid status: {status}", field="status")
    return proposals_repo.list_proposals_for_company(
        str(actor.company_id),
        limit=limit,
        next_token=next_token,
        status=st.value if st else None,
    )


def _guarded_update(proposal_id: str, actor: Actor, version: int, updates: dict[str, Any]) -> dict[str, Any]:
    proposal = load_owned_proposal(proposal_id, actor)
    pid = str(proposal.get("proposalId"))
    check_and_bump(proposal.get("version"), version, proposal_id=pid)
    try:
        return proposals_repo.update_proposal_fields(
            proposal,
            expected_version=version,
            updates=updates,
            updated_by=actor.user_id,
        )
    except DdbConflict as e:
        raise _version_conflict(pid, version) from e


def update_metadata(proposal_id: str, body: UpdateProposalRequest, actor: Actor) -> dict[str, Any]:
    provided = body.model_dump(exclude_unset=True)
    updates: dict[str, Any] = {}
    if "proposal_title" in provided and body.proposal_title is not None:
        updates["title"] = body.proposal_title.strip()
    if "client_name" in provided and body.client_name is not None:
        updates["clientName"] = body.client_name.strip()
    if "deadline" in provided:
        d = parse_iso_date(body.deadline, field_name="deadline")
        updates["deadline"] = d.isoformat() if d else None
    if "estimated_amount" in provided:
        updates["estimatedAmount"] = body.estimated_amount
    if "description" in provided:
        updates["description"] = body.description
    if "tags" in provided:
        updates["tags"] = validate_tags(body.tags)

    updated = _guarded_update(proposal_id, actor, body.version, updates)
    log.info(
        "proposal_updated",
        proposal_id=updated.get("proposalId"),
        version=coerce_version(updated.get("version")),
        fields=sorted(updates.keys()),
        user_id=actor.user_id,
    )
    return updated


def update_content(proposal_id: str, content: dict[str, Any], version: int, actor: Actor) -> dict[str, Any]:
    updated = _guarded_update(proposal_id, actor, version, {"content": content or {}})
    log.info(
        "proposal_content_updated",
        proposal_id=updated.get("proposalId"),
        version=coerce_version(updated.get("version")),
        user_id=actor.user_id,
    )
    return updated


def delete(proposal_id: str, version: int, actor: Actor) -> None:
    proposal = load_owned_proposal(proposal_id, actor)
    pid = str(proposal.get("proposalId"))
    status = str(proposal.get("status"))
    if status not in _DELETABLE:
        raise DeleteNotAllowed(
            message=f"Proposals in status {status} cannot be deleted",
            proposal_id=pid,
            current_status=status,
        )
    check_and_bump(proposal.get("version"), version, proposal_id=pid)
    try:
        proposals_repo.delete_proposal(pid, expected_version=version)
    except DdbConflict as e:
        raise _version_conflict(pid, version) from e
    log.info("proposal_deleted", proposal_id=pid, user_id=actor.user_id)
