"""
Promote a WON proposal into a past-performance project record.

Flow: validate fields -> load and check ownership -> conversion guard ->
one TransactWriteItems (project put, proposal->project link put, proposal
update conditioned on the `convertedToProjectId` the guard observed).
"""

from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict
from ..domain.proposals import conversion_guard
from ..domain.proposals.errors import (
    AlreadyConverted,
    ConversionRaceLost,
    Forbidden,
    InvalidConversionStatus,
    ProposalNotFound,
)
from ..domain.proposals.models import Actor, ProjectFields
from ..observability.logging import get_logger
from ..repositories.proposals import projects_repo, proposals_repo

log = get_logger("proposal_conversion")


def _load_for_conversion(proposal_id: str, actor: Actor) -> dict[str, Any]:
    pid = str(proposal_id or "").strip()
    item = proposals_repo.get_proposal_item(pid) if pid else None
    if not item:
        raise ProposalNotFound(message="Proposal not found", proposal_id=pid or None)
    if not actor.owns(item):
        raise Forbidden(message="Not allowed to convert this proposal", proposal_id=pid)
    return item


def _existing_project(project_id: str | None) -> dict[str, Any]:
    summary = projects_repo.project_summary(projects_repo.get_project_item(project_id)) if project_id else None
    return summary or {"id": project_id}


def _guard(proposal: dict[str, Any], force: bool, actor: Actor) -> conversion_guard.ConversionDecision:
    try:
        return conversion_guard.evaluate(proposal, force)
    except AlreadyConverted as e:
        e.existing_project = _existing_project(e.existing_project_id)
        log.warning(
            "proposal_conversion_rejected",
            reason=e.kind,
            proposal_id=e.proposal_id,
            existing_project_id=e.existing_project_id,
            user_id=actor.user_id,
        )
        raise


def convert(
    proposal_id: str,
    fields: ProjectFields,
    actor: Actor,
    force: bool = False,
) -> dict[str, Any]:
    """Create a project from a WON proposal.

    Returns `{project, proposal, warning}` in stored shape; `warning` is set
    only for a forced duplicate conversion.
    """
    # Field errors are reported regardless of the proposal's state.
    clean = fields.validate()

    proposal = _load_for_conversion(proposal_id, actor)
    pid = str(proposal.get("proposalId"))
    decision = _guard(proposal, bool(force), actor)

    warning: dict[str, Any] | None = None
    if decision.warning:
        warning = decision.warning.to_api(_existing_project(decision.observed_project_id))
        log.warning(
            "proposal_force_conversion",
            proposal_id=pid,
            existing_project_id=decision.observed_project_id,
            user_id=actor.user_id,
        )

    project = projects_repo.build_project_item(
        company_id=str(proposal.get("companyId")),
        source_proposal_id=pid,
        created_by=actor.user_id,
        name=str(clean.name),
        description=str(clean.description),
        client_name=clean.client_name or proposal.get("clientName"),
        amount=clean.amount if clean.amount is not None else proposal.get("estimatedAmount"),
        start_date=clean.start_date,
        end_date=clean.end_date,
        achievements=clean.achievements,
        scale=clean.scale,
        tags=clean.tags,
        is_public=clean.is_public,
    )

    try:
        written = projects_repo.commit_conversion(
            proposal,
            project=project,
            actor_id=actor.user_id,
            observed_project_id=decision.observed_project_id,
        )
    except DdbConflict as e:
        raise _lost_race(pid, bool(force), actor) from e

    updated = proposals_repo.get_proposal_item(pid) or written

    log.info(
        "proposal_converted",
        proposal_id=pid,
        project_id=project.get("projectId"),
        user_id=actor.user_id,
        is_force_conversion=bool(decision.warning),
    )
    return {"project": project, "proposal": updated, "warning": warning}


def _lost_race(proposal_id: str, force: bool, actor: Actor) -> Exception:
    """Re-run the guard against fresh state to explain a failed conditional write."""
    latest = proposals_repo.get_proposal_item(proposal_id)
    if not latest:
        return ProposalNotFound(message="Proposal not found", proposal_id=proposal_id)
    try:
        _guard(latest, force, actor)
    except (AlreadyConverted, InvalidConversionStatus) as e:
        return e
    # Forced conversions racing each other: nothing was written; safe to retry.
    return ConversionRaceLost(
        message="Proposal was converted concurrently; retry the conversion",
        proposal_id=proposal_id,
    )


def conversion_status(proposal_id: str, actor: Actor) -> dict[str, Any]:
    pid = str(proposal_id or "").strip()
    item = proposals_repo.get_proposal_item(pid) if pid else None
    if not item or not actor.owns(item):
        raise ProposalNotFound(message="Proposal not found", proposal_id=pid or None)

    current_id = item.get("convertedToProjectId")
    project = projects_repo.normalize_project_for_api(
        projects_repo.get_project_item(current_id) if current_id else None
    )
    return {
        "proposal_id": pid,
        "proposal_title": item.get("title"),
        "status": item.get("status"),
        "is_converted": bool(current_id),
        "converted_at": item.get("convertedAt"),
        "converted_by": item.get("convertedBy"),
        "project": project,
        "projects": projects_repo.list_projects_for_proposal(pid),
    }
