from __future__ import annotations

from fastapi import APIRouter, Query, Request

from ..domain.proposals.models import (
    ConvertToProjectRequest,
    CreateProposalRequest,
    StatusTransitionRequest,
    UpdateContentRequest,
    UpdateProposalRequest,
)
from ..repositories.proposals.projects_repo import normalize_project_for_api
from ..repositories.proposals.proposals_repo import normalize_proposal_for_api
from ..services import proposal_conversion, proposal_lifecycle, proposals_service
from ._actor import actor_from_request

router = APIRouter(tags=["proposals"])


@router.get("")
@router.get("/", include_in_schema=False)
def list_proposals(
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
    nextToken: str | None = None,
    status: str | None = None,
):
    actor = actor_from_request(request)
    return proposals_service.list_for_company(actor, limit=limit, next_token=nextToken, status=status)


@router.post("", status_code=201)
@router.post("/", status_code=201, include_in_schema=False)
def create_proposal(body: CreateProposalRequest, request: Request):
    actor = actor_from_request(request)
    item = proposals_service.create(body, actor)
    return normalize_proposal_for_api(item)


@router.get("/{id}")
def get_proposal(id: str, request: Request):
    actor = actor_from_request(request)
    return normalize_proposal_for_api(proposals_service.get(id, actor))


@router.put("/{id}")
def update_proposal(id: str, body: UpdateProposalRequest, request: Request):
    actor = actor_from_request(request)
    return normalize_proposal_for_api(proposals_service.update_metadata(id, body, actor))


@router.put("/{id}/content")
def update_proposal_content(id: str, body: UpdateContentRequest, request: Request):
    actor = actor_from_request(request)
    updated = proposals_service.update_content(id, body.content, body.version, actor)
    return normalize_proposal_for_api(updated)


@router.delete("/{id}")
def delete_proposal(id: str, request: Request, version: int = Query(..., ge=1)):
    actor = actor_from_request(request)
    proposals_service.delete(id, version, actor)
    return {"success": True, "id": id}


# -----------------------------
# Lifecycle
# -----------------------------


@router.patch("/{id}/status")
def update_status(id: str, body: StatusTransitionRequest, request: Request):
    actor = actor_from_request(request)
    updated = proposal_lifecycle.transition(
        id,
        body.status,
        actor,
        note=body.note,
        expected_version=body.version,
    )
    return {
        "id": updated.get("proposalId"),
        "title": updated.get("title"),
        "status": updated.get("status"),
        "version": int(updated.get("version") or 0),
        "updated_at": updated.get("updatedAt"),
    }


@router.get("/{id}/status-history")
def status_history(id: str, request: Request):
    actor = actor_from_request(request)
    return proposal_lifecycle.history(id, actor)


# -----------------------------
# Conversion
# -----------------------------


@router.post("/{id}/convert-to-project", status_code=201)
def convert_to_project(id: str, body: ConvertToProjectRequest, request: Request):
    actor = actor_from_request(request)
    result = proposal_conversion.convert(id, body.to_fields(), actor, force=body.force)
    out = {
        "success": True,
        "project": normalize_project_for_api(result.get("project")),
        "proposal": normalize_proposal_for_api(result.get("proposal"), include_content=False),
    }
    if result.get("warning"):
        out["warning"] = result["warning"]
    return out


@router.get("/{id}/conversion-status")
def conversion_status(id: str, request: Request):
    actor = actor_from_request(request)
    return proposal_conversion.conversion_status(id, actor)
