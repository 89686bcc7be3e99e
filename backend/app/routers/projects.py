from __future__ import annotations

from fastapi import APIRouter, Query, Request

from ..domain.proposals.errors import ProjectNotFound
from ..repositories.proposals import projects_repo
from ._actor import actor_from_request

router = APIRouter(tags=["projects"])


@router.get("")
@router.get("/", include_in_schema=False)
def list_projects(
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
    nextToken: str | None = None,
):
    actor = actor_from_request(request)
    return projects_repo.list_projects_for_company(str(actor.company_id), limit=limit, next_token=nextToken)


@router.get("/{id}")
def get_project(id: str, request: Request):
    actor = actor_from_request(request)
    item = projects_repo.get_project_item(id)
    if not item or not actor.owns(item):
        raise ProjectNotFound(message="Project not found", project_id=id)
    return projects_repo.normalize_project_for_api(item)
