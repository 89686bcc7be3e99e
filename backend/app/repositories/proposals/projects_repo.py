from __future__ import annotations

from decimal import Decimal
from typing import Any

from boto3.dynamodb.conditions import Key

from ...db.dynamodb.table import get_main_table
from ...domain.proposals.status_table import ProposalStatus
from .proposals_repo import new_id, now_iso, proposal_index_item, proposal_key


def project_key(project_id: str) -> dict[str, str]:
    pid = str(project_id or "").strip()
    if not pid:
        raise ValueError("project_id is required")
    return {"pk": f"PROJECT#{pid}", "sk": "PROFILE"}


def proposal_project_link_key(proposal_id: str, project_id: str) -> dict[str, str]:
    return {"pk": f"PROPOSAL#{proposal_id}", "sk": f"PROJECT#{project_id}"}


def company_projects_pk(company_id: str) -> str:
    return f"COMPANY#{company_id}#PROJECT"


def normalize_project_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    amount = item.get("amount")
    return {
        "id": item.get("projectId"),
        "company_id": item.get("companyId"),
        "project_name": item.get("name"),
        "description": item.get("description"),
        "client_name": item.get("clientName"),
        "amount": str(amount) if amount is not None else None,
        "start_date": item.get("startDate"),
        "end_date": item.get("endDate"),
        "achievements": item.get("achievements"),
        "scale": item.get("scale"),
        "tags": list(item.get("tags") or []),
        "is_public": bool(item.get("isPublic", True)),
        "source_proposal_id": item.get("sourceProposalId"),
        "created_by": item.get("createdBy"),
        "created_at": item.get("createdAt"),
    }


def project_summary(item: dict[str, Any] | None) -> dict[str, Any] | None:
    """Short form used in conflict payloads and warnings."""
    if not item:
        return None
    return {
        "id": item.get("projectId"),
        "project_name": item.get("name"),
        "created_at": item.get("createdAt"),
    }


def build_project_item(
    *,
    company_id: str,
    source_proposal_id: str,
    created_by: str,
    name: str,
    description: str,
    client_name: str | None = None,
    amount: Decimal | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    achievements: str | None = None,
    scale: str | None = None,
    tags: list[str] | None = None,
    is_public: bool = True,
) -> dict[str, Any]:
    project_id = new_id("project")
    created_at = now_iso()
    item: dict[str, Any] = {
        **project_key(project_id),
        "entityType": "Project",
        "projectId": project_id,
        "companyId": str(company_id),
        "name": name,
        "description": description,
        "clientName": client_name,
        "amount": amount,
        "startDate": start_date,
        "endDate": end_date,
        "achievements": achievements,
        "scale": scale,
        "tags": list(tags or []),
        "isPublic": bool(is_public),
        "sourceProposalId": str(source_proposal_id),
        "createdBy": str(created_by),
        "createdAt": created_at,
        "updatedAt": created_at,
        "gsi1pk": company_projects_pk(company_id),
        "gsi1sk": f"{created_at}#{project_id}",
    }
    return {k: v for k, v in item.items() if v is not None}


# -----------------------------
# Reads
# -----------------------------


def get_project_item(project_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=project_key(project_id))


def list_projects_for_company(company_id: str, *, limit: int = 50, next_token: str | None = None) -> dict[str, Any]:
    lim = max(1, min(100, int(limit or 50)))
    page = get_main_table().query_page(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(company_projects_pk(company_id)),
        scan_index_forward=False,
        limit=lim,
        next_token=next_token,
    )
    data = [normalize_project_for_api(it) for it in page.items]
    return {"data": [d for d in data if d], "nextToken": page.next_token}


def list_projects_for_proposal(proposal_id: str) -> list[dict[str, Any]]:
    """Every project ever converted from `proposal_id`, newest first (link items)."""
    t = get_main_table()
    items: list[dict[str, Any]] = []
    tok: str | None = None
    while True:
        pg = t.query_page(
            key_condition_expression=Key("pk").eq(f"PROPOSAL#{proposal_id}")
            & Key("sk").begins_with("PROJECT#"),
            scan_index_forward=False,
            limit=200,
            next_token=tok,
        )
        items.extend(pg.items)
        tok = pg.next_token
        if not tok or not pg.items:
            break

    out = [
        {
            "id": it.get("projectId"),
            "project_name": it.get("name"),
            "created_at": it.get("createdAt"),
            "created_by": it.get("createdBy"),
        }
        for it in items
    ]
    # Link sort keys are ids, not timestamps.
    out.sort(key=lambda p: str(p.get("created_at") or ""), reverse=True)
    return out


# -----------------------------
# Conversion write
# -----------------------------


def commit_conversion(
    proposal: dict[str, Any],
    *,
    project: dict[str, Any],
    actor_id: str,
    observed_project_id: str | None,
) -> dict[str, Any]:
    """Create the project and point the proposal at it, atomically.

    The proposal update only applies while the proposal is still WON and its
    `convertedToProjectId` still equals `observed_project_id` (or is still
    absent), so two racing conversions cannot both commit. Raises DdbConflict
    when that condition no longer holds. Status is never touched.
    """
    proposal_id = str(proposal.get("proposalId"))
    company_id = str(proposal.get("companyId"))
    project_id = str(project.get("projectId"))
    converted_at = now_iso()

    values: dict[str, Any] = {
        ":pid": project_id,
        ":at": converted_at,
        ":by": str(actor_id),
        ":one": 1,
        ":g": f"{converted_at}#{proposal_id}",
        ":won": ProposalStatus.WON.value,
    }
    condition = "attribute_exists(pk) AND #status = :won"
    if observed_project_id:
        values[":prev"] = str(observed_project_id)
        condition += " AND convertedToProjectId = :prev"
    else:
        condition += " AND attribute_not_exists(convertedToProjectId)"

    link = {
        **proposal_project_link_key(proposal_id, project_id),
        "entityType": "ProposalProjectLink",
        "proposalId": proposal_id,
        "projectId": project_id,
        "name": project.get("name"),
        "createdBy": str(actor_id),
        "createdAt": project.get("createdAt"),
    }

    t = get_main_table()
    t.transact_write(
        puts=[
            t.tx_put(
                item=project,
                condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
            ),
            t.tx_put(
                item=link,
                condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
            ),
        ],
        updates=[
            t.tx_update(
                key=proposal_key(proposal_id),
                update_expression=(
                    "SET convertedToProjectId = :pid, convertedAt = :at, convertedBy = :by, "
                    "version = version + :one, updatedAt = :at, gsi1sk = :g"
                ),
                expression_attribute_names={"#status": "status"},
                expression_attribute_values=values,
                condition_expression=condition,
            )
        ],
    )

    return {
        **proposal,
        "convertedToProjectId": project_id,
        "convertedAt": converted_at,
        "convertedBy": str(actor_id),
        "version": int(proposal.get("version") or 0) + 1,
        "updatedAt": converted_at,
        **proposal_index_item(company_id, proposal_id, converted_at),
    }
