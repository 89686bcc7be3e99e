from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from boto3.dynamodb.conditions import Attr, Key

from ...db.dynamodb.table import get_main_table, to_ddb_value
from ...domain.proposals.status_table import INITIAL_STATUS
from ...domain.proposals.version_guard import coerce_version, guarded_write
from . import status_history_repo
from .status_history_repo import next_changed_at


def now_iso() -> str:
    return next_changed_at(None)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


def proposal_key(proposal_id: str) -> dict[str, str]:
    pid = str(proposal_id or "").strip()
    if not pid:
        raise ValueError("proposal_id is required")
    return {"pk": f"PROPOSAL#{pid}", "sk": "PROFILE"}


def company_proposals_pk(company_id: str) -> str:
    return f"COMPANY#{company_id}#PROPOSAL"


def proposal_index_item(company_id: str, proposal_id: str, updated_at: str) -> dict[str, str]:
    return {"gsi1pk": company_proposals_pk(company_id), "gsi1sk": f"{updated_at}#{proposal_id}"}


def _amount_str(v: Any) -> str | None:
    if v is None:
        return None
    return str(v)


def normalize_proposal_for_api(item: dict[str, Any] | None, include_content: bool = True) -> dict[str, Any] | None:
    if not item:
        return None
    out: dict[str, Any] = {
        "id": item.get("proposalId"),
        "company_id": item.get("companyId"),
        "title": item.get("title"),
        "client_name": item.get("clientName"),
        "deadline": item.get("deadline"),
        "estimated_amount": _amount_str(item.get("estimatedAmount")),
        "description": item.get("description"),
        "tags": list(item.get("tags") or []),
        "status": item.get("status"),
        "version": coerce_version(item.get("version")),
        "converted_to_project_id": item.get("convertedToProjectId"),
        "converted_at": item.get("convertedAt"),
        "converted_by": item.get("convertedBy"),
        "created_by": item.get("createdBy"),
        "created_at": item.get("createdAt"),
        "updated_at": item.get("updatedAt"),
    }
    if include_content:
        out["content"] = item.get("content") or {}
    return out


# -----------------------------
# Reads
# -----------------------------


def get_proposal_item(proposal_id: str) -> dict[str, Any] | None:
    """Stored shape, strongly consistent (guards evaluate against this)."""
    return get_main_table().get_item(key=proposal_key(proposal_id))


def list_proposals_for_company(
    company_id: str,
    *,
    limit: int = 50,
    next_token: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    lim = max(1, min(100, int(limit or 50)))
    page = get_main_table().query_page(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(company_proposals_pk(company_id)),
        filter_expression=Attr("status").eq(status) if status else None,
        scan_index_forward=False,
        limit=lim,
        next_token=next_token,
    )
    data = [normalize_proposal_for_api(it, include_content=False) for it in page.items]
    return {"data": [d for d in data if d], "nextToken": page.next_token}


# -----------------------------
# Writes
# -----------------------------


def create_proposal(
    *,
    company_id: str,
    created_by: str,
    title: str,
    client_name: str,
    deadline: str | None = None,
    estimated_amount: Decimal | None = None,
    description: str | None = None,
    tags: list[str] | None = None,
    content: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a DRAFT proposal (version 1) together with its initial ledger entry."""
    proposal_id = new_id("proposal")
    created_at = now_iso()

    item: dict[str, Any] = {
        **proposal_key(proposal_id),
        "entityType": "Proposal",
        "proposalId": proposal_id,
        "companyId": str(company_id),
        "createdBy": str(created_by),
        "title": str(title),
        "clientName": str(client_name),
        "deadline": deadline,
        "estimatedAmount": estimated_amount,
        "description": description,
        "tags": list(tags or []),
        "content": to_ddb_value(content or {}),
        "status": INITIAL_STATUS.value,
        "version": 1,
        "statusChangedAt": created_at,
        "createdAt": created_at,
        "updatedAt": created_at,
        **proposal_index_item(company_id, proposal_id, created_at),
    }
    item = {k: v for k, v in item.items() if v is not None}

    entry = status_history_repo.build_entry(
        proposal_id=proposal_id,
        from_status=None,
        to_status=INITIAL_STATUS.value,
        actor_id=created_by,
        note=None,
        proposal_version=1,
        changed_at=created_at,
    )

    t = get_main_table()
    t.transact_write(
        puts=[
            t.tx_put(
                item=item,
                condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
            ),
            status_history_repo.append_item(t, entry),
        ]
    )
    return item


# Stored attribute names editable through the generic edit path. Status and
# conversion fields are deliberately absent.
_EDITABLE = {
    "title",
    "clientName",
    "deadline",
    "estimatedAmount",
    "description",
    "tags",
    "content",
}


def update_proposal_fields(
    proposal: dict[str, Any],
    *,
    expected_version: int,
    updates: dict[str, Any],
    updated_by: str | None = None,
) -> dict[str, Any]:
    """Version-guarded edit of non-lifecycle fields.

    Raises DdbConflict if the stored version no longer equals
    `expected_version`. Returns the stored item as written.
    """
    proposal_id = str(proposal.get("proposalId"))
    company_id = str(proposal.get("companyId"))
    clean = {k: to_ddb_value(v) for k, v in (updates or {}).items() if k in _EDITABLE}
    guard = guarded_write(expected_version)
    now = now_iso()

    names: dict[str, str] = {}
    values: dict[str, Any] = {
        **guard.values,
        ":u": now,
        ":g": f"{now}#{proposal_id}",
    }
    parts: list[str] = [guard.set_clause, "updatedAt = :u", "gsi1sk = :g"]
    for i, (k, v) in enumerate(clean.items(), start=1):
        names[f"#k{i}"] = k
        values[f":v{i}"] = v
        parts.append(f"#k{i} = :v{i}")
    if updated_by:
        values[":by"] = str(updated_by)
        parts.append("lastModifiedBy = :by")

    updated = get_main_table().update_item(
        key=proposal_key(proposal_id),
        update_expression="SET " + ", ".join(parts),
        expression_attribute_names=names or None,
        expression_attribute_values=values,
        condition_expression=f"attribute_exists(pk) AND {guard.condition}",
        return_values="ALL_NEW",
    )
    if updated:
        return updated
    return {
        **proposal,
        **clean,
        "version": guard.next_version,
        "updatedAt": now,
        **proposal_index_item(company_id, proposal_id, now),
    }


def apply_status_transition(
    proposal: dict[str, Any],
    *,
    to_status: str,
    actor_id: str,
    note: str | None,
) -> dict[str, Any]:
    """Atomically write the new status and its ledger entry.

    One TransactWriteItems call: the proposal update is conditioned on the
    status and version observed in `proposal`; the ledger put refuses to
    overwrite. Either both land or neither does (DdbConflict on a lost race).
    """
    proposal_id = str(proposal.get("proposalId"))
    company_id = str(proposal.get("companyId"))
    from_status = str(proposal.get("status"))
    guard = guarded_write(proposal.get("version"))
    changed_at = next_changed_at(proposal.get("statusChangedAt"))

    entry = status_history_repo.build_entry(
        proposal_id=proposal_id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        note=note,
        proposal_version=guard.next_version,
        changed_at=changed_at,
    )

    t = get_main_table()
    t.transact_write(
        puts=[status_history_repo.append_item(t, entry)],
        updates=[
            t.tx_update(
                key=proposal_key(proposal_id),
                update_expression=(
                    f"SET #status = :to, {guard.set_clause}, statusChangedAt = :at, "
                    "updatedAt = :at, gsi1sk = :g"
                ),
                expression_attribute_names={"#status": "status"},
                expression_attribute_values={
                    **guard.values,
                    ":to": str(to_status),
                    ":from": from_status,
                    ":at": changed_at,
                    ":g": f"{changed_at}#{proposal_id}",
                },
                condition_expression=f"attribute_exists(pk) AND #status = :from AND {guard.condition}",
            )
        ],
    )

    return {
        **proposal,
        "status": str(to_status),
        "version": guard.next_version,
        "statusChangedAt": changed_at,
        "updatedAt": changed_at,
        **proposal_index_item(company_id, proposal_id, changed_at),
    }


def delete_proposal(proposal_id: str, *, expected_version: int) -> None:
    """Remove the proposal profile item. Ledger entries are retained."""
    guard = guarded_write(expected_version)
    get_main_table().delete_item(
        key=proposal_key(proposal_id),
        condition_expression=f"attribute_exists(pk) AND {guard.condition}",
        expression_attribute_values={":expectedVersion": guard.values[":expectedVersion"]},
    )
