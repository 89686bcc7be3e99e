"""
Append-only status history ledger.

One item per accepted transition, stored in the proposal's partition and keyed
by the proposal version the transition produced:

    pk = PROPOSAL#<proposalId>    sk = STATUS#<version:012d>

Entries are only ever written inside the same TransactWriteItems call as the
proposal's status change (see proposals_repo), with a condition that refuses
to overwrite. There is deliberately no update or delete function here.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ...db.dynamodb.table import DynamoTable, get_main_table

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(_TS_FORMAT)


def parse_ts(value: str | None) -> datetime | None:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return datetime.strptime(s, _TS_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def next_changed_at(previous: str | None, *, now: datetime | None = None) -> str:
    """Current time, clamped to be strictly after the previous entry's timestamp.

    Keeps `changedAt` monotonically increasing per proposal even when app
    servers disagree about the clock.
    """
    current = now or datetime.now(timezone.utc)
    prev = parse_ts(previous)
    if prev is not None and current <= prev:
        current = prev + timedelta(microseconds=1)
    return format_ts(current)


def history_key(proposal_id: str, version: int) -> dict[str, str]:
    pid = str(proposal_id or "").strip()
    if not pid:
        raise ValueError("proposal_id is required")
    return {"pk": f"PROPOSAL#{pid}", "sk": f"STATUS#{int(version):012d}"}


def build_entry(
    *,
    proposal_id: str,
    from_status: str | None,
    to_status: str,
    actor_id: str,
    note: str | None,
    proposal_version: int,
    changed_at: str,
) -> dict[str, Any]:
    item: dict[str, Any] = {
        **history_key(proposal_id, proposal_version),
        "entityType": "ProposalStatusHistory",
        "entryId": f"psh_{uuid.uuid4().hex}",
        "proposalId": str(proposal_id),
        "fromStatus": from_status,
        "toStatus": str(to_status),
        "changedBy": str(actor_id),
        "note": note,
        "changedAt": changed_at,
        "proposalVersion": int(proposal_version),
    }
    return {k: v for k, v in item.items() if v is not None}


def append_item(table: DynamoTable, entry: dict[str, Any]) -> dict[str, Any]:
    """Transact `Put` for a ledger entry; fails if the slot is already taken."""
    return table.tx_put(
        item=entry,
        condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
    )


def normalize_entry_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    return {
        "id": item.get("entryId"),
        "from_status": item.get("fromStatus"),
        "to_status": item.get("toStatus"),
        "changed_by": item.get("changedBy"),
        "note": item.get("note"),
        "changed_at": item.get("changedAt"),
    }


def list_for(proposal_id: str, *, max_items: int = 1000) -> list[dict[str, Any]]:
    """All ledger entries for a proposal, newest first (stored shape)."""
    t = get_main_table()
    items: list[dict[str, Any]] = []
    tok: str | None = None
    while True:
        pg = t.query_page(
            key_condition_expression=Key("pk").eq(f"PROPOSAL#{proposal_id}")
            & Key("sk").begins_with("STATUS#"),
            scan_index_forward=False,
            limit=200,
            next_token=tok,
        )
        items.extend(pg.items)
        tok = pg.next_token
        if not tok or not pg.items or len(items) >= max_items:
            break
    return items[:max_items]
