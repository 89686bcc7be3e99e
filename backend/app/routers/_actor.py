from __future__ import annotations

from fastapi import HTTPException, Request

from ..domain.proposals.models import Actor


def actor_from_request(request: Request) -> Actor:
    """The authenticated caller, scoped to their company."""
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    sub = str(getattr(user, "sub", "") or "").strip()
    if not sub:
        raise HTTPException(status_code=401, detail="Unauthorized")
    company_id = str(getattr(user, "company_id", "") or "").strip()
    if not company_id:
        raise HTTPException(status_code=403, detail="No company is associated with this account")
    return Actor(user_id=sub, company_id=company_id)
