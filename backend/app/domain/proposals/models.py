from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from .errors import ValidationFailed

# Dates are checked by parse_iso_date so a malformed value is a domain
# validation error naming the field, not a request-shape error.
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# -----------------------------
# Request bodies (HTTP boundary)
# -----------------------------


class CreateProposalRequest(BaseModel):
    proposal_title: str = Field(..., min_length=2, max_length=200)
    client_name: str = Field(..., min_length=1, max_length=200)
    deadline: str | None = None
    estimated_amount: Decimal | None = Field(default=None, ge=0)
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    content: dict[str, Any] = Field(default_factory=dict)


class UpdateProposalRequest(BaseModel):
    version: int = Field(..., ge=1)
    proposal_title: str | None = Field(default=None, min_length=2, max_length=200)
    client_name: str | None = Field(default=None, min_length=1, max_length=200)
    deadline: str | None = None
    estimated_amount: Decimal | None = Field(default=None, ge=0)
    description: str | None = None
    tags: list[str] | None = None


class UpdateContentRequest(BaseModel):
    content: dict[str, Any]
    version: int = Field(..., ge=1)


class StatusTransitionRequest(BaseModel):
    # Kept as a plain string: an unknown value is a domain validation error
    # (400), reported only after the "status unchanged" check.
    status: str
    note: str | None = None
    # Optional optimistic-concurrency check against the caller's copy.
    version: int | None = Field(default=None, ge=1)


class ConvertToProjectRequest(BaseModel):
    project_name: str | None = Field(default=None, max_length=200)
    description: str | None = None
    client_name: str | None = Field(default=None, max_length=200)
    amount: Decimal | None = None
    start_date: str | None = None
    end_date: str | None = None
    achievements: str | None = None
    scale: str | None = Field(default=None, max_length=50)
    tags: list[str] = Field(default_factory=list)
    is_public: bool = True
    force: bool = False

    def to_fields(self) -> "ProjectFields":
        return ProjectFields(
            name=self.project_name,
            description=self.description,
            client_name=self.client_name,
            amount=self.amount,
            start_date=self.start_date,
            end_date=self.end_date,
            achievements=self.achievements,
            scale=self.scale,
            tags=list(self.tags or []),
            is_public=bool(self.is_public),
        )


# -----------------------------
# Core inputs
# -----------------------------


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated caller as the core sees it."""

    user_id: str
    company_id: str | None

    def owns(self, item: dict[str, Any] | None) -> bool:
        if not item or not self.company_id:
            return False
        return str(item.get("companyId") or "") == str(self.company_id)


def parse_iso_date(value: str | None, *, field_name: str) -> date | None:
    if value is None or not str(value).strip():
        return None
    raw = str(value).strip()
    message = f"{field_name} must be a valid YYYY-MM-DD date"
    if not _ISO_DATE.match(raw):
        raise ValidationFailed(message=message, field=field_name)
    try:
        return date.fromisoformat(raw)
    except ValueError as e:
        raise ValidationFailed(message=message, field=field_name) from e


def validate_tags(tags: list[str] | None, *, field_name: str = "tags") -> list[str]:
    out: list[str] = []
    for t in tags or []:
        s = str(t or "").strip()
        if not s:
            continue
        if len(s) > 50:
            raise ValidationFailed(message="Tags must be at most 50 characters", field=field_name)
        out.append(s)
    return out


@dataclass(slots=True)
class ProjectFields:
    """Caller-supplied fields for a project created by conversion."""

    name: str | None
    description: str | None
    client_name: str | None = None
    amount: Decimal | None = None
    start_date: str | None = None
    end_date: str | None = None
    achievements: str | None = None
    scale: str | None = None
    tags: list[str] = field(default_factory=list)
    is_public: bool = True

    def validate(self) -> "ProjectFields":
        """Check required fields and date order; returns a normalized copy."""
        name = str(self.name or "").strip()
        if not name:
            raise ValidationFailed(message="project_name is required", field="project_name")
        if len(name) < 2:
            raise ValidationFailed(message="project_name must be at least 2 characters", field="project_name")

        description = str(self.description or "").strip()
        if not description:
            raise ValidationFailed(message="description is required", field="description")

        start = parse_iso_date(self.start_date, field_name="start_date")
        end = parse_iso_date(self.end_date, field_name="end_date")
        if start and end and end < start:
            raise ValidationFailed(message="end_date must not be earlier than start_date", field="end_date")

        if self.amount is not None and self.amount < 0:
            raise ValidationFailed(message="amount must be non-negative", field="amount")

        return ProjectFields(
            name=name,
            description=description,
            client_name=str(self.client_name).strip() if self.client_name else None,
            amount=self.amount,
            start_date=start.isoformat() if start else None,
            end_date=end.isoformat() if end else None,
            achievements=self.achievements,
            scale=self.scale,
            tags=validate_tags(self.tags),
            is_public=bool(self.is_public),
        )
