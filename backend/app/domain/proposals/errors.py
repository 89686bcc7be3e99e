from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(slots=True)
class ProposalError(Exception):
    """Base error for the proposal lifecycle and conversion core.

    Every subclass carries a stable `kind` (rendered as `extensions.kind` in the
    problem-details body) and an HTTP status. Only errors flagged `retryable`
    may be retried wholesale by the caller; everything else is terminal and
    client-correctable.
    """

    kind: ClassVar[str] = "proposal_error"
    status_code: ClassVar[int] = 400
    title: ClassVar[str] = "Bad Request"

    message: str
    proposal_id: str | None = None
    retryable: bool = False

    def __str__(self) -> str:
        return self.message

    def extensions(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "proposal_id": self.proposal_id}
        if self.retryable:
            out["retryable"] = True
        return {k: v for k, v in out.items() if v is not None}


@dataclass(slots=True)
class ProposalNotFound(ProposalError):
    kind: ClassVar[str] = "not_found"
    status_code: ClassVar[int] = 404
    title: ClassVar[str] = "Not Found"


@dataclass(slots=True)
class ProjectNotFound(ProposalError):
    kind: ClassVar[str] = "not_found"
    status_code: ClassVar[int] = 404
    title: ClassVar[str] = "Not Found"

    project_id: str | None = None

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        if self.project_id:
            out["project_id"] = self.project_id
        return out


@dataclass(slots=True)
class ValidationFailed(ProposalError):
    kind: ClassVar[str] = "validation"
    title: ClassVar[str] = "Validation Error"

    field: str | None = None

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        if self.field:
            out["field"] = self.field
        return out


@dataclass(slots=True)
class InvalidTransition(ProposalError):
    kind: ClassVar[str] = "invalid_status_transition"
    title: ClassVar[str] = "Invalid Status Transition"

    from_status: str | None = None
    to_status: str | None = None
    allowed: list[str] = field(default_factory=list)

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        out["from_status"] = self.from_status
        out["to_status"] = self.to_status
        out["allowed"] = list(self.allowed)
        return out


@dataclass(slots=True)
class InvalidConversionStatus(ProposalError):
    kind: ClassVar[str] = "invalid_status"
    title: ClassVar[str] = "Invalid Status"

    current_status: str | None = None

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        out["current_status"] = self.current_status
        return out


@dataclass(slots=True)
class DeleteNotAllowed(ProposalError):
    kind: ClassVar[str] = "delete_not_allowed"
    title: ClassVar[str] = "Delete Not Allowed"

    current_status: str | None = None

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        out["current_status"] = self.current_status
        return out


@dataclass(slots=True)
class Forbidden(ProposalError):
    kind: ClassVar[str] = "forbidden"
    status_code: ClassVar[int] = 403
    title: ClassVar[str] = "Forbidden"


@dataclass(slots=True)
class AlreadyConverted(ProposalError):
    """Non-forced conversion of a proposal that already produced a project.

    Carries the existing project so the client can offer "view existing"
    instead of a retry.
    """

    kind: ClassVar[str] = "already_converted"
    status_code: ClassVar[int] = 409
    title: ClassVar[str] = "Already Converted"

    existing_project_id: str | None = None
    existing_project: dict[str, Any] | None = None

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        out["existing_project"] = self.existing_project or {"id": self.existing_project_id}
        return out


@dataclass(slots=True)
class VersionConflict(ProposalError):
    kind: ClassVar[str] = "version_conflict"
    status_code: ClassVar[int] = 409
    title: ClassVar[str] = "Conflict"

    expected_version: int | None = None
    current_version: int | None = None

    def extensions(self) -> dict[str, Any]:
        out = ProposalError.extensions(self)
        out["expected_version"] = self.expected_version
        out["current_version"] = self.current_version
        return {k: v for k, v in out.items() if v is not None}


@dataclass(slots=True)
class ConversionRaceLost(ProposalError):
    """A concurrent write changed the proposal between guard and commit.

    Nothing was written, so retrying the whole conversion is safe.
    """

    kind: ClassVar[str] = "internal"
    status_code: ClassVar[int] = 500
    title: ClassVar[str] = "Internal Server Error"

    retryable: bool = True
