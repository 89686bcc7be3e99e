from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import AlreadyConverted, InvalidConversionStatus
from .status_table import ProposalStatus

DUPLICATE_CONVERSION = "DUPLICATE_CONVERSION"


@dataclass(frozen=True, slots=True)
class ConversionWarning:
    type: str
    message: str
    existing_project_id: str

    def to_api(self, existing_project: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "existing_project": existing_project or {"id": self.existing_project_id},
        }


@dataclass(frozen=True, slots=True)
class ConversionDecision:
    # The converted_to_project value seen at evaluation time; the converter's
    # write is conditioned on it still being current.
    observed_project_id: str | None
    warning: ConversionWarning | None = None


def evaluate(proposal: dict[str, Any], force: bool) -> ConversionDecision:
    """Decide whether `proposal` (stored shape) may be promoted to a project.

    Raises InvalidConversionStatus unless the proposal is WON (force does not
    override this) and AlreadyConverted when it already produced a project and
    `force` is falsy. A forced re-conversion proceeds with a warning.
    """
    proposal_id = str(proposal.get("proposalId") or "") or None
    status = ProposalStatus.parse(proposal.get("status"))
    if status is not ProposalStatus.WON:
        raise InvalidConversionStatus(
            message="Only WON proposals may convert to a project",
            proposal_id=proposal_id,
            current_status=str(proposal.get("status") or "") or None,
        )

    existing = str(proposal.get("convertedToProjectId") or "").strip() or None
    if existing and not force:
        raise AlreadyConverted(
            message="Proposal has already been converted to a project",
            proposal_id=proposal_id,
            existing_project_id=existing,
        )

    if existing:
        return ConversionDecision(
            observed_project_id=existing,
            warning=ConversionWarning(
                type=DUPLICATE_CONVERSION,
                message=(
                    "Proposal was already converted; forcing conversion creates an "
                    "additional project record"
                ),
                existing_project_id=existing,
            ),
        )

    return ConversionDecision(observed_project_id=None)
