from __future__ import annotations

from decimal import Decimal

import pytest

from app.domain.proposals.errors import (
    AlreadyConverted,
    ConversionRaceLost,
    Forbidden,
    InvalidConversionStatus,
    ProposalNotFound,
    ValidationFailed,
)
from app.domain.proposals.models import ProjectFields
from app.services import proposal_conversion


def _fields(**kw) -> ProjectFields:
    base = {"name": "Project X", "description": "Renovated the city hall annex"}
    base.update(kw)
    return ProjectFields(**base)


def _stored(fake_table, pid: str) -> dict:
    return fake_table.get_item(key={"pk": f"PROPOSAL#{pid}", "sk": "PROFILE"})


def test_won_proposal_converts_once(fake_table, make_proposal, actor):
    p = make_proposal("WON", estimated_amount=Decimal("125000"))
    pid = p["proposalId"]

    out = proposal_conversion.convert(pid, _fields(), actor)
    project = out["project"]
    assert project["sourceProposalId"] == pid
    assert project["name"] == "Project X"
    assert project["clientName"] == "City of Springfield"
    assert project["amount"] == Decimal("125000")
    assert out["warning"] is None

    stored = _stored(fake_table, pid)
    assert stored["convertedToProjectId"] == project["projectId"]
    assert stored["convertedBy"] == actor.user_id
    assert stored["status"] == "WON"
    assert out["proposal"]["convertedToProjectId"] == project["projectId"]

    with pytest.raises(AlreadyConverted) as ei:
        proposal_conversion.convert(pid, _fields(name="Project Y"), actor)
    assert ei.value.existing_project_id == project["projectId"]
    ext = ei.value.extensions()
    assert ext["existing_project"]["id"] == project["projectId"]
    assert ext["existing_project"]["project_name"] == "Project X"


def test_conversion_does_not_change_status_or_ledger(fake_table, make_proposal, actor):
    p = make_proposal("WON")
    pid = p["proposalId"]
    ledger_before = fake_table.ledger(pid)

    proposal_conversion.convert(pid, _fields(), actor)

    assert fake_table.ledger(pid) == ledger_before
    assert _stored(fake_table, pid)["status"] == "WON"


def test_draft_proposal_cannot_convert(fake_table, make_proposal, actor):
    p = make_proposal("DRAFT")
    with pytest.raises(InvalidConversionStatus) as ei:
        proposal_conversion.convert(p["proposalId"], _fields(), actor)
    assert ei.value.current_status == "DRAFT"
    assert "WON" in ei.value.message


def test_force_does_not_bypass_status(fake_table, make_proposal, actor):
    p = make_proposal("LOST")
    with pytest.raises(InvalidConversionStatus):
        proposal_conversion.convert(p["proposalId"], _fields(), actor, force=True)


@pytest.mark.parametrize("status", ["DRAFT", "WON"])
def test_reversed_dates_fail_regardless_of_status(fake_table, make_proposal, actor, status):
    p = make_proposal(status)
    with pytest.raises(ValidationFailed) as ei:
        proposal_conversion.convert(
            p["proposalId"],
            _fields(start_date="2025-12-31", end_date="2025-01-01"),
            actor,
        )
    assert ei.value.field == "end_date"


def test_field_validation_runs_before_existence_check(fake_table, actor):
    with pytest.raises(ValidationFailed) as ei:
        proposal_conversion.convert("proposal_missing", _fields(name=""), actor)
    assert ei.value.field == "project_name"


def test_description_is_required(fake_table, make_proposal, actor):
    p = make_proposal("WON")
    with pytest.raises(ValidationFailed) as ei:
        proposal_conversion.convert(p["proposalId"], _fields(description="   "), actor)
    assert ei.value.field == "description"


def test_forced_conversions_create_one_project_each(fake_table, make_proposal, actor):
    p = make_proposal("WON")
    pid = p["proposalId"]

    first = proposal_conversion.convert(pid, _fields(name="Project 1"), actor)
    project_ids = [first["project"]["projectId"]]
    for n in range(2, 5):
        out = proposal_conversion.convert(pid, _fields(name=f"Project {n}"), actor, force=True)
        assert out["warning"]["type"] == "DUPLICATE_CONVERSION"
        assert out["warning"]["existing_project"]["id"] == project_ids[-1]
        project_ids.append(out["project"]["projectId"])

    assert len(set(project_ids)) == 4
    assert _stored(fake_table, pid)["convertedToProjectId"] == project_ids[-1]

    projects = [it for (pk, _), it in fake_table.items.items() if pk.startswith("PROJECT#")]
    assert sorted(it["projectId"] for it in projects) == sorted(project_ids)
    assert all(it["sourceProposalId"] == pid for it in projects)

    status = proposal_conversion.conversion_status(pid, actor)
    assert status["is_converted"] is True
    assert status["project"]["id"] == project_ids[-1]
    assert {x["id"] for x in status["projects"]} == set(project_ids)


def test_other_company_cannot_convert(fake_table, make_proposal, other_actor):
    p = make_proposal("WON")
    with pytest.raises(Forbidden) as ei:
        proposal_conversion.convert(p["proposalId"], _fields(), other_actor)
    assert ei.value.status_code == 403


def test_missing_proposal_is_not_found(fake_table, actor):
    with pytest.raises(ProposalNotFound):
        proposal_conversion.convert("proposal_missing", _fields(), actor)


def test_racing_plain_conversions_one_wins(fake_table, make_proposal, actor):
    p = make_proposal("WON")
    pid = p["proposalId"]
    winner: dict = {}

    def _competing():
        winner.update(proposal_conversion.convert(pid, _fields(name="Winner"), actor))

    fake_table.before_next_transact = _competing

    with pytest.raises(AlreadyConverted) as ei:
        proposal_conversion.convert(pid, _fields(name="Loser"), actor)
    assert ei.value.existing_project_id == winner["project"]["projectId"]

    projects = [it for (pk, _), it in fake_table.items.items() if pk.startswith("PROJECT#")]
    assert [it["name"] for it in projects] == ["Winner"]


def test_racing_forced_conversions_loser_is_retryable(fake_table, make_proposal, actor):
    p = make_proposal("WON")
    pid = p["proposalId"]
    proposal_conversion.convert(pid, _fields(name="First"), actor)

    fake_table.before_next_transact = lambda: proposal_conversion.convert(
        pid, _fields(name="Second"), actor, force=True
    )

    with pytest.raises(ConversionRaceLost) as ei:
        proposal_conversion.convert(pid, _fields(name="Third"), actor, force=True)
    assert ei.value.retryable is True
    assert ei.value.status_code == 500

    names = sorted(it["name"] for (pk, _), it in fake_table.items.items() if pk.startswith("PROJECT#"))
    assert names == ["First", "Second"]


def test_conversion_status_of_unconverted_proposal(fake_table, make_proposal, actor, other_actor):
    p = make_proposal("SUBMITTED")
    out = proposal_conversion.conversion_status(p["proposalId"], actor)
    assert out["is_converted"] is False
    assert out["project"] is None
    assert out["projects"] == []

    with pytest.raises(ProposalNotFound):
        proposal_conversion.conversion_status(p["proposalId"], other_actor)
