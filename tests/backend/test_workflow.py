from __future__ import annotations

import pytest

from backend.app.models import AuditAction, CandidateRecord, CandidateStatus, StageRecord, utc_now
from backend.app.services import workflow
from backend.app.services.workflow import InvalidStatusTransitionError, StageNotFoundError


def _stage(stage_id: str, order: int, name: str, *, is_active: bool = True) -> StageRecord:
    now = utc_now()
    return StageRecord(
        id=stage_id,
        name=name,
        order=order,
        is_active=is_active,
        created_at_utc=now,
        updated_at_utc=now,
    )


def _candidate(stage_id: str, status: CandidateStatus = CandidateStatus.in_progress) -> CandidateRecord:
    now = utc_now()
    return CandidateRecord(
        id="cand_1",
        user_id="usr_1",
        first_name="Nadia",
        last_name="Benali",
        email="nadia@example.com",
        position="Backend Engineer",
        stage_id=stage_id,
        status=status,
        created_at_utc=now,
        updated_at_utc=now,
    )


@pytest.fixture()
def catalog() -> list[StageRecord]:
    return [
        _stage("1", 1, "Soft Skills"),
        _stage("2", 2, "Technical"),
        _stage("3", 3, "Client Meeting"),
    ]


def test_advance_from_middle_stage_moves_to_next(catalog) -> None:
    transition = workflow.advance(_candidate("2"), catalog)
    assert transition.to_stage_id == "3"
    assert transition.to_status == CandidateStatus.in_progress
    assert transition.action == AuditAction.advanced


def test_advance_from_last_stage_validates_in_place(catalog) -> None:
    transition = workflow.advance(_candidate("3"), catalog)
    assert transition.to_stage_id == "3"
    assert transition.to_status == CandidateStatus.validated
    assert transition.action == AuditAction.validated


def test_advance_walks_every_stage_by_order_not_position() -> None:
    # Deliberately unsorted with gaps in the order keys.
    stages = [
        _stage("c", 40, "Client Meeting"),
        _stage("a", 5, "Soft Skills"),
        _stage("x", 20, "Retired", is_active=False),
        _stage("b", 12, "Technical"),
    ]
    expected = ["a", "b", "c"]
    for current, following in zip(expected, expected[1:]):
        transition = workflow.advance(_candidate(current, CandidateStatus.scheduled), stages)
        assert transition.to_stage_id == following
        assert transition.to_status == CandidateStatus.in_progress


def test_advance_skips_inactive_stage(catalog) -> None:
    catalog[1] = catalog[1].model_copy(update={"is_active": False})
    transition = workflow.advance(_candidate("1"), catalog)
    assert transition.to_stage_id == "3"


def test_advance_on_empty_catalog_raises() -> None:
    with pytest.raises(StageNotFoundError):
        workflow.advance(_candidate("1"), [])


def test_advance_from_deactivated_stage_requires_manual_override(catalog) -> None:
    catalog[0] = catalog[0].model_copy(update={"is_active": False})
    with pytest.raises(StageNotFoundError):
        workflow.advance(_candidate("1"), catalog)


@pytest.mark.parametrize("status", list(CandidateStatus))
@pytest.mark.parametrize("stage_id", ["1", "2", "3"])
def test_reject_from_any_state_keeps_stage(stage_id: str, status: CandidateStatus) -> None:
    transition = workflow.reject(_candidate(stage_id, status))
    assert transition.to_status == CandidateStatus.rejected
    assert transition.to_stage_id == stage_id


def test_reject_validated_candidate_at_first_stage(catalog) -> None:
    transition = workflow.reject(_candidate("1", CandidateStatus.validated))
    assert transition.to_stage_id == "1"
    assert transition.to_status == CandidateStatus.rejected
    assert transition.changed


def test_reject_already_rejected_is_unchanged() -> None:
    transition = workflow.reject(_candidate("2", CandidateStatus.rejected))
    assert transition.to_status == CandidateStatus.rejected
    assert not transition.changed


@pytest.mark.parametrize("target", ["in_progress", "scheduled", "validated"])
def test_reopen_accepts_active_statuses(target: str) -> None:
    transition = workflow.reopen(_candidate("2", CandidateStatus.rejected), target)
    assert transition.to_status == CandidateStatus(target)
    assert transition.to_stage_id == "2"
    assert transition.action == AuditAction.reopened


@pytest.mark.parametrize("target", ["rejected", "archived", ""])
def test_reopen_refuses_invalid_targets(target: str) -> None:
    with pytest.raises(InvalidStatusTransitionError):
        workflow.reopen(_candidate("2", CandidateStatus.rejected), target)


@pytest.mark.parametrize("start", ["1", "2", "3"])
@pytest.mark.parametrize("target", ["1", "2", "3"])
def test_set_stage_jumps_anywhere_without_touching_status(catalog, start: str, target: str) -> None:
    candidate = _candidate(start, CandidateStatus.validated)
    transition = workflow.set_stage(candidate, target, catalog)
    assert transition.to_stage_id == target
    assert transition.to_status == CandidateStatus.validated


def test_set_stage_refuses_inactive_or_unknown_stage(catalog) -> None:
    catalog[2] = catalog[2].model_copy(update={"is_active": False})
    with pytest.raises(StageNotFoundError):
        workflow.set_stage(_candidate("1"), "3", catalog)
    with pytest.raises(StageNotFoundError):
        workflow.set_stage(_candidate("1"), "99", catalog)


def test_set_status_validates_enum_membership() -> None:
    transition = workflow.set_status(_candidate("1"), "Validated")
    assert transition.to_status == CandidateStatus.validated
    with pytest.raises(InvalidStatusTransitionError):
        workflow.set_status(_candidate("1"), "hired")


def test_first_stage_uses_lowest_active_order(catalog) -> None:
    catalog[0] = catalog[0].model_copy(update={"is_active": False})
    assert workflow.first_stage(catalog).id == "2"
    with pytest.raises(StageNotFoundError):
        workflow.first_stage([])
