from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from backend.app.models import AuditAction, CandidateRecord, CandidateStatus, StageRecord

REOPEN_TARGETS = frozenset(
    {CandidateStatus.scheduled, CandidateStatus.in_progress, CandidateStatus.validated}
)


class StageNotFoundError(Exception):
    pass


class InvalidStatusTransitionError(Exception):
    pass


@dataclass(frozen=True)
class Transition:
    """Outcome of a lifecycle operation, applied to the record by the store."""

    action: AuditAction
    from_stage_id: str
    to_stage_id: str
    from_status: CandidateStatus
    to_status: CandidateStatus

    @property
    def changed(self) -> bool:
        return self.from_stage_id != self.to_stage_id or self.from_status != self.to_status


def active_catalog(stages: Iterable[StageRecord]) -> list[StageRecord]:
    return sorted((stage for stage in stages if stage.is_active), key=lambda stage: stage.order)


def first_stage(stages: Iterable[StageRecord]) -> StageRecord:
    catalog = active_catalog(stages)
    if not catalog:
        raise StageNotFoundError("pipeline has no active stages")
    return catalog[0]


def find_active_stage(stages: Iterable[StageRecord], stage_id: str) -> StageRecord:
    for stage in stages:
        if stage.id == stage_id and stage.is_active:
            return stage
    raise StageNotFoundError(f"active stage not found: {stage_id}")


def parse_status(value: Union[str, CandidateStatus]) -> CandidateStatus:
    if isinstance(value, CandidateStatus):
        return value
    try:
        return CandidateStatus(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in CandidateStatus)
        raise InvalidStatusTransitionError(
            f"unknown candidate status {value!r}; expected one of: {allowed}"
        ) from exc


def next_stage(stages: Iterable[StageRecord], current: StageRecord) -> Optional[StageRecord]:
    later = [stage for stage in active_catalog(stages) if stage.order > current.order]
    return later[0] if later else None


def advance(candidate: CandidateRecord, stages: Iterable[StageRecord]) -> Transition:
    """Go decision: move to the next active stage by order, or validate at the last one.

    A candidate whose current stage is no longer in the active catalog cannot be
    advanced; the stage has to be set explicitly first.
    """
    catalog = active_catalog(stages)
    if not catalog:
        raise StageNotFoundError("pipeline has no active stages")
    current = next((stage for stage in catalog if stage.id == candidate.stage_id), None)
    if current is None:
        raise StageNotFoundError(
            f"current stage {candidate.stage_id} is not an active pipeline stage; "
            "set the stage manually"
        )
    following = next_stage(catalog, current)
    if following is None:
        return Transition(
            action=AuditAction.validated,
            from_stage_id=candidate.stage_id,
            to_stage_id=candidate.stage_id,
            from_status=candidate.status,
            to_status=CandidateStatus.validated,
        )
    return Transition(
        action=AuditAction.advanced,
        from_stage_id=candidate.stage_id,
        to_stage_id=following.id,
        from_status=candidate.status,
        to_status=CandidateStatus.in_progress,
    )


def reject(candidate: CandidateRecord) -> Transition:
    return Transition(
        action=AuditAction.rejected,
        from_stage_id=candidate.stage_id,
        to_stage_id=candidate.stage_id,
        from_status=candidate.status,
        to_status=CandidateStatus.rejected,
    )


def reopen(candidate: CandidateRecord, status: Union[str, CandidateStatus]) -> Transition:
    target = parse_status(status)
    if target not in REOPEN_TARGETS:
        raise InvalidStatusTransitionError(f"cannot reopen a candidate as {target.value}")
    return Transition(
        action=AuditAction.reopened,
        from_stage_id=candidate.stage_id,
        to_stage_id=candidate.stage_id,
        from_status=candidate.status,
        to_status=target,
    )


def set_stage(
    candidate: CandidateRecord, stage_id: str, stages: Iterable[StageRecord]
) -> Transition:
    target = find_active_stage(stages, stage_id)
    return Transition(
        action=AuditAction.stage_set,
        from_stage_id=candidate.stage_id,
        to_stage_id=target.id,
        from_status=candidate.status,
        to_status=candidate.status,
    )


def set_status(candidate: CandidateRecord, status: Union[str, CandidateStatus]) -> Transition:
    return Transition(
        action=AuditAction.status_set,
        from_stage_id=candidate.stage_id,
        to_stage_id=candidate.stage_id,
        from_status=candidate.status,
        to_status=parse_status(status),
    )
