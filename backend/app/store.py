from __future__ import annotations

import logging
from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Callable, Optional
from uuid import uuid4

from backend.app.models import (
    AccountStatus,
    AuditAction,
    AuditEventRecord,
    CandidateCreateRequest,
    CandidateRecord,
    CandidateStatus,
    CandidateUpdateRequest,
    InterviewRecord,
    InterviewScheduleRequest,
    InterviewStatus,
    InterviewUpdateRequest,
    RecruiterCreateRequest,
    RecruiterRights,
    StageCreateRequest,
    StageRecord,
    StageUpdateRequest,
    UserRecord,
    UserRole,
    utc_now,
)
from backend.app.services import workflow
from backend.app.services.dedupe import find_user_by_email, is_duplicate_email, normalize_email
from backend.app.services.passwords import hash_password, verify_password
from backend.app.services.workflow import (
    InvalidStatusTransitionError,
    StageNotFoundError,
    Transition,
)

if TYPE_CHECKING:
    from backend.app.persistence import SqlPersistence

logger = logging.getLogger("recruitment_pipeline")

DEFAULT_STAGES = (
    ("Soft Skills", "Communication, motivation and culture fit"),
    ("Technical Interview", "Technical assessment with the hiring team"),
    ("Client Meeting", "Final meeting with the client"),
)

CANDIDATE_USER_FIELDS = ("first_name", "last_name", "email")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class VersionConflictError(StoreConflictError):
    def __init__(self, candidate_id: str, expected: int, actual: int) -> None:
        self.candidate_id = candidate_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"candidate {candidate_id} was modified concurrently "
            f"(expected version {expected}, current version {actual})"
        )


class DanglingStageReferenceError(StoreConflictError):
    def __init__(self, stage_id: str, affected_candidates: int) -> None:
        self.stage_id = stage_id
        self.affected_candidates = affected_candidates
        super().__init__(
            f"stage {stage_id} is still assigned to {affected_candidates} candidate(s); "
            "provide reassign_to to move them first"
        )


class InvalidCredentialsError(Exception):
    pass


class AccountDisabledError(Exception):
    pass


class InMemoryStore:
    def __init__(self, persistence: Optional["SqlPersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.users: dict[str, UserRecord] = {}
        self.stages: dict[str, StageRecord] = {}
        self.candidates: dict[str, CandidateRecord] = {}
        self.interviews: dict[str, InterviewRecord] = {}
        self.audit_events: list[AuditEventRecord] = []

        if self.persistence:
            snapshot = self.persistence.load_snapshot()
            if snapshot:
                self._hydrate_from_snapshot(snapshot)
            else:
                self.audit_events = self.persistence.list_audit_events()

    def ensure_bootstrap_admin(self, *, email: str, password: str) -> Optional[UserRecord]:
        with self._lock:
            if not email or not password:
                return None
            if any(user.role == UserRole.admin for user in self.users.values()):
                return None
            admin = self._create_user(
                first_name="Admin",
                last_name="User",
                email=email,
                password=password,
                role=UserRole.admin,
            )
            logger.info("bootstrap_admin_created user_id=%s", admin.id)
            self._persist_state()
            return admin

    def get_user(self, user_id: str) -> UserRecord:
        user = self.users.get(user_id)
        if not user:
            raise StoreNotFoundError(f"user not found: {user_id}")
        return user

    def authenticate(self, *, email: str, password: str) -> UserRecord:
        user = find_user_by_email(self.users.values(), email)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("invalid credentials")
        if user.status != AccountStatus.active:
            raise AccountDisabledError("account is disabled")
        return user

    def change_password(self, user_id: str, new_password: str) -> UserRecord:
        with self._lock:
            user = self.get_user(user_id)
            updated = user.model_copy(
                update={"password_hash": hash_password(new_password), "updated_at_utc": utc_now()}
            )
            self.users[user.id] = updated
            self._persist_state()
            return updated

    def create_recruiter(self, request: RecruiterCreateRequest) -> UserRecord:
        with self._lock:
            recruiter = self._create_user(
                first_name=request.first_name,
                last_name=request.last_name,
                email=request.email,
                password=request.password,
                role=UserRole.recruiter,
                status=request.status,
                rights=RecruiterRights(),
            )
            self._persist_state()
            return recruiter

    def list_recruiters(self) -> list[UserRecord]:
        with self._lock:
            recruiters = [user for user in self.users.values() if user.role == UserRole.recruiter]
        return sorted(recruiters, key=lambda user: (user.last_name.lower(), user.first_name.lower()))

    def get_recruiter(self, recruiter_id: str) -> UserRecord:
        user = self.users.get(recruiter_id)
        if not user or user.role != UserRole.recruiter:
            raise StoreNotFoundError(f"recruiter not found: {recruiter_id}")
        return user

    def set_recruiter_status(self, recruiter_id: str, status: AccountStatus) -> UserRecord:
        with self._lock:
            recruiter = self.get_recruiter(recruiter_id)
            updated = recruiter.model_copy(update={"status": status, "updated_at_utc": utc_now()})
            self.users[recruiter.id] = updated
            self._persist_state()
            return updated

    def get_recruiter_rights(self, recruiter_id: str) -> RecruiterRights:
        recruiter = self.get_recruiter(recruiter_id)
        return recruiter.rights or RecruiterRights()

    def set_recruiter_rights(self, recruiter_id: str, rights: RecruiterRights) -> UserRecord:
        with self._lock:
            recruiter = self.get_recruiter(recruiter_id)
            updated = recruiter.model_copy(update={"rights": rights, "updated_at_utc": utc_now()})
            self.users[recruiter.id] = updated
            self._persist_state()
            return updated

    def has_permission(self, user_id: str, permission: str) -> bool:
        user = self.users.get(user_id)
        if not user or user.status != AccountStatus.active:
            return False
        if user.role == UserRole.admin:
            return True
        if user.role != UserRole.recruiter:
            return False
        return bool(getattr(user.rights or RecruiterRights(), permission, False))

    def delete_recruiter(self, recruiter_id: str) -> int:
        """Delete a recruiter and unassign them everywhere. Returns unassigned candidates."""
        with self._lock:
            self.get_recruiter(recruiter_id)
            now = utc_now()
            unassigned = 0
            for candidate in list(self.candidates.values()):
                if candidate.recruiter_id == recruiter_id:
                    self.candidates[candidate.id] = candidate.model_copy(
                        update={
                            "recruiter_id": None,
                            "version": candidate.version + 1,
                            "updated_at_utc": now,
                        }
                    )
                    unassigned += 1
            for interview in list(self.interviews.values()):
                if interview.recruiter_id == recruiter_id:
                    self.interviews[interview.id] = interview.model_copy(
                        update={"recruiter_id": None, "updated_at_utc": now}
                    )
            del self.users[recruiter_id]
            logger.info(
                "recruiter_deleted recruiter_id=%s unassigned_candidates=%s",
                recruiter_id,
                unassigned,
            )
            self._persist_state()
            return unassigned

    def seed_default_stages(self) -> list[StageRecord]:
        with self._lock:
            if self.stages:
                return []
            created = [
                self._insert_stage(name=name, description=description, order=index, is_active=True)
                for index, (name, description) in enumerate(DEFAULT_STAGES, start=1)
            ]
            self._persist_state()
            return created

    def list_stages(self, *, include_inactive: bool = False) -> list[StageRecord]:
        with self._lock:
            stages = list(self.stages.values())
        if not include_inactive:
            return workflow.active_catalog(stages)
        return sorted(stages, key=lambda stage: (not stage.is_active, stage.order))

    def get_stage(self, stage_id: str) -> StageRecord:
        stage = self.stages.get(stage_id)
        if not stage:
            raise StoreNotFoundError(f"pipeline stage not found: {stage_id}")
        return stage

    def create_stage(self, request: StageCreateRequest) -> StageRecord:
        with self._lock:
            order = request.order
            if order is None:
                active_orders = [stage.order for stage in self.stages.values() if stage.is_active]
                order = max(active_orders, default=0) + 1
            if request.is_active:
                self._ensure_order_available(order)
            stage = self._insert_stage(
                name=request.name,
                description=request.description,
                order=order,
                is_active=request.is_active,
            )
            self._persist_state()
            return stage

    def update_stage(
        self,
        stage_id: str,
        request: StageUpdateRequest,
        *,
        actor_id: Optional[str] = None,
    ) -> StageRecord:
        with self._lock:
            stage = self.get_stage(stage_id)
            changes = {
                key: value
                for key, value in request.model_dump(exclude_unset=True, exclude={"reassign_to"}).items()
                if value is not None or key == "description"
            }
            if "name" in changes:
                changes["name"] = changes["name"].strip()
            is_active = changes.get("is_active", stage.is_active)
            order = changes.get("order", stage.order)
            if is_active:
                self._ensure_order_available(order, exclude_stage_id=stage.id)
            if stage.is_active and is_active is False:
                self._release_stage(stage.id, request.reassign_to, actor_id=actor_id)
            updated = stage.model_copy(update={**changes, "updated_at_utc": utc_now()})
            self.stages[stage.id] = updated
            self._persist_state()
            return updated

    def reorder_stages(self, stage_ids: list[str]) -> list[StageRecord]:
        with self._lock:
            active_ids = {stage.id for stage in self.stages.values() if stage.is_active}
            if set(stage_ids) != active_ids:
                raise StoreConflictError("reorder must list every active stage exactly once")
            now = utc_now()
            for index, stage_id in enumerate(stage_ids, start=1):
                stage = self.stages[stage_id]
                self.stages[stage_id] = stage.model_copy(
                    update={"order": index, "updated_at_utc": now}
                )
            self._persist_state()
            return self.list_stages()

    def delete_stage(
        self,
        stage_id: str,
        *,
        reassign_to: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> int:
        """Delete a stage. Returns the number of candidates moved to ``reassign_to``."""
        with self._lock:
            self.get_stage(stage_id)
            moved = self._release_stage(stage_id, reassign_to, actor_id=actor_id)
            del self.stages[stage_id]
            logger.info("stage_deleted stage_id=%s reassigned_candidates=%s", stage_id, moved)
            self._persist_state()
            return moved

    def count_stage_references(self, stage_id: str) -> int:
        with self._lock:
            return sum(1 for candidate in self.candidates.values() if candidate.stage_id == stage_id)

    def create_candidate(
        self, request: CandidateCreateRequest, *, actor_id: Optional[str] = None
    ) -> CandidateRecord:
        with self._lock:
            stages = list(self.stages.values())
            if request.stage_id:
                stage = workflow.find_active_stage(stages, request.stage_id)
            else:
                stage = workflow.first_stage(stages)
            if request.recruiter_id:
                self.get_recruiter(request.recruiter_id)
            user = self._create_user(
                first_name=request.first_name,
                last_name=request.last_name,
                email=request.email,
                password=request.password,
                role=UserRole.candidate,
            )
            now = utc_now()
            candidate = CandidateRecord(
                id=new_id("cand"),
                user_id=user.id,
                first_name=user.first_name,
                last_name=user.last_name,
                email=user.email,
                phone=request.phone,
                position=request.position.strip(),
                experience=request.experience,
                salary_expectation=request.salary_expectation,
                recruiter_id=request.recruiter_id,
                stage_id=stage.id,
                status=request.status,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.candidates[candidate.id] = candidate
            self._add_audit_event(
                candidate_id=candidate.id,
                action=AuditAction.created,
                from_stage_id=None,
                to_stage_id=candidate.stage_id,
                from_status=None,
                to_status=candidate.status,
                actor_id=actor_id,
                reason="candidate_created",
            )
            self._persist_state()
            return candidate

    def get_candidate(self, candidate_id: str) -> CandidateRecord:
        candidate = self.candidates.get(candidate_id)
        if not candidate:
            raise StoreNotFoundError(f"candidate not found: {candidate_id}")
        return candidate

    def get_candidate_for_user(self, user_id: str) -> CandidateRecord:
        with self._lock:
            for candidate in self.candidates.values():
                if candidate.user_id == user_id:
                    return candidate
        raise StoreNotFoundError(f"no candidate profile for user: {user_id}")

    def list_candidates(
        self,
        *,
        status: Optional[CandidateStatus] = None,
        stage_id: Optional[str] = None,
        recruiter_id: Optional[str] = None,
    ) -> list[CandidateRecord]:
        with self._lock:
            candidates = list(self.candidates.values())
        output = [
            candidate
            for candidate in candidates
            if (status is None or candidate.status == status)
            and (stage_id is None or candidate.stage_id == stage_id)
            and (recruiter_id is None or candidate.recruiter_id == recruiter_id)
        ]
        output.sort(key=lambda candidate: (candidate.last_name.lower(), candidate.first_name.lower()))
        return output

    def update_candidate(self, candidate_id: str, request: CandidateUpdateRequest) -> CandidateRecord:
        with self._lock:
            candidate = self.get_candidate(candidate_id)
            self._check_version(candidate, request.expected_version)
            changes = request.model_dump(exclude_unset=True, exclude={"expected_version"})
            for required in ("first_name", "last_name", "email", "position"):
                if required in changes and changes[required] is None:
                    changes.pop(required)
            if changes.get("recruiter_id"):
                self.get_recruiter(changes["recruiter_id"])
            if "email" in changes and is_duplicate_email(
                self.users.values(), changes["email"], exclude_user_id=candidate.user_id
            ):
                raise StoreConflictError(f"a user with this email already exists: {changes['email']}")
            if "email" in changes:
                changes["email"] = normalize_email(changes["email"])

            now = utc_now()
            user_changes = {key: changes[key] for key in CANDIDATE_USER_FIELDS if key in changes}
            if user_changes and candidate.user_id in self.users:
                user = self.users[candidate.user_id]
                self.users[user.id] = user.model_copy(update={**user_changes, "updated_at_utc": now})
            updated = candidate.model_copy(
                update={**changes, "version": candidate.version + 1, "updated_at_utc": now}
            )
            self.candidates[candidate.id] = updated
            self._persist_state()
            return updated

    def delete_candidate(self, candidate_id: str) -> None:
        with self._lock:
            candidate = self.get_candidate(candidate_id)
            del self.candidates[candidate.id]
            self.users.pop(candidate.user_id, None)
            self.interviews = {
                interview_id: interview
                for interview_id, interview in self.interviews.items()
                if interview.candidate_id != candidate.id
            }
            logger.info("candidate_deleted candidate_id=%s", candidate.id)
            self._persist_state()

    def advance_candidate(
        self,
        candidate_id: str,
        *,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> CandidateRecord:
        return self._apply_transition(
            candidate_id,
            lambda candidate: workflow.advance(candidate, self.stages.values()),
            actor_id=actor_id,
            expected_version=expected_version,
            reason=reason,
        )

    def reject_candidate(
        self,
        candidate_id: str,
        *,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> CandidateRecord:
        return self._apply_transition(
            candidate_id,
            workflow.reject,
            actor_id=actor_id,
            expected_version=expected_version,
            reason=reason,
        )

    def reopen_candidate(
        self,
        candidate_id: str,
        status: str,
        *,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> CandidateRecord:
        return self._apply_transition(
            candidate_id,
            lambda candidate: workflow.reopen(candidate, status),
            actor_id=actor_id,
            expected_version=expected_version,
            reason=reason,
        )

    def set_candidate_stage(
        self,
        candidate_id: str,
        stage_id: str,
        *,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> CandidateRecord:
        return self._apply_transition(
            candidate_id,
            lambda candidate: workflow.set_stage(candidate, stage_id, self.stages.values()),
            actor_id=actor_id,
            expected_version=expected_version,
            reason=reason,
        )

    def set_candidate_status(
        self,
        candidate_id: str,
        status: str,
        *,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> CandidateRecord:
        return self._apply_transition(
            candidate_id,
            lambda candidate: workflow.set_status(candidate, status),
            actor_id=actor_id,
            expected_version=expected_version,
            reason=reason,
        )

    def list_audit_events(self, candidate_id: str) -> list[AuditEventRecord]:
        if self.persistence:
            return self.persistence.list_audit_events(candidate_id)
        with self._lock:
            return [event for event in self.audit_events if event.candidate_id == candidate_id]

    def schedule_interview(self, request: InterviewScheduleRequest) -> InterviewRecord:
        with self._lock:
            candidate = self.get_candidate(request.candidate_id)
            if request.recruiter_id:
                self.get_recruiter(request.recruiter_id)
            now = utc_now()
            interview = InterviewRecord(
                id=new_id("int"),
                candidate_id=candidate.id,
                recruiter_id=request.recruiter_id or candidate.recruiter_id,
                scheduled_at_utc=request.scheduled_at_utc,
                duration_minutes=request.duration_minutes,
                notes=request.notes,
                status=InterviewStatus.scheduled,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.interviews[interview.id] = interview
            self.candidates[candidate.id] = candidate.model_copy(
                update={"last_interview_at_utc": request.scheduled_at_utc}
            )
            self._persist_state()
            return interview

    def get_interview(self, interview_id: str) -> InterviewRecord:
        interview = self.interviews.get(interview_id)
        if not interview:
            raise StoreNotFoundError(f"interview not found: {interview_id}")
        return interview

    def list_interviews(
        self,
        *,
        candidate_id: Optional[str] = None,
        recruiter_id: Optional[str] = None,
        status: Optional[InterviewStatus] = None,
    ) -> list[InterviewRecord]:
        with self._lock:
            interviews = list(self.interviews.values())
        output = [
            interview
            for interview in interviews
            if (candidate_id is None or interview.candidate_id == candidate_id)
            and (recruiter_id is None or interview.recruiter_id == recruiter_id)
            and (status is None or interview.status == status)
        ]
        output.sort(key=lambda interview: interview.scheduled_at_utc, reverse=True)
        return output

    def update_interview(self, interview_id: str, request: InterviewUpdateRequest) -> InterviewRecord:
        with self._lock:
            interview = self.get_interview(interview_id)
            changes = {
                key: value
                for key, value in request.model_dump(exclude_unset=True).items()
                if value is not None or key in {"notes", "recruiter_id"}
            }
            if changes.get("recruiter_id"):
                self.get_recruiter(changes["recruiter_id"])
            moved = (
                "scheduled_at_utc" in changes
                and changes["scheduled_at_utc"] != interview.scheduled_at_utc
            )
            if moved and interview.status == InterviewStatus.cancelled:
                raise StoreConflictError(f"cancelled interview cannot be rescheduled: {interview.id}")
            if moved and "status" not in changes:
                changes["status"] = InterviewStatus.rescheduled
            updated = interview.model_copy(update={**changes, "updated_at_utc": utc_now()})
            self.interviews[interview.id] = updated
            if moved:
                candidate = self.candidates.get(interview.candidate_id)
                if candidate:
                    self.candidates[candidate.id] = candidate.model_copy(
                        update={"last_interview_at_utc": updated.scheduled_at_utc}
                    )
            self._persist_state()
            return updated

    def cancel_interview(self, interview_id: str) -> InterviewRecord:
        with self._lock:
            interview = self.get_interview(interview_id)
            updated = interview.model_copy(
                update={"status": InterviewStatus.cancelled, "updated_at_utc": utc_now()}
            )
            self.interviews[interview.id] = updated
            self._persist_state()
            return updated

    def _create_user(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        password: Optional[str],
        role: UserRole,
        status: AccountStatus = AccountStatus.active,
        rights: Optional[RecruiterRights] = None,
    ) -> UserRecord:
        if is_duplicate_email(self.users.values(), email):
            raise StoreConflictError(f"a user with this email already exists: {email}")
        now = utc_now()
        user = UserRecord(
            id=new_id("usr"),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=normalize_email(email),
            password_hash=hash_password(password) if password else None,
            role=role,
            status=status,
            rights=rights,
            created_at_utc=now,
            updated_at_utc=now,
        )
        self.users[user.id] = user
        return user

    def _insert_stage(
        self, *, name: str, description: Optional[str], order: int, is_active: bool
    ) -> StageRecord:
        now = utc_now()
        stage = StageRecord(
            id=new_id("stg"),
            name=name.strip(),
            description=description,
            order=order,
            is_active=is_active,
            created_at_utc=now,
            updated_at_utc=now,
        )
        self.stages[stage.id] = stage
        return stage

    def _ensure_order_available(self, order: int, *, exclude_stage_id: Optional[str] = None) -> None:
        for stage in self.stages.values():
            if stage.is_active and stage.order == order and stage.id != exclude_stage_id:
                raise StoreConflictError(f"order {order} is already used by stage {stage.id}")

    def _release_stage(
        self, stage_id: str, reassign_to: Optional[str], *, actor_id: Optional[str]
    ) -> int:
        referencing = [
            candidate for candidate in self.candidates.values() if candidate.stage_id == stage_id
        ]
        if not referencing:
            return 0
        if not reassign_to:
            logger.warning(
                "stage_release_blocked stage_id=%s affected_candidates=%s",
                stage_id,
                len(referencing),
            )
            raise DanglingStageReferenceError(stage_id, len(referencing))
        if reassign_to == stage_id:
            raise StoreConflictError("reassign_to must differ from the stage being removed")
        target = workflow.find_active_stage(self.stages.values(), reassign_to)
        now = utc_now()
        for candidate in referencing:
            self.candidates[candidate.id] = candidate.model_copy(
                update={
                    "stage_id": target.id,
                    "version": candidate.version + 1,
                    "updated_at_utc": now,
                }
            )
            self._add_audit_event(
                candidate_id=candidate.id,
                action=AuditAction.stage_reassigned,
                from_stage_id=stage_id,
                to_stage_id=target.id,
                from_status=candidate.status,
                to_status=candidate.status,
                actor_id=actor_id,
                reason="stage_removed",
            )
        return len(referencing)

    def _check_version(self, candidate: CandidateRecord, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != candidate.version:
            raise VersionConflictError(candidate.id, expected_version, candidate.version)

    def _apply_transition(
        self,
        candidate_id: str,
        compute: Callable[[CandidateRecord], Transition],
        *,
        actor_id: Optional[str],
        expected_version: Optional[int],
        reason: Optional[str],
    ) -> CandidateRecord:
        with self._lock:
            candidate = self.get_candidate(candidate_id)
            self._check_version(candidate, expected_version)
            try:
                transition = compute(candidate)
            except (StageNotFoundError, InvalidStatusTransitionError) as exc:
                logger.warning(
                    "candidate_transition_blocked candidate_id=%s stage_id=%s status=%s error=%s",
                    candidate.id,
                    candidate.stage_id,
                    candidate.status.value,
                    exc,
                )
                raise
            if not transition.changed:
                return candidate
            updated = candidate.model_copy(
                update={
                    "stage_id": transition.to_stage_id,
                    "status": transition.to_status,
                    "version": candidate.version + 1,
                    "updated_at_utc": utc_now(),
                }
            )
            self.candidates[candidate.id] = updated
            self._add_audit_event(
                candidate_id=candidate.id,
                action=transition.action,
                from_stage_id=transition.from_stage_id,
                to_stage_id=transition.to_stage_id,
                from_status=transition.from_status,
                to_status=transition.to_status,
                actor_id=actor_id,
                reason=reason,
            )
            logger.info(
                "candidate_transition candidate_id=%s action=%s stage=%s->%s status=%s->%s actor=%s",
                candidate.id,
                transition.action.value,
                transition.from_stage_id,
                transition.to_stage_id,
                transition.from_status.value,
                transition.to_status.value,
                actor_id,
            )
            self._persist_state()
            return updated

    def _add_audit_event(
        self,
        *,
        candidate_id: str,
        action: AuditAction,
        from_stage_id: Optional[str],
        to_stage_id: Optional[str],
        from_status: Optional[CandidateStatus],
        to_status: Optional[CandidateStatus],
        actor_id: Optional[str],
        reason: Optional[str],
    ) -> None:
        event = AuditEventRecord(
            id=new_id("evt"),
            candidate_id=candidate_id,
            action=action,
            from_stage_id=from_stage_id,
            to_stage_id=to_stage_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            reason=reason,
            created_at_utc=utc_now(),
        )
        self.audit_events.append(event)
        if self.persistence:
            self.persistence.insert_audit_event(event)

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        with self._lock:
            self.persistence.save_snapshot(self._snapshot_data())

    def _snapshot_data(self) -> dict:
        return {
            "users": [record.model_dump(mode="json") for record in self.users.values()],
            "stages": [record.model_dump(mode="json") for record in self.stages.values()],
            "candidates": [record.model_dump(mode="json") for record in self.candidates.values()],
            "interviews": [record.model_dump(mode="json") for record in self.interviews.values()],
            "audit_events": [record.model_dump(mode="json") for record in self.audit_events],
        }

    def _hydrate_from_snapshot(self, snapshot: dict) -> None:
        self.users = {
            record["id"]: UserRecord.model_validate(record)
            for record in snapshot.get("users", [])
        }
        self.stages = {
            record["id"]: StageRecord.model_validate(record)
            for record in snapshot.get("stages", [])
        }
        self.candidates = {
            record["id"]: CandidateRecord.model_validate(record)
            for record in snapshot.get("candidates", [])
        }
        self.interviews = {
            record["id"]: InterviewRecord.model_validate(record)
            for record in snapshot.get("interviews", [])
        }
        self.audit_events = [
            AuditEventRecord.model_validate(record) for record in snapshot.get("audit_events", [])
        ]


def upcoming(interviews: list[InterviewRecord], *, now: Optional[datetime] = None) -> list[InterviewRecord]:
    reference = now or utc_now()
    return sorted(
        (
            interview
            for interview in interviews
            if interview.scheduled_at_utc >= reference
            and interview.status in {InterviewStatus.scheduled, InterviewStatus.rescheduled}
        ),
        key=lambda interview: interview.scheduled_at_utc,
    )
