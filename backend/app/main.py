from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend.app.auth import (
    AuthContext,
    issue_access_token,
    require_permission,
    require_roles,
)
from backend.app.models import (
    AuditEventRecord,
    CandidateCreateRequest,
    CandidateItem,
    CandidateProgressResponse,
    CandidateRecord,
    CandidateStatus,
    CandidateUpdateRequest,
    InterviewRecord,
    InterviewScheduleRequest,
    InterviewStatus,
    InterviewUpdateRequest,
    LifecycleRequest,
    LoginRequest,
    LoginResponse,
    PasswordChangeRequest,
    PipelineBoardResponse,
    PipelineColumn,
    RecruiterCreateRequest,
    RecruiterItem,
    RecruiterRights,
    RecruiterStatusRequest,
    SessionCheckRequest,
    SessionCheckResponse,
    SessionPolicyResponse,
    SetStageRequest,
    SetStatusRequest,
    StageCreateRequest,
    StageRecord,
    StageReorderRequest,
    StageUpdateRequest,
    UserItem,
    UserRecord,
    utc_now,
)
from backend.app.observability import MetricsRegistry, configure_logging, observe_request
from backend.app.persistence import SqlPersistence
from backend.app.services.session import check_session
from backend.app.services.workflow import InvalidStatusTransitionError, StageNotFoundError
from backend.app.settings import Settings, load_settings
from backend.app.store import (
    AccountDisabledError,
    InMemoryStore,
    InvalidCredentialsError,
    StoreConflictError,
    StoreNotFoundError,
    upcoming,
)


def create_app() -> FastAPI:
    app = FastAPI(title="Recruitment Pipeline API", version="0.1.0")
    configure_logging()
    settings = load_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    persistence = SqlPersistence(settings.database_url) if settings.persistence_enabled else None
    store = InMemoryStore(persistence=persistence)
    if settings.seed_default_stages:
        store.seed_default_stages()
    store.ensure_bootstrap_admin(
        email=settings.bootstrap_admin_email,
        password=settings.bootstrap_admin_password,
    )
    app.state.store = store
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def session_policy(settings: Settings) -> SessionPolicyResponse:
    return SessionPolicyResponse(
        timeout_seconds=settings.session_timeout_minutes * 60,
        check_interval_seconds=settings.session_check_interval_seconds,
    )


def user_item(user: UserRecord) -> UserItem:
    return UserItem(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        role=user.role,
        status=user.status,
    )


def recruiter_item(user: UserRecord) -> RecruiterItem:
    return RecruiterItem(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        status=user.status,
        rights=user.rights or RecruiterRights(),
        created_at_utc=user.created_at_utc,
    )


def candidate_item(store: InMemoryStore, candidate: CandidateRecord) -> CandidateItem:
    stage = store.stages.get(candidate.stage_id)
    return CandidateItem(
        **candidate.model_dump(),
        stage_name=stage.name if stage else None,
    )


def run_lifecycle(
    request: Request,
    operation: str,
    action: Callable[[InMemoryStore], CandidateRecord],
) -> CandidateItem:
    store = get_store(request)
    try:
        updated = action(store)
    except StoreNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except (StageNotFoundError, StoreConflictError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    get_metrics(request).record_transition(operation)
    return candidate_item(store, updated)


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = getattr(request.app.state.store, "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.post("/auth/login", response_model=LoginResponse)
    def login(payload: LoginRequest, request: Request) -> LoginResponse:
        store = get_store(request)
        settings = get_settings(request)
        try:
            user = store.authenticate(email=payload.email, password=payload.password)
        except InvalidCredentialsError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
        except AccountDisabledError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
        token, expires_at = issue_access_token(user, settings)
        return LoginResponse(
            access_token=token,
            expires_at_utc=expires_at,
            user=user_item(user),
            session=session_policy(settings),
        )

    @router.put("/auth/password")
    def change_password(
        payload: PasswordChangeRequest,
        request: Request,
        context: AuthContext = Depends(require_roles("admin", "recruiter", "candidate")),
    ) -> dict[str, str]:
        store = get_store(request)
        target_id = payload.user_id or context.user_id
        if target_id != context.user_id and not context.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="only admins can change another user's password",
            )
        try:
            user = store.change_password(target_id, payload.new_password)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return {"user_id": user.id, "status": "password_updated"}

    @router.post("/auth/session/check", response_model=SessionCheckResponse)
    def session_check(payload: SessionCheckRequest, request: Request) -> SessionCheckResponse:
        settings = get_settings(request)
        result = check_session(
            now=payload.now_utc or utc_now(),
            last_activity=payload.last_activity_utc,
            timeout=timedelta(minutes=settings.session_timeout_minutes),
        )
        return SessionCheckResponse(
            status=result.state,
            expires_at_utc=result.expires_at_utc,
            remaining_seconds=result.remaining.total_seconds(),
            check_interval_seconds=settings.session_check_interval_seconds,
        )

    @router.get("/recruiters", response_model=list[RecruiterItem])
    def list_recruiters(
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> list[RecruiterItem]:
        store = get_store(request)
        return [recruiter_item(recruiter) for recruiter in store.list_recruiters()]

    @router.post("/recruiters", response_model=RecruiterItem)
    def create_recruiter(
        payload: RecruiterCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> RecruiterItem:
        store = get_store(request)
        try:
            recruiter = store.create_recruiter(payload)
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return recruiter_item(recruiter)

    @router.put("/recruiters/{recruiter_id}/status", response_model=RecruiterItem)
    def set_recruiter_status(
        recruiter_id: str,
        payload: RecruiterStatusRequest,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> RecruiterItem:
        store = get_store(request)
        try:
            recruiter = store.set_recruiter_status(recruiter_id, payload.status)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return recruiter_item(recruiter)

    @router.get("/recruiters/{recruiter_id}/rights", response_model=RecruiterRights)
    def get_recruiter_rights(
        recruiter_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> RecruiterRights:
        store = get_store(request)
        try:
            return store.get_recruiter_rights(recruiter_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    @router.put("/recruiters/{recruiter_id}/rights", response_model=RecruiterItem)
    def set_recruiter_rights(
        recruiter_id: str,
        payload: RecruiterRights,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> RecruiterItem:
        store = get_store(request)
        try:
            recruiter = store.set_recruiter_rights(recruiter_id, payload)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return recruiter_item(recruiter)

    @router.delete("/recruiters/{recruiter_id}")
    def delete_recruiter(
        recruiter_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> dict[str, Any]:
        store = get_store(request)
        try:
            unassigned = store.delete_recruiter(recruiter_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return {"deleted": recruiter_id, "unassigned_candidates": unassigned}

    @router.get("/pipeline-stages", response_model=list[StageRecord])
    def list_stages(
        request: Request,
        include_inactive: bool = False,
        _: AuthContext = Depends(require_roles("admin", "recruiter", "candidate")),
    ) -> list[StageRecord]:
        return get_store(request).list_stages(include_inactive=include_inactive)

    @router.post("/pipeline-stages", response_model=StageRecord)
    def create_stage(
        payload: StageCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> StageRecord:
        store = get_store(request)
        try:
            return store.create_stage(payload)
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    @router.post("/pipeline-stages/reorder", response_model=list[StageRecord])
    def reorder_stages(
        payload: StageReorderRequest,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> list[StageRecord]:
        store = get_store(request)
        try:
            return store.reorder_stages(payload.stage_ids)
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    @router.patch("/pipeline-stages/{stage_id}", response_model=StageRecord)
    def update_stage(
        stage_id: str,
        payload: StageUpdateRequest,
        request: Request,
        context: AuthContext = Depends(require_roles("admin")),
    ) -> StageRecord:
        store = get_store(request)
        try:
            return store.update_stage(stage_id, payload, actor_id=context.user_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except (StoreConflictError, StageNotFoundError) as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    @router.delete("/pipeline-stages/{stage_id}")
    def delete_stage(
        stage_id: str,
        request: Request,
        reassign_to: Optional[str] = None,
        context: AuthContext = Depends(require_roles("admin")),
    ) -> dict[str, Any]:
        store = get_store(request)
        try:
            moved = store.delete_stage(
                stage_id, reassign_to=reassign_to, actor_id=context.user_id
            )
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except (StoreConflictError, StageNotFoundError) as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return {"deleted": stage_id, "reassigned_candidates": moved}

    @router.get("/candidates", response_model=list[CandidateItem])
    def list_candidates(
        request: Request,
        status_filter: Optional[CandidateStatus] = Query(default=None, alias="status"),
        stage_id: Optional[str] = None,
        recruiter_id: Optional[str] = None,
        _: AuthContext = Depends(require_permission("view_candidates")),
    ) -> list[CandidateItem]:
        store = get_store(request)
        candidates = store.list_candidates(
            status=status_filter,
            stage_id=stage_id,
            recruiter_id=recruiter_id,
        )
        return [candidate_item(store, candidate) for candidate in candidates]

    @router.post("/candidates", response_model=CandidateItem)
    def create_candidate(
        payload: CandidateCreateRequest,
        request: Request,
        context: AuthContext = Depends(require_permission("create_candidates")),
    ) -> CandidateItem:
        store = get_store(request)
        try:
            candidate = store.create_candidate(payload, actor_id=context.user_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except (StoreConflictError, StageNotFoundError) as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return candidate_item(store, candidate)

    @router.get("/candidates/{candidate_id}", response_model=CandidateItem)
    def get_candidate(
        candidate_id: str,
        request: Request,
        _: AuthContext = Depends(require_permission("view_candidates")),
    ) -> CandidateItem:
        store = get_store(request)
        try:
            candidate = store.get_candidate(candidate_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return candidate_item(store, candidate)

    @router.patch("/candidates/{candidate_id}", response_model=CandidateItem)
    def update_candidate(
        candidate_id: str,
        payload: CandidateUpdateRequest,
        request: Request,
        _: AuthContext = Depends(require_permission("modify_candidates")),
    ) -> CandidateItem:
        store = get_store(request)
        try:
            candidate = store.update_candidate(candidate_id, payload)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return candidate_item(store, candidate)

    @router.delete("/candidates/{candidate_id}")
    def delete_candidate(
        candidate_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles("admin")),
    ) -> dict[str, str]:
        store = get_store(request)
        try:
            store.delete_candidate(candidate_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return {"deleted": candidate_id}

    @router.get("/candidates/{candidate_id}/history", response_model=list[AuditEventRecord])
    def candidate_history(
        candidate_id: str,
        request: Request,
        _: AuthContext = Depends(require_permission("view_candidates")),
    ) -> list[AuditEventRecord]:
        store = get_store(request)
        try:
            store.get_candidate(candidate_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return store.list_audit_events(candidate_id)

    @router.post("/candidates/{candidate_id}/advance", response_model=CandidateItem)
    def advance_candidate(
        candidate_id: str,
        request: Request,
        payload: Optional[LifecycleRequest] = None,
        context: AuthContext = Depends(require_permission("modify_stages")),
    ) -> CandidateItem:
        body = payload or LifecycleRequest()
        return run_lifecycle(
            request,
            "advance",
            lambda store: store.advance_candidate(
                candidate_id,
                actor_id=context.user_id,
                expected_version=body.expected_version,
                reason=body.reason,
            ),
        )

    @router.post("/candidates/{candidate_id}/reject", response_model=CandidateItem)
    def reject_candidate(
        candidate_id: str,
        request: Request,
        payload: Optional[LifecycleRequest] = None,
        context: AuthContext = Depends(require_permission("modify_statuses")),
    ) -> CandidateItem:
        body = payload or LifecycleRequest()
        return run_lifecycle(
            request,
            "reject",
            lambda store: store.reject_candidate(
                candidate_id,
                actor_id=context.user_id,
                expected_version=body.expected_version,
                reason=body.reason,
            ),
        )

    @router.post("/candidates/{candidate_id}/reopen", response_model=CandidateItem)
    def reopen_candidate(
        candidate_id: str,
        payload: SetStatusRequest,
        request: Request,
        context: AuthContext = Depends(require_permission("modify_statuses")),
    ) -> CandidateItem:
        return run_lifecycle(
            request,
            "reopen",
            lambda store: store.reopen_candidate(
                candidate_id,
                payload.status,
                actor_id=context.user_id,
                expected_version=payload.expected_version,
                reason=payload.reason,
            ),
        )

    @router.put("/candidates/{candidate_id}/stage", response_model=CandidateItem)
    def set_candidate_stage(
        candidate_id: str,
        payload: SetStageRequest,
        request: Request,
        context: AuthContext = Depends(require_permission("modify_stages")),
    ) -> CandidateItem:
        return run_lifecycle(
            request,
            "set_stage",
            lambda store: store.set_candidate_stage(
                candidate_id,
                payload.stage_id,
                actor_id=context.user_id,
                expected_version=payload.expected_version,
                reason=payload.reason,
            ),
        )

    @router.put("/candidates/{candidate_id}/status", response_model=CandidateItem)
    def set_candidate_status(
        candidate_id: str,
        payload: SetStatusRequest,
        request: Request,
        context: AuthContext = Depends(require_permission("modify_statuses")),
    ) -> CandidateItem:
        return run_lifecycle(
            request,
            "set_status",
            lambda store: store.set_candidate_status(
                candidate_id,
                payload.status,
                actor_id=context.user_id,
                expected_version=payload.expected_version,
                reason=payload.reason,
            ),
        )

    @router.get("/me/progress", response_model=CandidateProgressResponse)
    def my_progress(
        request: Request,
        context: AuthContext = Depends(require_roles("candidate")),
    ) -> CandidateProgressResponse:
        store = get_store(request)
        try:
            candidate = store.get_candidate_for_user(context.user_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        catalog = store.list_stages()
        position = next(
            (index for index, stage in enumerate(catalog, start=1) if stage.id == candidate.stage_id),
            None,
        )
        stage = store.stages.get(candidate.stage_id)
        return CandidateProgressResponse(
            candidate_id=candidate.id,
            position=candidate.position,
            status=candidate.status,
            stage_id=candidate.stage_id,
            stage_name=stage.name if stage else None,
            stage_position=position,
            total_stages=len(catalog),
            upcoming_interviews=upcoming(store.list_interviews(candidate_id=candidate.id)),
        )

    @router.get("/interviews", response_model=list[InterviewRecord])
    def list_interviews(
        request: Request,
        candidate_id: Optional[str] = None,
        recruiter_id: Optional[str] = None,
        status_filter: Optional[InterviewStatus] = Query(default=None, alias="status"),
        _: AuthContext = Depends(require_permission("view_interviews")),
    ) -> list[InterviewRecord]:
        return get_store(request).list_interviews(
            candidate_id=candidate_id,
            recruiter_id=recruiter_id,
            status=status_filter,
        )

    @router.post("/interviews", response_model=InterviewRecord)
    def schedule_interview(
        payload: InterviewScheduleRequest,
        request: Request,
        _: AuthContext = Depends(require_permission("create_interviews")),
    ) -> InterviewRecord:
        store = get_store(request)
        try:
            return store.schedule_interview(payload)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    @router.patch("/interviews/{interview_id}", response_model=InterviewRecord)
    def update_interview(
        interview_id: str,
        payload: InterviewUpdateRequest,
        request: Request,
        _: AuthContext = Depends(require_permission("modify_interviews")),
    ) -> InterviewRecord:
        store = get_store(request)
        try:
            return store.update_interview(interview_id, payload)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    @router.post("/interviews/{interview_id}/cancel", response_model=InterviewRecord)
    def cancel_interview(
        interview_id: str,
        request: Request,
        _: AuthContext = Depends(require_permission("modify_interviews")),
    ) -> InterviewRecord:
        store = get_store(request)
        try:
            return store.cancel_interview(interview_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    @router.get("/pipeline", response_model=PipelineBoardResponse)
    def pipeline_board(
        request: Request,
        _: AuthContext = Depends(require_permission("view_candidates")),
    ) -> PipelineBoardResponse:
        store = get_store(request)
        candidates = store.list_candidates()
        counts = {candidate_status: 0 for candidate_status in CandidateStatus}
        for candidate in candidates:
            counts[candidate.status] += 1
        columns = [
            PipelineColumn(
                stage=stage,
                candidates=[
                    candidate_item(store, candidate)
                    for candidate in candidates
                    if candidate.stage_id == stage.id
                    and candidate.status != CandidateStatus.rejected
                ],
            )
            for stage in store.list_stages()
        ]
        return PipelineBoardResponse(columns=columns, counts=counts)

    return router


app = create_app()
