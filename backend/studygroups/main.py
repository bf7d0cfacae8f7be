"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the study group backend.
Controllers are intentionally thin: they resolve the caller, delegate
to `StudyGroupService`, and return JSON responses. Workflow failures
are `StudyGroupError`s and are turned into responses by a single
exception handler.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- GET /health
- /api/StudyGroup/... (group lifecycle, membership, queries)
"""

from fastapi import FastAPI, APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, repositories, models
from .auth import get_current_caller, require_admin
from .errors import StudyGroupError
from .schemas import RegisterIn, TokenOut, StudyGroupIn, ApplyToJoinIn, GroupMembershipIn, UpdateStatusIn
from .services import Caller
from .config import settings

app = FastAPI(title="Study Group API")
logger = logging.getLogger("studygroups.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(StudyGroupError)
async def study_group_error_handler(request: Request, exc: StudyGroupError):
    """Answer expected workflow failures with their mapped status code."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Hide internal failures behind a generic 500 carrying the request id."""
    req_id = getattr(request.state, "request_id", "")
    logger.error("unhandled error request_id=%s: %s: %s", req_id, type(exc).__name__, exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "internal server error", "request_id": req_id},
        headers={"X-Request-ID": req_id},
    )


def _group_out(g: models.StudyGroup) -> dict:
    return {
        'id': g.id,
        'name': g.name,
        'description': g.description,
        'status': g.status,
        'manager_user_id': g.manager_user_id,
        'allow_direct_join': g.allow_direct_join,
        'created_at': g.created_at,
        'resolved_at': g.resolved_at,
    }


def _member_out(m: models.GroupMember) -> dict:
    return {'group_id': m.group_id, 'user_id': m.user_id, 'role': m.role, 'joined_at': m.joined_at}


def _request_out(r: models.JoinRequest) -> dict:
    return {
        'id': r.id,
        'group_id': r.group_id,
        'user_id': r.user_id,
        'status': r.status,
        'requested_at': r.requested_at,
        'resolved_at': r.resolved_at,
        'resolved_by': r.resolved_by,
    }


def _log_out(entry: models.ActivityLog) -> dict:
    return {
        'id': entry.id,
        'group_id': entry.group_id,
        'actor_user_id': entry.actor_user_id,
        'action': entry.action,
        'timestamp': entry.timestamp,
    }


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns the existing user if the username is already taken so the
    operation can be repeated safely by automation and tests.
    """
    auth = services.AuthService(db)
    existing = repositories.UserRepository(db).get_by_username(payload.username)
    if existing:
        return {'id': existing.id, 'username': existing.username, 'role': existing.role}
    user = auth.register(payload.username, payload.password)
    return {'id': user.id, 'username': user.username, 'role': user.role}


@app.post('/auth/login', response_model=TokenOut)
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    The returned token contains `user_id`, `username` and `role` and is
    signed using the configured JWT secret.
    """
    auth = services.AuthService(db)
    token = auth.authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


router = APIRouter(prefix="/api/StudyGroup")


@router.get('/GetAllStudyGroups')
def get_all_study_groups(status: Optional[str] = None, db: Session = Depends(get_session)):
    """List every study group, newest first. `status` narrows the list."""
    groups = services.StudyGroupService(db).get_all_study_groups(status)
    return [_group_out(g) for g in groups]


@router.get('/GetStudyGroupById/{group_id}')
def get_study_group_by_id(group_id: str, db: Session = Depends(get_session)):
    return _group_out(services.StudyGroupService(db).get_study_group_by_id(group_id))


@router.get('/GetUserRoleInGroup/{group_id}')
def get_user_role_in_group(group_id: str, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """Return the caller's role (`manager` or `member`) in the group."""
    role = services.StudyGroupService(db).get_user_role_in_group(group_id, caller.user_id)
    if role is None:
        raise HTTPException(status_code=404, detail='User role not found.')
    return role


@router.get('/GetStudyGroupMembers/{group_id}')
def get_study_group_members(group_id: str, db: Session = Depends(get_session)):
    members = services.StudyGroupService(db).get_study_group_members(group_id)
    return [_member_out(m) for m in members]


@router.get('/GetGroupManagers/{group_id}')
def get_group_managers(group_id: str, db: Session = Depends(get_session)):
    manager_ids = services.StudyGroupService(db).get_group_managers(group_id)
    if not manager_ids:
        raise HTTPException(status_code=404, detail='No managers found for this study group.')
    return manager_ids


@router.get('/GetStudyGroup')
def get_study_group(targetUserId: Optional[int] = None, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """List the groups of `targetUserId`, or of the caller when omitted.

    An empty list is returned when the user belongs to no group.
    """
    target = targetUserId if targetUserId is not None else caller.user_id
    groups = services.StudyGroupService(db).get_study_groups_by_user(target, caller)
    return [_group_out(g) for g in groups]


@router.post('/CreateStudyGroup')
def create_study_group(payload: StudyGroupIn, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """Submit a study group for administrator approval."""
    svc = services.StudyGroupService(db)
    try:
        group = svc.create_study_group(caller.user_id, payload.name, payload.description, payload.allow_direct_join)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'message': '创建学习小组的申请已经成功提交审核！', 'group': _group_out(group)}


@router.post('/ApproveStudyGroup')
def approve_study_group(group_id: str = Body(...), db: Session = Depends(get_session), admin: Caller = Depends(require_admin)):
    """Approve a pending group. The body is the group id as a JSON string."""
    group = services.StudyGroupService(db).approve_study_group(admin, group_id)
    return {'message': 'Study group has been approved successfully.', 'group': _group_out(group)}


@router.post('/RejectStudyGroup')
def reject_study_group(group_id: str = Body(...), db: Session = Depends(get_session), admin: Caller = Depends(require_admin)):
    """Reject a pending group. The body is the group id as a JSON string."""
    group = services.StudyGroupService(db).reject_study_group(admin, group_id)
    return {'message': 'Study group has been rejected successfully.', 'group': _group_out(group)}


@router.get('/ViewCreateStudyGroupRequests')
def view_create_study_group_requests(db: Session = Depends(get_session), admin: Caller = Depends(require_admin)):
    groups = services.StudyGroupService(db).view_create_study_group_requests(admin)
    if not groups:
        raise HTTPException(status_code=404, detail='No pending study group requests found.')
    return [_group_out(g) for g in groups]


@router.delete('/DeleteStudyGroup/{group_id}')
def delete_study_group(group_id: str, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """Delete a group as its manager or as an administrator."""
    if not services.StudyGroupService(db).delete_study_group(group_id, caller):
        raise HTTPException(status_code=400, detail='Error deleting study group or permission denied.')
    return {'message': 'Study group deleted successfully.'}


@router.post('/ApplyToJoin')
def apply_to_join(payload: ApplyToJoinIn, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    request = services.StudyGroupService(db).apply_to_join(caller.user_id, payload.study_group_id)
    return {'message': 'Application submitted successfully.', 'request': _request_out(request)}


@router.post('/LeaveStudyGroup')
def leave_study_group(payload: GroupMembershipIn, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """Leave a group. Administrators may also remove another member."""
    if payload.user_id != caller.user_id and not caller.is_admin:
        raise HTTPException(status_code=403, detail='Cannot leave a study group on behalf of another user.')
    services.StudyGroupService(db).leave_study_group(payload.user_id, payload.group_id, actor_id=caller.user_id)
    return {'message': 'Successfully left the study group.'}


@router.post('/DissolveStudyGroup')
def dissolve_study_group(payload: GroupMembershipIn, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """Dissolve a group. Only its manager, acting as themselves, may do so."""
    if payload.user_id != caller.user_id:
        raise HTTPException(status_code=403, detail='Cannot dissolve a study group on behalf of another user.')
    services.StudyGroupService(db).dissolve_study_group(payload.user_id, payload.group_id)
    return {'message': 'Study group successfully dissolved.'}


@router.post('/UpdateApplicationStatus')
def update_application_status(payload: UpdateStatusIn, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    """Approve or reject an application as the group manager."""
    request = services.StudyGroupService(db).update_application_status(caller, payload.study_group_id, payload.user_id, payload.status)
    return {'message': 'Application status updated successfully.', 'request': _request_out(request)}


@router.post('/JoinGroup/{group_id}')
def join_group(group_id: str, db: Session = Depends(get_session), caller: Caller = Depends(get_current_caller)):
    member = services.StudyGroupService(db).join_group(group_id, caller.user_id)
    return {'message': 'Joined group successfully.', 'member': _member_out(member)}


@router.get('/GetJoinRequests/{group_id}')
def get_join_requests(group_id: str, status: Optional[str] = None, db: Session = Depends(get_session)):
    requests = services.StudyGroupService(db).get_join_requests(group_id, status)
    return [_request_out(r) for r in requests]


@router.get('/GetPendingJoinRequestsCount/{group_id}')
def get_pending_join_requests_count(group_id: str, db: Session = Depends(get_session)):
    return services.StudyGroupService(db).get_pending_join_requests_count(group_id)


@router.get('/GetActivityLogs/{group_id}')
def get_activity_logs(group_id: str, db: Session = Depends(get_session)):
    """Return the group's audit trail; it outlives a dissolved group."""
    logs = services.StudyGroupService(db).get_activity_logs(group_id)
    return [_log_out(entry) for entry in logs]


app.include_router(router)
