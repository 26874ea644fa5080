"""FastAPI routers for addon sync and device login endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from ...api.error_sanitizer import sanitize_error_message
from ...api.exceptions import (
    AlreadySyncingError,
    AuthenticationError,
    ConfigurationError,
    ConfirmationRequiredError,
    NotFoundError,
    RemoteError,
    SyncioError,
)
from ...auth import AuthSession, DeviceAuthFlow, DeviceAuthRegistry, SessionManager
from ..domain.entities import SyncOutcome
from ..use_cases import GetSyncStatusUseCase, SyncGroupUseCase, SyncUserUseCase
from .dependencies import (
    DeviceFlowFactory,
    get_device_auth_registry,
    get_device_flow_factory,
    get_session_manager,
    get_status_use_case,
    get_sync_group_use_case,
    get_sync_user_use_case,
    verify_api_key,
)
from .schemas import (
    DeviceAuthRequest,
    DeviceAuthResponse,
    GroupStatusResponse,
    GroupSyncResponse,
    SessionResponse,
    SyncGroupRequest,
    SyncOutcomeResponse,
    SyncPlanResponse,
    SyncUserRequest,
    UserStatusDTO,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Addon Sync"], dependencies=[Depends(verify_api_key)])
auth_router = APIRouter(prefix="/api/auth", tags=["Device Login"], dependencies=[Depends(verify_api_key)])


# ========== Error Mapping ==========


def _error_detail(error: SyncioError) -> dict[str, Any]:
    detail = error.to_dict()
    detail["message"] = sanitize_error_message(error.message)
    detail.pop("cause", None)
    return detail


def _status_for(error: SyncioError) -> int:
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (AlreadySyncingError, ConfirmationRequiredError)):
        return status.HTTP_409_CONFLICT
    if isinstance(error, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(error, RemoteError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(error, ConfigurationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def to_http_exception(error: SyncioError) -> HTTPException:
    """Translate a SyncioError into an HTTPException with a sanitized detail."""
    code = _status_for(error)
    if code >= 500:
        logger.error(f"Request failed: {error}")
    else:
        logger.info(f"Request rejected: {error}")
    return HTTPException(status_code=code, detail=_error_detail(error))


def _outcome_response(outcome: SyncOutcome) -> SyncOutcomeResponse:
    data = outcome.to_dict()
    if data["error"] and data["error"].get("message"):
        data["error"] = {**data["error"], "message": sanitize_error_message(data["error"]["message"])}
        data["error"].pop("cause", None)
    return SyncOutcomeResponse(**data)


# ========== Sync Endpoints ==========


@router.get("/users/{user_id}/plan", response_model=SyncPlanResponse)
async def plan_user_sync(
    user_id: str,
    use_case: SyncUserUseCase = Depends(get_sync_user_use_case),
):
    """Show what syncing this user would change, without changing anything."""
    try:
        plan = await use_case.plan(user_id)
    except SyncioError as e:
        raise to_http_exception(e)

    return SyncPlanResponse(
        **plan.to_dict(),
        requires_confirmation=plan.requires_confirmation,
    )


@router.post("/users/{user_id}", response_model=SyncOutcomeResponse)
async def sync_user(
    user_id: str,
    request: SyncUserRequest = SyncUserRequest(),
    use_case: SyncUserUseCase = Depends(get_sync_user_use_case),
):
    """Sync one user's Stremio account to its group.

    Returns 409 when another sync for the user is running, or when the plan
    would remove every addon and ``confirm`` is not set.
    """
    try:
        outcome = await use_case.execute(
            user_id,
            confirm=request.confirm,
            drop_addons=request.drop_addons,
        )
    except SyncioError as e:
        raise to_http_exception(e)

    return _outcome_response(outcome)


@router.post("/groups/{group_id}", response_model=GroupSyncResponse)
async def sync_group(
    group_id: str,
    request: SyncGroupRequest = SyncGroupRequest(),
    use_case: SyncGroupUseCase = Depends(get_sync_group_use_case),
):
    """Sync every active member of a group."""
    try:
        result = await use_case.execute(group_id, confirm=request.confirm)
    except SyncioError as e:
        raise to_http_exception(e)

    data = result.to_dict()
    data["outcomes"] = [_outcome_response(o) for o in result.outcomes]
    return GroupSyncResponse(**data)


@router.get("/users/{user_id}/status", response_model=UserStatusDTO)
async def user_status(
    user_id: str,
    use_case: GetSyncStatusUseCase = Depends(get_status_use_case),
):
    try:
        result = await use_case.user_status(user_id)
    except SyncioError as e:
        raise to_http_exception(e)
    return UserStatusDTO(user_id=result.user_id, state=result.state.value, error=result.error)


@router.get("/groups/{group_id}/status", response_model=GroupStatusResponse)
async def group_status(
    group_id: str,
    use_case: GetSyncStatusUseCase = Depends(get_status_use_case),
):
    """Whether every active member of the group is in sync."""
    try:
        result = await use_case.group_status(group_id)
    except SyncioError as e:
        raise to_http_exception(e)

    return GroupStatusResponse(
        group_id=result.group_id,
        state=result.state.value,
        users=[
            UserStatusDTO(user_id=u.user_id, state=u.state.value, error=u.error)
            for u in result.users
        ],
    )


# ========== Device Login Endpoints ==========


def _flow_response(flow_id: str, flow: DeviceAuthFlow) -> DeviceAuthResponse:
    return DeviceAuthResponse(flow_id=flow_id, **flow.snapshot())


@auth_router.post("/device", response_model=DeviceAuthResponse, status_code=status.HTTP_201_CREATED)
async def start_device_login(
    request: DeviceAuthRequest = DeviceAuthRequest(),
    registry: DeviceAuthRegistry = Depends(get_device_auth_registry),
    build_flow: DeviceFlowFactory = Depends(get_device_flow_factory),
):
    """Create a Stremio login link and start waiting for approval.

    The returned ``link`` is shown to the user; poll
    ``GET /api/auth/device/{flow_id}`` for the outcome.
    """
    flow = build_flow(request.user_id, request.expected_email)
    flow_id = registry.add(flow)
    await flow.start()
    return _flow_response(flow_id, flow)


@auth_router.get("/device/{flow_id}", response_model=DeviceAuthResponse)
async def get_device_login(
    flow_id: str,
    registry: DeviceAuthRegistry = Depends(get_device_auth_registry),
):
    flow = registry.get(flow_id)
    if flow is None:
        raise to_http_exception(NotFoundError("Device login", flow_id))
    return _flow_response(flow_id, flow)


@auth_router.delete("/device/{flow_id}", response_model=DeviceAuthResponse)
async def cancel_device_login(
    flow_id: str,
    registry: DeviceAuthRegistry = Depends(get_device_auth_registry),
):
    """Cancel a device login. Safe to call in any state."""
    flow = registry.get(flow_id)
    if flow is None:
        raise to_http_exception(NotFoundError("Device login", flow_id))
    registry.cancel(flow_id)
    return _flow_response(flow_id, flow)


# ========== Session Endpoints ==========


def _session_response(session: AuthSession) -> SessionResponse:
    return SessionResponse(
        subject=session.subject,
        credential_id=session.credential_id,
        issued_at=session.issued_at,
        expires_at=session.expires_at,
    )


@auth_router.get("/sessions/{subject}", response_model=SessionResponse)
async def get_session(
    subject: str,
    sessions: SessionManager = Depends(get_session_manager),
):
    """The live session opened by an approved device login.

    An expired session is cleared on read and reported as 404.
    """
    session = await sessions.current(subject)
    if session is None:
        raise to_http_exception(NotFoundError("Session", subject))
    return _session_response(session)


@auth_router.delete("/sessions/{subject}", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    subject: str,
    sessions: SessionManager = Depends(get_session_manager),
):
    if not await sessions.logout(subject):
        raise to_http_exception(NotFoundError("Session", subject))
