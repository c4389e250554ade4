from datetime import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from timekeep.core.modules.session.models import SessionView
from timekeep.web.deps import AppDep, CallerDep, ClientDep
from timekeep.web.openapi import ErrorResponse
from timekeep.web.responses import MessageData, SuccessResponse

router = APIRouter(tags=["sessions"])


class CreateSessionRequest(BaseModel):
    """Request to register a new session after sign-in."""

    user_agent: str = Field(..., min_length=1, max_length=1000, description="Client user agent")
    login_time: datetime | None = Field(None, description="Client-side sign-in time, within 5 minutes of now")
    ip_address: str | None = Field(None, description="Client-reported IP address")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@router.post(
    "/users/{user_id}/sessions",
    summary="Create session",
    description="Register a session for the authenticated user. "
    "Allowed without an existing session (bootstrap); refused when the user already holds one.",
    operation_id="createSession",
    status_code=201,
    responses={
        201: {"description": "Session created"},
        400: {"model": ErrorResponse, "description": "Invalid request body"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
        403: {"model": ErrorResponse, "description": "User id does not match the caller"},
    },
)
async def create_session(
    user_id: str, request: CreateSessionRequest, app: AppDep, caller: CallerDep, client: ClientDep
) -> SuccessResponse[SessionView]:
    session = await app.create_session(
        caller,
        user_id,
        client,
        user_agent=request.user_agent,
        login_time=request.login_time,
        ip_address=request.ip_address,
    )
    return SuccessResponse(data=session)


@router.get(
    "/users/{user_id}/sessions",
    summary="List sessions",
    description="Active sessions of the user, current session first, then by last activity.",
    operation_id="listSessions",
    responses={
        200: {"description": "List of active sessions"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
        403: {"model": ErrorResponse, "description": "User id does not match the caller"},
    },
)
async def list_sessions(
    user_id: str, app: AppDep, caller: CallerDep, client: ClientDep
) -> SuccessResponse[list[SessionView]]:
    return SuccessResponse(data=await app.get_sessions(caller, user_id, client))


@router.delete(
    "/users/{user_id}/sessions/{session_id}",
    summary="Terminate session",
    description="Delete one of the user's other sessions. The current session cannot be terminated.",
    operation_id="terminateSession",
    responses={
        200: {"description": "Session terminated"},
        400: {"model": ErrorResponse, "description": "Session is the current session"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
        403: {"model": ErrorResponse, "description": "User id does not match the caller"},
        404: {"model": ErrorResponse, "description": "Session not found, inactive or expired"},
    },
)
async def terminate_session(
    user_id: str, session_id: UUID, app: AppDep, caller: CallerDep, client: ClientDep
) -> SuccessResponse[MessageData]:
    await app.terminate_session(caller, user_id, session_id, client)
    return SuccessResponse(data=MessageData(message="Session terminated successfully"))
