from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from timekeep.core.modules.security.models import SecuritySettingsView
from timekeep.web.deps import AppDep, CallerDep, ClientDep
from timekeep.web.openapi import ErrorResponse
from timekeep.web.responses import MessageData, SuccessResponse

router = APIRouter(tags=["security"])


class UpdateSecuritySettingsRequest(BaseModel):
    """Partial update; omitted fields are unchanged."""

    session_timeout: int | None = Field(None, description="Rolling session timeout in minutes (15-43200)")
    allow_multiple_sessions: bool | None = Field(None, description="Allow concurrent sessions")
    require_password_change_every: int | None = Field(None, description="Password rotation in days (0-365, 0 = never)")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChangePasswordRequest(BaseModel):
    """Request to change user password."""

    current_password: str = Field(..., min_length=1, description="Current password")
    new_password: str = Field(..., min_length=1, description="New password")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@router.get(
    "/users/{user_id}/security-settings",
    summary="Get security settings",
    description="Security settings of the user, created with defaults on first access.",
    operation_id="getSecuritySettings",
    responses={
        200: {"description": "Security settings"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
        403: {"model": ErrorResponse, "description": "User id does not match the caller"},
    },
)
async def get_security_settings(user_id: str, app: AppDep, caller: CallerDep) -> SuccessResponse[SecuritySettingsView]:
    return SuccessResponse(data=await app.get_security_settings(caller, user_id))


@router.put(
    "/users/{user_id}/security-settings",
    summary="Update security settings",
    description="Update session timeout, multiple-session policy and password rotation.",
    operation_id="updateSecuritySettings",
    responses={
        200: {"description": "Updated security settings"},
        400: {"model": ErrorResponse, "description": "Value out of range"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
        403: {"model": ErrorResponse, "description": "User id does not match the caller"},
    },
)
async def update_security_settings(
    user_id: str, request: UpdateSecuritySettingsRequest, app: AppDep, caller: CallerDep
) -> SuccessResponse[SecuritySettingsView]:
    settings = await app.update_security_settings(
        caller,
        user_id,
        session_timeout=request.session_timeout,
        allow_multiple_sessions=request.allow_multiple_sessions,
        require_password_change_every=request.require_password_change_every,
    )
    return SuccessResponse(data=settings)


@router.post(
    "/users/{user_id}/change-password",
    summary="Change password",
    description="Change the password at the identity provider. Every other session is invalidated.",
    operation_id="changePassword",
    responses={
        200: {"description": "Password changed"},
        400: {"model": ErrorResponse, "description": "Weak, reused or wrong current password"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
        403: {"model": ErrorResponse, "description": "User id does not match the caller"},
        423: {"model": ErrorResponse, "description": "Account locked"},
        429: {"model": ErrorResponse, "description": "Too many password changes"},
    },
)
async def change_password(
    user_id: str, request: ChangePasswordRequest, app: AppDep, caller: CallerDep, client: ClientDep
) -> SuccessResponse[MessageData]:
    await app.change_password(caller, user_id, request.current_password, request.new_password, client)
    return SuccessResponse(data=MessageData(message="Password changed successfully"))
