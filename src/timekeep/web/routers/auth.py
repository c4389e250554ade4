from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from timekeep.web.deps import AppDep, CallerDep, ClientDep
from timekeep.web.openapi import ErrorResponse
from timekeep.web.responses import SuccessResponse

router = APIRouter(tags=["auth"])


class LogoutData(BaseModel):
    message: str = Field(..., description="Human-readable result")
    session_id: UUID | None = Field(None, description="Deleted session, when one was recognised")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@router.post(
    "/logout",
    summary="End session",
    description="Delete the caller's current session and clean up expired ones. Always succeeds.",
    operation_id="logout",
    responses={
        200: {"description": "Logged out"},
        401: {"model": ErrorResponse, "description": "Not authorized"},
    },
)
async def logout(app: AppDep, caller: CallerDep, client: ClientDep) -> SuccessResponse[LogoutData]:
    session_id = await app.logout(caller, client)
    return SuccessResponse(data=LogoutData(message="Logged out successfully", session_id=session_id))
