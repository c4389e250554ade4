from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Success envelope for all endpoints: ``{success: true, data}``."""

    success: bool = Field(True, description="Always true for successful responses")
    data: T = Field(..., description="Response payload")


class MessageData(BaseModel):
    message: str = Field(..., description="Human-readable result")
