from typing import Any

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from pydantic import BaseModel, Field


def set_custom_openapi(app: FastAPI) -> None:
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title="Timekeep API",
            version="0.1.0",
            summary="Session-aware authorization and session management",
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Identity provider access token",
            },
        }
        openapi_schema["security"] = [{"BearerAuth": []}]

        # Remove security from public endpoints
        public_endpoints = {
            ("GET", "/health"),
        }

        for path, path_item in openapi_schema["paths"].items():
            for method, operation in path_item.items():
                if (method.upper(), path) in public_endpoints:
                    operation["security"] = []

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]


class ErrorDetail(BaseModel):
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = Field(False, description="Always false for errors")
    error: ErrorDetail
    timestamp: str = Field(..., description="ISO 8601 time of the error")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "success": False,
                    "error": {"code": "UNAUTHORIZED", "message": "Unauthorized"},
                    "timestamp": "2024-01-01T00:00:00.000Z",
                },
                {
                    "success": False,
                    "error": {"code": "SESSION_NOT_FOUND", "message": "Session not found"},
                    "timestamp": "2024-01-01T00:00:00.000Z",
                },
            ]
        }
    }
