from timekeep.web.routers.auth import router as auth_router
from timekeep.web.routers.security import router as security_router
from timekeep.web.routers.sessions import router as sessions_router

__all__ = [
    "auth_router",
    "security_router",
    "sessions_router",
]
