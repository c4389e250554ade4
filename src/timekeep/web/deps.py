from typing import Annotated, cast

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from timekeep.app import App
from timekeep.core.modules.authorizer.models import AuthorizationDecision
from timekeep.core.modules.session.current import client_ip
from timekeep.core.modules.session.models import ClientInfo
from timekeep.errors import AuthenticationError

# Declared for the OpenAPI schema only; the raw header goes to the decision engine
bearer_scheme = HTTPBearer(auto_error=False)


async def get_app(request: Request) -> App:
    return cast(App, request.app.state.app)


async def get_caller(
    request: Request,
    app: Annotated[App, Depends(get_app)],
    _: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> AuthorizationDecision:
    """Authorize the request through the decision engine; Deny becomes a generic 401."""
    decision = await app.authorize(request.headers.get("authorization"), request.method, request.url.path)
    if not decision.allowed:
        raise AuthenticationError
    return decision


async def get_client_info(
    request: Request,
    x_session_id: Annotated[str | None, Header()] = None,
) -> ClientInfo:
    """User agent, client address and optional explicit session id of the request."""
    fallback = request.client.host if request.client else None
    return ClientInfo(
        user_agent=request.headers.get("user-agent", ""),
        ip_address=client_ip(request.headers, fallback),
        session_id=x_session_id,
    )


# Type aliases for dependencies
AppDep = Annotated[App, Depends(get_app)]
CallerDep = Annotated[AuthorizationDecision, Depends(get_caller)]
ClientDep = Annotated[ClientInfo, Depends(get_client_info)]
