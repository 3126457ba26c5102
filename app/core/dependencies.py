"""
FastAPI dependencies: who is calling.
"""
from typing import Any, Dict

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import NotAuthenticated, SessionExpired
from app.schema.chat import SessionUser

# Shows the Authorization header in the OpenAPI docs
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Session token issued by the portal's identity provider",
)


async def validate_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """
    Session document loaded by SessionMiddleware.

    Raises:
        NotAuthenticated: The token did not resolve to a session.
    """
    if not request.state.token or not request.state.session:
        raise NotAuthenticated()
    return request.state.session


async def get_current_user(
    session: Dict[str, Any] = Depends(validate_session),
) -> SessionUser:
    """Session document parsed into the chat identity."""
    try:
        return SessionUser.model_validate(session)
    except PydanticValidationError:
        raise SessionExpired()
