"""
Session middleware: resolves the bearer token to a portal session once per request.
"""
import logging
from typing import Callable

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.session import extract_token, get_session

logger = logging.getLogger(__name__)


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Sets ``request.state.token`` and ``request.state.session``.

    Both stay empty unless the token maps to a live session, so an unknown
    token and a Redis outage look the same to ``validate_session``.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.token = None
        request.state.session = {}

        token = extract_token(request.headers.get("authorization"))
        session = None
        if token:
            try:
                session = get_session(token)
            except (redis.RedisError, RuntimeError) as e:
                logger.error(f"Session lookup failed for {request.url.path}: {e}")
        if session:
            request.state.token = token
            request.state.session = session

        return await call_next(request)
