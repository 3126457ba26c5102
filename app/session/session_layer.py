"""
Session layer - Redis-backed lookup of portal sessions.

Tokens are issued by the portal's identity provider, which stores the session
under ``session:<token>`` as JSON: user_id, email, name, avatar_url, role.
This service reads those sessions; create/remove exist for tooling and tests.
"""
import json
import logging
from typing import Any, Dict, Optional

import redis

from app.model.user import User

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"
REQUIRED_FIELDS = ("user_id", "email")

_redis_client: Optional[redis.Redis] = None
_session_ttl: int = 86400


def init_redis(host: str, port: int, db: int, session_ttl: int = 86400) -> None:
    """Build the pooled client. Call once at app startup."""
    global _redis_client, _session_ttl
    pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=20,
    )
    _redis_client = redis.Redis(connection_pool=pool)
    _session_ttl = session_ttl
    logger.info(f"Session store at {host}:{port}/{db}, TTL {session_ttl}s")


def _client() -> redis.Redis:
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def _key(token: str) -> str:
    return f"{SESSION_KEY_PREFIX}{token}"


def ping_redis() -> bool:
    """True when the session store answers."""
    if _redis_client is None:
        return False
    try:
        return bool(_redis_client.ping())
    except redis.RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


def session_payload(user: User) -> Dict[str, Any]:
    """Session document for a user row."""
    return {
        "user_id": str(user.id),
        "email": user.email,
        "name": user.name or "",
        "avatar_url": user.avatar_url,
        "role": user.role,
    }


def create_session(token: str, user_data: Dict[str, Any]) -> None:
    _client().setex(_key(token), _session_ttl, json.dumps(user_data))
    logger.info(f"Session created for {user_data.get('email')}")


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """
    Session document for `token`, or None.

    Unreadable documents and documents without user_id/email count as no session.
    """
    raw = _client().get(_key(token))
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable session document")
        return None
    if not isinstance(data, dict) or any(not data.get(f) for f in REQUIRED_FIELDS):
        logger.warning("Discarding session document without user_id/email")
        return None
    return data


def remove_session(token: str) -> bool:
    removed = _client().delete(_key(token)) > 0
    if removed:
        logger.info("Session removed")
    return removed


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header."""
    if not auth_header:
        return None
    scheme, _, token = auth_header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token or " " in token.strip():
        return None
    return token.strip()
