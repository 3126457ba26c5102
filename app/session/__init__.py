from .session_layer import (
    init_redis,
    ping_redis,
    session_payload,
    create_session,
    get_session,
    remove_session,
    extract_token,
)

__all__ = [
    "init_redis",
    "ping_redis",
    "session_payload",
    "create_session",
    "get_session",
    "remove_session",
    "extract_token",
]
