"""
Enumerations shared by chat models and schemas. Stored as plain strings.
"""
from enum import Enum


class RoomType(str, Enum):
    GENERAL = "GENERAL"
    AGENCY_INTERNAL = "AGENCY_INTERNAL"
    CLIENT_SPECIFIC = "CLIENT_SPECIFIC"
    CONTRACT_SPECIFIC = "CONTRACT_SPECIFIC"
    PROPOSAL_SPECIFIC = "PROPOSAL_SPECIFIC"


class PermissionType(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    ADMIN = "ADMIN"


class MessageType(str, Enum):
    TEXT = "TEXT"
    FILE = "FILE"
    SYSTEM = "SYSTEM"


class UserRole(str, Enum):
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    AGENCY_MEMBER = "AGENCY_MEMBER"
    CLIENT = "CLIENT"
    CLIENT_MEMBER = "CLIENT_MEMBER"


class EntityType(str, Enum):
    """Business entities that own exactly one discussion room."""
    CLIENT = "client"
    CONTRACT = "contract"
    PROPOSAL = "proposal"


# Permissions allowed to post messages.
WRITE_PERMISSIONS = frozenset({PermissionType.WRITE.value, PermissionType.ADMIN.value})
