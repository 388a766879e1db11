"""Enumerations stored as plain strings in the database"""

from enum import Enum


class EntityStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ClientType(str, Enum):
    """OAuth client type: SPAs and mobile apps are public, backends confidential"""
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"


class PrincipalType(str, Enum):
    USER = "user"
    API_CLIENT = "api_client"


class RevokedReason(str, Enum):
    ROTATED = "ROTATED"
    REUSE_DETECTED = "REUSE_DETECTED"
    PASSWORD_RESET = "PASSWORD_RESET"
    REVOKED_BY_ADMIN = "REVOKED_BY_ADMIN"
