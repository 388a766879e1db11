"""Database models"""

from qodari_iam.models.tenant import Account, Application
from qodari_iam.models.user import User
from qodari_iam.models.api_client import ApiClient
from qodari_iam.models.rbac import Role, Permission, RolePermission, UserRole, ApiClientRole
from qodari_iam.models.security import (
    AuthorizationCode,
    RefreshToken,
    UserSession,
    MfaPending,
    RateLimitCounter,
)
from qodari_iam.models.audit import AuditLog

__all__ = [
    "Account", "Application", "User", "ApiClient",
    "Role", "Permission", "RolePermission", "UserRole", "ApiClientRole",
    "AuthorizationCode", "RefreshToken", "UserSession", "MfaPending", "RateLimitCounter",
    "AuditLog",
]
