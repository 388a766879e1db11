"""API dependencies - session authentication and authorization"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from qodari_iam.config import settings
from qodari_iam.core.database import get_db
from qodari_iam.core.exceptions import AuthenticationError
from qodari_iam.models.security import UserSession
from qodari_iam.models.tenant import Account, Application
from qodari_iam.models.user import User
from qodari_iam.services.policy import permission_policy
from qodari_iam.services.role_resolver import ResolvedAccess, role_resolver
from qodari_iam.services.session_service import RequestMeta, session_manager


def get_client_ip(request: Request) -> Optional[str]:
    """Peer address, or the first forwarded hop when running behind a trusted proxy."""
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else None


def get_request_meta(request: Request) -> RequestMeta:
    """Client IP and user agent of the current request"""
    return RequestMeta(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_optional_session(request: Request, db: Session = Depends(get_db)) -> Optional[UserSession]:
    """Session from the cookie, or None when absent, expired or unusable"""
    session = session_manager.resolve(db, request.cookies.get(session_manager.cookie_name))
    if session is None:
        return None

    user = db.get(User, session.user_id)
    account = db.get(Account, session.account_id)
    if not user or not user.is_active or not account or not account.is_active:
        session_manager.destroy(db, session)
        return None
    return session


def get_current_session(session: Optional[UserSession] = Depends(get_optional_session)) -> UserSession:
    """
    Require a valid session

    Raises:
        AuthenticationError: If there is no usable session cookie
    """
    if session is None:
        raise AuthenticationError("Not authenticated")
    return session


def get_current_user(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> User:
    """User owning the current session"""
    return db.get(User, session.user_id)


@dataclass
class AuthContext:
    user: User
    session: UserSession
    application: Optional[Application]
    access: ResolvedAccess


def require_permission(permission_key: str, app_slug: Optional[str] = None):
    """
    Dependency factory checking a permission of the session user in one
    application of the session's account (the IAM application by default).
    """

    def dependency(
        session: UserSession = Depends(get_current_session),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> AuthContext:
        slug = app_slug or settings.IAM_APP_SLUG
        application = (
            db.query(Application)
            .filter(Application.account_id == session.account_id, Application.slug == slug)
            .first()
        )
        access = ResolvedAccess()
        if application is not None:
            access = role_resolver.resolve_user(db, user.id, session.account_id, application.id)
        permission_policy.enforce(user, permission_key, access.permissions)
        return AuthContext(user=user, session=session, application=application, access=access)

    return dependency
