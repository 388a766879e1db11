"""User authentication and password lifecycle"""

import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from qodari_iam.config import settings
from qodari_iam.core.clock import naive_utc, utcnow
from qodari_iam.core.exceptions import (
    AccountLockedError,
    BusinessLogicError,
    InvalidCredentialsError,
    InvalidResetTokenError,
)
from qodari_iam.core.metrics import LOGINS
from qodari_iam.core.security import (
    burn_password_check,
    generate_token,
    hash_password,
    password_needs_rehash,
    sha256_hex,
    verify_password,
)
from qodari_iam.models.enums import RevokedReason
from qodari_iam.models.tenant import Account, Application
from qodari_iam.models.user import User
from qodari_iam.services.session_service import session_manager
from qodari_iam.services.token_service import token_service

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserService:
    """Service for user authentication and password management"""

    @staticmethod
    def get_active_account(db: Session, account_slug: str) -> Optional[Account]:
        account = db.query(Account).filter(Account.slug == account_slug).first()
        if not account or not account.is_active:
            return None
        return account

    @staticmethod
    def get_active_application(db: Session, account_id: str, app_slug: str) -> Optional[Application]:
        application = (
            db.query(Application)
            .filter(Application.account_id == account_id, Application.slug == app_slug)
            .first()
        )
        if not application or not application.is_active:
            return None
        return application

    @staticmethod
    def get_user_by_email(db: Session, account_id: str, email: str) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.account_id == account_id, func.lower(User.email) == normalize_email(email))
            .first()
        )

    @staticmethod
    def authenticate_user(
        db: Session,
        account: Account,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
    ) -> User:
        """
        Authenticate user with account lockout protection

        Args:
            db: Database session
            account: Account the user must belong to
            email: Email address (case-insensitive)
            password: Password
            ip_address: Client IP, recorded on success

        Returns:
            Authenticated user
        """
        user = UserService.get_user_by_email(db, account.id, email)

        if not user or not user.is_active:
            burn_password_check(password)
            LOGINS.labels("invalid_credentials").inc()
            raise InvalidCredentialsError()

        now = utcnow()
        locked_until = naive_utc(user.locked_until)
        if locked_until and locked_until > now:
            LOGINS.labels("locked").inc()
            raise AccountLockedError(locked_until.isoformat())

        if not verify_password(password, user.password_hash):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1

            if user.failed_login_attempts >= settings.MAX_FAILED_LOGIN_ATTEMPTS:
                user.locked_until = now + timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)
                user.failed_login_attempts = 0
                db.commit()
                logger.warning("Account locked for user_id=%s", user.id)
                LOGINS.labels("locked").inc()
                raise AccountLockedError(naive_utc(user.locked_until).isoformat())

            db.commit()
            LOGINS.labels("invalid_credentials").inc()
            raise InvalidCredentialsError()

        if password_needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)

        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = now
        user.last_login_ip = ip_address
        db.commit()

        LOGINS.labels("success").inc()
        logger.info("User authenticated user_id=%s account_id=%s", user.id, account.id)
        return user

    @staticmethod
    def start_password_reset(db: Session, account: Account, email: str) -> Optional[Tuple[User, str]]:
        """
        Store a hashed reset token for the user, if one exists.

        Returns:
            (user, raw_token) or None when no active user matches
        """
        user = UserService.get_user_by_email(db, account.id, email)
        if not user or not user.is_active:
            return None

        raw_token = generate_token(32)
        user.password_reset_token = sha256_hex(raw_token)
        user.password_reset_expires = utcnow() + timedelta(seconds=settings.PASSWORD_RESET_TTL_SECONDS)
        db.commit()
        logger.info("Password reset requested user_id=%s", user.id)
        return user, raw_token

    @staticmethod
    def reset_password(db: Session, raw_token: str, new_password: str) -> User:
        """Consume a reset token, set the password and sign the user out everywhere."""
        user = db.query(User).filter(User.password_reset_token == sha256_hex(raw_token)).first()
        if not user or not user.is_active:
            raise InvalidResetTokenError()

        expires = naive_utc(user.password_reset_expires)
        if not expires or expires <= utcnow():
            user.password_reset_token = None
            user.password_reset_expires = None
            db.commit()
            raise InvalidResetTokenError()

        user.password_hash = hash_password(new_password)
        user.password_reset_token = None
        user.password_reset_expires = None
        user.failed_login_attempts = 0
        user.locked_until = None
        db.commit()

        session_manager.destroy_all_for_user(db, user.id)
        token_service.revoke_all_for_user(db, user.id, RevokedReason.PASSWORD_RESET)
        logger.info("Password reset completed user_id=%s", user.id)
        return user

    @staticmethod
    def change_password(
        db: Session,
        user: User,
        current_password: str,
        new_password: str,
        keep_session_id: Optional[str] = None,
    ) -> None:
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError()
        if current_password == new_password:
            raise BusinessLogicError("New password must differ from the current one", code="PASSWORD_UNCHANGED")

        user.password_hash = hash_password(new_password)
        db.commit()
        session_manager.destroy_all_for_user(db, user.id, except_session_id=keep_session_id)
        logger.info("Password changed user_id=%s", user.id)

    @staticmethod
    def revoke_access(db: Session, user: User) -> Tuple[int, int]:
        """Delete every session and revoke every live refresh token of a user."""
        sessions = session_manager.destroy_all_for_user(db, user.id)
        tokens = token_service.revoke_all_for_user(db, user.id, RevokedReason.REVOKED_BY_ADMIN)
        logger.warning("Access revoked user_id=%s sessions=%s refresh_tokens=%s", user.id, sessions, tokens)
        return sessions, tokens


user_service = UserService()
