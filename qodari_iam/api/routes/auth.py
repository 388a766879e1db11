"""Authentication routes: login, MFA, session, token and password endpoints"""

import logging
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Body, Depends, Query, Response, status
from sqlalchemy.orm import Session

from qodari_iam.api.deps import (
    AuthContext,
    get_current_session,
    get_current_user,
    get_optional_session,
    get_request_meta,
    require_permission,
)
from qodari_iam.config import settings
from qodari_iam.core.database import get_db
from qodari_iam.core.exceptions import (
    AuthenticationError,
    InvalidCredentialsError,
    InvalidMfaCodeError,
    ResourceNotFoundError,
)
from qodari_iam.models.security import UserSession
from qodari_iam.models.tenant import Account, Application
from qodari_iam.models.user import User
from qodari_iam.schemas.auth import (
    AccountOut,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MfaRequiredResponse,
    MfaResendRequest,
    MfaVerifyRequest,
    ResetPasswordRequest,
    RevokeSessionsResponse,
    UserEnvelope,
    UserOut,
)
from qodari_iam.schemas.oauth import TokenGrant, TokenResponse
from qodari_iam.schemas.response import MessageResponse
from qodari_iam.services.audit_service import STATUS_FAILURE, audit_service
from qodari_iam.services.email_service import email_service
from qodari_iam.services.mfa_service import mask_email, mfa_challenge
from qodari_iam.services.rate_limiter import rate_limiter
from qodari_iam.services.role_resolver import ResolvedAccess, role_resolver
from qodari_iam.services.session_service import RequestMeta, session_manager
from qodari_iam.services.token_service import token_service
from qodari_iam.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _user_envelope(user: User, account: Account, access: Optional[ResolvedAccess] = None) -> UserEnvelope:
    return UserEnvelope(
        user=UserOut.model_validate(user),
        accounts=[AccountOut.model_validate(account)],
        current_account_id=account.id,
        roles=access.roles if access is not None else None,
        permissions=access.permissions if access is not None else None,
    )


@router.post(
    "/login",
    response_model=Union[UserEnvelope, MfaRequiredResponse],
    response_model_exclude_none=True,
)
def login(
    body: LoginRequest,
    response: Response,
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """
    Email/password login

    Creates a session cookie, or starts an email second factor when the
    target application requires one.
    """
    rate_limiter.enforce(
        db,
        [
            (f"login:ip:{meta.ip_address}", settings.LOGIN_RATE_LIMIT_PER_IP, settings.LOGIN_RATE_LIMIT_WINDOW_MS),
            (f"login:email:{body.email}", settings.LOGIN_RATE_LIMIT_PER_EMAIL, settings.LOGIN_RATE_LIMIT_WINDOW_MS),
        ],
        message="Too many login attempts. Please try again later.",
        scope="login",
    )

    account = user_service.get_active_account(db, body.account_slug)
    application = user_service.get_active_application(db, account.id, body.app_slug) if account else None
    if not account or not application:
        raise InvalidCredentialsError()

    try:
        user = user_service.authenticate_user(db, account, body.email, body.password, meta.ip_address)
    except AuthenticationError as exc:
        audit_service.log_event(
            db,
            account_id=account.id,
            action="user.login_failed",
            status=STATUS_FAILURE,
            application_id=application.id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            error_message=exc.message,
        )
        raise

    if application.mfa_enabled:
        pending, code = mfa_challenge.issue(
            db, user, application, ip_address=meta.ip_address, user_agent=meta.user_agent
        )
        # Starts the resend cooldown.
        rate_limiter.check(db, f"mfa:resend:{pending.id}", 1, settings.MFA_RESEND_COOLDOWN_SECONDS * 1000)
        email_service.send_mfa_code(user.email, code, application.name)
        audit_service.log_event(
            db,
            account_id=account.id,
            action="mfa.challenge_issued",
            user_id=user.id,
            application_id=application.id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        return MfaRequiredResponse(mfa_token=pending.id, masked_email=mask_email(user.email))

    session_manager.create(db, user.id, account.id, meta, response)
    audit_service.log_event(
        db,
        account_id=account.id,
        action="user.login",
        user_id=user.id,
        application_id=application.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return _user_envelope(user, account)


@router.post("/mfa/verify", response_model=UserEnvelope, response_model_exclude_none=True)
def verify_mfa(
    body: MfaVerifyRequest,
    response: Response,
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """Complete a login by submitting the emailed code"""
    rate_limiter.enforce(
        db,
        [(f"mfa:verify:ip:{meta.ip_address}", settings.MFA_VERIFY_RATE_LIMIT_PER_IP, settings.MFA_VERIFY_RATE_LIMIT_WINDOW_MS)],
        message="Too many verification attempts. Please try again later.",
        scope="mfa_verify",
    )

    pending = mfa_challenge.get(db, body.mfa_token)
    if pending is None:
        raise InvalidMfaCodeError()

    if not mfa_challenge.verify(db, pending, body.code):
        audit_service.log_event(
            db,
            account_id=pending.account_id,
            action="mfa.verified",
            status=STATUS_FAILURE,
            user_id=pending.user_id,
            application_id=pending.application_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        raise InvalidMfaCodeError()

    user = db.get(User, pending.user_id)
    account = db.get(Account, pending.account_id)
    application_id = pending.application_id
    mfa_challenge.consume(db, pending)
    if not user or not user.is_active or not account or not account.is_active:
        raise InvalidMfaCodeError()

    session_manager.create(db, user.id, account.id, meta, response)
    audit_service.log_event(
        db,
        account_id=account.id,
        action="mfa.verified",
        user_id=user.id,
        application_id=application_id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return _user_envelope(user, account)


@router.post("/mfa/resend", response_model=MessageResponse)
def resend_mfa(
    body: MfaResendRequest,
    db: Session = Depends(get_db),
):
    """Send a fresh code for a pending challenge (once per cooldown)"""
    pending = mfa_challenge.get(db, body.mfa_token)
    if pending is None or mfa_challenge.is_exhausted(pending):
        raise InvalidMfaCodeError()

    rate_limiter.enforce(
        db,
        [(f"mfa:resend:{pending.id}", 1, settings.MFA_RESEND_COOLDOWN_SECONDS * 1000)],
        message="Please wait before requesting a new code.",
        scope="mfa_resend",
    )

    user = db.get(User, pending.user_id)
    application = db.get(Application, pending.application_id)
    if not user or not application:
        raise InvalidMfaCodeError()

    code = mfa_challenge.resend(db, pending)
    email_service.send_mfa_code(user.email, code, application.name)
    return MessageResponse(message="A new verification code has been sent.")


@router.get("/me", response_model=UserEnvelope, response_model_exclude_none=True)
def me(
    app_slug: Optional[str] = Query(default=None, alias="appSlug"),
    session: UserSession = Depends(get_current_session),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current user; roles and permissions when an application is named"""
    account = db.get(Account, session.account_id)
    access = None
    if app_slug:
        application = (
            db.query(Application)
            .filter(Application.account_id == account.id, Application.slug == app_slug)
            .first()
        )
        if application is None:
            raise ResourceNotFoundError("Application")
        access = role_resolver.resolve_user(db, user.id, account.id, application.id)
    return _user_envelope(user, account, access)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    meta: RequestMeta = Depends(get_request_meta),
    session: Optional[UserSession] = Depends(get_optional_session),
    db: Session = Depends(get_db),
):
    """Destroy the current session and clear its cookie"""
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    if session is not None:
        account_id, user_id = session.account_id, session.user_id
        session_manager.destroy(db, session, response)
        audit_service.log_event(
            db,
            account_id=account_id,
            action="user.logout",
            user_id=user_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
    else:
        session_manager.clear_cookie(response)
    return response


@router.post("/token", response_model=TokenResponse, response_model_exclude_none=True)
def token(
    grant: Annotated[TokenGrant, Body(discriminator="grant_type")],
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """OAuth token endpoint for the authorization_code, refresh_token and client_credentials grants"""
    rate_limiter.enforce(
        db,
        [
            (f"token:ip:{meta.ip_address}", settings.TOKEN_RATE_LIMIT_PER_IP, settings.TOKEN_RATE_LIMIT_WINDOW_MS),
            (f"token:client:{grant.client_id}", settings.TOKEN_RATE_LIMIT_PER_CLIENT, settings.TOKEN_RATE_LIMIT_WINDOW_MS),
        ],
        scope="token",
    )
    return token_service.exchange(db, grant, meta)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: ForgotPasswordRequest,
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """Email a reset link; the answer is the same whether or not the user exists"""
    rate_limiter.enforce(
        db,
        [
            (f"pwreset:ip:{meta.ip_address}", settings.PASSWORD_RESET_RATE_LIMIT_PER_IP, settings.PASSWORD_RESET_RATE_LIMIT_WINDOW_MS),
            (f"pwreset:email:{body.email}", settings.PASSWORD_RESET_RATE_LIMIT_PER_EMAIL, settings.PASSWORD_RESET_RATE_LIMIT_WINDOW_MS),
        ],
        scope="password_reset",
    )

    account = user_service.get_active_account(db, body.account_slug)
    started = user_service.start_password_reset(db, account, body.email) if account else None
    if started:
        user, raw_token = started
        reset_url = f"{settings.APP_URL.rstrip('/')}/{account.slug}/reset-password?token={raw_token}"
        email_service.send_password_reset(user.email, reset_url)
        audit_service.log_event(
            db,
            account_id=account.id,
            action="password.reset_requested",
            user_id=user.id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """Set a new password with an emailed token; signs the user out everywhere"""
    rate_limiter.enforce(
        db,
        [(f"pwreset:ip:{meta.ip_address}", settings.PASSWORD_RESET_RATE_LIMIT_PER_IP, settings.PASSWORD_RESET_RATE_LIMIT_WINDOW_MS)],
        scope="password_reset",
    )
    user = user_service.reset_password(db, body.token, body.password)
    audit_service.log_event(
        db,
        account_id=user.account_id,
        action="password.reset",
        user_id=user.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return MessageResponse(message="Password has been reset. Please sign in again.")


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    meta: RequestMeta = Depends(get_request_meta),
    session: UserSession = Depends(get_current_session),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Change the signed-in user's password and end their other sessions"""
    user_service.change_password(db, user, body.current_password, body.new_password, keep_session_id=session.id)
    audit_service.log_event(
        db,
        account_id=user.account_id,
        action="password.changed",
        user_id=user.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )
    return MessageResponse(message="Password updated.")


@router.post("/users/{user_id}/revoke-sessions", response_model=RevokeSessionsResponse)
def revoke_user_sessions(
    user_id: str,
    meta: RequestMeta = Depends(get_request_meta),
    ctx: AuthContext = Depends(require_permission("users:update")),
    db: Session = Depends(get_db),
):
    """Sign a user of the caller's account out of every session and refresh token"""
    target = db.get(User, user_id)
    if target is None or target.account_id != ctx.session.account_id:
        raise ResourceNotFoundError("User")

    sessions, tokens = user_service.revoke_access(db, target)
    audit_service.log_event(
        db,
        account_id=target.account_id,
        action="sessions.revoked",
        user_id=ctx.user.id,
        application_id=ctx.application.id if ctx.application else None,
        resource="user",
        resource_id=target.id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        metadata={"sessions": sessions, "refreshTokens": tokens},
    )
    return RevokeSessionsResponse(sessions_deleted=sessions, refresh_tokens_revoked=tokens)
