"""Authorization code issuance and one-time redemption."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from qodari_iam.core.clock import naive_utc, utcnow
from qodari_iam.core.exceptions import (
    InvalidGrantError,
    InvalidRequestError,
    NoCallbackConfiguredError,
    RedirectUriNotAllowedError,
)
from qodari_iam.core.security import constant_time_equals, generate_token, pkce_s256_challenge
from qodari_iam.models.security import AuthorizationCode, UserSession
from qodari_iam.models.tenant import Application

logger = logging.getLogger(__name__)

PKCE_METHOD_S256 = "S256"
DEFAULT_SCOPE = "openid"


@dataclass(frozen=True)
class AuthorizeRequest:
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class AuthorizationCodeIssuer:
    """
    Codes move ISSUED -> USED, or ISSUED -> EXPIRED when looked up past
    ``expires_at``. A used code is rejected forever.
    """

    @staticmethod
    def resolve_redirect_uri(application: Application, requested: Optional[str]) -> str:
        """Exact match against the registered callbacks, else the first one."""
        callbacks = list(application.callback_urls or [])
        if requested:
            if requested not in callbacks:
                raise RedirectUriNotAllowedError(requested)
            return requested
        if not callbacks:
            raise NoCallbackConfiguredError()
        return callbacks[0]

    def issue(
        self,
        db: Session,
        session: UserSession,
        application: Application,
        request: AuthorizeRequest,
    ) -> AuthorizationCode:
        redirect_uri = self.resolve_redirect_uri(application, request.redirect_uri)

        method = None
        if request.code_challenge:
            method = request.code_challenge_method or ""
            if method != PKCE_METHOD_S256:
                raise InvalidRequestError("code_challenge_method must be S256")

        record = AuthorizationCode(
            user_id=session.user_id,
            account_id=application.account_id,
            application_id=application.id,
            code=generate_token(32),
            scope=request.scope or DEFAULT_SCOPE,
            code_challenge=request.code_challenge or None,
            code_challenge_method=method,
            state=request.state,
            redirect_uri=redirect_uri,
            used=False,
            expires_at=utcnow() + timedelta(seconds=application.auth_code_exp),
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        logger.info(
            "Authorization code issued user_id=%s application_id=%s pkce=%s",
            session.user_id,
            application.id,
            bool(record.code_challenge),
        )
        return record

    def redeem(
        self,
        db: Session,
        code: str,
        application: Application,
        redirect_uri: Optional[str],
        code_verifier: Optional[str],
    ) -> AuthorizationCode:
        """
        Validate a code and mark it used.

        The used flag is flipped with a conditional UPDATE inside the caller's
        transaction; nothing is committed here so the caller can persist the
        tokens it issues atomically with the burn.

        Raises:
            InvalidGrantError: unknown, used, foreign, expired or PKCE mismatch
            InvalidRequestError: redirect mismatch or missing PKCE material
        """
        record = db.query(AuthorizationCode).filter(AuthorizationCode.code == code).first()
        if not record or record.used or record.application_id != application.id:
            raise InvalidGrantError("Invalid authorization code")

        now = utcnow()
        if naive_utc(record.expires_at) <= now:
            raise InvalidGrantError("Authorization code expired")

        if redirect_uri and redirect_uri != record.redirect_uri:
            raise InvalidRequestError("redirect_uri does not match the authorization request")

        if application.is_public and not record.code_challenge:
            raise InvalidRequestError("PKCE is required for public clients")

        if record.code_challenge:
            if not code_verifier:
                raise InvalidRequestError("code_verifier is required")
            if not constant_time_equals(record.code_challenge, pkce_s256_challenge(code_verifier)):
                raise InvalidGrantError("Invalid code_verifier")

        burned = (
            db.query(AuthorizationCode)
            .filter(AuthorizationCode.id == record.id, AuthorizationCode.used == False)  # noqa: E712
            .update(
                {AuthorizationCode.used: True, AuthorizationCode.used_at: now},
                synchronize_session=False,
            )
        )
        if burned != 1:
            logger.warning("Authorization code redeemed concurrently code_id=%s", record.id)
            raise InvalidGrantError("Invalid authorization code")

        db.flush()
        return record


authorization_code_issuer = AuthorizationCodeIssuer()
