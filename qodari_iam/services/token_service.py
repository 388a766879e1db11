"""Token endpoint: grant handling, JWT signing, refresh-token rotation."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Callable, Dict, Optional, Tuple, Type

from sqlalchemy.orm import Session

from qodari_iam.config import settings
from qodari_iam.core.clock import naive_utc, utcnow
from qodari_iam.core.exceptions import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    UnsupportedGrantTypeError,
)
from qodari_iam.core.metrics import REFRESH_REUSE_DETECTED, TOKENS_ISSUED
from qodari_iam.core.security import (
    burn_password_check,
    create_access_token,
    generate_token,
    sha256_hex,
    verify_client_secret,
    verify_secret,
)
from qodari_iam.models.api_client import ApiClient
from qodari_iam.models.enums import PrincipalType, RevokedReason
from qodari_iam.models.security import RefreshToken
from qodari_iam.models.tenant import Account, Application
from qodari_iam.models.user import User
from qodari_iam.schemas.oauth import (
    AuthorizationCodeGrant,
    ClientCredentialsGrant,
    RefreshTokenGrant,
    TokenGrant,
    TokenResponse,
)
from qodari_iam.services.audit_service import STATUS_FAILURE, audit_service
from qodari_iam.services.authorization_code_service import authorization_code_issuer
from qodari_iam.services.role_resolver import ResolvedAccess, role_resolver
from qodari_iam.services.session_service import RequestMeta

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 48


class TokenService:
    """Issue and rotate credentials for the three supported grants."""

    def __init__(self):
        self._handlers: Dict[Type, Callable] = {
            AuthorizationCodeGrant: self._authorization_code,
            RefreshTokenGrant: self._refresh_token,
            ClientCredentialsGrant: self._client_credentials,
        }

    def exchange(self, db: Session, grant: TokenGrant, meta: Optional[RequestMeta] = None) -> TokenResponse:
        handler = self._handlers.get(type(grant))
        if handler is None:
            raise UnsupportedGrantTypeError()
        response = handler(db, grant, meta or RequestMeta())
        TOKENS_ISSUED.labels(grant.grant_type).inc()
        return response

    # -- signing -----------------------------------------------------------

    @staticmethod
    def sign_access_token(
        application: Application,
        *,
        subject: str,
        principal_type: str,
        access: ResolvedAccess,
        expires_in: int,
    ) -> str:
        claims = {
            "sub": subject,
            "accountId": application.account_id,
            "appId": application.id,
            "roles": access.roles,
            "permissions": access.permissions,
            "principalType": principal_type,
        }
        return create_access_token(
            claims,
            secret=application.client_jwt_secret,
            issuer=settings.IAM_ISSUER,
            audience=application.client_id,
            expires_in=expires_in,
        )

    @staticmethod
    def _add_refresh_token(
        db: Session,
        *,
        user_id: str,
        application: Application,
        family_id: str,
    ) -> Tuple[str, RefreshToken]:
        """Stage a new refresh row (not committed). Returns the raw value and the row."""
        raw = generate_token(REFRESH_TOKEN_BYTES)
        record = RefreshToken(
            family_id=family_id,
            user_id=user_id,
            account_id=application.account_id,
            application_id=application.id,
            token_hash=sha256_hex(raw),
            revoked=False,
            expires_at=utcnow() + timedelta(seconds=application.refresh_token_exp),
        )
        db.add(record)
        db.flush()
        return raw, record

    # -- client / principal checks -----------------------------------------

    @staticmethod
    def authenticate_application(db: Session, client_id: str, client_secret: Optional[str]) -> Application:
        application = db.query(Application).filter(Application.client_id == client_id).first()
        if not application or not application.is_active:
            raise InvalidClientError()
        account = db.get(Account, application.account_id)
        if not account or not account.is_active:
            raise InvalidClientError()
        if not verify_client_secret(application, client_secret):
            logger.warning("Client authentication failed client_id=%s", client_id)
            raise InvalidClientError()
        return application

    @staticmethod
    def _active_user(db: Session, user_id: str, account_id: str) -> User:
        user = db.get(User, user_id)
        if not user or not user.is_active or user.account_id != account_id:
            raise InvalidGrantError()
        return user

    # -- grant handlers ----------------------------------------------------

    def _authorization_code(self, db: Session, grant: AuthorizationCodeGrant, meta: RequestMeta) -> TokenResponse:
        application = self.authenticate_application(db, grant.client_id, grant.client_secret)
        try:
            code = authorization_code_issuer.redeem(
                db, grant.code, application, grant.redirect_uri, grant.code_verifier
            )
            user = self._active_user(db, code.user_id, application.account_id)
            access = role_resolver.resolve_user(db, user.id, application.account_id, application.id)
            access_token = self.sign_access_token(
                application,
                subject=user.id,
                principal_type=PrincipalType.USER.value,
                access=access,
                expires_in=application.access_token_exp,
            )
            refresh_raw, refresh = self._add_refresh_token(
                db, user_id=user.id, application=application, family_id=str(uuid.uuid4())
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Tokens issued grant=authorization_code user_id=%s application_id=%s", user.id, application.id)
        audit_service.log_event(
            db,
            account_id=application.account_id,
            action="token.issued",
            user_id=user.id,
            application_id=application.id,
            resource="refresh_token_family",
            resource_id=refresh.family_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={"grantType": grant.grant_type},
        )
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_raw,
            expires_in=application.access_token_exp,
            scope=code.scope or "",
        )

    def _refresh_token(self, db: Session, grant: RefreshTokenGrant, meta: RequestMeta) -> TokenResponse:
        application = self.authenticate_application(db, grant.client_id, grant.client_secret)

        record = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.token_hash == sha256_hex(grant.refresh_token),
                RefreshToken.application_id == application.id,
            )
            .first()
        )
        if not record:
            raise InvalidGrantError()

        if record.revoked:
            self._handle_reuse(db, record, meta)
            raise InvalidGrantError()

        now = utcnow()
        if naive_utc(record.expires_at) <= now:
            raise InvalidGrantError()

        try:
            user = self._active_user(db, record.user_id, record.account_id)
            rotated = (
                db.query(RefreshToken)
                .filter(RefreshToken.id == record.id, RefreshToken.revoked == False)  # noqa: E712
                .update(
                    {
                        RefreshToken.revoked: True,
                        RefreshToken.revoked_reason: RevokedReason.ROTATED.value,
                        RefreshToken.revoked_at: now,
                        RefreshToken.last_used_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if rotated != 1:
                # Another request rotated this token first.
                db.rollback()
                self._handle_reuse(db, record, meta)
                raise InvalidGrantError()

            refresh_raw, _ = self._add_refresh_token(
                db, user_id=user.id, application=application, family_id=record.family_id
            )
            access = role_resolver.resolve_user(db, user.id, application.account_id, application.id)
            access_token = self.sign_access_token(
                application,
                subject=user.id,
                principal_type=PrincipalType.USER.value,
                access=access,
                expires_in=application.access_token_exp,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Refresh token rotated user_id=%s family_id=%s", user.id, record.family_id)
        audit_service.log_event(
            db,
            account_id=application.account_id,
            action="token.refreshed",
            user_id=user.id,
            application_id=application.id,
            resource="refresh_token_family",
            resource_id=record.family_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_raw,
            expires_in=application.access_token_exp,
        )

    def _client_credentials(self, db: Session, grant: ClientCredentialsGrant, meta: RequestMeta) -> TokenResponse:
        api_client = db.query(ApiClient).filter(ApiClient.client_id == grant.client_id).first()
        if not api_client or not api_client.is_active:
            burn_password_check(grant.client_secret)
            raise InvalidClientError()
        if not verify_secret(grant.client_secret, api_client.client_secret_hash):
            logger.warning("API client authentication failed client_id=%s", grant.client_id)
            raise InvalidClientError()

        account = db.get(Account, api_client.account_id)
        if not account or not account.is_active:
            raise InvalidClientError()

        application = db.query(Application).filter(Application.client_id == grant.audience).first()
        if not application or not application.is_active or application.account_id != api_client.account_id:
            raise InvalidRequestError("Unknown audience")

        access = role_resolver.resolve_api_client(db, api_client.id, api_client.account_id, application.id)
        access_token = self.sign_access_token(
            application,
            subject=api_client.id,
            principal_type=PrincipalType.API_CLIENT.value,
            access=access,
            expires_in=api_client.access_token_exp,
        )
        api_client.last_used_at = utcnow()
        db.commit()

        logger.info("Tokens issued grant=client_credentials api_client_id=%s application_id=%s", api_client.id, application.id)
        audit_service.log_event(
            db,
            account_id=api_client.account_id,
            action="token.issued",
            actor_type=PrincipalType.API_CLIENT.value,
            api_client_id=api_client.id,
            application_id=application.id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            metadata={"grantType": grant.grant_type},
        )
        return TokenResponse(
            access_token=access_token,
            expires_in=api_client.access_token_exp,
            scope=grant.scope,
        )

    # -- revocation --------------------------------------------------------

    def _handle_reuse(self, db: Session, record: RefreshToken, meta: RequestMeta) -> None:
        revoked = self.revoke_family(db, record.family_id, RevokedReason.REUSE_DETECTED)
        REFRESH_REUSE_DETECTED.inc()
        logger.warning(
            "Refresh token reuse detected family_id=%s user_id=%s revoked=%s",
            record.family_id,
            record.user_id,
            revoked,
        )
        audit_service.log_event(
            db,
            account_id=record.account_id,
            action="token.reuse_detected",
            status=STATUS_FAILURE,
            user_id=record.user_id,
            application_id=record.application_id,
            resource="refresh_token_family",
            resource_id=record.family_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )

    @staticmethod
    def revoke_family(db: Session, family_id: str, reason: RevokedReason) -> int:
        """Revoke every live token of a family. Already revoked rows keep their reason."""
        now = utcnow()
        revoked = (
            db.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id, RefreshToken.revoked == False)  # noqa: E712
            .update(
                {
                    RefreshToken.revoked: True,
                    RefreshToken.revoked_reason: reason.value,
                    RefreshToken.revoked_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return revoked

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: str, reason: RevokedReason) -> int:
        now = utcnow()
        revoked = (
            db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
            .update(
                {
                    RefreshToken.revoked: True,
                    RefreshToken.revoked_reason: reason.value,
                    RefreshToken.revoked_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return revoked


token_service = TokenService()
