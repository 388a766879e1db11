"""Email second-factor challenge state machine."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from qodari_iam.config import settings
from qodari_iam.core.clock import naive_utc, utcnow
from qodari_iam.core.security import constant_time_equals, sha256_hex
from qodari_iam.models.security import MfaPending
from qodari_iam.models.tenant import Application
from qodari_iam.models.user import User

logger = logging.getLogger(__name__)

MFA_CODE_LENGTH = 6


def generate_code() -> str:
    """Uniform 6-digit code (no leading zero) from the OS CSPRNG"""
    low = 10 ** (MFA_CODE_LENGTH - 1)
    high = 10 ** MFA_CODE_LENGTH
    return str(low + secrets.randbelow(high - low))


def hash_code(code: str) -> str:
    return sha256_hex(code)


def mask_email(email: str) -> str:
    """j***@example.com"""
    local, sep, domain = email.partition("@")
    if not local or not sep or not domain:
        return email
    return f"{local[0]}***@{domain}"


class MfaChallenge:
    """Issue, verify and resend one-time email codes."""

    @staticmethod
    def _expiry():
        return utcnow() + timedelta(seconds=settings.MFA_CODE_TTL_SECONDS)

    def issue(
        self,
        db: Session,
        user: User,
        application: Application,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[MfaPending, str]:
        """Create a pending challenge. Returns the row and the raw code to deliver."""
        code = generate_code()
        pending = MfaPending(
            user_id=user.id,
            account_id=user.account_id,
            application_id=application.id,
            code_hash=hash_code(code),
            attempts=0,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=self._expiry(),
        )
        db.add(pending)
        db.commit()
        db.refresh(pending)
        logger.info("MFA challenge issued user_id=%s application_id=%s", user.id, application.id)
        return pending, code

    @staticmethod
    def is_expired(pending: MfaPending) -> bool:
        return naive_utc(pending.expires_at) <= utcnow()

    @staticmethod
    def is_exhausted(pending: MfaPending) -> bool:
        return pending.attempts >= settings.MFA_MAX_ATTEMPTS

    def verify(self, db: Session, pending: MfaPending, candidate: str) -> bool:
        """
        Check a submitted code.

        Every call consumes one attempt through a conditional increment, so
        concurrent guesses cannot exceed the cap. Once the cap is reached the
        challenge is rejected even for the right code.
        """
        if self.is_expired(pending):
            return False

        consumed = (
            db.query(MfaPending)
            .filter(
                MfaPending.id == pending.id,
                MfaPending.attempts < settings.MFA_MAX_ATTEMPTS,
            )
            .update(
                {MfaPending.attempts: MfaPending.attempts + 1, MfaPending.updated_at: utcnow()},
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(pending)
        if consumed != 1:
            logger.warning("MFA challenge exhausted pending_id=%s", pending.id)
            return False

        return constant_time_equals(pending.code_hash, hash_code(candidate or ""))

    def resend(self, db: Session, pending: MfaPending) -> str:
        """Replace the code and restart the expiry window. Attempts are kept."""
        code = generate_code()
        pending.code_hash = hash_code(code)
        pending.expires_at = self._expiry()
        db.commit()
        db.refresh(pending)
        return code

    def consume(self, db: Session, pending: MfaPending) -> None:
        db.delete(pending)
        db.commit()

    @staticmethod
    def get(db: Session, mfa_token: str) -> Optional[MfaPending]:
        return db.query(MfaPending).filter(MfaPending.id == mfa_token).first()


mfa_challenge = MfaChallenge()
