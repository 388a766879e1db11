"""Cookie-backed server-side sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session
from starlette.requests import cookie_parser
from starlette.responses import Response

from qodari_iam.config import settings
from qodari_iam.core.clock import naive_utc, utcnow
from qodari_iam.core.security import generate_token
from qodari_iam.models.security import UserSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class SessionManager:
    """Create, resolve and tear down sessions.

    Sessions hold identity only; roles and permissions are recomputed on
    every request so changes apply without a new login.
    """

    @property
    def cookie_name(self) -> str:
        return settings.SESSION_COOKIE_NAME

    def _set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=session_id,
            max_age=settings.SESSION_TTL_SECONDS,
            path="/",
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )

    def create(
        self,
        db: Session,
        user_id: str,
        account_id: str,
        meta: RequestMeta,
        response: Optional[Response] = None,
    ) -> UserSession:
        now = utcnow()
        session = UserSession(
            id=generate_token(32),
            user_id=user_id,
            account_id=account_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            last_activity_at=now,
            expires_at=now + timedelta(seconds=settings.SESSION_TTL_SECONDS),
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        if response is not None:
            self._set_cookie(response, session.id)
        logger.info("Session created user_id=%s account_id=%s", user_id, account_id)
        return session

    def resolve(self, db: Session, session_id: Optional[str]) -> Optional[UserSession]:
        """Look a session up by id, deleting it if it has expired."""
        if not session_id:
            return None

        session = db.query(UserSession).filter(UserSession.id == session_id).first()
        if not session:
            return None

        now = utcnow()
        if naive_utc(session.expires_at) <= now:
            db.delete(session)
            db.commit()
            return None

        last_activity = naive_utc(session.last_activity_at)
        if last_activity is None or (now - last_activity).total_seconds() >= settings.SESSION_ACTIVITY_RESOLUTION_SECONDS:
            session.last_activity_at = now
            db.commit()
        return session

    def resolve_from_cookie_header(self, db: Session, cookie_header: Optional[str]) -> Optional[UserSession]:
        if not cookie_header:
            return None
        return self.resolve(db, cookie_parser(cookie_header).get(self.cookie_name))

    def destroy(self, db: Session, session: Optional[UserSession], response: Optional[Response] = None) -> None:
        if session is not None:
            db.query(UserSession).filter(UserSession.id == session.id).delete(synchronize_session=False)
            db.commit()
        if response is not None:
            self.clear_cookie(response)

    def destroy_all_for_user(self, db: Session, user_id: str, except_session_id: Optional[str] = None) -> int:
        query = db.query(UserSession).filter(UserSession.user_id == user_id)
        if except_session_id:
            query = query.filter(UserSession.id != except_session_id)
        deleted = query.delete(synchronize_session=False)
        db.commit()
        return deleted


session_manager = SessionManager()
