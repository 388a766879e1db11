"""Periodic purge of expired authorization state."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from qodari_iam.config import settings
from qodari_iam.core.clock import utcnow
from qodari_iam.core.database import SessionLocal
from qodari_iam.models.security import AuthorizationCode, MfaPending, RateLimitCounter, UserSession
from qodari_iam.models.user import User

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """Thread loop that sweeps expired rows every ``CLEANUP_INTERVAL_SECONDS``.

    Nothing runs at import time; the app or ``run_scheduler.py`` calls
    ``start()``, which is a no-op while ``PAUSE_SCHEDULER`` is set.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._runs: int = 0
        self._last_result: Dict[str, int] = {}

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if settings.PAUSE_SCHEDULER:
            logger.info("Cleanup scheduler paused (PAUSE_SCHEDULER=true)")
            return False
        if self.is_running():
            return True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="cleanup-scheduler", daemon=True)
        self._thread.start()
        logger.info("Cleanup scheduler started interval=%ss", settings.CLEANUP_INTERVAL_SECONDS)
        return True

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Cleanup scheduler stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "paused": settings.PAUSE_SCHEDULER,
            "last_heartbeat": self._heartbeat,
            "runs": self._runs,
            "last_result": dict(self._last_result),
        }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Cleanup sweep failed")
            self._heartbeat = time.time()
            self._stop_event.wait(max(1, settings.CLEANUP_INTERVAL_SECONDS))

    def run_once(self) -> Dict[str, int]:
        db = self._session_factory()
        try:
            result = self.sweep(db)
        finally:
            db.close()
        self._runs += 1
        self._last_result = result
        return result

    @staticmethod
    def sweep(db: Session) -> Dict[str, int]:
        now = utcnow()
        rate_limit_cutoff = now - timedelta(seconds=settings.RATE_LIMIT_RETENTION_SECONDS)
        try:
            result = {
                "authorization_codes": db.query(AuthorizationCode)
                .filter(AuthorizationCode.expires_at < now)
                .delete(synchronize_session=False),
                "mfa_pending": db.query(MfaPending)
                .filter(MfaPending.expires_at < now)
                .delete(synchronize_session=False),
                "sessions": db.query(UserSession)
                .filter(UserSession.expires_at < now)
                .delete(synchronize_session=False),
                "rate_limits": db.query(RateLimitCounter)
                .filter(RateLimitCounter.window_start < rate_limit_cutoff)
                .delete(synchronize_session=False),
                "password_reset_tokens": db.query(User)
                .filter(User.password_reset_expires.isnot(None), User.password_reset_expires < now)
                .update(
                    {User.password_reset_token: None, User.password_reset_expires: None},
                    synchronize_session=False,
                ),
            }
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("Cleanup sweep completed %s", result)
        return result


cleanup_scheduler = CleanupScheduler()
