from datetime import timedelta

from factories import make_account, make_application, make_user
from qodari_iam.config import settings
from qodari_iam.core.clock import utcnow
from qodari_iam.models.security import AuthorizationCode, MfaPending, RateLimitCounter, UserSession
from qodari_iam.services import cleanup_scheduler as cleanup_scheduler_module
from qodari_iam.services.authorization_code_service import AuthorizeRequest, authorization_code_issuer
from qodari_iam.services.cleanup_scheduler import CleanupScheduler
from qodari_iam.services.mfa_service import mfa_challenge
from qodari_iam.services.rate_limiter import rate_limiter
from qodari_iam.services.session_service import RequestMeta, session_manager
from qodari_iam.services.user_service import user_service


def _seed(db):
    account = make_account(db)
    application = make_application(db, account, client_type="confidential")
    user = make_user(db, account)
    session = session_manager.create(db, user.id, account.id, RequestMeta())
    authorization_code_issuer.issue(db, session, application, AuthorizeRequest())
    mfa_challenge.issue(db, user, application)
    rate_limiter.check(db, "login:ip:203.0.113.9", 5, 60_000)
    user_service.start_password_reset(db, account, user.email)
    return user


def test_sweep_keeps_live_rows(db):
    _seed(db)

    result = CleanupScheduler.sweep(db)

    assert set(result.values()) == {0}
    assert db.query(UserSession).count() == 1
    assert db.query(RateLimitCounter).count() == 1


def test_sweep_purges_expired_rows(db, monkeypatch):
    user = _seed(db)
    later = utcnow() + timedelta(seconds=settings.SESSION_TTL_SECONDS + 1)
    monkeypatch.setattr(cleanup_scheduler_module, "utcnow", lambda: later)

    result = CleanupScheduler.sweep(db)

    assert result == {
        "authorization_codes": 1,
        "mfa_pending": 1,
        "sessions": 1,
        "rate_limits": 1,
        "password_reset_tokens": 1,
    }
    assert db.query(AuthorizationCode).count() == 0
    assert db.query(MfaPending).count() == 0
    db.refresh(user)
    assert user.password_reset_token is None


def test_run_once_records_result(session_factory):
    with session_factory() as db:
        _seed(db)
    scheduler = CleanupScheduler(session_factory=session_factory)

    result = scheduler.run_once()

    assert scheduler.status()["runs"] == 1
    assert scheduler.status()["last_result"] == result


def test_start_is_noop_when_paused(monkeypatch):
    monkeypatch.setattr(settings, "PAUSE_SCHEDULER", True)
    scheduler = CleanupScheduler()

    assert scheduler.start() is False
    assert scheduler.is_running() is False
    assert scheduler.status()["paused"] is True
