from datetime import datetime, timedelta

import pytest

from qodari_iam.core.exceptions import RateLimitExceededError
from qodari_iam.models.security import RateLimitCounter
from qodari_iam.services import rate_limiter as rate_limiter_module
from qodari_iam.services.rate_limiter import rate_limiter

WINDOW_MS = 300_000


def _freeze(monkeypatch, moment):
    monkeypatch.setattr(rate_limiter_module, "utcnow", lambda: moment)


def test_fourth_hit_in_window_is_rejected_then_window_resets(db, monkeypatch):
    start = datetime(2026, 1, 1, 12, 0, 0)
    _freeze(monkeypatch, start)

    results = [rate_limiter.check(db, "login:email:a@acme.io", 3, WINDOW_MS) for _ in range(4)]
    assert [r.success for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].count == 4
    assert results[-1].reset_at == start + timedelta(milliseconds=WINDOW_MS)

    _freeze(monkeypatch, start + timedelta(milliseconds=WINDOW_MS + 1))
    after = rate_limiter.check(db, "login:email:a@acme.io", 3, WINDOW_MS)
    assert after.success is True
    assert after.count == 1

    row = db.get(RateLimitCounter, "login:email:a@acme.io")
    db.refresh(row)
    assert row.count == 1


def test_keys_are_counted_independently(db):
    assert rate_limiter.check(db, "login:ip:10.0.0.1", 1, WINDOW_MS).success
    assert rate_limiter.check(db, "login:ip:10.0.0.2", 1, WINDOW_MS).success
    assert not rate_limiter.check(db, "login:ip:10.0.0.1", 1, WINDOW_MS).success


def test_enforce_requires_every_check_to_pass(db):
    rate_limiter.check(db, "login:email:b@acme.io", 1, WINDOW_MS)

    with pytest.raises(RateLimitExceededError) as exc_info:
        rate_limiter.enforce(
            db,
            [("login:ip:10.0.0.9", 10, WINDOW_MS), ("login:email:b@acme.io", 1, WINDOW_MS)],
            scope="login",
        )

    headers = exc_info.value.headers
    assert exc_info.value.status_code == 429
    assert headers["X-RateLimit-Limit"] == "1"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert int(headers["X-RateLimit-Reset"]) > 0


def test_reset_clears_counter(db):
    for _ in range(2):
        rate_limiter.check(db, "mfa:resend:abc", 1, WINDOW_MS)
    rate_limiter.reset(db, "mfa:resend:abc")
    assert rate_limiter.check(db, "mfa:resend:abc", 1, WINDOW_MS).success
