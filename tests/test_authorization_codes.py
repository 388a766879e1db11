from datetime import timedelta

import pytest

from factories import CALLBACK, VERIFIER, challenge_for, make_account, make_application, make_user
from qodari_iam.core.clock import utcnow
from qodari_iam.core.exceptions import (
    InvalidGrantError,
    InvalidRequestError,
    NoCallbackConfiguredError,
    RedirectUriNotAllowedError,
)
from qodari_iam.models.security import AuthorizationCode
from qodari_iam.services import authorization_code_service
from qodari_iam.services.authorization_code_service import AuthorizeRequest, authorization_code_issuer
from qodari_iam.services.session_service import RequestMeta, session_manager


def _setup(db, client_type="public", **app_overrides):
    account = make_account(db)
    application = make_application(db, account, client_type=client_type, **app_overrides)
    user = make_user(db, account)
    session = session_manager.create(db, user.id, account.id, RequestMeta())
    return session, application


def test_redirect_uri_must_match_exactly_or_default_to_first(db):
    _, application = _setup(db)

    assert authorization_code_issuer.resolve_redirect_uri(application, None) == CALLBACK
    assert authorization_code_issuer.resolve_redirect_uri(application, "https://app.acme.io/other") == "https://app.acme.io/other"
    with pytest.raises(RedirectUriNotAllowedError):
        authorization_code_issuer.resolve_redirect_uri(application, CALLBACK + "/")


def test_no_callback_configured_fails(db):
    _, application = _setup(db, callback_urls=[])
    with pytest.raises(NoCallbackConfiguredError):
        authorization_code_issuer.resolve_redirect_uri(application, None)


def test_issue_stores_bound_code(db):
    session, application = _setup(db)

    code = authorization_code_issuer.issue(
        db, session, application,
        AuthorizeRequest(state="xyz", code_challenge=challenge_for(), code_challenge_method="S256"),
    )

    assert len(code.code) >= 43
    assert code.used is False
    assert code.redirect_uri == CALLBACK
    assert code.scope == "openid"
    assert code.state == "xyz"
    assert code.code_challenge_method == "S256"


def test_plain_pkce_method_is_refused(db):
    session, application = _setup(db)
    with pytest.raises(InvalidRequestError):
        authorization_code_issuer.issue(
            db, session, application,
            AuthorizeRequest(code_challenge=VERIFIER, code_challenge_method="plain"),
        )


def test_correct_verifier_redeems_exactly_once(db):
    session, application = _setup(db)
    issued = authorization_code_issuer.issue(
        db, session, application,
        AuthorizeRequest(code_challenge=challenge_for(), code_challenge_method="S256"),
    )

    redeemed = authorization_code_issuer.redeem(db, issued.code, application, CALLBACK, VERIFIER)
    db.commit()
    assert redeemed.id == issued.id

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, application, CALLBACK, VERIFIER)


def test_wrong_verifier_fails_without_burning_code(db):
    session, application = _setup(db)
    issued = authorization_code_issuer.issue(
        db, session, application,
        AuthorizeRequest(code_challenge=challenge_for(), code_challenge_method="S256"),
    )

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, application, None, "w" * 43)

    authorization_code_issuer.redeem(db, issued.code, application, None, VERIFIER)


def test_missing_verifier_is_invalid_request(db):
    session, application = _setup(db)
    issued = authorization_code_issuer.issue(
        db, session, application,
        AuthorizeRequest(code_challenge=challenge_for(), code_challenge_method="S256"),
    )
    with pytest.raises(InvalidRequestError):
        authorization_code_issuer.redeem(db, issued.code, application, None, None)


def test_public_client_without_challenge_is_invalid_request(db):
    session, application = _setup(db)
    issued = authorization_code_issuer.issue(db, session, application, AuthorizeRequest())

    with pytest.raises(InvalidRequestError):
        authorization_code_issuer.redeem(db, issued.code, application, None, VERIFIER)


def test_confidential_client_may_skip_pkce(db):
    session, application = _setup(db, client_type="confidential")
    issued = authorization_code_issuer.issue(db, session, application, AuthorizeRequest())

    assert authorization_code_issuer.redeem(db, issued.code, application, CALLBACK, None).id == issued.id


def test_redirect_mismatch_is_invalid_request(db):
    session, application = _setup(db, client_type="confidential")
    issued = authorization_code_issuer.issue(db, session, application, AuthorizeRequest())

    with pytest.raises(InvalidRequestError):
        authorization_code_issuer.redeem(db, issued.code, application, "https://app.acme.io/other", None)


def test_code_for_other_application_is_invalid_grant(db):
    session, application = _setup(db, client_type="confidential")
    other = make_application(db, application.account, slug="other", client_type="confidential")
    issued = authorization_code_issuer.issue(db, session, application, AuthorizeRequest())

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, other, None, None)


def test_expired_code_is_invalid_grant(db, monkeypatch):
    session, application = _setup(db, client_type="confidential")
    issued = authorization_code_issuer.issue(db, session, application, AuthorizeRequest())

    later = utcnow() + timedelta(seconds=application.auth_code_exp + 1)
    monkeypatch.setattr(authorization_code_service, "utcnow", lambda: later)

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, application, None, None)


def test_concurrent_redemption_loses_the_conditional_update(db):
    session, application = _setup(db, client_type="confidential")
    issued = authorization_code_issuer.issue(db, session, application, AuthorizeRequest())

    # Another worker burns the code after this session loaded it.
    db.execute(
        AuthorizationCode.__table__.update()
        .where(AuthorizationCode.__table__.c.id == issued.id)
        .values(used=True)
    )
    assert issued.used is False

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, application, None, None)


def test_non_ascii_verifier_is_invalid_grant(db):
    session, application = _setup(db)
    issued = authorization_code_issuer.issue(
        db, session, application,
        AuthorizeRequest(code_challenge=challenge_for(), code_challenge_method="S256"),
    )

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, application, None, "ñ" * 43)

    assert authorization_code_issuer.redeem(db, issued.code, application, None, VERIFIER).id == issued.id


def test_short_wrong_verifier_is_invalid_grant(db):
    session, application = _setup(db)
    issued = authorization_code_issuer.issue(
        db, session, application,
        AuthorizeRequest(code_challenge=challenge_for(), code_challenge_method="S256"),
    )

    with pytest.raises(InvalidGrantError):
        authorization_code_issuer.redeem(db, issued.code, application, None, "wrong")
