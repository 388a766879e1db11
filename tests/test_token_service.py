from datetime import timedelta

import pytest

from factories import (
    VERIFIER,
    challenge_for,
    grant_api_client_role,
    grant_user_role,
    make_account,
    make_api_client,
    make_application,
    make_role,
    make_user,
)
from qodari_iam.config import settings
from qodari_iam.core.clock import utcnow
from qodari_iam.core.exceptions import InvalidClientError, InvalidGrantError, InvalidRequestError
from qodari_iam.core.security import decode_access_token, sha256_hex
from qodari_iam.models.audit import AuditLog
from qodari_iam.models.enums import RevokedReason
from qodari_iam.models.security import RefreshToken
from qodari_iam.schemas.oauth import AuthorizationCodeGrant, ClientCredentialsGrant, RefreshTokenGrant
from qodari_iam.services import token_service as token_service_module
from qodari_iam.services.authorization_code_service import AuthorizeRequest, authorization_code_issuer
from qodari_iam.services.session_service import RequestMeta, session_manager
from qodari_iam.services.token_service import token_service


@pytest.fixture
def tenant(db):
    account = make_account(db)
    application = make_application(db, account)
    user = make_user(db, account)
    role = make_role(db, application, "editor", ["posts:read", "posts:write"])
    grant_user_role(db, user, role)
    return account, application, user


def _code_for(db, application, user, **request):
    session = session_manager.create(db, user.id, application.account_id, RequestMeta())
    request.setdefault("code_challenge", challenge_for())
    request.setdefault("code_challenge_method", "S256")
    return authorization_code_issuer.issue(db, session, application, AuthorizeRequest(**request))


def _exchange_code(db, application, code, **overrides):
    values = dict(
        grant_type="authorization_code",
        client_id=application.client_id,
        code=code,
        code_verifier=VERIFIER,
    )
    values.update(overrides)
    return token_service.exchange(db, AuthorizationCodeGrant(**values))


def _refresh(db, application, refresh_token, client_secret=None):
    return token_service.exchange(
        db,
        RefreshTokenGrant(
            grant_type="refresh_token",
            client_id=application.client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
        ),
    )


def _claims(application, access_token):
    return decode_access_token(
        access_token,
        secret=application.client_jwt_secret,
        issuer=settings.IAM_ISSUER,
        audience=application.client_id,
    )


def test_code_exchange_issues_tokens_for_the_user(db, tenant):
    account, application, user = tenant
    code = _code_for(db, application, user, scope="openid profile")

    response = _exchange_code(db, application, code.code)

    assert response.token_type == "Bearer"
    assert response.expires_in == application.access_token_exp
    assert response.scope == "openid profile"
    claims = _claims(application, response.access_token)
    assert claims["sub"] == user.id
    assert claims["accountId"] == account.id
    assert claims["appId"] == application.id
    assert claims["principalType"] == "user"
    assert claims["roles"] == ["editor"]
    assert claims["permissions"] == ["posts:read", "posts:write"]

    stored = db.query(RefreshToken).filter(RefreshToken.token_hash == sha256_hex(response.refresh_token)).one()
    assert stored.revoked is False
    assert stored.user_id == user.id

    actions = [row.action for row in db.query(AuditLog).all()]
    assert "token.issued" in actions


def test_code_cannot_be_exchanged_twice(db, tenant):
    _, application, user = tenant
    code = _code_for(db, application, user)
    _exchange_code(db, application, code.code)

    with pytest.raises(InvalidGrantError):
        _exchange_code(db, application, code.code)

    assert db.query(RefreshToken).count() == 1


def test_failed_exchange_leaves_code_unused(db, tenant):
    _, application, user = tenant
    code = _code_for(db, application, user)
    user.status = "suspended"
    db.commit()

    with pytest.raises(InvalidGrantError):
        _exchange_code(db, application, code.code)

    db.expire_all()
    assert code.used is False


def test_confidential_client_must_authenticate(db):
    account = make_account(db)
    application = make_application(db, account, client_type="confidential")
    user = make_user(db, account)
    code = _code_for(db, application, user)

    with pytest.raises(InvalidClientError):
        _exchange_code(db, application, code.code, client_secret="wrong")

    response = _exchange_code(db, application, code.code, client_secret=application.client_secret)
    assert response.refresh_token


def test_refresh_rotates_within_the_family(db, tenant):
    _, application, user = tenant
    first = _exchange_code(db, application, _code_for(db, application, user).code)

    second = _refresh(db, application, first.refresh_token)

    assert second.refresh_token != first.refresh_token
    assert second.scope is None
    old = db.query(RefreshToken).filter(RefreshToken.token_hash == sha256_hex(first.refresh_token)).one()
    new = db.query(RefreshToken).filter(RefreshToken.token_hash == sha256_hex(second.refresh_token)).one()
    assert old.revoked is True
    assert old.revoked_reason == RevokedReason.ROTATED.value
    assert old.last_used_at is not None
    assert new.family_id == old.family_id
    assert new.revoked is False


def test_reusing_a_rotated_token_revokes_the_family(db, tenant):
    _, application, user = tenant
    first = _exchange_code(db, application, _code_for(db, application, user).code)
    second = _refresh(db, application, first.refresh_token)

    with pytest.raises(InvalidGrantError):
        _refresh(db, application, first.refresh_token)

    db.expire_all()
    live = db.query(RefreshToken).filter(RefreshToken.revoked == False).count()  # noqa: E712
    assert live == 0
    successor = db.query(RefreshToken).filter(RefreshToken.token_hash == sha256_hex(second.refresh_token)).one()
    assert successor.revoked_reason == RevokedReason.REUSE_DETECTED.value

    with pytest.raises(InvalidGrantError):
        _refresh(db, application, second.refresh_token)

    failures = db.query(AuditLog).filter(AuditLog.action == "token.reuse_detected").all()
    assert failures and failures[0].status == "failure"


def test_other_families_survive_reuse(db, tenant):
    _, application, user = tenant
    first = _exchange_code(db, application, _code_for(db, application, user).code)
    other = _exchange_code(db, application, _code_for(db, application, user).code)
    _refresh(db, application, first.refresh_token)

    with pytest.raises(InvalidGrantError):
        _refresh(db, application, first.refresh_token)

    assert _refresh(db, application, other.refresh_token).refresh_token


def test_refresh_token_is_bound_to_its_application(db, tenant):
    account, application, user = tenant
    other = make_application(db, account, slug="admin")
    tokens = _exchange_code(db, application, _code_for(db, application, user).code)

    with pytest.raises(InvalidGrantError):
        _refresh(db, other, tokens.refresh_token)


def test_expired_refresh_token_is_rejected(db, tenant, monkeypatch):
    _, application, user = tenant
    tokens = _exchange_code(db, application, _code_for(db, application, user).code)

    later = utcnow() + timedelta(seconds=application.refresh_token_exp + 1)
    monkeypatch.setattr(token_service_module, "utcnow", lambda: later)

    with pytest.raises(InvalidGrantError):
        _refresh(db, application, tokens.refresh_token)


def test_client_credentials_issue_access_token_only(db):
    account = make_account(db)
    application = make_application(db, account, client_type="confidential")
    api_client = make_api_client(db, account)
    role = make_role(db, application, "reporter", ["reports:read"])
    grant_api_client_role(db, api_client, role)

    response = token_service.exchange(
        db,
        ClientCredentialsGrant(
            grant_type="client_credentials",
            client_id=api_client.client_id,
            client_secret="machine-secret",
            audience=application.client_id,
        ),
    )

    assert response.refresh_token is None
    assert response.expires_in == api_client.access_token_exp
    claims = _claims(application, response.access_token)
    assert claims["sub"] == api_client.id
    assert claims["principalType"] == "api_client"
    assert claims["permissions"] == ["reports:read"]
    db.refresh(api_client)
    assert api_client.last_used_at is not None


def test_client_credentials_reject_bad_secret_and_foreign_audience(db):
    account = make_account(db)
    api_client = make_api_client(db, account)
    other_account = make_account(db, slug="globex")
    foreign = make_application(db, other_account, client_type="confidential")

    with pytest.raises(InvalidClientError):
        token_service.exchange(
            db,
            ClientCredentialsGrant(
                grant_type="client_credentials",
                client_id=api_client.client_id,
                client_secret="nope",
                audience=foreign.client_id,
            ),
        )

    with pytest.raises(InvalidRequestError):
        token_service.exchange(
            db,
            ClientCredentialsGrant(
                grant_type="client_credentials",
                client_id=api_client.client_id,
                client_secret="machine-secret",
                audience=foreign.client_id,
            ),
        )


def test_unknown_api_client_is_invalid_client(db):
    make_account(db)
    with pytest.raises(InvalidClientError):
        token_service.exchange(
            db,
            ClientCredentialsGrant(
                grant_type="client_credentials",
                client_id="svc-missing",
                client_secret="machine-secret",
                audience="anything",
            ),
        )


def test_revoke_all_for_user(db, tenant):
    _, application, user = tenant
    _exchange_code(db, application, _code_for(db, application, user).code)
    _exchange_code(db, application, _code_for(db, application, user).code)

    assert token_service.revoke_all_for_user(db, user.id, RevokedReason.REVOKED_BY_ADMIN) == 2
    assert token_service.revoke_all_for_user(db, user.id, RevokedReason.REVOKED_BY_ADMIN) == 0

    db.expire_all()
    reasons = {row.revoked_reason for row in db.query(RefreshToken).all()}
    assert reasons == {RevokedReason.REVOKED_BY_ADMIN.value}


def test_lost_rotation_race_revokes_the_family(db, tenant):
    _, application, user = tenant
    tokens = _exchange_code(db, application, _code_for(db, application, user).code)
    record = db.query(RefreshToken).filter(RefreshToken.token_hash == sha256_hex(tokens.refresh_token)).one()

    # Another worker rotates the token after this session loaded it.
    db.execute(
        RefreshToken.__table__.update()
        .where(RefreshToken.__table__.c.id == record.id)
        .values(revoked=True, revoked_reason=RevokedReason.ROTATED.value)
    )
    assert record.revoked is False

    with pytest.raises(InvalidGrantError):
        _refresh(db, application, tokens.refresh_token)

    db.expire_all()
    family = db.query(RefreshToken).filter(RefreshToken.family_id == record.family_id).all()
    assert len(family) == 1
    assert all(row.revoked for row in family)
    assert db.query(AuditLog).filter(AuditLog.action == "token.reuse_detected").count() == 1
