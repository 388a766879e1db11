from types import SimpleNamespace

import bcrypt

from qodari_iam.core.security import (
    constant_time_equals,
    create_access_token,
    decode_access_token,
    hash_password,
    password_needs_rehash,
    pkce_s256_challenge,
    verify_client_secret,
    verify_password,
)

ISSUER = "https://iam.acme.io"


def test_argon2_hash_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed.startswith("$argon2id$")
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not password_needs_rehash(hashed)


def test_legacy_bcrypt_hash_verifies_and_needs_rehash():
    legacy = bcrypt.hashpw(b"old-password", bcrypt.gensalt(rounds=4)).decode()
    assert verify_password("old-password", legacy)
    assert not verify_password("other", legacy)
    assert password_needs_rehash(legacy)


def test_verify_password_rejects_garbage_hash():
    assert not verify_password("anything", "not-a-hash")
    assert not verify_password("anything", "")


def test_constant_time_equals_rejects_different_lengths():
    assert constant_time_equals("abc", "abc")
    assert not constant_time_equals("abc", "abcd")
    assert not constant_time_equals("abc", "abd")
    assert not constant_time_equals("abc", None)


def test_public_client_needs_no_secret():
    app = SimpleNamespace(client_type="public", client_secret="ignored")
    assert verify_client_secret(app, None)
    assert verify_client_secret(app, "whatever")


def test_confidential_client_requires_matching_secret():
    app = SimpleNamespace(client_type="confidential", client_secret="top-secret")
    assert verify_client_secret(app, "top-secret")
    assert not verify_client_secret(app, "top-secreT")
    assert not verify_client_secret(app, "")
    assert not verify_client_secret(app, None)


def test_pkce_s256_matches_rfc7636_example():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert pkce_s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_access_token_round_trip_is_bound_to_audience_and_secret():
    token = create_access_token(
        {"sub": "user-1", "roles": ["editor"], "permissions": ["posts:create"]},
        secret="app-secret",
        issuer=ISSUER,
        audience="portal-client",
        expires_in=900,
    )
    payload = decode_access_token(token, secret="app-secret", issuer=ISSUER, audience="portal-client")
    assert payload is not None
    assert payload["sub"] == "user-1"
    assert payload["typ"] == "access"
    assert payload["permissions"] == ["posts:create"]

    assert decode_access_token(token, secret="other-app-secret", issuer=ISSUER, audience="portal-client") is None
    assert decode_access_token(token, secret="app-secret", issuer=ISSUER, audience="other-client") is None
    assert decode_access_token(token, secret="app-secret", issuer="https://evil.io", audience="portal-client") is None


def test_expired_access_token_is_rejected():
    token = create_access_token(
        {"sub": "user-1"},
        secret="app-secret",
        issuer=ISSUER,
        audience="portal-client",
        expires_in=-10,
    )
    assert decode_access_token(token, secret="app-secret", issuer=ISSUER, audience="portal-client") is None
