"""Security utilities - credential hashing, constant-time checks, JWT signing"""

import base64
import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError
from jose import JWTError, jwt

from qodari_iam.core.clock import utcnow

JWT_ALGORITHM = "HS256"

_LEGACY_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

_password_hasher = PasswordHasher(type=Type.ID)

# Verified against when the account does not exist so both paths cost the same.
_DUMMY_HASH = _password_hasher.hash(secrets.token_urlsafe(16))


def _is_legacy_bcrypt(hashed: str) -> bool:
    return hashed.startswith(_LEGACY_BCRYPT_PREFIXES)


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id

    Args:
        password: Plain text password

    Returns:
        str: Encoded Argon2 hash (salt and parameters included)
    """
    return _password_hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Argon2 hashes are checked with argon2-cffi; hashes carried over from the
    previous bcrypt scheme are still accepted so they can be upgraded on login.

    Args:
        plain_password: Plain text password
        hashed_password: Stored hash

    Returns:
        bool: True if password matches
    """
    if not hashed_password:
        return False
    if _is_legacy_bcrypt(hashed_password):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    try:
        return _password_hasher.verify(hashed_password, plain_password)
    except (VerificationError, InvalidHash):
        return False


def password_needs_rehash(hashed_password: str) -> bool:
    if _is_legacy_bcrypt(hashed_password):
        return True
    try:
        return _password_hasher.check_needs_rehash(hashed_password)
    except InvalidHash:
        return True


def burn_password_check(plain_password: str) -> None:
    """Spend one verification on a throwaway hash (unknown-account path)."""
    verify_password(plain_password, _DUMMY_HASH)


# API client secrets use the same memory-hard scheme as passwords.
hash_secret = hash_password
verify_secret = verify_password


def constant_time_equals(expected: str, provided: str) -> bool:
    """
    Compare two secrets without leaking where they differ.

    Both sides are encoded to byte buffers first; buffers of different
    length are rejected before any byte comparison happens.
    """
    expected_bytes = (expected or "").encode("utf-8")
    provided_bytes = (provided or "").encode("utf-8")
    if len(expected_bytes) != len(provided_bytes):
        return False
    return hmac.compare_digest(expected_bytes, provided_bytes)


def verify_client_secret(application: Any, client_secret: Optional[str]) -> bool:
    """
    Authenticate an OAuth client at the token endpoint.

    Public clients never present a secret (PKCE proves possession instead);
    confidential clients must present the configured one.
    """
    if application.client_type == "public":
        return True
    if not client_secret or not application.client_secret:
        return False
    return constant_time_equals(application.client_secret, client_secret)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def pkce_s256_challenge(code_verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding, per RFC 7636."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_token(nbytes: int = 32) -> str:
    """High-entropy url-safe random token"""
    return secrets.token_urlsafe(nbytes)


def create_access_token(
    claims: Dict[str, Any],
    *,
    secret: str,
    issuer: str,
    audience: str,
    expires_in: int,
) -> str:
    """
    Create a signed JWT access token

    Args:
        claims: Principal claims (sub, accountId, appId, roles, permissions)
        secret: Signing secret of the application the token is issued for
        issuer: Platform issuer
        audience: Application client_id
        expires_in: Lifetime in seconds

    Returns:
        str: Encoded JWT token
    """
    now = utcnow()
    to_encode = dict(claims)
    to_encode.update({
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "jti": secrets.token_urlsafe(16),
        "typ": "access",
    })
    return jwt.encode(to_encode, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(
    token: str,
    *,
    secret: str,
    issuer: str,
    audience: str,
) -> Optional[Dict[str, Any]]:
    """
    Decode and verify an access token for one application

    Returns:
        Optional[Dict]: Decoded claims or None if invalid, expired or of another type
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            audience=audience,
            issuer=issuer,
        )
    except JWTError:
        return None
    if payload.get("typ") != "access":
        return None
    return payload
