"""Pydantic schemas for API validation"""

from qodari_iam.schemas.auth import (
    LoginRequest,
    MfaVerifyRequest,
    MfaResendRequest,
    MfaRequiredResponse,
    UserOut,
    AccountOut,
    UserEnvelope,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    ChangePasswordRequest,
    RevokeSessionsResponse,
)
from qodari_iam.schemas.oauth import (
    AuthorizationCodeGrant,
    RefreshTokenGrant,
    ClientCredentialsGrant,
    TokenGrant,
    TokenResponse,
)
from qodari_iam.schemas.response import MessageResponse, ErrorResponse, HealthResponse

__all__ = [
    "LoginRequest", "MfaVerifyRequest", "MfaResendRequest", "MfaRequiredResponse",
    "UserOut", "AccountOut", "UserEnvelope",
    "ForgotPasswordRequest", "ResetPasswordRequest", "ChangePasswordRequest", "RevokeSessionsResponse",
    "AuthorizationCodeGrant", "RefreshTokenGrant", "ClientCredentialsGrant", "TokenGrant", "TokenResponse",
    "MessageResponse", "ErrorResponse", "HealthResponse",
]
