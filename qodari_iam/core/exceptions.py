"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if code:
            self.code = code
        self.headers = headers or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""

    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=401, details=details)


class InvalidCredentialsError(AuthenticationError):
    """Invalid email or password"""
    def __init__(self):
        super().__init__("Invalid credentials")


class AccountLockedError(AuthenticationError):
    """Account is locked due to failed login attempts"""

    code = "ACCOUNT_LOCKED"

    def __init__(self, locked_until: str):
        super().__init__(
            f"Account is locked until {locked_until}",
            details={"locked_until": locked_until}
        )


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""

    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=403)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(
            f"{resource} not found",
            status_code=404,
            code=f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
        )


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


# Business Logic Errors
class BusinessLogicError(BaseAPIException):
    """Business logic error"""

    code = "BAD_REQUEST"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, status_code=400, code=code)


class InvalidMfaCodeError(BusinessLogicError):
    """MFA code is wrong, expired or exhausted"""
    def __init__(self, message: str = "Invalid or expired verification code"):
        super().__init__(message, code="INVALID_MFA_CODE")


class InvalidResetTokenError(BusinessLogicError):
    """Password reset token is unknown or expired"""
    def __init__(self):
        super().__init__("Invalid or expired reset token", code="INVALID_RESET_TOKEN")


# OAuth protocol errors (RFC 6749 error codes)
class OAuthError(BaseAPIException):
    """Protocol error surfaced with an OAuth error code"""

    def __init__(self, error: str, message: str, status_code: int = 400):
        super().__init__(message, status_code=status_code, code=error)

    @property
    def error(self) -> str:
        return self.code


class InvalidClientError(OAuthError):
    """Unknown or inactive client, or failed client authentication"""
    def __init__(self, message: str = "Invalid client"):
        super().__init__("invalid_client", message, status_code=401)


class InvalidGrantError(OAuthError):
    """Bad, expired or reused code or refresh token, or bad PKCE verifier"""
    def __init__(self, message: str = "Invalid grant"):
        super().__init__("invalid_grant", message)


class InvalidRequestError(OAuthError):
    """Malformed or incomplete protocol request"""
    def __init__(self, message: str = "Invalid request"):
        super().__init__("invalid_request", message)


class UnsupportedResponseTypeError(OAuthError):
    def __init__(self, message: str = "Only response_type=code is supported"):
        super().__init__("unsupported_response_type", message)


class UnsupportedGrantTypeError(OAuthError):
    def __init__(self, message: str = "Unsupported grant_type"):
        super().__init__("unsupported_grant_type", message)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message, status_code=429, headers=headers)


class RedirectUriNotAllowedError(InvalidRequestError):
    """Requested redirect_uri is not one of the application's callbacks"""
    def __init__(self, redirect_uri: str):
        self.redirect_uri = redirect_uri
        super().__init__("redirect_uri is not registered for this client")


class NoCallbackConfiguredError(InvalidRequestError):
    """Application has no callback URL to fall back to"""
    def __init__(self):
        super().__init__("No callback URL configured for this client")
