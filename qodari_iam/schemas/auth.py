"""Login, MFA, session and password schemas"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and renders camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _strip_lower(value: str) -> str:
    return value.strip().lower()


class LoginRequest(CamelModel):
    """Email/password login against one account and application"""
    account_slug: str = Field(..., min_length=1, max_length=50)
    app_slug: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=1024)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _strip_lower(v) if isinstance(v, str) else v


class MfaVerifyRequest(CamelModel):
    mfa_token: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., pattern=r"^\d{6}$")


class MfaResendRequest(CamelModel):
    mfa_token: str = Field(..., min_length=1, max_length=64)


class UserOut(CamelModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    avatar: Optional[str] = None
    is_admin: bool = False
    status: str


class AccountOut(CamelModel):
    id: str
    name: str
    slug: str


class UserEnvelope(CamelModel):
    """Authenticated user with the account the session belongs to"""
    user: UserOut
    accounts: List[AccountOut]
    current_account_id: str
    roles: Optional[List[str]] = None
    permissions: Optional[List[str]] = None


class MfaRequiredResponse(CamelModel):
    mfa_required: bool = True
    mfa_token: str
    masked_email: str


class ForgotPasswordRequest(CamelModel):
    account_slug: str = Field(..., min_length=1, max_length=50)
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return _strip_lower(v) if isinstance(v, str) else v


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=1024)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=1024)
    new_password: str = Field(..., min_length=8, max_length=1024)


class RevokeSessionsResponse(CamelModel):
    sessions_deleted: int
    refresh_tokens_revoked: int
