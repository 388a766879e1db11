"""OAuth token endpoint schemas"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _GrantBase(BaseModel):
    """Fields shared by every grant body (RFC 6749 snake_case names)"""
    model_config = ConfigDict(extra="ignore")

    client_id: str = Field(..., min_length=1, max_length=255)
    client_secret: Optional[str] = None


class AuthorizationCodeGrant(_GrantBase):
    """Exchange an authorization code (plus PKCE verifier) for tokens"""
    grant_type: Literal["authorization_code"]
    code: str = Field(..., min_length=1)
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None


class RefreshTokenGrant(_GrantBase):
    """Rotate a refresh token"""
    grant_type: Literal["refresh_token"]
    refresh_token: str = Field(..., min_length=1)


class ClientCredentialsGrant(_GrantBase):
    """Machine-to-machine token for an API client"""
    grant_type: Literal["client_credentials"]
    client_secret: str = Field(..., min_length=1)
    audience: str = Field(..., min_length=1, description="client_id of the target application")
    scope: Optional[str] = None


# Discriminated on grant_type where it is bound as a request body.
TokenGrant = Union[AuthorizationCodeGrant, RefreshTokenGrant, ClientCredentialsGrant]


class TokenResponse(BaseModel):
    """Token endpoint success body"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int
    scope: Optional[str] = None
