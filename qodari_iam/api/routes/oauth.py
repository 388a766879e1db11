"""OAuth authorization endpoint"""

import logging
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from qodari_iam.api.deps import get_optional_session
from qodari_iam.config import settings
from qodari_iam.core.database import get_db
from qodari_iam.core.exceptions import (
    InvalidClientError,
    InvalidRequestError,
    OAuthError,
    UnsupportedResponseTypeError,
)
from qodari_iam.models.security import UserSession
from qodari_iam.models.tenant import Account, Application
from qodari_iam.services.authorization_code_service import AuthorizeRequest, authorization_code_issuer

logger = logging.getLogger(__name__)

router = APIRouter()


def append_query(url: str, params: Dict[str, Optional[str]]) -> str:
    """Add parameters to a URL, keeping any query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _error_redirect(redirect_uri: str, exc: OAuthError, state: Optional[str]) -> RedirectResponse:
    return RedirectResponse(
        append_query(redirect_uri, {"error": exc.error, "error_description": exc.message, "state": state}),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/authorize")
def authorize(
    request: Request,
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    session: Optional[UserSession] = Depends(get_optional_session),
    db: Session = Depends(get_db),
):
    """
    Authorization endpoint (authorization-code flow)

    Client and redirect URI problems are answered directly; once the
    redirect URI is trusted, protocol errors go back to it as query
    parameters. Without a session for the client's account the browser is
    sent to that account's login page with a link back here.
    """
    if not client_id:
        raise InvalidRequestError("client_id is required")

    application = db.query(Application).filter(Application.client_id == client_id).first()
    if not application or not application.is_active:
        raise InvalidClientError()
    account = db.get(Account, application.account_id)
    if not account or not account.is_active:
        raise InvalidClientError()

    target = authorization_code_issuer.resolve_redirect_uri(application, redirect_uri)

    if response_type != "code":
        return _error_redirect(target, UnsupportedResponseTypeError(), state)

    if session is None or session.account_id != application.account_id:
        login_url = f"{settings.APP_URL.rstrip('/')}/{account.slug}/login"
        return RedirectResponse(
            append_query(login_url, {"redirect": str(request.url), "app": application.slug}),
            status_code=status.HTTP_302_FOUND,
        )

    try:
        code = authorization_code_issuer.issue(
            db,
            session,
            application,
            AuthorizeRequest(
                redirect_uri=target,
                scope=scope,
                state=state,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
            ),
        )
    except InvalidRequestError as exc:
        return _error_redirect(target, exc, state)

    return RedirectResponse(
        append_query(target, {"code": code.code, "state": state}),
        status_code=status.HTTP_302_FOUND,
    )
