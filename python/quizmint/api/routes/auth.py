"""Session routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from quizmint.api.deps import get_app_settings, get_db, get_identity_provider
from quizmint.auth.identity import IdentityProviderBase
from quizmint.config import Settings
from quizmint.responses import success_response
from quizmint.schemas.auth import CreateSessionRequest, LogoutOut, SessionOut
from quizmint.services import sessions as sessions_service

router = APIRouter()


@router.post("/auth/session")
def create_session(
    body: CreateSessionRequest,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    identity_provider: Annotated[IdentityProviderBase, Depends(get_identity_provider)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """Exchange a fresh sign-in token for an httponly session cookie."""
    cookie = sessions_service.create_session(
        db,
        body.id_token,
        identity_provider=identity_provider,
        session_max_age_s=settings.session_max_age_s,
        max_sign_in_age_s=settings.max_sign_in_age_s,
    )
    response.set_cookie(
        settings.session_cookie_name,
        cookie.value,
        max_age=cookie.max_age_s,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return success_response(SessionOut(expires_in=cookie.max_age_s).model_dump(mode="json"))


@router.post("/auth/logout")
def logout(
    response: Response,
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return success_response(LogoutOut().model_dump(mode="json"))
