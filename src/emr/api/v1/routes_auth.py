from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from src.emr.context import AppContext
from src.emr.domain.models.user import User
from src.emr.security import bearer_scheme, get_app_context, get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])


class SignInRequest(BaseModel):
    email: str
    password: str


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: User


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in(payload: SignInRequest, ctx: AppContext = Depends(get_app_context)) -> SessionResponse:
    session = ctx.identity.sign_in(payload.email, payload.password)
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password.")
    ctx.audit.log_event(
        action="sign_in",
        resource_type="session",
        subject=f"user:{session.user.id}",
    )
    return SessionResponse(access_token=session.token, expires_at=session.expires_at, user=session.user)


@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    ctx: AppContext = Depends(get_app_context),
) -> None:
    if credentials is None or not ctx.identity.sign_out(credentials.credentials):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No active session.")
    ctx.audit.log_event(action="sign_out", resource_type="session")


@router.get("/session", response_model=User)
async def current_session(user: User = Depends(get_current_user)) -> User:
    """Return the user behind the current credentials."""
    return user
