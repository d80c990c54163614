import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from auth import get_container, get_optional_session, get_session
from models import Completed, EmailVerification, GoogleLogin, UserCreate, UserLogin

router = APIRouter(prefix="/auth", tags=["Auth"])


def _token_response(token: str):
    return {"access_token": token, "token_type": "bearer"}


@router.post("/register")
def register(user: UserCreate, response: Response, session=Depends(get_optional_session)):
    outcome = session.register(user.email, user.password)
    if isinstance(outcome, Completed):
        response.status_code = status.HTTP_201_CREATED
        return {"status": outcome.kind, **_token_response(outcome.access_token)}
    response.status_code = status.HTTP_202_ACCEPTED
    return {
        "status": outcome.kind,
        "email": outcome.email,
        "message": "Please check your email for verification link before logging in.",
    }


@router.post("/login")
def login(user: UserLogin, session=Depends(get_optional_session)):
    session.login(user.email, user.password)
    return _token_response(session.token)


@router.post("/logout")
def logout(session=Depends(get_session)):
    session.logout()
    return {"message": "Logged out"}


@router.get("/session")
def current_session(session=Depends(get_optional_session)):
    principal = session.current_principal()
    return {
        "authenticated": session.is_authenticated,
        "principal": principal.model_dump() if principal else None,
    }


@router.post("/verify-email")
def verify_email(payload: EmailVerification, container=Depends(get_container)):
    principal = container.identity.verify_email(payload.token)
    return {"message": "Email verified", "email": principal.email}


@router.post("/resend-verification")
def resend_verification(user: UserLogin, container=Depends(get_container)):
    principal = container.identity.sign_in_with_password(user.email, user.password)
    if principal.email_verified:
        return {"message": "Email already verified"}
    container.identity.send_verification_email(principal)
    return {"message": "Verification email sent"}


@router.get("/google/url")
def google_url(redirect_uri: str, state: Optional[str] = None, container=Depends(get_container)):
    state = state or secrets.token_urlsafe(16)
    return {"url": container.identity.google_authorization_url(state, redirect_uri), "state": state}


@router.post("/google")
def login_with_google(payload: GoogleLogin, session=Depends(get_optional_session)):
    session.login_with_federated_provider(payload.code, payload.redirect_uri)
    return _token_response(session.token)
