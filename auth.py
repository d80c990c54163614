import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import NotAuthenticated
from incidents import IncidentRepository
from profiles import ProfileService
from session import AccessSession

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def hash_password(password):
    return pwd_context.hash(password)


def verify_password(plain, hashed):
    return pwd_context.verify(plain, hashed)


def create_token(data: dict, secret_key: str, algorithm: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({"iat": now, "exp": now + expires_delta, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_token(token: str, secret_key: str, algorithm: str) -> Optional[dict]:
    """Return the claims of a valid, unexpired token, else None."""
    try:
        return jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as e:
        logger.debug("Rejected token: %s", e)
        return None


# FastAPI dependencies

def get_container(request: Request):
    return request.app.state.container


def _open_session(container, token: Optional[str]) -> AccessSession:
    session = AccessSession(container.identity, resolve_timeout=container.settings.session_resolve_timeout)
    session.restore(token)
    return session


def get_optional_session(
    token: Optional[str] = Depends(optional_oauth2_scheme), container=Depends(get_container)
):
    session = _open_session(container, token)
    try:
        yield session
    finally:
        session.close()


def get_session(token: str = Depends(oauth2_scheme), container=Depends(get_container)):
    session = _open_session(container, token)
    try:
        if session.current_principal() is None:
            raise NotAuthenticated("Invalid token")
        yield session
    finally:
        session.close()


def get_incident_repository(
    session: AccessSession = Depends(get_session), container=Depends(get_container)
) -> IncidentRepository:
    return IncidentRepository(container.store, session)


def get_profile_service(container=Depends(get_container)) -> ProfileService:
    return ProfileService(container.store)
