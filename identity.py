import logging
import threading
from datetime import timedelta
from typing import Callable, List, Optional

from auth import create_token, decode_token, hash_password, verify_password
from errors import InvalidCredentials, UpstreamUnavailable, ValidationError
from models import ACCOUNTS, REVOKED_TOKENS, Principal, normalize_timestamp, utcnow

logger = logging.getLogger(__name__)

ACCESS = "access"
VERIFY_EMAIL = "verify_email"
MIN_PASSWORD_LENGTH = 6

SessionListener = Callable[[Optional[str], Optional[Principal]], None]


def _principal(account: dict) -> Principal:
    return Principal(
        id=account["id"],
        email=account["email"],
        display_name=account.get("display_name"),
        photo_url=account.get("photo_url"),
        phone_number=account.get("phone_number"),
        email_verified=bool(account.get("email_verified")),
    )


class IdentityProvider:
    """Password and Google accounts kept in the ``accounts`` collection.

    Access tokens are signed JWTs; sign-out records the token id in
    ``revoked_tokens`` so the token stops resolving before it expires.
    Listeners registered with :meth:`subscribe` receive ``(token, principal)``
    whenever a session starts, changes, or ends (principal is None on sign-out).
    """

    def __init__(self, store, settings, mailer, google=None):
        if not settings.secret_key:
            raise RuntimeError("SECRET_KEY is not configured")
        self.store = store
        self.settings = settings
        self.mailer = mailer
        self.google = google
        self._listeners: List[SessionListener] = []
        self._lock = threading.Lock()

    # Session-change notifications

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, token, principal):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(token, principal)
            except Exception:
                logger.exception("Session listener failed")

    # Tokens

    def issue_token(self, principal: Principal) -> str:
        token = create_token(
            {"sub": principal.id, "email": principal.email, "purpose": ACCESS},
            self.settings.secret_key,
            self.settings.algorithm,
            timedelta(minutes=self.settings.access_token_expire_minutes),
        )
        self._notify(token, principal)
        return token

    def _claims(self, token, purpose):
        if not token:
            return None
        claims = decode_token(token, self.settings.secret_key, self.settings.algorithm)
        if not claims or claims.get("purpose") != purpose or not claims.get("sub"):
            return None
        return claims

    def principal_from_token(self, token: Optional[str]) -> Optional[Principal]:
        claims = self._claims(token, ACCESS)
        if claims is None:
            return None
        if self.store.find_one(REVOKED_TOKENS, {"jti": claims.get("jti")}):
            return None
        account = self.store.get(ACCOUNTS, claims["sub"])
        return _principal(account) if account else None

    def sign_out(self, token: Optional[str]) -> None:
        claims = self._claims(token, ACCESS)
        if claims is not None:
            self.store.insert_if_absent(
                REVOKED_TOKENS,
                {"jti": claims["jti"]},
                {"expires_at": normalize_timestamp(claims["exp"]), "revoked_at": utcnow()},
            )
            logger.info("Signed out account %s", claims["sub"])
        self._notify(token, None)

    # Password accounts

    def create_account(self, email: str, password: str) -> Principal:
        email = email.strip().lower()
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        account, created = self.store.insert_if_absent(
            ACCOUNTS,
            {"email": email},
            {
                "password_hash": hash_password(password),
                "display_name": None,
                "photo_url": None,
                "phone_number": None,
                "email_verified": not self.settings.require_email_verification,
                "providers": ["password"],
                "created_at": utcnow(),
            },
        )
        if not created:
            raise ValidationError("Email is already registered")
        logger.info("Created account %s", account["id"])
        return _principal(account)

    def sign_in_with_password(self, email: str, password: str) -> Principal:
        account = self.store.find_one(ACCOUNTS, {"email": email.strip().lower()})
        if not account or not account.get("password_hash"):
            raise InvalidCredentials()
        if not verify_password(password, account["password_hash"]):
            raise InvalidCredentials()
        return _principal(account)

    # Email verification

    def send_verification_email(self, principal: Principal) -> None:
        token = create_token(
            {"sub": principal.id, "email": principal.email, "purpose": VERIFY_EMAIL},
            self.settings.secret_key,
            self.settings.algorithm,
            timedelta(hours=self.settings.verification_token_expire_hours),
        )
        link = f"{self.settings.public_base_url.rstrip('/')}/auth/verify-email?token={token}"
        body = (
            "Hello,\n\n"
            "Please confirm your email address to start requesting roadside assistance:\n\n"
            f"{link}\n\n"
            f"This link expires in {self.settings.verification_token_expire_hours} hours.\n"
        )
        try:
            self.mailer.send(principal.email, "Verify your email", body)
        except OSError as e:
            logger.error("Could not send verification mail to account %s: %s", principal.id, e)
            raise UpstreamUnavailable("Could not send the verification email") from e

    def verify_email(self, token: str) -> Principal:
        claims = self._claims(token, VERIFY_EMAIL)
        if claims is None:
            raise ValidationError("Verification link is invalid or has expired")
        account = self.store.get(ACCOUNTS, claims["sub"])
        if account is None or account["email"] != claims.get("email"):
            raise ValidationError("Verification link is invalid or has expired")
        self.store.update(ACCOUNTS, account["id"], {"email_verified": True})
        account["email_verified"] = True
        principal = _principal(account)
        self._notify(None, principal)
        return principal

    # Google

    def google_authorization_url(self, state: str, redirect_uri: str) -> str:
        if self.google is None:
            raise UpstreamUnavailable("Google sign-in is not configured")
        return self.google.build_authorization_url(state, redirect_uri)

    def sign_in_with_google(self, code: str, redirect_uri: str) -> Principal:
        if self.google is None:
            raise UpstreamUnavailable("Google sign-in is not configured")
        profile = self.google.exchange_code(code, redirect_uri)
        email = profile.email.strip().lower()

        account, created = self.store.insert_if_absent(
            ACCOUNTS,
            {"email": email},
            {
                "password_hash": None,
                "display_name": profile.name,
                "photo_url": profile.picture,
                "phone_number": None,
                "email_verified": True,
                "providers": ["google"],
                "created_at": utcnow(),
            },
        )
        if not created:
            providers = set(account.get("providers", [])) | {"google"}
            changes = {"email_verified": True}
            if not account.get("email_verified"):
                # Nobody proved control of this address; drop the unproven password.
                changes["password_hash"] = None
                providers.discard("password")
            changes["providers"] = sorted(providers)
            if not account.get("display_name") and profile.name:
                changes["display_name"] = profile.name
            if not account.get("photo_url") and profile.picture:
                changes["photo_url"] = profile.picture
            account = self.store.find_one_and_set(ACCOUNTS, {"email": email}, changes)
        logger.info("Google sign-in for account %s (new=%s)", account["id"], created)
        return _principal(account)
