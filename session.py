import logging
import threading
from typing import Callable, List, Optional

from errors import EmailNotVerified, NotAuthenticated, UpstreamUnavailable
from models import Completed, PendingVerification, Principal, RegisterOutcome

logger = logging.getLogger(__name__)


class AccessSession:
    """The caller's view of the identity provider.

    A new session is *resolving* until the first principal notification
    arrives (``resolve`` / ``restore``). Reads made while resolving wait for
    it instead of failing. ``is_authenticated`` only holds for a principal
    whose email is verified.
    """

    def __init__(self, identity, resolve_timeout: float = 5.0):
        self.identity = identity
        self.resolve_timeout = resolve_timeout
        self._resolved = threading.Event()
        self._lock = threading.Lock()
        self._principal: Optional[Principal] = None
        self._token: Optional[str] = None
        self._listeners: List[Callable[[Optional[Principal]], None]] = []
        self._unsubscribe = identity.subscribe(self._on_identity_change)

    def close(self):
        self._unsubscribe()

    # State

    @property
    def resolving(self) -> bool:
        return not self._resolved.is_set()

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        principal = self._principal
        return not self.resolving and principal is not None and principal.email_verified

    def resolve(self, principal: Optional[Principal], token: Optional[str] = None):
        with self._lock:
            self._principal = principal
            self._token = token if principal is not None else None
            listeners = list(self._listeners)
        self._resolved.set()
        for listener in listeners:
            listener(principal)

    def restore(self, token: Optional[str]):
        """Resolve the session from a previously issued access token."""
        principal = self.identity.principal_from_token(token) if token else None
        self.resolve(principal, token)

    def current_principal(self, wait: bool = True) -> Optional[Principal]:
        if wait and not self._resolved.wait(self.resolve_timeout):
            raise UpstreamUnavailable("Session could not be resolved")
        return self._principal

    def require_authenticated(self) -> Principal:
        principal = self.current_principal()
        if principal is None:
            raise NotAuthenticated()
        if not principal.email_verified:
            raise EmailNotVerified()
        return principal

    def subscribe(self, listener: Callable[[Optional[Principal]], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _on_identity_change(self, token, principal):
        current = self._principal
        if principal is None:
            if token is not None and token == self._token:
                self.resolve(None)
        elif current is not None and principal.id == current.id and principal != current:
            self.resolve(principal, self._token)

    # Operations

    def login(self, email: str, password: str) -> Principal:
        principal = self.identity.sign_in_with_password(email, password)
        if not principal.email_verified:
            # Kept so the verification mail can be requested again.
            self.resolve(principal)
            raise EmailNotVerified()
        token = self.identity.issue_token(principal)
        self.resolve(principal, token)
        logger.info("Account %s logged in", principal.id)
        return principal

    def register(self, email: str, password: str) -> RegisterOutcome:
        principal = self.identity.create_account(email, password)
        if principal.email_verified:
            token = self.identity.issue_token(principal)
            self.resolve(principal, token)
            return Completed(principal=principal, access_token=token)

        self.identity.send_verification_email(principal)
        self.resolve(principal)
        return PendingVerification(email=principal.email)

    def login_with_federated_provider(self, code: str, redirect_uri: str) -> Principal:
        principal = self.identity.sign_in_with_google(code, redirect_uri)
        token = self.identity.issue_token(principal)
        self.resolve(principal, token)
        return principal

    def send_verification_email(self) -> bool:
        principal = self.current_principal()
        if principal is None or principal.email_verified:
            return False
        self.identity.send_verification_email(principal)
        return True

    def logout(self):
        token = self._token
        self.resolve(None)
        self.identity.sign_out(token)
