"""Shared fixtures: an in-memory store, a recording mailer and a fake Google client."""

import re

import pytest
from fastapi.testclient import TestClient

from config import Settings
from container import Container
from errors import InvalidCredentials
from google_oauth import GoogleProfile
from identity import IdentityProvider
from mailer import Mailer
from models import ACCOUNTS
from session import AccessSession
from store import InMemoryDocumentStore

PASSWORD = "secret123"

# Tests configure everything explicitly; a developer .env must not leak in.
Settings.model_config["env_file"] = None


class RecordingMailer(Mailer):
    def __init__(self):
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append((to, subject, body))

    def last_token(self):
        return re.search(r"token=(\S+)", self.sent[-1][2]).group(1)


class FakeGoogle:
    def __init__(self):
        self.profiles = {}

    def build_authorization_url(self, state, redirect_uri):
        return f"https://accounts.google.test/auth?state={state}&redirect_uri={redirect_uri}"

    def exchange_code(self, code, redirect_uri):
        if code not in self.profiles:
            raise InvalidCredentials("Google sign-in was rejected")
        return self.profiles[code]


@pytest.fixture
def settings():
    return Settings(
        secret_key="test-secret",
        store_backend="memory",
        session_resolve_timeout=1.0,
        public_base_url="http://testserver",
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def google():
    fake = FakeGoogle()
    fake.profiles["good-code"] = GoogleProfile(email="driver@example.com", name="Dana Driver")
    return fake


@pytest.fixture
def identity(store, settings, mailer, google):
    return IdentityProvider(store, settings, mailer, google=google)


@pytest.fixture
def container(settings, store, identity, mailer):
    return Container(settings=settings, store=store, identity=identity, mailer=mailer)


@pytest.fixture
def new_session(identity):
    sessions = []

    def _open():
        session = AccessSession(identity, resolve_timeout=1.0)
        sessions.append(session)
        return session

    yield _open
    for session in sessions:
        session.close()


@pytest.fixture
def signed_in(identity, store, new_session):
    """Create a verified account and return a logged-in session for it."""

    def _sign_in(email):
        principal = identity.create_account(email, PASSWORD)
        store.update(ACCOUNTS, principal.id, {"email_verified": True})
        session = new_session()
        session.login(email, PASSWORD)
        return session

    return _sign_in


@pytest.fixture
def client(container):
    from main import create_app

    return TestClient(create_app(container))
