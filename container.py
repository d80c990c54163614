import logging
from dataclasses import dataclass
from typing import Any, Optional

from config import Settings
from database import connect, ensure_indexes
from google_oauth import GoogleOAuthClient
from identity import IdentityProvider
from mailer import LogMailer, Mailer, SmtpMailer
from store import DocumentStore, InMemoryDocumentStore, MongoDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    store: DocumentStore
    identity: IdentityProvider
    mailer: Mailer
    db: Optional[Any] = None

    def startup(self):
        if self.db is not None:
            ensure_indexes(self.db)


def build_container(settings: Settings) -> Container:
    """Wire the store, mailer and identity provider from settings."""
    db = None
    if settings.store_backend == "memory":
        store = InMemoryDocumentStore()
        logger.warning("Using the in-memory document store; data is lost on restart")
    else:
        db = connect(settings.mongo_url, settings.mongo_db)
        store = MongoDocumentStore(db)

    if settings.smtp_host:
        mailer = SmtpMailer(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.mail_from,
        )
    else:
        mailer = LogMailer()

    google = None
    if settings.google_enabled:
        google = GoogleOAuthClient(settings.google_oauth_client_id, settings.google_oauth_client_secret)

    identity = IdentityProvider(store, settings, mailer, google=google)
    return Container(settings=settings, store=store, identity=identity, mailer=mailer, db=db)
