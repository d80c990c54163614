import logging

from models import USERS, Principal, User, UserRole, utcnow

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, store):
        self.store = store

    def ensure_profile(self, principal: Principal) -> User:
        """Return the User for ``principal``, creating it on the first visit.

        A single conditional insert keyed by email, so concurrent first
        visits end up with one document.
        """
        email = principal.email.strip().lower()
        doc, created = self.store.insert_if_absent(
            USERS,
            {"email": email},
            {
                "display_name": principal.display_name or "User",
                "role": UserRole.CLIENT.value,
                "phone_number": principal.phone_number or "",
                "created_at": utcnow(),
            },
        )
        if created:
            logger.info("Created user profile %s", doc["id"])
        return User.model_validate(doc)
