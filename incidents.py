import logging
from typing import Callable, List, Union

from pydantic import ValidationError as PydanticValidationError

from errors import Forbidden, NotFoundOrForbidden, ValidationError
from models import (
    INCIDENTS,
    Incident,
    IncidentDraft,
    IncidentPatch,
    IncidentStatus,
    later_than,
    normalize_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


def _parse(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


class IncidentRepository:
    """Incident CRUD on behalf of the session principal.

    The acting user is always taken from the session, never from the payload.
    Reads and writes of someone else's incident fail exactly like a missing id.
    """

    def __init__(self, store, session, clock: Callable = utcnow):
        self.store = store
        self.session = session
        self.clock = clock

    def _owned(self, incident_id: str, principal) -> dict:
        doc = self.store.get(INCIDENTS, incident_id)
        if doc is None or doc.get("user_id") != principal.id:
            raise NotFoundOrForbidden()
        return doc

    def _reload(self, incident_id: str) -> Incident:
        doc = self.store.get(INCIDENTS, incident_id)
        if doc is None:
            raise NotFoundOrForbidden()
        return Incident.model_validate(doc)

    def create(self, draft: Union[IncidentDraft, dict]) -> Incident:
        principal = self.session.require_authenticated()
        draft = _parse(IncidentDraft, draft)

        if not draft.location.latitude and not draft.location.longitude:
            raise ValidationError("Please provide a valid location")
        if not draft.vehicle_type or not draft.vehicle_type.strip():
            raise ValidationError("Vehicle type is required")

        now = self.clock()
        data = draft.model_dump(mode="json")
        data["vehicle_type"] = draft.vehicle_type.strip()
        data.update(
            user_id=principal.id,
            status=IncidentStatus.PENDING.value,
            assigned_provider_id=None,
            created_at=now,
            updated_at=now,
        )
        incident_id = self.store.insert(INCIDENTS, data)
        logger.info("Incident %s reported by %s", incident_id, principal.id)
        return self._reload(incident_id)

    def list_by_owner(self, user_id: str) -> List[Incident]:
        principal = self.session.require_authenticated()
        if user_id != principal.id:
            raise Forbidden("You can only list your own incidents")
        docs = self.store.find(INCIDENTS, {"user_id": principal.id}, order_by="created_at", descending=True)
        return [Incident.model_validate(doc) for doc in docs]

    def get(self, incident_id: str) -> Incident:
        principal = self.session.require_authenticated()
        return Incident.model_validate(self._owned(incident_id, principal))

    def update(self, incident_id: str, patch: Union[IncidentPatch, dict]) -> Incident:
        principal = self.session.require_authenticated()
        patch = _parse(IncidentPatch, patch)
        stored = self._owned(incident_id, principal)

        changes = patch.changes()
        if "vehicle_type" in changes:
            changes["vehicle_type"] = changes["vehicle_type"].strip()
            if not changes["vehicle_type"]:
                raise ValidationError("Vehicle type is required")
        changes["updated_at"] = later_than(normalize_timestamp(stored.get("updated_at")), self.clock())

        if not self.store.update(INCIDENTS, incident_id, changes):
            # Deleted between the ownership check and the write.
            raise NotFoundOrForbidden()
        logger.info("Incident %s updated by %s: %s", incident_id, principal.id, sorted(changes))
        return self._reload(incident_id)

    def delete(self, incident_id: str) -> None:
        principal = self.session.require_authenticated()
        self._owned(incident_id, principal)
        if not self.store.delete(INCIDENTS, incident_id):
            raise NotFoundOrForbidden()
        logger.info("Incident %s deleted by %s", incident_id, principal.id)
