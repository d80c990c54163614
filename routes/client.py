from fastapi import APIRouter, Depends, status

from auth import get_incident_repository, get_profile_service, get_session
from models import IncidentDraft, IncidentPatch

router = APIRouter(prefix="/client", tags=["Client"])


# First dashboard visit creates the profile
@router.get("/profile")
def get_profile(session=Depends(get_session), profiles=Depends(get_profile_service)):
    principal = session.require_authenticated()
    return profiles.ensure_profile(principal)


@router.post("/incidents", status_code=status.HTTP_201_CREATED)
def report_incident(draft: IncidentDraft, incidents=Depends(get_incident_repository)):
    return incidents.create(draft)


@router.get("/incidents")
def list_incidents(session=Depends(get_session), incidents=Depends(get_incident_repository)):
    principal = session.require_authenticated()
    return {"incidents": incidents.list_by_owner(principal.id)}


@router.get("/incidents/{incident_id}")
def get_incident(incident_id: str, incidents=Depends(get_incident_repository)):
    return incidents.get(incident_id)


@router.patch("/incidents/{incident_id}")
def update_incident(incident_id: str, patch: IncidentPatch, incidents=Depends(get_incident_repository)):
    return incidents.update(incident_id, patch)


@router.delete("/incidents/{incident_id}")
def delete_incident(incident_id: str, incidents=Depends(get_incident_repository)):
    incidents.delete(incident_id)
    return {"message": "Incident deleted"}
