from datetime import datetime, timezone

import pytest

from errors import EmailNotVerified, Forbidden, NotAuthenticated, NotFoundOrForbidden, ValidationError
from incidents import IncidentRepository
from models import INCIDENTS, IncidentStatus, IssueType

DRAFT = {
    "location": {"latitude": 40.0, "longitude": -75.0, "address": ""},
    "vehicle_type": "Sedan",
    "issue_type": "towing",
}


@pytest.fixture
def u1(signed_in):
    return signed_in("u1@example.com")


@pytest.fixture
def u2(signed_in):
    return signed_in("u2@example.com")


@pytest.fixture
def repo(store, u1):
    return IncidentRepository(store, u1)


def test_create_sets_owner_status_and_timestamps(repo, u1):
    incident = repo.create(DRAFT)

    assert incident.id
    assert incident.user_id == u1.current_principal().id
    assert incident.status == IncidentStatus.PENDING
    assert incident.issue_type == IssueType.TOWING
    assert incident.vehicle_type == "Sedan"
    assert incident.created_at == incident.updated_at
    assert incident.created_at.tzinfo is not None


def test_create_ignores_client_supplied_owner(repo, u1):
    incident = repo.create({**DRAFT, "user_id": "someone-else", "status": "completed"})

    assert incident.user_id == u1.current_principal().id
    assert incident.status == IncidentStatus.PENDING


@pytest.mark.parametrize("location", [
    {"latitude": 0, "longitude": 0, "address": "Main St"},
    {"latitude": None, "longitude": None},
])
def test_create_rejects_missing_location(repo, location):
    with pytest.raises(ValidationError):
        repo.create({**DRAFT, "location": location})


def test_create_rejects_blank_vehicle_type(repo):
    with pytest.raises(ValidationError):
        repo.create({**DRAFT, "vehicle_type": "   "})


def test_create_rejects_unknown_issue_type(repo):
    with pytest.raises(ValidationError):
        repo.create({**DRAFT, "issue_type": "explosion"})


def test_list_by_owner_newest_first(store, u1):
    ticks = iter([
        datetime(2024, 1, 1, tzinfo=timezone.utc),
        datetime(2024, 1, 3, tzinfo=timezone.utc),
        datetime(2024, 1, 2, tzinfo=timezone.utc),
    ])
    repo = IncidentRepository(store, u1, clock=lambda: next(ticks))
    first = repo.create(DRAFT)
    second = repo.create({**DRAFT, "vehicle_type": "Truck"})
    third = repo.create({**DRAFT, "vehicle_type": "SUV"})

    listed = repo.list_by_owner(u1.current_principal().id)

    assert [i.id for i in listed] == [second.id, third.id, first.id]


def test_list_by_owner_only_returns_own_incidents(store, u1, u2):
    IncidentRepository(store, u2).create(DRAFT)
    repo = IncidentRepository(store, u1)
    mine = repo.create(DRAFT)

    listed = repo.list_by_owner(u1.current_principal().id)

    assert [i.id for i in listed] == [mine.id]


def test_list_by_owner_for_another_user_is_forbidden(repo, u2):
    with pytest.raises(Forbidden):
        repo.list_by_owner(u2.current_principal().id)


def test_update_refreshes_updated_at_only(store, u1):
    frozen = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    repo = IncidentRepository(store, u1, clock=lambda: frozen)
    incident = repo.create(DRAFT)

    updated = repo.update(incident.id, {"status": "in_progress"})

    assert updated.status == IncidentStatus.IN_PROGRESS
    assert updated.updated_at > incident.updated_at
    assert updated.created_at == incident.created_at


def test_update_never_changes_owner_or_created_at(repo, u1):
    incident = repo.create(DRAFT)

    updated = repo.update(incident.id, {
        "user_id": "attacker",
        "userId": "attacker",
        "created_at": "2000-01-01T00:00:00Z",
        "vehicle_type": "Truck",
    })

    assert updated.user_id == u1.current_principal().id
    assert updated.created_at == incident.created_at
    assert updated.vehicle_type == "Truck"


def test_update_merges_location(repo):
    incident = repo.create(DRAFT)

    updated = repo.update(incident.id, {"location": {"latitude": 41.5, "longitude": -74.0, "address": "I-80"}})

    assert updated.location.address == "I-80"
    assert updated.issue_type == IssueType.TOWING


def test_update_rejects_unknown_status(repo):
    incident = repo.create(DRAFT)

    with pytest.raises(ValidationError):
        repo.update(incident.id, {"status": "assigned"})


def test_other_users_incident_looks_missing(store, repo, u2):
    incident = repo.create(DRAFT)
    intruder = IncidentRepository(store, u2)

    errors = []
    for call in (
        lambda: intruder.update(incident.id, {"status": "cancelled"}),
        lambda: intruder.delete(incident.id),
        lambda: intruder.get(incident.id),
        lambda: intruder.update("does-not-exist", {"status": "cancelled"}),
        lambda: intruder.delete("does-not-exist"),
    ):
        with pytest.raises(NotFoundOrForbidden) as exc:
            call()
        errors.append((type(exc.value), exc.value.message))

    assert len(set(errors)) == 1
    assert repo.get(incident.id).status == IncidentStatus.PENDING


def test_delete_is_hard(store, repo, u1):
    incident = repo.create(DRAFT)

    repo.delete(incident.id)

    assert store.get(INCIDENTS, incident.id) is None
    with pytest.raises(NotFoundOrForbidden):
        repo.delete(incident.id)


def test_requires_authenticated_session(store, new_session, identity):
    anonymous = new_session()
    anonymous.resolve(None)
    with pytest.raises(NotAuthenticated):
        IncidentRepository(store, anonymous).create(DRAFT)

    principal = identity.create_account("pending@example.com", "secret123")
    unverified = new_session()
    unverified.resolve(principal)
    with pytest.raises(EmailNotVerified):
        IncidentRepository(store, unverified).list_by_owner(principal.id)


def test_report_edit_and_foreign_delete_scenario(store, u1, u2):
    repo = IncidentRepository(store, u1)
    created = repo.create(DRAFT)
    assert created.status == IncidentStatus.PENDING
    assert created.id

    listed = repo.list_by_owner(u1.current_principal().id)
    assert len(listed) == 1
    assert listed[0].location.latitude == 40.0
    assert listed[0].location.longitude == -75.0
    assert listed[0].vehicle_type == "Sedan"
    assert listed[0].issue_type == IssueType.TOWING

    assert repo.update(created.id, {"status": "in_progress"}).status == IncidentStatus.IN_PROGRESS

    with pytest.raises(NotFoundOrForbidden):
        IncidentRepository(store, u2).delete(created.id)
    assert [i.id for i in repo.list_by_owner(u1.current_principal().id)] == [created.id]
