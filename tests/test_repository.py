import threading

import pytest

from branchwatch.errors import DuplicateId, NotFound, RemoteServiceError
from branchwatch.models import Branch, IncidentStatus, UserProfile
from branchwatch.repository import BranchRepository, IncidentRepository
from branchwatch.store import JsonFileStore


def test_create_and_get(incidents, assembler, make_classification):
    created = incidents.create(assembler.assemble("b1", make_classification()))
    fetched = incidents.get_by_id(created.id)
    assert fetched == created


def test_duplicate_id(incidents, assembler, make_classification):
    incident = assembler.assemble("b1", make_classification())
    incidents.create(incident)
    with pytest.raises(DuplicateId):
        incidents.create(incident.model_copy(update={"title": "other"}))
    assert incidents.get_by_id(incident.id).title == incident.title
    assert incidents.count() == 1


def test_get_missing(incidents):
    with pytest.raises(NotFound):
        incidents.get_by_id("missing")


def test_update_status_changes_only_status(incidents, assembler, make_classification):
    created = incidents.create(assembler.assemble("b1", make_classification()))
    updated = incidents.update_status(created.id, IncidentStatus.RESOLVED)

    assert updated.status == IncidentStatus.RESOLVED
    assert incidents.get_by_id(created.id).status == IncidentStatus.RESOLVED
    assert updated.model_dump(exclude={"status"}) == created.model_dump(exclude={"status"})


def test_update_status_missing_leaves_repository_unchanged(incidents, assembler, make_classification):
    incidents.create(assembler.assemble("b1", make_classification()))
    with pytest.raises(NotFound):
        incidents.update_status("missing", IncidentStatus.RESOLVED)
    assert incidents.count() == 1


def test_list_by_branch(incidents, assembler, make_classification):
    a = incidents.create(assembler.assemble("b1", make_classification()))
    incidents.create(assembler.assemble("b2", make_classification()))
    assert [i.id for i in incidents.list_by_branch("b1")] == [a.id]
    assert len(incidents.list_by_branches(["b1", "b2"])) == 2
    assert incidents.list_by_branch("b3") == []


def test_concurrent_status_updates_keep_one_consistent_value(incidents, assembler, make_classification):
    created = incidents.create(assembler.assemble("b1", make_classification()))
    statuses = [IncidentStatus.OPEN, IncidentStatus.IN_PROGRESS, IncidentStatus.RESOLVED] * 20

    threads = [threading.Thread(target=incidents.update_status, args=(created.id, s)) for s in statuses]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    final = incidents.get_by_id(created.id)
    assert final.status in set(IncidentStatus)
    assert final.title == created.title


def test_branch_repository(branches):
    assert branches.get("b1").name == "KFC Xalapa 1"
    assert branches.exists("b2")
    assert not branches.exists("zz")
    with pytest.raises(NotFound):
        branches.get("zz")
    with pytest.raises(DuplicateId):
        branches.add(Branch(id="b1", name="again"))


def test_user_repository_round_trips_assignment(users):
    users.create(UserProfile(id="u9", assigned_branches={"b2", "b1"}))
    users.update_assigned_branches("u9", {"b3"})
    assert users.get("u9").assigned_branches == {"b3"}
    assert users.get("nobody") is None
    with pytest.raises(NotFound):
        users.update_assigned_branches("nobody", {"b1"})


def test_json_store_persists_between_instances(tmp_path, make_classification, settings_store):
    from branchwatch.assembler import IncidentAssembler

    root = tmp_path / "data"
    first = JsonFileStore(root)
    branches = BranchRepository(first)
    branches.add(Branch(id="b1", name="KFC Xalapa 1"))
    created = IncidentRepository(first).create(
        IncidentAssembler(branches, settings_store.load).assemble("b1", make_classification())
    )
    IncidentRepository(first).update_status(created.id, IncidentStatus.IN_PROGRESS)

    second = JsonFileStore(root)
    reloaded = IncidentRepository(second).get_by_id(created.id)
    assert reloaded.status == IncidentStatus.IN_PROGRESS
    assert reloaded.created_at == created.created_at
    assert BranchRepository(second).exists("b1")


def test_failed_write_leaves_no_partial_state(tmp_path, make_classification, settings_store, monkeypatch):
    from branchwatch.assembler import IncidentAssembler

    store = JsonFileStore(tmp_path / "data")
    branches = BranchRepository(store)
    branches.add(Branch(id="b1", name="KFC Xalapa 1"))
    incidents = IncidentRepository(store)
    created = incidents.create(IncidentAssembler(branches, settings_store.load).assemble("b1", make_classification()))

    def broken(collection):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_persist", broken)
    with pytest.raises(RemoteServiceError):
        incidents.update_status(created.id, IncidentStatus.RESOLVED)
    assert incidents.get_by_id(created.id).status == IncidentStatus.OPEN
