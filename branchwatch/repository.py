from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .errors import DuplicateId, NotFound
from .models import Branch, Incident, IncidentStatus, UserProfile
from .store import MemoryStore

logger = logging.getLogger(__name__)

BRANCHES = "branches"
INCIDENTS = "incidents"
USERS = "users"


class BranchRepository:
    """Read-mostly access to branch reference data."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def add(self, branch: Branch) -> Branch:
        if not self.store.insert(BRANCHES, branch.id, branch.model_dump(mode="json")):
            raise DuplicateId(f"Branch {branch.id} already exists.")
        return branch

    def get(self, branch_id: str) -> Branch:
        doc = self.store.get(BRANCHES, branch_id)
        if doc is None:
            raise NotFound(f"Branch {branch_id} not found.")
        return Branch.model_validate(doc)

    def exists(self, branch_id: str) -> bool:
        return self.store.get(BRANCHES, branch_id) is not None

    def list_all(self) -> List[Branch]:
        return [Branch.model_validate(d) for d in self.store.list(BRANCHES)]

    def is_empty(self) -> bool:
        return self.store.count(BRANCHES) == 0


class IncidentRepository:
    """
    Incidents keyed by id. Creation is append-only; `status` is the only field
    that changes afterwards.
    """

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def create(self, incident: Incident) -> Incident:
        if not self.store.insert(INCIDENTS, incident.id, incident.model_dump(mode="json")):
            raise DuplicateId(f"Incident {incident.id} already exists.")
        logger.info(f"Created incident {incident.id} for branch {incident.branch_id}")
        return incident

    def get_by_id(self, incident_id: str) -> Incident:
        doc = self.store.get(INCIDENTS, incident_id)
        if doc is None:
            raise NotFound(f"Incident {incident_id} not found.")
        return Incident.model_validate(doc)

    def list_by_branch(self, branch_id: str) -> List[Incident]:
        return [Incident.model_validate(d) for d in self.store.list(INCIDENTS, branch_id=branch_id)]

    def list_by_branches(self, branch_ids: Iterable[str]) -> List[Incident]:
        wanted = set(branch_ids)
        return [Incident.model_validate(d) for d in self.store.list(INCIDENTS) if d.get("branch_id") in wanted]

    def list_all(self) -> List[Incident]:
        return [Incident.model_validate(d) for d in self.store.list(INCIDENTS)]

    def count(self) -> int:
        return self.store.count(INCIDENTS)

    def update_status(self, incident_id: str, status: IncidentStatus) -> Incident:
        status = IncidentStatus(status)

        def _set_status(doc):
            doc["status"] = status.value
            return doc

        doc = self.store.update(INCIDENTS, incident_id, _set_status)
        if doc is None:
            raise NotFound(f"Incident {incident_id} not found.")
        return Incident.model_validate(doc)


class UserRepository:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def create(self, profile: UserProfile) -> UserProfile:
        if not self.store.insert(USERS, profile.id, self._dump(profile)):
            raise DuplicateId(f"A profile for user {profile.id} already exists.")
        return profile

    def get(self, user_id: str) -> Optional[UserProfile]:
        doc = self.store.get(USERS, user_id)
        return UserProfile.model_validate(doc) if doc is not None else None

    def list_all(self) -> List[UserProfile]:
        return [UserProfile.model_validate(d) for d in self.store.list(USERS)]

    def list_by_role(self, role: str) -> List[UserProfile]:
        return [UserProfile.model_validate(d) for d in self.store.list(USERS, role=role)]

    def is_empty(self) -> bool:
        return self.store.count(USERS) == 0

    def update_assigned_branches(self, user_id: str, branch_ids: Iterable[str]) -> UserProfile:
        assigned = sorted(set(branch_ids))

        def _assign(doc):
            doc["assigned_branches"] = assigned
            return doc

        doc = self.store.update(USERS, user_id, _assign)
        if doc is None:
            raise NotFound(f"User {user_id} not found.")
        return UserProfile.model_validate(doc)

    @staticmethod
    def _dump(profile: UserProfile) -> dict:
        doc = profile.model_dump(mode="json")
        doc["assigned_branches"] = sorted(profile.assigned_branches)
        return doc
