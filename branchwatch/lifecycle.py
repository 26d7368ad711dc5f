from __future__ import annotations

import logging
from typing import Any, Optional

from .classifier import normalize_status
from .errors import ValidationError
from .models import Incident, IncidentStatus
from .repository import IncidentRepository

logger = logging.getLogger(__name__)


def initial_status(suggested: Optional[Any]) -> IncidentStatus:
    """Status at creation: whatever was suggested, Open when nothing usable was."""
    if suggested is None:
        return IncidentStatus.OPEN
    return normalize_status(suggested) or IncidentStatus.OPEN


def parse_status(value: Any) -> IncidentStatus:
    status = normalize_status(value)
    if status is None:
        allowed = ", ".join(s.value for s in IncidentStatus)
        raise ValidationError(f"Unknown status {value!r}; expected one of: {allowed}.")
    return status


class StatusTransitionManager:
    """
    Open, InProgress and Resolved are all reachable from each other; a Resolved
    incident can be reopened. Persistence and atomicity belong to the repository.
    """

    def __init__(self, incidents: IncidentRepository) -> None:
        self._incidents = incidents

    def transition(self, incident_id: str, new_status: Any) -> Incident:
        status = parse_status(new_status)
        previous = self._incidents.get_by_id(incident_id).status
        updated = self._incidents.update_status(incident_id, status)
        logger.info(f"Incident {incident_id}: {previous.value} -> {updated.status.value}")
        return updated
