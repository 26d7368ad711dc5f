from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Callable, Optional

from .classifier import ClassificationResult
from .errors import ValidationError
from .lifecycle import initial_status
from .models import EvidenceBundle, Incident, IncidentSettings, utcnow
from .repository import BranchRepository


class IncidentAssembler:
    """
    Builds exactly one validated Incident per call. Nothing is persisted here.

    Timestamps never go backwards within one assembler, even if the wall clock does.
    """

    def __init__(
        self,
        branches: BranchRepository,
        settings_provider: Callable[[], IncidentSettings],
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._branches = branches
        self._settings_provider = settings_provider
        self._clock = clock
        self._id_factory = id_factory
        self._last_ts: Optional[datetime] = None
        self._ts_lock = threading.Lock()

    def _timestamp(self) -> datetime:
        with self._ts_lock:
            now = self._clock()
            if self._last_ts is not None and now < self._last_ts:
                now = self._last_ts
            self._last_ts = now
            return now

    def assemble(
        self,
        branch_id: str,
        classification: ClassificationResult,
        evidence: Optional[EvidenceBundle] = None,
    ) -> Incident:
        if not branch_id or not self._branches.exists(branch_id):
            raise ValidationError(f"Branch {branch_id!r} does not exist.")

        settings = self._settings_provider()
        if not settings.has_category(classification.category):
            raise ValidationError(
                f"Category {classification.category!r} is not one of the configured categories."
            )
        if classification.priority not in settings.priorities:
            raise ValidationError(f"Priority {classification.priority.value!r} is not allowed.")

        title = classification.title.strip()
        if not title:
            raise ValidationError("An incident needs a title.")

        evidence = evidence or EvidenceBundle()
        return Incident(
            id=self._id_factory(),
            branch_id=branch_id,
            title=title,
            category=classification.category,
            priority=classification.priority,
            priority_reasoning=classification.priority_reasoning,
            status=initial_status(classification.status),
            description=classification.description or (evidence.text_description or ""),
            photo_ref=evidence.photo_ref,
            audio_transcript=evidence.audio_transcript,
            created_at=self._timestamp(),
        )
