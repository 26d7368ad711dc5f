from datetime import datetime, timedelta, timezone

import pytest

from branchwatch.assembler import IncidentAssembler
from branchwatch.errors import ValidationError
from branchwatch.models import EvidenceBundle, IncidentSettings, IncidentStatus, Priority


def test_assemble_copies_classification_and_evidence(assembler, make_classification):
    evidence = EvidenceBundle(photo_ref="p.jpg", audio_transcript="hay una fuga")
    incident = assembler.assemble("b1", make_classification(), evidence)

    assert incident.branch_id == "b1"
    assert incident.title == "Fuga de agua en el baño"
    assert incident.category == "Instalaciones"
    assert incident.priority == Priority.MEDIUM
    assert incident.status == IncidentStatus.OPEN
    assert incident.photo_ref == "p.jpg"
    assert incident.audio_transcript == "hay una fuga"
    assert incident.id


def test_ids_are_unique(assembler, make_classification):
    ids = {assembler.assemble("b1", make_classification()).id for _ in range(50)}
    assert len(ids) == 50


def test_suggested_status_is_kept(assembler, make_classification):
    incident = assembler.assemble("b1", make_classification(status=IncidentStatus.IN_PROGRESS))
    assert incident.status == IncidentStatus.IN_PROGRESS


def test_description_falls_back_to_text_evidence(assembler, make_classification):
    evidence = EvidenceBundle(text_description="leak")
    incident = assembler.assemble("b1", make_classification(description=""), evidence)
    assert incident.description == "leak"


def test_unknown_branch(assembler, make_classification):
    with pytest.raises(ValidationError):
        assembler.assemble("nope", make_classification())


def test_category_outside_settings(assembler, make_classification):
    with pytest.raises(ValidationError):
        assembler.assemble("b1", make_classification(category="Plumbing"))


def test_priority_outside_settings(branches, make_classification):
    settings = IncidentSettings(categories=["Instalaciones"], priorities=[Priority.LOW])
    assembler = IncidentAssembler(branches, lambda: settings)
    with pytest.raises(ValidationError):
        assembler.assemble("b1", make_classification(priority=Priority.HIGH))


def test_blank_title(assembler, make_classification):
    with pytest.raises(ValidationError):
        assembler.assemble("b1", make_classification(title="   "))


def test_timestamps_never_go_backwards(branches, settings_store, make_classification):
    start = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    ticks = iter([start, start + timedelta(seconds=5), start - timedelta(minutes=10), start + timedelta(seconds=6)])
    assembler = IncidentAssembler(branches, settings_store.load, clock=lambda: next(ticks))

    stamps = [assembler.assemble("b1", make_classification()).created_at for _ in range(4)]
    assert stamps == sorted(stamps)
    assert stamps[2] == start + timedelta(seconds=5)
