import os
import tempfile

# must be set before branchwatch.llm.settings is imported anywhere
os.environ.setdefault("BRANCHWATCH_DATA_DIR", tempfile.mkdtemp(prefix="branchwatch-tests-"))
os.environ["BRANCHWATCH_PROVIDER"] = "rules"
os.environ["BRANCHWATCH_STORE"] = "memory"

import pytest

from branchwatch.assembler import IncidentAssembler
from branchwatch.classifier import ClassificationResult
from branchwatch.llm.settings import reset_settings
from branchwatch.models import Branch, IncidentStatus, Priority, Role, UserProfile
from branchwatch.repository import BranchRepository, IncidentRepository, UserRepository
from branchwatch.settings import IncidentSettingsStore
from branchwatch.store import MemoryStore


class FakeLLM:
    """Stands in for crewai.LLM: `.call(messages)` plus cumulative token counters."""

    def __init__(self, reply="", error=None, usage_step=None):
        self.reply = reply
        self.error = error
        self.usage_step = usage_step or {}
        self.calls = []
        self._usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    def call(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        for k, v in self.usage_step.items():
            self._usage[k] += v
        return self.reply

    def get_token_usage_summary(self):
        return dict(self._usage)


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("BRANCHWATCH_DATA_DIR", str(tmp_path))
    reset_settings(None)
    yield tmp_path
    reset_settings(None)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def branches(store):
    repo = BranchRepository(store)
    repo.add(Branch(id="b1", name="KFC Xalapa 1", region="Xalapa", brand="KFC"))
    repo.add(Branch(id="b2", name="Dairy Queen Villa Magna", region="San Luis", brand="DQ"))
    repo.add(Branch(id="b3", name="KFC Merida 1", region="Merida", brand="KFC"))
    return repo


@pytest.fixture
def incidents(store):
    return IncidentRepository(store)


@pytest.fixture
def users(store):
    return UserRepository(store)


@pytest.fixture
def settings_store(tmp_path):
    return IncidentSettingsStore(path=tmp_path / "incident_settings.json")


@pytest.fixture
def incident_settings(settings_store):
    return settings_store.load()


@pytest.fixture
def assembler(branches, settings_store):
    return IncidentAssembler(branches, settings_store.load)


@pytest.fixture
def superadmin():
    return UserProfile(id="admin", name="Admin", role=Role.SUPERADMIN)


@pytest.fixture
def user():
    return UserProfile(id="u1", name="Ana", role=Role.USER, assigned_branches={"b1": True})


@pytest.fixture
def make_classification():
    def _make(**overrides):
        data = dict(
            title="Fuga de agua en el baño",
            category="Instalaciones",
            priority=Priority.MEDIUM,
            priority_reasoning="Medium: restroom affected.",
            status=IncidentStatus.OPEN,
            description="Fuga constante cerca del lavamanos.",
        )
        data.update(overrides)
        return ClassificationResult(**data)

    return _make


@pytest.fixture
def fake_llm():
    return FakeLLM
