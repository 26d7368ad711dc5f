"""Branchwatch: incident reporting and triage for restaurant branches."""

from branchwatch.assembler import IncidentAssembler
from branchwatch.classifier import ClassificationResult, KeywordClassifier, LLMClassifier, build_classifier
from branchwatch.errors import (
    BranchwatchError,
    ClassificationError,
    DuplicateId,
    InsufficientEvidence,
    NotFound,
    PermissionDenied,
    RemoteServiceError,
    ValidationError,
)
from branchwatch.evidence import normalize_evidence
from branchwatch.lifecycle import StatusTransitionManager
from branchwatch.models import Branch, EvidenceBundle, Incident, IncidentStatus, Priority, Role, UserProfile
from branchwatch.repository import IncidentRepository

__all__ = [
    "IncidentAssembler",
    "ClassificationResult",
    "KeywordClassifier",
    "LLMClassifier",
    "build_classifier",
    "BranchwatchError",
    "ClassificationError",
    "DuplicateId",
    "InsufficientEvidence",
    "NotFound",
    "PermissionDenied",
    "RemoteServiceError",
    "ValidationError",
    "normalize_evidence",
    "StatusTransitionManager",
    "Branch",
    "EvidenceBundle",
    "Incident",
    "IncidentStatus",
    "Priority",
    "Role",
    "UserProfile",
    "IncidentRepository",
]
