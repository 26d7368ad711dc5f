"""Domain records shared by the classifier, repositories and the HTTP layer."""

from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    """Operational impact of an incident, lowest first."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class IncidentStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    RESOLVED = "Resolved"


class Role(str, Enum):
    USER = "user"
    SUPERADMIN = "superadmin"


class BranchHealth(str, Enum):
    """Dashboard colour of a branch derived from its incidents."""
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


DEFAULT_PRIORITIES: List[Priority] = [Priority.LOW, Priority.MEDIUM, Priority.HIGH]


def fold(text: str) -> str:
    """Lowercase and strip accents so 'Área' and 'area' compare equal."""
    nfkd = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in nfkd if not unicodedata.combining(c)).lower().strip()


class Branch(BaseModel):
    """Reference data. Created by seeding, never mutated afterwards."""
    id: str
    name: str
    region: str = ""
    brand: str = ""
    address: str = ""
    image_ref: Optional[str] = None

    model_config = {"frozen": True}


class IncidentSettings(BaseModel):
    """Categories and priorities the classifier may choose from."""
    categories: List[str] = Field(default_factory=list)
    priorities: List[Priority] = Field(default_factory=lambda: list(DEFAULT_PRIORITIES))
    version: int = Field(default=1)

    @field_validator("categories")
    @classmethod
    def _dedupe_categories(cls, value: List[str]) -> List[str]:
        out: List[str] = []
        for c in value:
            c = (c or "").strip()
            if c and c not in out:
                out.append(c)
        return out

    def has_category(self, name: str) -> bool:
        return name in self.categories


class EvidenceBundle(BaseModel):
    """Transient evidence for a single report. At least one field is populated."""
    photo_ref: Optional[str] = None
    audio_transcript: Optional[str] = None
    text_description: Optional[str] = None

    def fields(self) -> Dict[str, str]:
        """Populated fields only, in a fixed photo/audio/text order."""
        out: Dict[str, str] = {}
        if self.photo_ref:
            out["photo"] = self.photo_ref
        if self.audio_transcript:
            out["audio"] = self.audio_transcript
        if self.text_description:
            out["text"] = self.text_description
        return out


class Usage(BaseModel):
    """Token accounting for one model call. Missing counts stay None, never zero."""
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["Usage"]:
        """
        Accept provider usage payloads in either naming scheme:
          - {"prompt_tokens", "completion_tokens", "total_tokens"} (OpenAI/litellm)
          - {"input_tokens", "output_tokens", "total_tokens"}
        Returns None when nothing usable is present.
        """
        if raw is None:
            return None
        if isinstance(raw, Usage):
            return raw
        if not isinstance(raw, dict):
            raw = {k: getattr(raw, k, None) for k in (
                "prompt_tokens", "completion_tokens", "input_tokens", "output_tokens", "total_tokens"
            )}

        def _int(*keys: str) -> Optional[int]:
            for k in keys:
                v = raw.get(k)
                if v is None:
                    continue
                try:
                    return int(v)
                except (TypeError, ValueError):
                    continue
            return None

        inp = _int("input_tokens", "prompt_tokens", "inputTokens")
        out = _int("output_tokens", "completion_tokens", "outputTokens")
        total = _int("total_tokens", "totalTokens")
        if total is None and inp is not None and out is not None:
            total = inp + out
        if inp is None and out is None and total is None:
            return None
        return cls(input_tokens=inp, output_tokens=out, total_tokens=total)


class Incident(BaseModel):
    id: str
    branch_id: str
    title: str
    category: str
    priority: Priority
    priority_reasoning: str = ""
    status: IncidentStatus = IncidentStatus.OPEN
    description: str = ""
    photo_ref: Optional[str] = None
    audio_transcript: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


def sanitize_assigned_branches(raw: Any) -> Set[str]:
    """
    Normalize a stored assignment into a set of branch ids.

    Accepts a mapping {branch_id: bool} or an iterable of ids. Keys whose value is
    not True, and numeric keys left over from array-shaped records ("0", "1"...),
    are dropped.
    """
    if not raw:
        return set()
    if isinstance(raw, dict):
        items = [(str(k), v) for k, v in raw.items()]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = [(str(k), True) for k in raw]
    else:
        return set()
    return {k.strip() for k, v in items if v is True and k.strip() and not k.strip().isdigit()}


class UserProfile(BaseModel):
    id: str
    name: str = ""
    email: str = ""
    role: Role = Role.USER
    assigned_branches: Set[str] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("assigned_branches", mode="before")
    @classmethod
    def _sanitize(cls, value: Any) -> Set[str]:
        return sanitize_assigned_branches(value)

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN


class Identity(BaseModel):
    """What the identity provider hands us for the current caller."""
    user_id: Optional[str] = None
    is_authenticated: bool = False
