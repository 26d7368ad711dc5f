# branchwatch/settings.py
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Tuple

from pydantic import ValidationError as SchemaError

from .errors import NotFound, ValidationError
from .llm.settings import app_data_dir
from .models import DEFAULT_PRIORITIES, IncidentSettings

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: List[str] = [
    "Equipo de Cocina",
    "Punto de Venta (POS)",
    "Área de Cliente",
    "Drive-Thru",
    "Seguridad Alimentaria",
    "Empleado",
    "Instalaciones",
    "Otro",
]


def _settings_path() -> Path:
    return app_data_dir() / "incident_settings.json"


def default_settings() -> IncidentSettings:
    return IncidentSettings(categories=list(DEFAULT_CATEGORIES), priorities=list(DEFAULT_PRIORITIES))


def validate_settings(data: Any) -> Tuple[bool, str]:
    if not isinstance(data, dict):
        return False, "settings must be a JSON object"
    cats = data.get("categories")
    if not isinstance(cats, list) or not cats:
        return False, "categories must be a non-empty list"
    if not all(isinstance(c, str) and c.strip() for c in cats):
        return False, "categories must be non-empty strings"
    return True, ""


@dataclass
class IncidentSettingsStore:
    """
    Categories and priorities used for classification, persisted as JSON.

    Changing categories never rewrites existing incidents; only new incidents are
    checked against the current list.
    """
    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def ensure_parent(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> IncidentSettings:
        self.ensure_parent()
        if not self.path.exists():
            return self._save(default_settings())

        try:
            data = json.loads(self.path.read_text("utf-8"))
            ok, err = validate_settings(data)
            if not ok:
                raise ValueError(err)
            return IncidentSettings.model_validate(data)
        except (OSError, ValueError, SchemaError) as e:
            # corrupted file: re-seed so reporting keeps working
            logger.warning(f"Invalid incident settings at {self.path} ({e}); restoring defaults")
            return self._save(default_settings())

    def _save(self, settings: IncidentSettings) -> IncidentSettings:
        self.ensure_parent()
        settings = settings.model_copy(update={"version": int(settings.version or 0) + 1})

        ok, err = validate_settings(settings.model_dump(mode="json"))
        if not ok:
            raise ValidationError(err)

        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(settings.model_dump_json(indent=2), "utf-8")
        tmp.replace(self.path)
        logger.info(f"Incident settings saved (version {settings.version}, {len(settings.categories)} categories)")
        return settings

    def add_category(self, name: str) -> IncidentSettings:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name cannot be empty.")
        with self._lock:
            current = self.load()
            if name in current.categories:
                raise ValidationError(f"Category {name!r} already exists.")
            return self._save(current.model_copy(update={"categories": current.categories + [name]}))

    def remove_category(self, name: str) -> IncidentSettings:
        with self._lock:
            current = self.load()
            if name not in current.categories:
                raise NotFound(f"Category {name!r} not found.")
            if len(current.categories) == 1:
                raise ValidationError("At least one category must remain.")
            remaining = [c for c in current.categories if c != name]
            return self._save(current.model_copy(update={"categories": remaining}))


def get_store(path: Path | None = None) -> IncidentSettingsStore:
    return IncidentSettingsStore(path=path or _settings_path())
