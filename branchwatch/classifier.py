"""
Priority classifier: evidence + incident settings -> title, category, priority,
reasoning, status and description.

Two implementations share one contract and one validator:
  - LLMClassifier asks the configured generative model (non-deterministic).
  - KeywordClassifier applies fixed outage/degradation tables (deterministic).
Only the structural guarantees are stable across both: the category is one of the
configured categories and the priority is one of Low/Medium/High.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from .errors import ClassificationError, NotFound, RemoteServiceError
from .llm.pricing import token_snapshot, usage_between
from .llm.prompts import build_prompts, render_evidence_prompt
from .llm.settings import llm_available
from .media import MediaStore
from .models import DEFAULT_PRIORITIES, EvidenceBundle, IncidentSettings, IncidentStatus, Priority, Usage, fold

logger = logging.getLogger(__name__)


class ClassificationResult(BaseModel):
    title: str
    category: str
    priority: Priority
    priority_reasoning: str = ""
    status: IncidentStatus = IncidentStatus.OPEN
    description: str = ""
    usage: Optional[Usage] = None


_PRIORITY_ALIASES: Dict[str, Priority] = {
    "high": Priority.HIGH, "alta": Priority.HIGH, "alto": Priority.HIGH, "critical": Priority.HIGH,
    "medium": Priority.MEDIUM, "media": Priority.MEDIUM, "medio": Priority.MEDIUM, "moderate": Priority.MEDIUM,
    "low": Priority.LOW, "baja": Priority.LOW, "bajo": Priority.LOW,
}

_STATUS_ALIASES: Dict[str, IncidentStatus] = {
    "open": IncidentStatus.OPEN, "abierto": IncidentStatus.OPEN, "new": IncidentStatus.OPEN,
    "inprogress": IncidentStatus.IN_PROGRESS, "in progress": IncidentStatus.IN_PROGRESS,
    "in_progress": IncidentStatus.IN_PROGRESS, "en progreso": IncidentStatus.IN_PROGRESS,
    "resolved": IncidentStatus.RESOLVED, "resuelto": IncidentStatus.RESOLVED, "closed": IncidentStatus.RESOLVED,
}


def normalize_priority(value: Any) -> Optional[Priority]:
    if isinstance(value, Priority):
        return value
    return _PRIORITY_ALIASES.get(fold(str(value or "")))


def normalize_status(value: Any) -> Optional[IncidentStatus]:
    if isinstance(value, IncidentStatus):
        return value
    return _STATUS_ALIASES.get(fold(str(value or "")))


def match_category(value: Any, settings: IncidentSettings) -> Optional[str]:
    """Exact match first, then accent/case-insensitive. Returns the configured spelling."""
    if value is None:
        return None
    s = str(value).strip()
    if s in settings.categories:
        return s
    folded = fold(s)
    for c in settings.categories:
        if fold(c) == folded:
            return c
    return None


def validate_result(
    raw: Mapping[str, Any],
    settings: IncidentSettings,
    usage: Optional[Usage] = None,
) -> ClassificationResult:
    """
    Schema + membership check shared by every classifier.

    Also accepts the camelCase `suggestedTitle`/`suggestedCategory`/... keys some
    prompts produce.
    """
    if not isinstance(raw, Mapping):
        raise ClassificationError("The analysis did not return a structured result.")

    def pick(*keys: str) -> Any:
        for k in keys:
            if raw.get(k) not in (None, ""):
                return raw.get(k)
        return None

    title = str(pick("title", "suggestedTitle") or "").strip()
    if not title:
        raise ClassificationError("The analysis did not suggest a title.")

    category = match_category(pick("category", "suggestedCategory"), settings)
    if category is None:
        raise ClassificationError(
            "The analysis could not match the incident to a configured category; choose one manually."
        )

    priority = normalize_priority(pick("priority", "suggestedPriority"))
    if priority is None or priority not in settings.priorities:
        raise ClassificationError("The analysis returned an unknown priority; choose one manually.")

    status = normalize_status(pick("status", "suggestedStatus")) or IncidentStatus.OPEN

    return ClassificationResult(
        title=title[:200],
        category=category,
        priority=priority,
        priority_reasoning=str(pick("priority_reasoning", "priorityReasoning", "reasoning") or "").strip(),
        status=status,
        description=str(pick("description", "suggestedDescription") or "").strip(),
        usage=usage,
    )


def parse_json_from_llm(text: str) -> Dict[str, Any]:
    """
    Parse JSON from LLM output, stripping markdown code fences and any prose
    around the outermost object.
    """
    text = (text or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```\s*$", "", text)
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise ClassificationError("The analysis did not return JSON.")
        try:
            obj = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            raise ClassificationError("The analysis returned malformed JSON.")
    if not isinstance(obj, dict):
        raise ClassificationError("The analysis did not return a JSON object.")
    return obj


class Classifier(ABC):
    """{EvidenceBundle, IncidentSettings} -> ClassificationResult."""

    @abstractmethod
    def classify(self, bundle: EvidenceBundle, settings: IncidentSettings) -> ClassificationResult:
        ...


class LLMClassifier(Classifier):
    """Backed by a CrewAI LLM; photo references are resolved through the MediaStore."""

    def __init__(
        self,
        llm_factory: Callable[[], Any],
        media: Optional[MediaStore] = None,
        product_name: str = "Branchwatch",
    ) -> None:
        self._llm_factory = llm_factory
        self._media = media
        self._product_name = product_name

    def _photo_uri(self, bundle: EvidenceBundle) -> Optional[str]:
        if not bundle.photo_ref or self._media is None:
            return None
        try:
            return self._media.data_uri(bundle.photo_ref)
        except NotFound:
            logger.warning(f"Photo {bundle.photo_ref} not in media store; classifying without it")
            return None

    def build_messages(self, bundle: EvidenceBundle, settings: IncidentSettings) -> List[Dict[str, Any]]:
        prompts = build_prompts(product_name=self._product_name, settings=settings)
        photo_uri = self._photo_uri(bundle)
        text = f"{render_evidence_prompt(bundle, photo_attached=photo_uri is not None)}\n\n{prompts.classify}"

        content: Any = text
        if photo_uri is not None:
            content = [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": photo_uri}},
            ]
        return [
            {"role": "system", "content": prompts.system},
            {"role": "user", "content": content},
        ]

    def classify(self, bundle: EvidenceBundle, settings: IncidentSettings) -> ClassificationResult:
        if not settings.categories:
            raise ClassificationError("No incident categories are configured.")

        try:
            llm = self._llm_factory()
        except ValueError as e:
            raise RemoteServiceError(f"AI analysis is not configured: {e}")

        messages = self.build_messages(bundle, settings)
        before = token_snapshot(llm)
        try:
            raw = llm.call(messages)
        except Exception as e:
            logger.warning(f"LLM classification call failed: {e}")
            raise RemoteServiceError("The AI analysis service failed or timed out. Please try again.") from e
        usage = usage_between(before, token_snapshot(llm))

        result = validate_result(parse_json_from_llm(str(raw)), settings, usage=usage)
        logger.info(f"Classified incident: category={result.category} priority={result.priority.value}")
        return result


# ---------------------------------------------------------------------------
# Deterministic keyword rules
# ---------------------------------------------------------------------------

# Rule 1: the branch cannot operate at all.
OUTAGE_KEYWORDS: Tuple[str, ...] = (
    "cannot operate", "can't operate", "unable to operate", "closed the store", "store closed",
    "shut down", "power outage", "no power", "blackout", "no electricity", "fire", "smoke",
    "flood", "gas leak", "no water", "system down", "pos down", "all registers down",
    "no podemos operar", "no se puede operar", "no puede operar", "sin luz", "sin energia",
    "apagon", "incendio", "humo", "inundacion", "fuga de gas", "sin agua", "tienda cerrada",
    "cerrar la tienda", "sistema caido",
)

# Rule 2: the branch operates with degraded or limited capability.
DEGRADED_KEYWORDS: Tuple[str, ...] = (
    "not working", "doesn't work", "does not work", "broken", "out of order", "slow", "leak",
    "not cooling", "malfunction", "failure", "failing", "partially", "limited", "only one",
    "no funciona", "descompuesto", "descompuesta", "averiado", "averiada", "fuera de servicio",
    "falla", "fuga", "no enfria", "lento", "parcial", "solo una", "solo un",
)

CATEGORY_HINTS: Dict[str, Tuple[str, ...]] = {
    "equipo de cocina": (
        "freidora", "fryer", "horno", "oven", "maquina", "machine", "refrigerador", "refrigerator",
        "fridge", "congelador",
        "freezer", "helado", "ice cream", "parrilla", "grill", "cocina", "kitchen",
    ),
    "punto de venta (pos)": (
        "pos", "caja", "terminal", "ticket", "cobro", "tarjeta", "card reader", "cash register",
        "register", "impresora", "printer",
    ),
    "area de cliente": ("mesa", "table", "silla", "chair", "comedor", "dining", "cliente", "customer"),
    "drive-thru": ("drive", "autoservicio", "ventanilla", "bocina", "speaker", "headset", "diadema"),
    "seguridad alimentaria": (
        "caducado", "caducada", "caducidad", "expired", "contaminado", "contaminada", "contaminated",
        "temperatura", "temperature", "plaga", "pest", "pests", "cucaracha", "cucarachas", "roach",
        "roaches", "ratas", "rats", "intoxicacion", "food safety",
    ),
    "empleado": (
        "empleado", "employee", "staff", "personal", "turno", "shift", "lesion", "injury", "injured",
        "accidente",
    ),
    "instalaciones": (
        "agua", "water", "fuga", "leak", "bano", "bathroom", "restroom", "luz", "light", "electric",
        "enchufe", "outlet", "techo", "roof", "piso", "floor", "puerta", "door",
        "aire acondicionado", "air conditioning", "plomeria", "plumbing",
    ),
}
CATEGORY_HINTS["kitchen equipment"] = CATEGORY_HINTS["equipo de cocina"]
CATEGORY_HINTS["point of sale (pos)"] = CATEGORY_HINTS["punto de venta (pos)"]
CATEGORY_HINTS["customer area"] = CATEGORY_HINTS["area de cliente"]
CATEGORY_HINTS["food safety"] = CATEGORY_HINTS["seguridad alimentaria"]
CATEGORY_HINTS["employee"] = CATEGORY_HINTS["empleado"]
CATEGORY_HINTS["facilities"] = CATEGORY_HINTS["instalaciones"]

FALLBACK_CATEGORIES = ("otro", "otros", "other", "misc", "miscellaneous")


def _nearest_allowed(matched: Priority, settings: IncidentSettings) -> Optional[Priority]:
    """Lowest configured priority at or above `matched`, else the highest one below it."""
    allowed = [p for p in DEFAULT_PRIORITIES if p in settings.priorities]
    rank = DEFAULT_PRIORITIES.index(matched)
    above = [p for p in allowed if DEFAULT_PRIORITIES.index(p) >= rank]
    if above:
        return above[0]
    return allowed[-1] if allowed else None


def _find_keyword(text: str, keywords: Tuple[str, ...]) -> Optional[str]:
    for kw in keywords:
        if re.search(rf"\b{re.escape(kw)}\b", text):
            return kw
    return None


class KeywordClassifier(Classifier):
    """
    Offline classifier. Applies the priority rules in fixed precedence
    (High, then Medium, then Low) over the folded text of the audio transcript
    and the written description; a photo alone carries no text and lands on Low.
    A level missing from the settings moves to the nearest configured one, upwards first.
    """

    def classify(self, bundle: EvidenceBundle, settings: IncidentSettings) -> ClassificationResult:
        text = fold(" ".join(v for k, v in bundle.fields().items() if k != "photo"))

        priority, reasoning = self._priority(text, settings)
        category = self._category(text, settings)
        if category is None:
            raise ClassificationError(
                "Could not match the incident to a configured category; choose one manually."
            )

        return ClassificationResult(
            title=self._title(bundle),
            category=category,
            priority=priority,
            priority_reasoning=reasoning,
            status=IncidentStatus.OPEN,
            description=self._description(bundle),
        )

    def _priority(self, text: str, settings: IncidentSettings) -> Tuple[Priority, str]:
        kw = _find_keyword(text, OUTAGE_KEYWORDS)
        if kw:
            matched, why = Priority.HIGH, f"the evidence indicates the branch cannot operate ('{kw}')"
        else:
            kw = _find_keyword(text, DEGRADED_KEYWORDS)
            if kw:
                matched, why = Priority.MEDIUM, f"the branch operates with limited capability ('{kw}')"
            else:
                matched, why = Priority.LOW, "nothing in the evidence affects core operations"

        priority = _nearest_allowed(matched, settings)
        if priority is None:
            raise ClassificationError("No priorities are configured; choose one manually.")
        if priority != matched:
            why += f"; {matched.value} is not configured"
        return priority, f"{priority.value}: {why}."

    def _category(self, text: str, settings: IncidentSettings) -> Optional[str]:
        for c in settings.categories:
            if fold(c) not in FALLBACK_CATEGORIES and re.search(rf"\b{re.escape(fold(c))}\b", text):
                return c

        best: Optional[str] = None
        best_score = 0
        for c in settings.categories:
            hints = CATEGORY_HINTS.get(fold(c), ())
            score = sum(1 for kw in hints if re.search(rf"\b{re.escape(kw)}\b", text))
            if score > best_score:
                best, best_score = c, score
        if best is not None:
            return best

        for c in settings.categories:
            if fold(c) in FALLBACK_CATEGORIES:
                return c
        return None

    @staticmethod
    def _title(bundle: EvidenceBundle) -> str:
        source = bundle.text_description or bundle.audio_transcript
        if not source:
            return "Photo incident report"
        first = re.split(r"(?<=[.!?])\s+", source.strip(), maxsplit=1)[0].rstrip(".!? ")
        return first if len(first) <= 80 else first[:77].rstrip() + "..."

    @staticmethod
    def _description(bundle: EvidenceBundle) -> str:
        lines: List[str] = []
        if bundle.photo_ref:
            lines.append(f"Photo evidence: {bundle.photo_ref}")
        if bundle.audio_transcript:
            lines.append(f"Audio transcription: {bundle.audio_transcript}")
        if bundle.text_description:
            lines.append(f"Reported description: {bundle.text_description}")
        return "\n".join(lines)


def build_classifier(settings: Any | None = None, media: Optional[MediaStore] = None) -> Classifier:
    """LLMClassifier for remote providers, KeywordClassifier for provider `rules`."""
    if not llm_available(settings):
        return KeywordClassifier()

    from .llm.llm_provider import build_llm

    return LLMClassifier(lambda: build_llm(settings=settings), media=media)
