from __future__ import annotations

from typing import Optional

from .errors import InsufficientEvidence
from .models import EvidenceBundle


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def normalize_evidence(
    photo_ref: Optional[str] = None,
    audio_transcript: Optional[str] = None,
    text_description: Optional[str] = None,
) -> EvidenceBundle:
    """
    Turn raw report inputs into an EvidenceBundle.

    Blank strings count as absent. Raises InsufficientEvidence when nothing is left.
    Only references travel past this point; raw media bytes stay in the MediaStore.
    """
    bundle = EvidenceBundle(
        photo_ref=_clean(photo_ref),
        audio_transcript=_clean(audio_transcript),
        text_description=_clean(text_description),
    )
    if not bundle.fields():
        raise InsufficientEvidence(
            "Provide at least a photo, an audio recording or a text description of the incident."
        )
    return bundle
