from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel

from ..errors import RemoteServiceError
from ..media import MediaStore
from ..models import Usage
from .pricing import token_snapshot, usage_between
from .prompts import TRANSCRIBE_PROMPT

logger = logging.getLogger(__name__)


class Transcription(BaseModel):
    text: str
    usage: Optional[Usage] = None


class Transcriber:
    """Audio reference -> text, through the configured generative model."""

    def __init__(self, llm_factory: Callable[[], Any], media: MediaStore) -> None:
        self._llm_factory = llm_factory
        self._media = media

    def transcribe(self, audio_ref: str) -> Transcription:
        audio_uri = self._media.data_uri(audio_ref)

        try:
            llm = self._llm_factory()
        except ValueError as e:
            raise RemoteServiceError(f"Transcription is not configured: {e}")

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": TRANSCRIBE_PROMPT},
                    {"type": "file", "file": {"file_data": audio_uri}},
                ],
            }
        ]

        before = token_snapshot(llm)
        try:
            raw = llm.call(messages)
        except Exception as e:
            logger.warning(f"Transcription call failed for {audio_ref}: {e}")
            raise RemoteServiceError("The transcription service failed or timed out. Please try again.") from e

        text = str(raw or "").strip()
        if not text:
            raise RemoteServiceError("The transcription came back empty. Please record the audio again.")
        logger.info(f"Transcribed {audio_ref} ({len(text)} chars)")
        return Transcription(text=text, usage=usage_between(before, token_snapshot(llm)))
