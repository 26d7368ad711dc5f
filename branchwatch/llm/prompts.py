from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List

from ..models import EvidenceBundle, IncidentSettings


@dataclass(frozen=True)
class PromptPack:
    system: str
    classify: str
    transcribe: str


PRIORITY_POLICY = """
Priority policy (evaluate in this order, the first rule that matches wins):
1) "High"   - the evidence shows the branch CANNOT operate at all
              (closed, no power, no water for food prep, fire/smoke, POS fully down, unsafe to open).
2) "Medium" - the branch operates with DEGRADED or LIMITED capability
              (one machine down, slow service, a station or drive-thru closed, partial outage).
3) "Low"    - no material effect on core operations
              (cosmetic damage, minor customer-area issue, supplies running low).
""".strip()

TRANSCRIBE_PROMPT = "Transcribe the following audio verbatim. Return only the transcribed text."


def build_prompts(*, product_name: str = "Branchwatch", settings: IncidentSettings) -> PromptPack:
    """
    Prompt templates for incident analysis and audio transcription.

    The category list and priority labels are rendered from the live settings so the
    model can only answer with values the assembler will accept.
    """
    categories = json.dumps(list(settings.categories), ensure_ascii=False)
    priorities = json.dumps([p.value for p in settings.priorities])

    system = f"""
You are {product_name}, an assistant that triages incident reports filed by restaurant branch staff.
You receive evidence (a photo, an audio transcription and/or a text description) and produce a
structured incident record.

Hard rules:
- Never invent facts that are not supported by the evidence.
- "category" MUST be exactly one of: {categories}
- "priority" MUST be exactly one of: {priorities}
- "status" MUST be one of: ["Open", "InProgress", "Resolved"]. New reports are usually "Open".
- Answer with ONLY a JSON object, no prose and no markdown fences.

{PRIORITY_POLICY}
""".strip()

    classify = """
Return a JSON object with EXACTLY these keys:
{
  "title": "<short title, max 80 characters>",
  "category": "<one of the allowed categories>",
  "priority": "<Low|Medium|High>",
  "priority_reasoning": "<one or two sentences naming the priority rule that fired>",
  "status": "<Open|InProgress|Resolved>",
  "description": "<structured summary that covers EVERY evidence item provided: what the photo shows, what the audio says, what the text says>"
}
If none of the allowed categories fits, set "category" to null.
""".strip()

    return PromptPack(system=system, classify=classify, transcribe=TRANSCRIBE_PROMPT)


def render_evidence_prompt(bundle: EvidenceBundle, *, photo_attached: bool = False) -> str:
    """Text part of the user message; the photo itself travels as a separate content part."""
    parts: List[str] = []
    if bundle.photo_ref:
        if photo_attached:
            parts.append("PHOTO: attached below.")
        else:
            parts.append(f"PHOTO: reference {bundle.photo_ref} (image not available, mention it in the description).")
    if bundle.audio_transcript:
        parts.append(f"AUDIO_TRANSCRIPTION:\n{bundle.audio_transcript}")
    if bundle.text_description:
        parts.append(f"USER_TEXT_DESCRIPTION:\n{bundle.text_description}")
    return "EVIDENCE\n\n" + "\n\n".join(parts)
