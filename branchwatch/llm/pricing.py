"""
Token accounting and cost estimate for model calls.

Prices are USD per 1,000 tokens for gemini-2.5-flash and may drift from the
provider's published pricing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..models import Usage

logger = logging.getLogger(__name__)

INPUT_PRICE_PER_1K_TOKENS = 0.000125
OUTPUT_PRICE_PER_1K_TOKENS = 0.000250


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    input_cost = (input_tokens / 1000) * INPUT_PRICE_PER_1K_TOKENS
    output_cost = (output_tokens / 1000) * OUTPUT_PRICE_PER_1K_TOKENS
    return input_cost + output_cost


def usage_cost(usage: Optional[Usage]) -> Optional[float]:
    if usage is None or usage.input_tokens is None or usage.output_tokens is None:
        return None
    return calculate_cost(usage.input_tokens, usage.output_tokens)


def token_snapshot(llm: Any) -> Optional[Dict[str, int]]:
    """
    Cumulative token counters of a CrewAI LLM, or None when the installed
    version does not expose them.
    """
    getter = getattr(llm, "get_token_usage_summary", None)
    if not callable(getter):
        return None
    try:
        summary = getter()
    except Exception as e:
        logger.debug(f"Token usage unavailable: {e}")
        return None
    if isinstance(summary, dict):
        data = summary
    elif hasattr(summary, "model_dump"):
        data = summary.model_dump()
    else:
        return None
    return {
        "prompt_tokens": int(data.get("prompt_tokens") or 0),
        "completion_tokens": int(data.get("completion_tokens") or 0),
        "total_tokens": int(data.get("total_tokens") or 0),
    }


def usage_between(before: Optional[Dict[str, int]], after: Optional[Dict[str, int]]) -> Optional[Usage]:
    """Usage of the calls made between two snapshots. None when either side is missing."""
    if before is None or after is None:
        return None
    delta = {k: after.get(k, 0) - before.get(k, 0) for k in after}
    if not any(delta.values()):
        return None
    usage = Usage.from_raw(delta)
    if usage is not None:
        logger.debug(
            f"LLM usage: in={usage.input_tokens} out={usage.output_tokens} total={usage.total_tokens}"
        )
    return usage
