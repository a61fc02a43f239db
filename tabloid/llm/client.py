"""Shared LLM client for Anthropic Claude API.

Used to rewrite the template headline of a run into something punchier.
Headline rewriting is optional: it is only attempted when HEADLINE_LLM is
enabled and ANTHROPIC_API_KEY is set, and any failure falls back to the
template headline.
"""

import asyncio
import logging
import os
from typing import Optional

import anthropic
import httpx

from tabloid.prompts.schemas import Pick
from tabloid.prompts.synthesizer import clean_headline

logger = logging.getLogger(__name__)

# Default models
HEADLINE_MODEL = "claude-haiku-4-5-20251001"
HEADLINE_MODEL_FALLBACK = "claude-sonnet-4-5-20250929"

HEADLINE_SYSTEM_PROMPT = (
    "You write tabloid headlines. Reply with exactly one headline, "
    "at most 12 words, no quotes, no hashtags."
)


def headline_llm_enabled() -> bool:
    flag = os.environ.get("HEADLINE_LLM", "").lower() in ("1", "true", "yes")
    return flag and bool(os.environ.get("ANTHROPIC_API_KEY"))


def get_anthropic_client() -> Optional[anthropic.Anthropic]:
    """Get Anthropic client if API key is available.

    Returns None if ANTHROPIC_API_KEY is not set.
    """
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        return None
    return anthropic.Anthropic(
        api_key=api_key,
        timeout=httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=10.0),
    )


def call_headline_model(
    prompt: str,
    model: str = HEADLINE_MODEL,
    fallback_model: str = HEADLINE_MODEL_FALLBACK,
    max_tokens: int = 100,
) -> tuple[str, str]:
    """Call Claude for a headline with fallback.

    Returns:
        Tuple of (raw_response_text, model_used)

    Raises:
        RuntimeError: If no client is available or both models fail
    """
    client = get_anthropic_client()
    if client is None:
        raise RuntimeError(
            "LLM service unavailable. Set ANTHROPIC_API_KEY environment variable."
        )

    messages = [{"role": "user", "content": prompt}]
    for attempt_model in [model, fallback_model]:
        try:
            response = client.messages.create(
                model=attempt_model,
                max_tokens=max_tokens,
                system=HEADLINE_SYSTEM_PROMPT,
                messages=messages,
            )
            raw_text = ""
            for block in response.content:
                if hasattr(block, "text"):
                    raw_text = block.text
                    break
            return raw_text, attempt_model
        except anthropic.APIError as e:
            if attempt_model == fallback_model:
                raise RuntimeError(
                    f"Both {model} and {fallback_model} failed: {e}"
                ) from e
            logger.warning(
                f"Model {attempt_model} failed, trying {fallback_model}: {e}"
            )

    raise RuntimeError("All model attempts exhausted")


def _headline_request(pick: Pick, draft: str) -> str:
    return f"""Rewrite this draft tabloid headline for a candid paparazzi photo.

Draft: {draft}
People: {pick.people}
Place: {pick.places}
Gossip: {pick.gossip}
Atmosphere: {pick.atmosphere}"""


async def rewrite_headline(pick: Pick, draft: str) -> str:
    """Return a model-written headline, or `draft` when unavailable.

    The blocking SDK call runs in a worker thread so the event loop stays
    free; cancellation of the awaiting run abandons the thread's result.
    """
    if not headline_llm_enabled():
        return draft
    try:
        raw, model_used = await asyncio.to_thread(call_headline_model, _headline_request(pick, draft))
    except RuntimeError as e:
        logger.warning(f"Headline rewrite failed, keeping template headline: {e}")
        return draft
    headline = clean_headline(raw, draft)
    logger.info(f"Headline from {model_used}: {headline}")
    return headline
