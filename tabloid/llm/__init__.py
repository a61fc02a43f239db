"""Shared LLM client utilities (headline rewriting)."""

from tabloid.llm.client import (
    call_headline_model,
    get_anthropic_client,
)

__all__ = [
    "call_headline_model",
    "get_anthropic_client",
]
