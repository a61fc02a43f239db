from __future__ import annotations

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from tabloid.llm import client as llm_client
from tabloid.prompts.schemas import Pick

PICK = Pick(atmosphere="tense", gossip="feud", people="a chef", places="a yacht", style="grainy")


class FakeMessages:
    def __init__(self, failing_models=(), text="Chef Feud On Yacht"):
        self.failing_models = set(failing_models)
        self.text = text
        self.models = []

    def create(self, model, **kwargs):
        self.models.append(model)
        if model in self.failing_models:
            raise anthropic.APIError(
                "overloaded",
                httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
                body=None,
            )
        return SimpleNamespace(content=[SimpleNamespace(text=self.text)])


@pytest.fixture
def fake_messages(monkeypatch):
    messages = FakeMessages()
    monkeypatch.setattr(llm_client, "get_anthropic_client", lambda: SimpleNamespace(messages=messages))
    return messages


def test_disabled_without_flag_and_key(monkeypatch):
    monkeypatch.delenv("HEADLINE_LLM", raising=False)
    monkeypatch.setenv("ANTHROPIC_API_KEY", "k")
    assert not llm_client.headline_llm_enabled()

    monkeypatch.setenv("HEADLINE_LLM", "1")
    monkeypatch.delenv("ANTHROPIC_API_KEY")
    assert not llm_client.headline_llm_enabled()
    assert llm_client.get_anthropic_client() is None


def test_falls_back_to_second_model(fake_messages):
    fake_messages.failing_models = {llm_client.HEADLINE_MODEL}
    text, model = llm_client.call_headline_model("prompt")
    assert text == "Chef Feud On Yacht"
    assert model == llm_client.HEADLINE_MODEL_FALLBACK
    assert fake_messages.models == [llm_client.HEADLINE_MODEL, llm_client.HEADLINE_MODEL_FALLBACK]


def test_both_models_failing_raises(fake_messages):
    fake_messages.failing_models = {llm_client.HEADLINE_MODEL, llm_client.HEADLINE_MODEL_FALLBACK}
    with pytest.raises(RuntimeError, match="failed"):
        llm_client.call_headline_model("prompt")


@pytest.mark.asyncio
async def test_rewrite_returns_draft_when_disabled(monkeypatch):
    monkeypatch.delenv("HEADLINE_LLM", raising=False)
    assert await llm_client.rewrite_headline(PICK, "draft headline") == "draft headline"


@pytest.mark.asyncio
async def test_rewrite_cleans_model_output(monkeypatch, fake_messages):
    monkeypatch.setenv("HEADLINE_LLM", "true")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "k")
    fake_messages.text = '"Chef Feud On Yacht"\nExtra line'
    assert await llm_client.rewrite_headline(PICK, "draft") == "Chef Feud On Yacht"


@pytest.mark.asyncio
async def test_rewrite_keeps_draft_on_failure(monkeypatch, fake_messages):
    monkeypatch.setenv("HEADLINE_LLM", "true")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "k")
    fake_messages.failing_models = {llm_client.HEADLINE_MODEL, llm_client.HEADLINE_MODEL_FALLBACK}
    assert await llm_client.rewrite_headline(PICK, "draft") == "draft"
