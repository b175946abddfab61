"""Tests for boardroom/gateway.py."""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from boardroom.cache import ResponseCache, TwoTierCache
from boardroom.evidence import SessionEvidence
from boardroom.gateway import build_agent_prompt
from boardroom.models import Scenario
from boardroom.providers.base import FailureKind, ProviderError
from tests.conftest import MockProvider, model_response

CONTEXT = "User Query: Should we expand to Europe?"


def test_prompt_layers_persona_scenario_and_context(prompts):
    scenario = Scenario(description="EU market entry", parameters={"budget": "4M EUR"})
    prompt = build_agent_prompt(prompts, "cfo", scenario, CONTEXT, company_name="Acme")

    assert prompt.startswith("You are the CFO of Acme.")
    assert "Analytical, cautious" in prompt
    assert "- risk management" in prompt
    assert "EU market entry" in prompt
    assert '"budget": "4M EUR"' in prompt
    assert CONTEXT in prompt
    assert "ENHANCED INSTRUCTIONS" not in prompt


def test_prompt_defaults_for_empty_scenario(prompts):
    prompt = build_agent_prompt(prompts, "hr", Scenario(description="", parameters={}), CONTEXT)
    assert "You are the CHRO of the company." in prompt
    assert "No specific scenario provided" in prompt
    assert "No parameters provided" in prompt


def test_prompt_with_documents_asks_for_citations_and_metadata(prompts, document_evidence):
    prompt = build_agent_prompt(prompts, "ceo", Scenario(), CONTEXT, evidence=document_evidence)

    docs_at = prompt.index("RELEVANT COMPANY DOCUMENTS:")
    instructions_at = prompt.index("ENHANCED INSTRUCTIONS:")
    footer_at = prompt.index("---METADATA---")
    assert prompt.index(CONTEXT) < docs_at < instructions_at < footer_at
    assert "Use source citations like [1], [2]" in prompt
    assert "DATA_SOURCES: Company Documents" in prompt


def test_prompt_without_footer_for_structured_providers(prompts, document_evidence):
    prompt = build_agent_prompt(prompts, "ceo", Scenario(), CONTEXT, evidence=document_evidence, include_footer=False)
    assert "ENHANCED INSTRUCTIONS:" in prompt
    assert "---METADATA---" not in prompt


def test_prompt_includes_advice_only_for_that_role(prompts):
    evidence = SessionEvidence(advice={"cto": "Based on past experience:\n• Pilot first."})
    cto_prompt = build_agent_prompt(prompts, "cto", Scenario(), CONTEXT, evidence=evidence)
    ceo_prompt = build_agent_prompt(prompts, "ceo", Scenario(), CONTEXT, evidence=evidence)

    assert "YOUR PAST EXPERIENCE AND LEARNED INSIGHTS:\nBased on past experience:" in cto_prompt
    assert "PAST EXPERIENCE" not in ceo_prompt
    # Advice alone does not trigger the metadata footer
    assert "---METADATA---" not in cto_prompt


async def test_respond_returns_provider_text(make_gateway):
    provider = MockProvider("claude", "Proceed carefully.")
    reply = await make_gateway({"ceo": provider}).respond("ceo", Scenario(), CONTEXT)

    assert reply.role == "ceo"
    assert reply.content == "Proceed carefully."
    assert reply.model == "mock-model"
    assert reply.from_cache is False
    assert reply.is_demo is False
    assert reply.footer_requested is False
    assert provider.generate.call_args.args[1] == 1


async def test_missing_provider_is_unavailable(make_gateway):
    with pytest.raises(ProviderError) as exc_info:
        await make_gateway({}).respond("ceo", Scenario(), CONTEXT)
    assert exc_info.value.kind is FailureKind.PROVIDER_UNAVAILABLE


async def test_timeout_becomes_timeout_failure(make_gateway):
    async def _slow(prompt, round_number):
        await asyncio.sleep(5)

    provider = MockProvider("gemini")
    provider.generate = AsyncMock(side_effect=_slow)

    with pytest.raises(ProviderError) as exc_info:
        await make_gateway({"cfo": provider}, timeout_sec=0.05).respond("cfo", Scenario(), CONTEXT)
    assert exc_info.value.kind is FailureKind.TIMEOUT
    assert "timed out" in str(exc_info.value)


async def test_provider_error_kind_is_preserved(make_gateway):
    provider = MockProvider("openai")
    provider.generate = AsyncMock(side_effect=ProviderError("openai", "blocked", FailureKind.CONTENT_BLOCKED))

    with pytest.raises(ProviderError) as exc_info:
        await make_gateway({"cto": provider}).respond("cto", Scenario(), CONTEXT)
    assert exc_info.value.kind is FailureKind.CONTENT_BLOCKED


async def test_unexpected_exception_is_classified(make_gateway):
    provider = MockProvider("openai")
    provider.generate = AsyncMock(side_effect=RuntimeError("HTTP 429 rate limit"))

    with pytest.raises(ProviderError) as exc_info:
        await make_gateway({"cto": provider}).respond("cto", Scenario(), CONTEXT)
    assert exc_info.value.kind is FailureKind.QUOTA_EXCEEDED


async def test_sandboxed_demo_never_calls_provider(make_gateway, prompts):
    provider = MockProvider("gemini")
    reply = await make_gateway({"ceo": provider}).respond("ceo", Scenario(), CONTEXT, demo=True)

    assert reply.is_demo
    assert reply.model == "demo-mode"
    assert reply.content == prompts.demo_responses["ceo"]
    assert provider.generate.await_count == 0


async def test_unsandboxed_demo_falls_back_on_failure(make_gateway):
    provider = MockProvider("gemini")
    provider.generate = AsyncMock(side_effect=ProviderError("gemini", "bad key", FailureKind.INVALID_CREDENTIALS))

    reply = await make_gateway({"cfo": provider}, sandbox=False).respond("cfo", Scenario(), CONTEXT, demo=True)
    assert reply.is_demo
    assert reply.model == "demo-fallback"


async def test_unsandboxed_demo_uses_live_text_when_available(make_gateway):
    provider = MockProvider("gemini", "Live answer.")
    reply = await make_gateway({"cfo": provider}, sandbox=False).respond("cfo", Scenario(), CONTEXT, demo=True)
    assert reply.content == "Live answer."
    assert reply.is_demo is False


async def test_real_callers_never_get_canned_text(make_gateway):
    provider = MockProvider("gemini")
    provider.generate = AsyncMock(side_effect=ProviderError("gemini", "down"))
    with pytest.raises(ProviderError):
        await make_gateway({"ceo": provider}).respond("ceo", Scenario(), CONTEXT)


async def test_repeat_call_is_served_from_cache(make_gateway):
    provider = MockProvider("claude", "Cached answer.")
    gateway = make_gateway({"ceo": provider}, cache=TwoTierCache(local=ResponseCache()))

    first = await gateway.respond("ceo", Scenario(), CONTEXT)
    second = await gateway.respond("ceo", Scenario(), CONTEXT)

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.content == "Cached answer."
    assert provider.generate.await_count == 1


async def test_cache_key_depends_on_company_and_context(make_gateway):
    provider = MockProvider("claude")
    gateway = make_gateway({"ceo": provider}, cache=TwoTierCache(local=ResponseCache()))

    await gateway.respond("ceo", Scenario(), CONTEXT, company_name="Acme")
    await gateway.respond("ceo", Scenario(), CONTEXT, company_name="Globex")
    await gateway.respond("ceo", Scenario(), CONTEXT + " Also consider Asia.", company_name="Acme")

    assert provider.generate.await_count == 3


async def test_cache_failure_is_a_miss(make_gateway):
    cache = TwoTierCache(local=ResponseCache())
    cache.get = AsyncMock(side_effect=RuntimeError("cache down"))
    cache.put = AsyncMock(side_effect=RuntimeError("cache down"))
    provider = MockProvider("claude", "Still answered.")

    reply = await make_gateway({"ceo": provider}, cache=cache).respond("ceo", Scenario(), CONTEXT)
    assert reply.content == "Still answered."


async def test_demo_replies_are_not_cached(make_gateway):
    cache = TwoTierCache(local=ResponseCache())
    await make_gateway({}, cache=cache).respond("ceo", Scenario(), CONTEXT, demo=True)
    assert len(cache.local) == 0


async def test_structured_provider_gets_json_metadata(make_gateway, document_evidence):
    provider = MockProvider(
        "openai",
        "Open in Berlin first [1].",
        structured={"confidence": "low", "risks": ["Hiring lag"], "key_factors": "Talent pool"},
    )
    reply = await make_gateway({"ceo": provider}).respond(
        "ceo", Scenario(), CONTEXT, evidence=document_evidence
    )

    assert "---METADATA---" not in provider.prompts_seen()[0]
    assert reply.footer_requested is False
    assert reply.metadata.confidence_label == "Low"
    assert reply.metadata.confidence == 0.5
    assert reply.metadata.risks == ["Hiring lag"]
    assert reply.metadata.key_factors == ["Talent pool"]
    assert reply.metadata.cited_evidence == ["[1]"]


async def test_structured_metadata_failure_keeps_response(make_gateway, document_evidence):
    provider = MockProvider("openai", "Open in Berlin first.", structured={})
    provider.generate_structured = AsyncMock(side_effect=RuntimeError("bad json"))

    reply = await make_gateway({"ceo": provider}).respond("ceo", Scenario(), CONTEXT, evidence=document_evidence)
    assert reply.content == "Open in Berlin first."
    assert reply.metadata is None


async def test_plain_provider_is_asked_for_footer(make_gateway, document_evidence):
    provider = MockProvider("claude", "Answer.")
    reply = await make_gateway({"ceo": provider}).respond("ceo", Scenario(), CONTEXT, evidence=document_evidence)
    assert reply.footer_requested is True
    assert "---METADATA---" in provider.prompts_seen()[0]


async def test_complete_passes_round_number(make_gateway):
    provider = MockProvider("gemini")
    provider.generate = AsyncMock(return_value=model_response("Summary", round_number=3))
    result = await make_gateway({"facilitator": provider}).complete("facilitator", "Synthesize", round_number=3)
    assert result.content == "Summary"
    provider.generate.assert_awaited_once_with("Synthesize", 3)


async def test_structured_call_shares_the_response_deadline(make_gateway, document_evidence):
    async def _slow_text(prompt, round_number):
        await asyncio.sleep(0.4)
        return model_response("Open in Berlin first [1].", "openai", round_number)

    async def _slow_json(prompt, round_number):
        await asyncio.sleep(0.4)
        return {"confidence": "high"}

    provider = MockProvider("openai", structured={"confidence": "high"})
    provider.generate = AsyncMock(side_effect=_slow_text)
    provider.generate_structured = AsyncMock(side_effect=_slow_json)
    gateway = make_gateway({"ceo": provider}, timeout_sec=0.5)

    start = time.monotonic()
    reply = await gateway.respond("ceo", Scenario(), CONTEXT, evidence=document_evidence)
    elapsed = time.monotonic() - start

    assert elapsed < 0.7
    assert reply.content == "Open in Berlin first [1]."
    assert reply.metadata is None


async def test_cache_hit_keeps_structured_metadata(make_gateway, document_evidence):
    provider = MockProvider(
        "openai",
        "Open in Berlin first [1].",
        structured={"confidence": "high", "risks": ["Hiring lag"]},
    )
    gateway = make_gateway({"ceo": provider}, cache=TwoTierCache(local=ResponseCache()))

    first = await gateway.respond("ceo", Scenario(), CONTEXT, evidence=document_evidence)
    second = await gateway.respond("ceo", Scenario(), CONTEXT, evidence=document_evidence)

    assert second.from_cache is True
    assert second.metadata == first.metadata
    assert second.metadata.confidence_label == "High"
    assert second.metadata.risks == ["Hiring lag"]
    assert second.footer_requested is False
    assert provider.generate_structured.await_count == 1
