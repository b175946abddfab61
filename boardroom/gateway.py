"""Responder gateway: one bounded call to a reasoning engine on behalf of one role."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from config.config_loader import PromptsConfig, RoleProfile
from boardroom.cache import TwoTierCache
from boardroom.evidence import SessionEvidence
from boardroom.metadata import from_structured, metadata_footer, structured_request
from boardroom.models import ModelResponse, ResponseMetadata, Scenario
from boardroom.providers.base import AIProvider, FailureKind, ProviderError, classify_failure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0
FACILITATOR = "facilitator"

_MEMORY_NOTE = (
    "Please consider these insights when formulating your response, but don't mention "
    'that you\'re using "memory" or "past experience" - simply incorporate the wisdom naturally.'
)


@dataclass
class GatewayReply:
    role: str
    content: str
    model: str
    latency_sec: float
    token_count: int
    timestamp: datetime
    from_cache: bool = False
    is_demo: bool = False
    footer_requested: bool = False
    metadata: ResponseMetadata | None = None


def _enhanced_instructions(title: str, has_documents: bool, has_market: bool) -> str:
    lines = ["ENHANCED INSTRUCTIONS:"]
    if has_documents:
        lines += [
            "- Base your analysis on the provided company documents above",
            "- Reference specific data points and findings from the documents",
            "- Use source citations like [1], [2], etc. when referencing specific documents",
        ]
    if has_market:
        lines += [
            "- Incorporate current market conditions and trends into your analysis",
            "- Reference specific market indicators, stock performance, and sector data",
        ]
    basis = "document-backed" if has_documents else "market-informed"
    lines += [
        f"- Provide {basis} insights that align with your {title} expertise",
        "- If the supplied data doesn't contain relevant information for your analysis, clearly state this",
    ]
    return "\n".join(lines)


def build_agent_prompt(
    prompts: PromptsConfig,
    role: str,
    scenario: Scenario,
    context: str,
    company_name: str = "the company",
    evidence: SessionEvidence | None = None,
    include_footer: bool = True,
) -> str:
    """Layer persona, scenario, discussion context and evidence into one prompt."""
    profile = prompts.personas.get(role) or RoleProfile(title=role.upper(), personality="")
    prompt = prompts.agent.format(
        title=profile.title,
        company=company_name,
        personality=profile.personality,
        expertise="\n".join(f"- {e}" for e in profile.expertise),
        scenario=scenario.description or "No specific scenario provided",
        parameters=json.dumps(scenario.parameters, indent=2) if scenario.parameters else "No parameters provided",
        context=context,
    ).rstrip()

    if evidence is None:
        return prompt

    if evidence.documents_block:
        prompt += f"\n\nRELEVANT COMPANY DOCUMENTS:\n{evidence.documents_block}"
    if evidence.market_block:
        prompt += f"\n\nCURRENT MARKET INTELLIGENCE:\n{evidence.market_block}"
    advice = evidence.advice_for(role)
    if advice:
        prompt += f"\n\nYOUR PAST EXPERIENCE AND LEARNED INSIGHTS:\n{advice}\n\n{_MEMORY_NOTE}"

    if evidence.has_documents or evidence.has_market:
        prompt += "\n\n" + _enhanced_instructions(profile.title, evidence.has_documents, evidence.has_market)
        if include_footer:
            prompt += "\n\n" + metadata_footer(evidence.has_documents, evidence.has_market)
    return prompt


class ResponderGateway:
    """Invoke the reasoning engine for one role, with timeout, cache and demo handling.

    Every failure surfaces as ProviderError carrying a FailureKind; nothing is
    retried here. Demo callers get canned per-role text. With ``sandbox`` off,
    demo callers reach the provider and fall back to the canned text on failure.
    Real callers never receive canned text.
    """

    def __init__(
        self,
        providers: dict[str, AIProvider],
        prompts: PromptsConfig,
        cache: TwoTierCache | None = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        company_name: str = "the company",
        sandbox: bool = True,
    ) -> None:
        self._providers = providers
        self.prompts = prompts
        self._cache = cache
        self.timeout_sec = timeout_sec
        self.company_name = company_name
        self.sandbox = sandbox

    def provider_for(self, role: str) -> AIProvider:
        provider = self._providers.get(role)
        if provider is None:
            raise ProviderError(role, "No provider configured", FailureKind.PROVIDER_UNAVAILABLE)
        return provider

    async def complete(self, role: str, prompt: str, round_number: int) -> ModelResponse:
        """Single bounded provider call. Raises ProviderError."""
        provider = self.provider_for(role)
        try:
            return await asyncio.wait_for(provider.generate(prompt, round_number), timeout=self.timeout_sec)
        except TimeoutError as exc:
            raise ProviderError(
                provider.name(), f"Request timed out after {self.timeout_sec:g}s", FailureKind.TIMEOUT
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(provider.name(), f"Unexpected error: {exc}", classify_failure(exc)) from exc

    async def _structured_metadata(
        self, role: str, narrative: str, round_number: int, timeout_sec: float
    ) -> ResponseMetadata | None:
        """Second JSON-mode call, bounded by what is left of the response deadline."""
        if timeout_sec <= 0:
            logger.warning("No time left for structured metadata for %s, using defaults", role)
            return None
        provider = self.provider_for(role)
        try:
            payload = await asyncio.wait_for(
                provider.generate_structured(structured_request(narrative), round_number),
                timeout=timeout_sec,
            )
        except Exception as exc:
            logger.warning("Structured metadata call failed for %s, using defaults: %s", role, exc)
            return None
        return from_structured(payload, narrative)

    def _demo_reply(self, role: str, model: str) -> GatewayReply:
        text = self.prompts.demo_responses.get(role)
        if not text:
            raise ProviderError(role, "No demo response configured", FailureKind.PROVIDER_UNAVAILABLE)
        return GatewayReply(
            role=role,
            content=text,
            model=model,
            latency_sec=0.0,
            token_count=len(text),
            timestamp=datetime.now(timezone.utc),
            is_demo=True,
        )

    async def respond(
        self,
        role: str,
        scenario: Scenario,
        context: str,
        evidence: SessionEvidence | None = None,
        round_number: int = 1,
        demo: bool = False,
        company_name: str | None = None,
    ) -> GatewayReply:
        if demo and self.sandbox:
            return self._demo_reply(role, "demo-mode")
        try:
            return await self._respond_live(
                role, scenario, context, evidence, round_number, company_name or self.company_name
            )
        except ProviderError as exc:
            if demo:
                logger.info("Falling back to demo response for %s due to API error: %s", role, exc)
                return self._demo_reply(role, "demo-fallback")
            raise

    async def _respond_live(
        self,
        role: str,
        scenario: Scenario,
        context: str,
        evidence: SessionEvidence | None,
        round_number: int,
        company_name: str,
    ) -> GatewayReply:
        wants_metadata = evidence is not None and (evidence.has_documents or evidence.has_market)
        fingerprint = evidence.fingerprint if evidence else ""
        scenario_key = f"{company_name}:{scenario.name}:{scenario.description}:{fingerprint}"

        if self._cache is not None:
            try:
                cached = await self._cache.get(role, context, scenario_key)
            except Exception as exc:
                logger.warning("Cache lookup failed for %s: %s", role, exc)
                cached = None
            if cached is not None:
                return GatewayReply(
                    role=role,
                    content=cached.content,
                    model=cached.model,
                    latency_sec=0.0,
                    token_count=len(cached.content),
                    timestamp=datetime.now(timezone.utc),
                    from_cache=True,
                    footer_requested=wants_metadata and cached.metadata is None,
                    metadata=cached.metadata,
                )

        provider = self.provider_for(role)
        structured = wants_metadata and provider.supports_structured_output
        prompt = build_agent_prompt(
            self.prompts, role, scenario, context, company_name, evidence,
            include_footer=not structured,
        )
        logger.debug("Prompt for %s round %d: %d chars", role, round_number, len(prompt))

        start = time.monotonic()
        response = await self.complete(role, prompt, round_number)
        metadata = None
        if structured:
            remaining = self.timeout_sec - (time.monotonic() - start)
            metadata = await self._structured_metadata(role, response.content, round_number, remaining)
        latency = time.monotonic() - start

        if self._cache is not None:
            try:
                await self._cache.put(role, context, scenario_key, response.content, response.model, metadata)
            except Exception as exc:
                logger.warning("Failed to cache agent response for %s: %s", role, exc)

        return GatewayReply(
            role=role,
            content=response.content,
            model=response.model,
            latency_sec=latency,
            token_count=response.token_count or len(response.content),
            timestamp=datetime.now(timezone.utc),
            footer_requested=wants_metadata and not structured,
            metadata=metadata,
        )
