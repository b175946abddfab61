"""Shared pytest fixtures."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, ModelConfig, PromptsConfig, load_config
from boardroom.evidence import DocumentHit, SessionEvidence, format_documents
from boardroom.gateway import FACILITATOR, ResponderGateway
from boardroom.models import AgentResponse, DiscussionSession, ModelResponse, ResponseMetadata, Round
from boardroom.providers.base import AIProvider
from boardroom.stream import EventStream, StreamRecord

SYNTHESIS_TEXT = (
    "**EXECUTIVE SUMMARY:**\nExpand in two phases.\n\n"
    "**CONFIDENCE LEVEL:** High - the executives broadly agree"
)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def app_config() -> AppConfig:
    return load_config()


@pytest.fixture
def prompts(app_config: AppConfig) -> PromptsConfig:
    return app_config.prompts


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(
        self,
        provider_name: str = "mock",
        response_content: str = "Mock response",
        structured: dict[str, Any] | None = None,
    ) -> None:
        self._name = provider_name
        self._response_content = response_content
        self.supports_structured_output = structured is not None
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=ModelResponse(
                provider=provider_name,
                model="mock-model",
                round_number=1,
                content=response_content,
                latency_sec=0.1,
                token_count=10,
            )
        )
        self.generate_structured = AsyncMock(return_value=structured or {})  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, prompt: str, round_number: int) -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return ModelResponse(
            provider=self._name,
            model="mock-model",
            round_number=round_number,
            content=self._response_content,
            latency_sec=0.1,
            token_count=10,
        )

    def prompts_seen(self) -> list[str]:
        return [c.args[0] for c in self.generate.call_args_list]


def model_response(content: str, provider: str = "mock", round_number: int = 1) -> ModelResponse:
    return ModelResponse(provider, "mock-model", round_number, content, 0.1, 10)


async def drain(stream: EventStream) -> list[StreamRecord]:
    """Close the stream and return everything still buffered, in order."""
    stream.close()
    return [record async for record in stream]


def event_types(records: list[StreamRecord]) -> list[str]:
    return [r.event.type for r in records]


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def executives() -> dict[str, MockProvider]:
    """One provider per role plus a facilitator, each answering with its own text."""
    providers = {role: MockProvider(role, f"{role.upper()} view on the plan.") for role in ("ceo", "cfo", "cto", "hr")}
    providers[FACILITATOR] = MockProvider(FACILITATOR, SYNTHESIS_TEXT)
    return providers


@pytest.fixture
def make_gateway(prompts: PromptsConfig):
    def _make(providers: dict[str, AIProvider], **kwargs) -> ResponderGateway:
        return ResponderGateway(providers, prompts, **kwargs)
    return _make


@pytest.fixture
def stream() -> EventStream:
    return EventStream("test-session", maxsize=256)


@pytest.fixture
def sample_session() -> DiscussionSession:
    return DiscussionSession(
        id="test-session",
        roles=["ceo", "cfo"],
        max_rounds=2,
        auto_conclusion=False,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def document_evidence() -> SessionEvidence:
    hits = (
        DocumentHit(id="plan", source_name="expansion_plan.md", text="Europe entry in 2026 via Berlin.", score=0.9),
        DocumentHit(id="budget", source_name="budget_2026.md", text="Capex capped at 4M EUR.", score=0.8),
    )
    return SessionEvidence(documents=hits, documents_block=format_documents(hits), fingerprint="f" * 64)


@pytest.fixture
def sample_response() -> AgentResponse:
    return AgentResponse(
        role="ceo",
        content="Expand with a Berlin pilot first [1].",
        model="mock-model",
        round_number=1,
        timestamp=datetime.now(timezone.utc),
        latency_sec=1.5,
        token_count=42,
        metadata=ResponseMetadata(confidence_label="High", confidence=0.9, risks=["Currency exposure"]),
        citations=["[1]"],
    )


@pytest.fixture
def sample_round(sample_response: AgentResponse) -> Round:
    return Round(number=1, responses=[sample_response])


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "docs"
    folder.mkdir()
    (folder / "expansion_plan.md").write_text("Europe expansion plan: open Berlin office.", encoding="utf-8")
    (folder / "hiring.txt").write_text("Hiring freeze for engineering.", encoding="utf-8")
    (folder / "image.png").write_bytes(b"\x89PNG")
    return folder
