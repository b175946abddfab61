"""Final synthesis: merge role responses into one recommendation with a confidence label."""

import logging
from datetime import datetime, timezone

from config.config_loader import PromptsConfig
from boardroom.audit import DecisionAuditRecorder
from boardroom.evidence import SessionEvidence
from boardroom.gateway import FACILITATOR, ResponderGateway
from boardroom.heuristics import extract_confidence_label
from boardroom.metadata import CONFIDENCE_VALUES, DEFAULT_CONFIDENCE
from boardroom.models import (
    AgentResponse,
    AuditContext,
    ConsensusRecord,
    DiscussionSession,
    EvidenceItem,
    Scenario,
    SourceReference,
)
from boardroom.providers.base import ProviderError

logger = logging.getLogger(__name__)

# Synthesis runs only when at least this many distinct roles responded
MIN_CONTRIBUTING_ROLES = 2
_NO_DOCUMENTS = "No documents were referenced in this analysis."


def referenced_sources(responses: list[AgentResponse], evidence: SessionEvidence | None) -> list[SourceReference]:
    """Documents cited across responses with reference counts, most referenced first.

    A response references document n when its text carries the ``[n]`` marker.
    """
    if evidence is None or not evidence.documents:
        return []
    counts: dict[str, list[str]] = {}
    for response in responses:
        for marker in response.citations:
            index = int(marker.strip("[]")) - 1
            if 0 <= index < len(evidence.documents):
                counts.setdefault(evidence.documents[index].source_name, []).append(response.role)
    ranked = sorted(counts.items(), key=lambda kv: len(kv[1]), reverse=True)
    return [SourceReference(name=name, count=len(roles), roles=tuple(roles)) for name, roles in ranked]


def _format_perspectives(
    responses: list[AgentResponse], prompts: PromptsConfig, evidence: SessionEvidence | None
) -> str:
    multi_round = len({r.round_number for r in responses}) > 1
    parts: list[str] = []
    for resp in responses:
        persona = prompts.personas.get(resp.role)
        title = persona.title if persona else resp.role.upper()
        if multi_round:
            title = f"{title} (Round {resp.round_number})"
        part = f"**{title}**: {resp.content}"
        cited = referenced_sources([resp], evidence)
        if cited:
            part += f"\n[Documents referenced: {', '.join(s.name for s in cited)}]"
        parts.append(part)
    return "\n\n".join(parts)


class ConsensusSynthesizer:
    def __init__(
        self,
        gateway: ResponderGateway,
        prompts: PromptsConfig,
        recorder: DecisionAuditRecorder | None = None,
    ) -> None:
        self._gateway = gateway
        self._prompts = prompts
        self._recorder = recorder

    @staticmethod
    def should_run(responses: list[AgentResponse]) -> bool:
        return len({r.role for r in responses}) >= MIN_CONTRIBUTING_ROLES

    def build_prompt(
        self, scenario: Scenario, responses: list[AgentResponse], evidence: SessionEvidence | None = None
    ) -> str:
        sources = referenced_sources(responses, evidence)
        documents = "\n".join(f"• {s.name} (referenced by: {', '.join(s.roles)})" for s in sources)
        return self._prompts.synthesis.format(
            scenario=scenario.description,
            documents=documents or _NO_DOCUMENTS,
            perspectives=_format_perspectives(responses, self._prompts, evidence),
        )

    async def synthesize(
        self,
        session: DiscussionSession,
        scenario: Scenario,
        query: str,
        responses: list[AgentResponse],
        evidence: SessionEvidence | None = None,
    ) -> ConsensusRecord | None:
        """Ask the facilitator for a merged recommendation.

        Returns None when fewer than two roles responded or the facilitator
        call fails; the failure is logged.
        """
        if not self.should_run(responses):
            logger.info("Skipping synthesis: fewer than %d roles responded", MIN_CONTRIBUTING_ROLES)
            return None

        prompt = self.build_prompt(scenario, responses, evidence)
        logger.info("Running synthesis over %d responses", len(responses))
        try:
            result = await self._gateway.complete(FACILITATOR, prompt, round_number=session.current_round + 1)
        except ProviderError as exc:
            logger.warning("Synthesis failed (%s): %s", exc.kind.value, exc)
            return None
        if not result.content.strip():
            logger.warning("Facilitator %s returned empty synthesis", result.provider)
            return None

        label = extract_confidence_label(result.content)
        record = ConsensusRecord(
            synthesis=result.content.strip(),
            confidence=label,
            agent_count=len(responses),
            sources=referenced_sources(responses, evidence),
            model=result.model,
            timestamp=datetime.now(timezone.utc),
        )
        self._track(session, query, responses, record, result.latency_sec)
        return record

    def _track(
        self,
        session: DiscussionSession,
        query: str,
        responses: list[AgentResponse],
        record: ConsensusRecord,
        latency_sec: float,
    ) -> None:
        if self._recorder is None:
            return
        try:
            audit_id = self._recorder.start_tracking(
                session.id,
                FACILITATOR,
                AuditContext(
                    query=query,
                    session_type="consensus",
                    documents=[s.name for s in record.sources],
                    collaboration=sorted({r.role for r in responses}),
                ),
            )
            self._recorder.add_step(
                audit_id,
                "synthesis",
                f"Synthesized {len(responses)} executive perspectives into one recommendation",
                [
                    EvidenceItem(
                        id=r.audit_id or f"{r.role}_round_{r.round_number}",
                        type="collaboration",
                        source=r.role.upper(),
                        content=r.content[:200],
                        relevance=r.metadata.confidence if r.metadata else DEFAULT_CONFIDENCE,
                        reliability=0.8,
                        citation=f"[{r.role.upper()} Round {r.round_number}]",
                    )
                    for r in responses
                ],
                CONFIDENCE_VALUES[record.confidence],
                latency_sec * 1000,
            )
            self._recorder.complete_tracking(audit_id, record.synthesis, CONFIDENCE_VALUES[record.confidence])
        except Exception as exc:
            logger.warning("Failed to track synthesis decision: %s", exc)
