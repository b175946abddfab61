"""Round orchestration: sequential role turns across bounded discussion rounds.

The discussion is an explicit state machine::

    ROUND_START -> AWAITING_ROLE (once per role) -> ROUND_COMPLETE
        -> CHECK_CONCLUSION -> ROUND_START | DONE

Each phase handler does one unit of work and sets the next phase, so
``step`` can be driven one transition at a time in tests.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from boardroom.audit import DecisionAuditRecorder
from boardroom.events import (
    AgentError,
    AgentResponseEvent,
    AgentStart,
    RoundComplete,
    RoundStart,
    SessionComplete,
    SessionStart,
    metadata_payload,
)
from boardroom.evidence import SessionEvidence
from boardroom.gateway import GatewayReply, ResponderGateway
from boardroom.heuristics import ConclusionHeuristic, KeywordConclusionHeuristic
from boardroom.memory import AgentMemory
from boardroom.metadata import (
    DEFAULT_CONFIDENCE,
    DEFAULT_CONFIDENCE_LABEL,
    extract_citations,
    split_metadata,
)
from boardroom.models import (
    AgentFailure,
    AgentResponse,
    AuditContext,
    DiscussionSession,
    EvidenceItem,
    ResponseMetadata,
    Round,
    Scenario,
    SessionStatus,
)
from boardroom.providers.base import ProviderError
from boardroom.stream import EventStream

logger = logging.getLogger(__name__)

MIN_ROUNDS = 1
MAX_ROUNDS = 5
# Early conclusion is only considered from this round on
CONCLUSION_MIN_ROUND = 2
DEFAULT_MAX_CONTEXT_CHARS = 24000

# Share of a response's latency attributed to each audit step
_STEP_SHARES = {"evidence": 0.20, "analysis": 0.15, "synthesis": 0.10, "conclusion": 0.55}


def clamp_rounds(max_rounds: int) -> int:
    return max(MIN_ROUNDS, min(MAX_ROUNDS, max_rounds))


def round_instruction(round_number: int, max_rounds: int) -> str:
    return (
        f"[This is round {round_number} of {max_rounds}. Please build upon the previous "
        "discussion and move toward a concrete conclusion.]"
    )


class Phase(str, Enum):
    ROUND_START = "round_start"
    AWAITING_ROLE = "awaiting_role"
    ROUND_COMPLETE = "round_complete"
    CHECK_CONCLUSION = "check_conclusion"
    DONE = "done"


@dataclass
class DiscussionState:
    session: DiscussionSession
    query: str
    scenario: Scenario
    base_context: str
    evidence: SessionEvidence
    demo: bool = False
    company_name: str | None = None
    phase: Phase = Phase.ROUND_START
    round_number: int = 1
    role_index: int = 0
    rounds: list[Round] = field(default_factory=list)
    history: list[str] = field(default_factory=list)         # completed-round entries, oldest first
    current_entries: list[str] = field(default_factory=list)  # this round's "ROLE: text" entries

    @property
    def current_round(self) -> Round:
        return self.rounds[-1]

    @property
    def response_count(self) -> int:
        return sum(len(r.responses) for r in self.rounds)


class RoundOrchestrator:
    """Drive one session's roles through its rounds, emitting lifecycle events."""

    def __init__(
        self,
        gateway: ResponderGateway,
        stream: EventStream,
        recorder: DecisionAuditRecorder | None = None,
        memory: AgentMemory | None = None,
        heuristic: ConclusionHeuristic | None = None,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
    ) -> None:
        self._gateway = gateway
        self._stream = stream
        self._recorder = recorder
        self._memory = memory
        self._heuristic = heuristic or KeywordConclusionHeuristic()
        self.max_context_chars = max_context_chars
        self._handlers = {
            Phase.ROUND_START: self._on_round_start,
            Phase.AWAITING_ROLE: self._on_awaiting_role,
            Phase.ROUND_COMPLETE: self._on_round_complete,
            Phase.CHECK_CONCLUSION: self._on_check_conclusion,
        }

    def new_state(
        self,
        session: DiscussionSession,
        query: str,
        scenario: Scenario,
        initial_context: str,
        evidence: SessionEvidence | None = None,
        demo: bool = False,
        company_name: str | None = None,
    ) -> DiscussionState:
        if not session.roles:
            raise ValueError("A discussion needs at least one role")
        session.max_rounds = clamp_rounds(session.max_rounds)
        return DiscussionState(
            session=session,
            query=query,
            scenario=scenario,
            base_context=initial_context,
            evidence=evidence or SessionEvidence(),
            demo=demo,
            company_name=company_name,
        )

    async def run(
        self,
        session: DiscussionSession,
        query: str,
        scenario: Scenario,
        initial_context: str,
        evidence: SessionEvidence | None = None,
        demo: bool = False,
    ) -> list[Round]:
        """Run every round and emit session_start ... session_complete.

        Per-role failures become agent_error events and never raise. Stops
        starting new calls once the stream is closed.
        """
        state = self.new_state(session, query, scenario, initial_context, evidence, demo)
        await self.drive(state)
        return state.rounds

    async def drive(self, state: DiscussionState) -> None:
        """Run a prepared state to completion. ``state.rounds`` holds partial results if this raises."""
        session = state.session
        scenario = state.scenario
        await self._stream.emit(SessionStart(
            session_id=session.id,
            query=state.query,
            scenario=scenario.name,
            roles=list(session.roles),
            max_rounds=session.max_rounds,
            timestamp=datetime.now(timezone.utc),
        ))
        logger.info(
            "Session %s: %d roles, up to %d rounds", session.id, len(session.roles), session.max_rounds
        )

        while state.phase is not Phase.DONE:
            if self._stream.closed:
                logger.info("Stream closed, stopping session %s in round %d", session.id, state.round_number)
                session.status = SessionStatus.CANCELLED
                return
            await self.step(state)

        session.status = SessionStatus.CONCLUDED
        await self._stream.emit(SessionComplete(
            timestamp=datetime.now(timezone.utc),
            total_rounds=len(state.rounds),
            response_count=state.response_count,
            status=session.status.value,
            document_context=state.evidence.citation_summary(),
        ))
        logger.info(
            "Session %s complete: %d rounds, %d responses",
            session.id, len(state.rounds), state.response_count,
        )

    async def step(self, state: DiscussionState) -> Phase:
        """Perform one state transition and return the new phase."""
        if state.phase is Phase.DONE:
            return state.phase
        await self._handlers[state.phase](state)
        return state.phase

    async def _on_round_start(self, state: DiscussionState) -> None:
        session = state.session
        session.current_round = state.round_number
        state.rounds.append(Round(number=state.round_number))
        state.current_entries = []
        state.role_index = 0
        await self._stream.emit(RoundStart(
            round_number=state.round_number,
            max_rounds=session.max_rounds,
            is_follow_up=state.round_number > 1,
        ))
        logger.info("Starting round %d of %d", state.round_number, session.max_rounds)
        state.phase = Phase.AWAITING_ROLE

    async def _on_awaiting_role(self, state: DiscussionState) -> None:
        roles = state.session.roles
        role = roles[state.role_index]
        await self._stream.emit(AgentStart(
            role=role,
            position=state.role_index + 1,
            total=len(roles),
            round_number=state.round_number,
        ))

        try:
            reply = await self._gateway.respond(
                role,
                state.scenario,
                self.build_context(state),
                evidence=state.evidence,
                round_number=state.round_number,
                demo=state.demo,
                company_name=state.company_name,
            )
        except ProviderError as exc:
            await self._record_failure(state, role, exc)
        else:
            await self._record_response(state, role, reply)

        state.role_index += 1
        if state.role_index >= len(roles):
            state.phase = Phase.ROUND_COMPLETE

    async def _on_round_complete(self, state: DiscussionState) -> None:
        rnd = state.current_round
        await self._stream.emit(RoundComplete(round_number=rnd.number, max_rounds=state.session.max_rounds))
        logger.info(
            "Round %d complete: %d/%d roles responded",
            rnd.number, len(rnd.responses), len(state.session.roles),
        )
        state.history.extend(f"{r.role.upper()} (Round {rnd.number}): {r.content}" for r in rnd.responses)
        state.current_entries = []
        self._trim_history(state)
        state.phase = Phase.CHECK_CONCLUSION

    async def _on_check_conclusion(self, state: DiscussionState) -> None:
        session = state.session
        texts = [r.content for r in state.current_round.responses]
        if (
            session.auto_conclusion
            and state.round_number >= CONCLUSION_MIN_ROUND
            and self._heuristic.concluded(texts)
        ):
            logger.info("Conclusion reached after round %d", state.round_number)
            state.phase = Phase.DONE
        elif state.round_number >= session.max_rounds:
            state.phase = Phase.DONE
        else:
            state.round_number += 1
            state.phase = Phase.ROUND_START

    def _render_history(self, state: DiscussionState) -> str:
        return "".join(f"\n\n{entry}" for entry in state.history)

    def _trim_history(self, state: DiscussionState) -> None:
        dropped = 0
        while state.history and len(state.base_context) + len(self._render_history(state)) > self.max_context_chars:
            state.history.pop(0)
            dropped += 1
        if dropped:
            logger.debug("Dropped %d oldest discussion entries to bound context", dropped)

    def build_context(self, state: DiscussionState) -> str:
        """Base query, earlier rounds, round instruction, then this round's answers so far."""
        context = state.base_context + self._render_history(state)
        if state.round_number > 1:
            context += "\n\n" + round_instruction(state.round_number, state.session.max_rounds)
        if state.current_entries:
            context += "\n\nCurrent round responses:\n" + "\n\n".join(state.current_entries)
        return context

    async def _record_failure(self, state: DiscussionState, role: str, exc: ProviderError) -> None:
        logger.warning("Role %s failed in round %d (%s): %s", role, state.round_number, exc.kind.value, exc)
        state.current_round.failures.append(AgentFailure(
            role=role,
            round_number=state.round_number,
            reason=exc.kind.value,
            message=str(exc),
        ))
        await self._stream.emit(AgentError(
            role=role,
            reason=exc.kind.value,
            error=str(exc),
            round_number=state.round_number,
        ))

    def _parse_reply(self, state: DiscussionState, reply: GatewayReply) -> tuple[str, ResponseMetadata | None]:
        text = reply.content.strip()
        metadata = reply.metadata
        if reply.footer_requested:
            text, parsed = split_metadata(text)
            metadata = metadata or parsed
        wants_metadata = state.evidence.has_documents or state.evidence.has_market
        if metadata is None and wants_metadata and not reply.is_demo:
            metadata = ResponseMetadata(
                confidence_label=DEFAULT_CONFIDENCE_LABEL,
                confidence=DEFAULT_CONFIDENCE,
                cited_evidence=extract_citations(text),
            )
        return text, metadata

    async def _record_response(self, state: DiscussionState, role: str, reply: GatewayReply) -> None:
        text, metadata = self._parse_reply(state, reply)
        response = AgentResponse(
            role=role,
            content=text,
            model=reply.model,
            round_number=state.round_number,
            timestamp=reply.timestamp,
            latency_sec=reply.latency_sec,
            token_count=reply.token_count,
            metadata=metadata,
            from_cache=reply.from_cache,
            is_demo=reply.is_demo,
            citations=extract_citations(text),
        )
        confidence = metadata.confidence if metadata else DEFAULT_CONFIDENCE

        await self._stream.emit(AgentResponseEvent(
            role=role,
            response=text,
            model=reply.model,
            timestamp=reply.timestamp,
            round_number=state.round_number,
            confidence=confidence,
            from_cache=reply.from_cache,
            metadata=metadata_payload(metadata),
        ))

        state.current_round.responses.append(response)
        state.current_entries.append(f"{role.upper()}: {text}")

        response.audit_id = self._track_decision(state, response, confidence)
        self._remember(state, response, confidence)

    def _track_decision(self, state: DiscussionState, response: AgentResponse, confidence: float) -> str | None:
        if self._recorder is None:
            return None
        evidence = state.evidence
        try:
            audit_id = self._recorder.start_tracking(
                state.session.id,
                response.role,
                AuditContext(
                    query=state.query,
                    documents=[d.source_name for d in evidence.documents],
                    market=["live_market_data"] if evidence.has_market else [],
                    memory=["memory_context"] if evidence.advice_for(response.role) else [],
                ),
            )
            elapsed_ms = response.latency_sec * 1000
            if evidence.has_documents:
                self._recorder.add_step(
                    audit_id, "evidence",
                    f"Analyzed {len(evidence.documents)} relevant company documents for context",
                    evidence.document_items(), 0.9, elapsed_ms * _STEP_SHARES["evidence"],
                )
            if evidence.has_market:
                self._recorder.add_step(
                    audit_id, "analysis",
                    "Incorporated current market intelligence and economic indicators",
                    evidence.market_items(), 0.8, elapsed_ms * _STEP_SHARES["analysis"],
                )
            memory_items = evidence.memory_items(response.role)
            if memory_items:
                self._recorder.add_step(
                    audit_id, "synthesis",
                    "Applied learned insights from previous similar decisions",
                    memory_items, 0.75, elapsed_ms * _STEP_SHARES["synthesis"],
                )
            self._recorder.add_step(
                audit_id, "conclusion",
                f"Generated response using {response.model} with comprehensive context analysis",
                [EvidenceItem(
                    id=f"model_{audit_id}",
                    type="external",
                    source=response.model,
                    content=f"AI-generated response with {len(response.content)} characters",
                    relevance=1.0,
                    reliability=0.8,
                    citation=f"[{response.model}]",
                )],
                0.8, elapsed_ms * _STEP_SHARES["conclusion"],
            )
            self._recorder.complete_tracking(audit_id, response.content, confidence)
        except Exception as exc:
            logger.warning("Failed to track decision for %s: %s", response.role, exc)
            return None
        return audit_id

    def _remember(self, state: DiscussionState, response: AgentResponse, confidence: float) -> None:
        if self._memory is None or response.is_demo:
            return
        scenario = state.scenario
        try:
            self._memory.store(
                role=response.role,
                session_id=state.session.id,
                context=f"{scenario.name}: {state.query}",
                content=response.content,
                confidence=confidence,
                tags=[response.role, "ai_response", "_".join(scenario.name.lower().split())],
            )
        except Exception as exc:
            logger.warning("Failed to store memory for %s: %s", response.role, exc)
