"""Session entry point: validate a request, gather evidence once, run rounds, synthesize."""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from config.config_loader import EvidenceConfig
from boardroom.audit import DecisionAuditRecorder
from boardroom.debate import DEFAULT_MAX_CONTEXT_CHARS, MAX_ROUNDS, MIN_ROUNDS, RoundOrchestrator
from boardroom.events import ErrorEvent
from boardroom.evidence import DocumentSearch, MarketDataSource, SessionEvidence, gather_evidence
from boardroom.gateway import ResponderGateway
from boardroom.heuristics import ConclusionHeuristic
from boardroom.memory import AgentMemory
from boardroom.models import KNOWN_ROLES, DiscussionSession, Scenario, SessionOutcome, SessionStatus
from boardroom.sanitizer import sanitize_company_name, sanitize_for_prompt
from boardroom.stream import EventStream
from boardroom.synthesis import ConsensusSynthesizer

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = 5000
MAX_SCENARIO_NAME_CHARS = 200
MAX_SCENARIO_DESCRIPTION_CHARS = 2000
MAX_COMPANY_CHARS = 100
MAX_SESSION_ID_CHARS = 50
MAX_SELECTED_DOCUMENTS = 10


class RequestValidationError(ValueError):
    """The request was rejected before any orchestration began."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Invalid request: " + "; ".join(errors))


@dataclass
class HistoryMessage:
    role: str
    content: str


@dataclass
class SessionRequest:
    query: str
    roles: list[str] = field(default_factory=lambda: list(KNOWN_ROLES))
    max_rounds: int = 3
    auto_conclusion: bool = True
    scenario_name: str | None = None
    scenario_description: str | None = None
    scenario_parameters: dict[str, Any] = field(default_factory=dict)
    company_name: str = "the company"
    session_id: str | None = None
    conversation_history: list[HistoryMessage] = field(default_factory=list)
    selected_documents: list[str] = field(default_factory=list)
    user_scope: str | None = None
    demo: bool = False

    def scenario(self) -> Scenario:
        defaults = Scenario()
        return Scenario(
            name=self.scenario_name or defaults.name,
            description=self.scenario_description or defaults.description,
            parameters=dict(self.scenario_parameters),
        )


def _check_text(errors: list[str], label: str, value: str | None, max_len: int) -> str | None:
    if value is None:
        return None
    if not value.strip() or len(value) > max_len:
        errors.append(f"{label} must be 1-{max_len} characters")
        return value
    result = sanitize_for_prompt(value)
    if result.blocked:
        errors.append(f"{label} contains prohibited content")
    return result.sanitized


def validate_request(request: SessionRequest) -> SessionRequest:
    """Return a sanitised copy of the request or raise RequestValidationError."""
    errors: list[str] = []

    query = request.query if isinstance(request.query, str) else ""
    if not query.strip() or len(query) > MAX_QUERY_CHARS:
        errors.append(f"query must be 1-{MAX_QUERY_CHARS} characters")
    else:
        result = sanitize_for_prompt(query)
        if result.blocked:
            errors.append("query contains prohibited content")
        query = result.sanitized

    roles = list(request.roles)
    if not 1 <= len(roles) <= len(KNOWN_ROLES):
        errors.append(f"roles must list 1-{len(KNOWN_ROLES)} participants")
    unknown = [r for r in roles if r not in KNOWN_ROLES]
    if unknown:
        errors.append(f"unknown roles: {', '.join(map(str, unknown))}")
    if len(set(roles)) != len(roles):
        errors.append("roles must be unique")

    if (
        isinstance(request.max_rounds, bool)
        or not isinstance(request.max_rounds, int)
        or not MIN_ROUNDS <= request.max_rounds <= MAX_ROUNDS
    ):
        errors.append(f"max_rounds must be an integer between {MIN_ROUNDS} and {MAX_ROUNDS}")

    name = _check_text(errors, "scenario name", request.scenario_name, MAX_SCENARIO_NAME_CHARS)
    description = _check_text(
        errors, "scenario description", request.scenario_description, MAX_SCENARIO_DESCRIPTION_CHARS
    )

    if len(request.company_name) > MAX_COMPANY_CHARS:
        errors.append(f"company_name must be at most {MAX_COMPANY_CHARS} characters")
    if request.session_id is not None and not 0 < len(request.session_id) <= MAX_SESSION_ID_CHARS:
        errors.append(f"session_id must be 1-{MAX_SESSION_ID_CHARS} characters")
    if len(request.selected_documents) > MAX_SELECTED_DOCUMENTS:
        errors.append(f"at most {MAX_SELECTED_DOCUMENTS} selected documents are allowed")

    if errors:
        logger.info("Rejected session request: %s", errors)
        raise RequestValidationError(errors)

    return replace(
        request,
        query=query,
        roles=roles,
        scenario_name=name,
        scenario_description=description,
        company_name=sanitize_company_name(request.company_name) or "the company",
    )


def build_initial_context(request: SessionRequest) -> str:
    context = f"User Query: {request.query}"
    if request.conversation_history:
        history = "\n\n".join(f"{m.role.upper()}: {m.content}" for m in request.conversation_history)
        context += f"\n\nPrevious Discussion:\n{history}"
    return context


async def run_boardroom(
    request: SessionRequest,
    gateway: ResponderGateway,
    stream: EventStream,
    recorder: DecisionAuditRecorder | None = None,
    memory: AgentMemory | None = None,
    documents: DocumentSearch | None = None,
    market: MarketDataSource | None = None,
    evidence_config: EvidenceConfig | None = None,
    heuristic: ConclusionHeuristic | None = None,
    max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
) -> SessionOutcome:
    """Run one boardroom session end to end and close the stream.

    Raises RequestValidationError before any event is emitted. Any other
    fault is reported as an ``error`` event and leaves the session escalated
    with whatever rounds had completed.
    """
    try:
        request = validate_request(request)
    except RequestValidationError:
        stream.close()
        raise
    evidence_config = evidence_config or EvidenceConfig()
    session = DiscussionSession(
        id=request.session_id or stream.session_id,
        roles=list(request.roles),
        max_rounds=request.max_rounds,
        auto_conclusion=request.auto_conclusion,
        created_at=datetime.now(timezone.utc),
    )
    scenario = request.scenario()

    orchestrator = RoundOrchestrator(
        gateway, stream, recorder=recorder, memory=memory, heuristic=heuristic,
        max_context_chars=max_context_chars,
    )
    synthesizer = ConsensusSynthesizer(gateway, gateway.prompts, recorder=recorder)
    outcome = SessionOutcome(session=session, rounds=[])
    start = time.monotonic()

    try:
        if request.demo:
            evidence = SessionEvidence()
        else:
            evidence = await gather_evidence(
                request.query,
                session.roles,
                documents=documents,
                market=market,
                advice=memory,
                top_k=evidence_config.top_k,
                min_score=evidence_config.min_score,
                watchlists=evidence_config.watchlists,
                user_scope=request.user_scope,
            )
        state = orchestrator.new_state(
            session,
            request.query,
            scenario,
            build_initial_context(request),
            evidence,
            demo=request.demo,
            company_name=request.company_name,
        )
        outcome.rounds = state.rounds
        await orchestrator.drive(state)

        responses = outcome.responses
        if session.status is SessionStatus.CANCELLED:
            logger.info("Session %s cancelled, skipping synthesis", session.id)
        elif ConsensusSynthesizer.should_run(responses):
            outcome.consensus = await synthesizer.synthesize(
                session, scenario, request.query, responses, evidence
            )
        elif responses:
            outcome.sole_response = responses[-1]
    except Exception as exc:
        logger.exception("Session %s failed", session.id)
        session.status = SessionStatus.ESCALATED
        await stream.emit(ErrorEvent(error=str(exc) or type(exc).__name__))
    finally:
        stream.close()

    outcome.audit_ids = [r.audit_id for r in outcome.responses if r.audit_id]
    outcome.total_duration_sec = time.monotonic() - start
    return outcome
