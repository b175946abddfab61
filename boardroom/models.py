"""Pure dataclasses for the boardroom discussion pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

KNOWN_ROLES: tuple[str, ...] = ("ceo", "cfo", "cto", "hr")


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CONCLUDED = "concluded"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


@dataclass
class Scenario:
    name: str = "Boardroom Discussion"
    description: str = "AI-powered executive discussion"
    parameters: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class ModelResponse:
    provider: str          # "gemini", "openai", "claude"
    model: str             # actual model string used
    round_number: int
    content: str
    latency_sec: float
    token_count: int | None


@dataclass
class ResponseMetadata:
    confidence_label: str  # "High", "Medium", "Low"
    confidence: float
    key_factors: list[str] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)
    assumptions: list[str] = field(default_factory=list)
    data_sources: list[str] = field(default_factory=list)
    cited_evidence: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EvidenceItem:
    id: str
    type: str              # "document", "market_data", "memory", "collaboration", "external"
    source: str
    content: str
    relevance: float
    reliability: float
    citation: str


@dataclass
class AgentResponse:
    role: str
    content: str
    model: str
    round_number: int
    timestamp: datetime
    latency_sec: float
    token_count: int
    metadata: ResponseMetadata | None = None
    from_cache: bool = False
    is_demo: bool = False
    citations: list[str] = field(default_factory=list)
    audit_id: str | None = None


@dataclass
class AgentFailure:
    role: str
    round_number: int
    reason: str            # FailureKind value
    message: str


@dataclass
class Round:
    number: int
    responses: list[AgentResponse] = field(default_factory=list)
    failures: list[AgentFailure] = field(default_factory=list)


@dataclass
class DiscussionSession:
    id: str
    roles: list[str]
    max_rounds: int
    auto_conclusion: bool
    created_at: datetime
    current_round: int = 0
    status: SessionStatus = SessionStatus.ACTIVE


@dataclass
class ReasoningStep:
    step_number: int
    type: str              # "analysis", "synthesis", "conclusion", "evidence", "assumption"
    description: str
    evidence: list[EvidenceItem]
    confidence: float
    timestamp: datetime
    processing_time_ms: float


@dataclass
class UserFeedback:
    id: str
    user_id: str
    kind: str              # "rating", "comment", "correction", "validation"
    value: float | str
    timestamp: datetime
    context: str


@dataclass
class AuditContext:
    query: str
    session_type: str = "agent_response"
    documents: list[str] = field(default_factory=list)
    market: list[str] = field(default_factory=list)
    memory: list[str] = field(default_factory=list)
    collaboration: list[str] = field(default_factory=list)


@dataclass
class DecisionAuditTrail:
    id: str
    session_id: str
    role: str
    context: AuditContext
    created_at: datetime
    decision: str = ""
    reasoning: list[ReasoningStep] = field(default_factory=list)
    confidence: float = 0.0
    evidence_count: int = 0
    total_processing_time_ms: float = 0.0
    outcome: str | None = None       # "success", "failure", "pending"
    business_impact: dict[str, float] = field(default_factory=dict)
    feedback: list[UserFeedback] = field(default_factory=list)


@dataclass
class ConfidenceBreakdown:
    overall: float
    components: dict[str, float]
    positive_factors: list[str] = field(default_factory=list)
    negative_factors: list[str] = field(default_factory=list)
    neutral_factors: list[str] = field(default_factory=list)


@dataclass
class DecisionExplanation:
    summary: str
    reasoning: str
    evidence: str
    confidence: str
    recommendations: list[str] = field(default_factory=list)


@dataclass
class ExplainabilityMetrics:
    transparency_score: float
    reasoning_depth: float
    evidence_coverage: float
    user_comprehension: float
    decision_traceability: float


@dataclass(frozen=True)
class SourceReference:
    name: str
    count: int
    roles: tuple[str, ...]


@dataclass
class ConsensusRecord:
    synthesis: str
    confidence: str        # "High", "Medium", "Low"
    agent_count: int
    sources: list[SourceReference]
    model: str
    timestamp: datetime


@dataclass
class SessionOutcome:
    session: DiscussionSession
    rounds: list[Round]
    consensus: ConsensusRecord | None = None
    sole_response: AgentResponse | None = None
    audit_ids: list[str] = field(default_factory=list)
    total_duration_sec: float = 0.0

    @property
    def responses(self) -> list[AgentResponse]:
        return [r for rnd in self.rounds for r in rnd.responses]

    @property
    def failures(self) -> list[AgentFailure]:
        return [f for rnd in self.rounds for f in rnd.failures]
