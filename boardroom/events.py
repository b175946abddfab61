"""Typed session events. Each serialises to the JSON payload consumers receive."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union


def _iso(ts: datetime) -> str:
    return ts.isoformat()


@dataclass
class SessionStart:
    type: ClassVar[str] = "session_start"
    session_id: str
    query: str
    scenario: str
    roles: list[str]
    max_rounds: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "sessionId": self.session_id,
            "query": self.query,
            "scenario": self.scenario,
            "agents": list(self.roles),
            "maxRounds": self.max_rounds,
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class RoundStart:
    type: ClassVar[str] = "round_start"
    round_number: int
    max_rounds: int
    is_follow_up: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "round": self.round_number,
            "maxRounds": self.max_rounds,
            "isFollowUp": self.is_follow_up,
        }


@dataclass
class AgentStart:
    type: ClassVar[str] = "agent_start"
    role: str
    position: int
    total: int
    round_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "agent": self.role,
            "position": self.position,
            "total": self.total,
            "round": self.round_number,
        }


@dataclass
class AgentResponseEvent:
    type: ClassVar[str] = "agent_response"
    role: str
    response: str
    model: str
    timestamp: datetime
    round_number: int
    confidence: float
    from_cache: bool = False
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "agent": self.role,
            "response": self.response,
            "model": self.model,
            "timestamp": _iso(self.timestamp),
            "round": self.round_number,
            "confidence": self.confidence,
            "cached": self.from_cache,
        }
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload


@dataclass
class AgentError:
    type: ClassVar[str] = "agent_error"
    role: str
    reason: str
    error: str
    round_number: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "agent": self.role,
            "reason": self.reason,
            "error": self.error,
            "round": self.round_number,
        }


@dataclass
class RoundComplete:
    type: ClassVar[str] = "round_complete"
    round_number: int
    max_rounds: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "round": self.round_number, "totalRounds": self.max_rounds}


@dataclass
class SessionComplete:
    type: ClassVar[str] = "session_complete"
    timestamp: datetime
    total_rounds: int
    response_count: int
    status: str
    document_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "timestamp": _iso(self.timestamp),
            "totalRounds": self.total_rounds,
            "responseCount": self.response_count,
            "status": self.status,
        }
        if self.document_context is not None:
            payload["documentContext"] = self.document_context
        return payload


@dataclass
class ErrorEvent:
    type: ClassVar[str] = "error"
    error: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "error": self.error}
        if self.details:
            payload["details"] = self.details
        return payload


SessionEvent = Union[
    SessionStart,
    RoundStart,
    AgentStart,
    AgentResponseEvent,
    AgentError,
    RoundComplete,
    SessionComplete,
    ErrorEvent,
]


def metadata_payload(metadata) -> dict[str, Any] | None:
    """Serialise ResponseMetadata for the agent_response event."""
    if metadata is None:
        return None
    data = asdict(metadata)
    return {
        "confidence": data["confidence_label"],
        "keyFactors": data["key_factors"],
        "risks": data["risks"],
        "assumptions": data["assumptions"],
        "dataSources": data["data_sources"],
        "citedEvidence": data["cited_evidence"],
    }
