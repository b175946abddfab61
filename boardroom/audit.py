"""Decision audit recorder: append-only reasoning trails and confidence breakdowns.

One recorder instance is shared by every session in a process. Writes take a
lock; reads work on a snapshot of the store, so a trail completed during a
historical-accuracy computation may or may not be counted.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from boardroom.models import (
    AuditContext,
    ConfidenceBreakdown,
    DecisionAuditTrail,
    DecisionExplanation,
    EvidenceItem,
    ExplainabilityMetrics,
    ReasoningStep,
    UserFeedback,
)

logger = logging.getLogger(__name__)

COMPONENT_WEIGHTS: dict[str, float] = {
    "evidence_quality": 0.25,
    "source_reliability": 0.20,
    "reasoning_consistency": 0.25,
    "historical_accuracy": 0.15,
    "consensus_agreement": 0.15,
}

SOURCE_RELIABILITY: dict[str, float] = {
    "document": 0.9,
    "market_data": 0.8,
    "collaboration": 0.8,
    "memory": 0.7,
    "external": 0.6,
}
UNKNOWN_SOURCE_RELIABILITY = 0.5

DEFAULT_HISTORICAL_ACCURACY = 0.5
STANDALONE_AGREEMENT = 0.7
COLLABORATIVE_AGREEMENT = 0.8
DEFAULT_RETENTION_DAYS = 30

STEP_TYPES = ("analysis", "synthesis", "conclusion", "evidence", "assumption")
OUTCOMES = ("success", "failure", "pending")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _variance(values: list[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def _all_evidence(trail: DecisionAuditTrail) -> list[EvidenceItem]:
    return [e for step in trail.reasoning for e in step.evidence]


class DecisionAuditRecorder:
    def __init__(
        self,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.retention = timedelta(days=retention_days)
        self._clock = clock
        self._trails: dict[str, DecisionAuditTrail] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._trails)

    def start_tracking(self, session_id: str, role: str, context: AuditContext) -> str:
        """Open an empty trail and return its id."""
        audit_id = f"audit_{uuid.uuid4().hex[:16]}"
        trail = DecisionAuditTrail(
            id=audit_id,
            session_id=session_id,
            role=role,
            context=context,
            created_at=self._clock(),
        )
        with self._lock:
            self._purge_locked()
            self._trails[audit_id] = trail
        logger.debug("Started decision tracking %s for %s in session %s", audit_id, role, session_id)
        return audit_id

    def add_step(
        self,
        audit_id: str,
        step_type: str,
        description: str,
        evidence: list[EvidenceItem],
        confidence: float,
        processing_time_ms: float,
    ) -> ReasoningStep | None:
        """Append a reasoning step. Unknown audit ids are logged and ignored."""
        with self._lock:
            trail = self._trails.get(audit_id)
            if trail is None:
                logger.warning("add_step on unknown audit trail %s ignored", audit_id)
                return None
            step = ReasoningStep(
                step_number=len(trail.reasoning) + 1,
                type=step_type,
                description=description,
                evidence=list(evidence),
                confidence=_clamp(confidence),
                timestamp=self._clock(),
                processing_time_ms=max(0.0, processing_time_ms),
            )
            trail.reasoning.append(step)
            trail.evidence_count += len(step.evidence)
            trail.total_processing_time_ms += step.processing_time_ms
        return step

    def complete_tracking(self, audit_id: str, decision: str, confidence: float) -> DecisionAuditTrail | None:
        """Set the final decision. Calling again overwrites the previous values."""
        with self._lock:
            trail = self._trails.get(audit_id)
            if trail is None:
                logger.warning("complete_tracking on unknown audit trail %s ignored", audit_id)
                return None
            trail.decision = decision
            trail.confidence = _clamp(confidence)
        logger.info("Completed decision tracking %s (%s, %.0f%%)", audit_id, trail.role, trail.confidence * 100)
        return trail

    def add_feedback(
        self, audit_id: str, user_id: str, kind: str, value: float | str, context: str = ""
    ) -> UserFeedback | None:
        feedback = UserFeedback(
            id=f"feedback_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            kind=kind,
            value=value,
            timestamp=self._clock(),
            context=context,
        )
        with self._lock:
            trail = self._trails.get(audit_id)
            if trail is None:
                logger.warning("Feedback for unknown audit trail %s ignored", audit_id)
                return None
            trail.feedback.append(feedback)
        return feedback

    def record_outcome(
        self, audit_id: str, outcome: str, business_impact: dict[str, float] | None = None
    ) -> bool:
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown outcome {outcome!r}, expected one of {OUTCOMES}")
        with self._lock:
            trail = self._trails.get(audit_id)
            if trail is None:
                logger.warning("Outcome for unknown audit trail %s ignored", audit_id)
                return False
            trail.outcome = outcome
            if business_impact:
                trail.business_impact.update(business_impact)
        return True

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        cutoff = self._clock() - self.retention
        expired = [
            audit_id
            for audit_id, trail in self._trails.items()
            if trail.created_at < cutoff and trail.outcome is None
        ]
        for audit_id in expired:
            del self._trails[audit_id]
        if expired:
            logger.info("Purged %d expired audit trails", len(expired))
        return len(expired)

    def _snapshot(self) -> list[DecisionAuditTrail]:
        with self._lock:
            return list(self._trails.values())

    def get_trail(self, audit_id: str) -> DecisionAuditTrail | None:
        """Copy of one trail; later writes to the store do not show through."""
        with self._lock:
            trail = self._trails.get(audit_id)
            return copy.deepcopy(trail) if trail is not None else None

    def find_trails(
        self,
        session_id: str | None = None,
        role: str | None = None,
        outcome: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[DecisionAuditTrail]:
        trails = []
        for trail in self._snapshot():
            if session_id and trail.session_id != session_id:
                continue
            if role and trail.role != role:
                continue
            if outcome and trail.outcome != outcome:
                continue
            if start and trail.created_at < start:
                continue
            if end and trail.created_at > end:
                continue
            trails.append(trail)
        with self._lock:
            return [copy.deepcopy(t) for t in trails]

    def historical_accuracy(self, role: str) -> float:
        """Share of the role's trails with a recorded outcome that succeeded; 0.5 with no history."""
        decided = [t for t in self._snapshot() if t.role == role and t.outcome is not None]
        if not decided:
            return DEFAULT_HISTORICAL_ACCURACY
        return sum(1 for t in decided if t.outcome == "success") / len(decided)

    def confidence_breakdown(self, audit_id: str) -> ConfidenceBreakdown | None:
        trail = self._trails.get(audit_id)
        if trail is None:
            return None

        evidence = _all_evidence(trail)
        if evidence:
            quality = sum(_clamp(e.relevance) * _clamp(e.reliability) for e in evidence) / len(evidence)
            reliability = sum(
                SOURCE_RELIABILITY.get(e.type, UNKNOWN_SOURCE_RELIABILITY) for e in evidence
            ) / len(evidence)
        else:
            quality = reliability = 0.0

        if trail.reasoning:
            consistency = max(0.0, 1.0 - 2 * _variance([s.confidence for s in trail.reasoning]))
        else:
            consistency = 0.0

        components = {
            "evidence_quality": quality,
            "source_reliability": reliability,
            "reasoning_consistency": consistency,
            "historical_accuracy": self.historical_accuracy(trail.role),
            "consensus_agreement": (
                COLLABORATIVE_AGREEMENT if trail.context.collaboration else STANDALONE_AGREEMENT
            ),
        }
        components = {k: _clamp(v) for k, v in components.items()}
        overall = _clamp(sum(components[k] * w for k, w in COMPONENT_WEIGHTS.items()))

        return ConfidenceBreakdown(
            overall=overall,
            components=components,
            positive_factors=_positive_factors(trail),
            negative_factors=_negative_factors(trail),
            neutral_factors=_neutral_factors(trail),
        )

    def explain(self, audit_id: str) -> DecisionExplanation | None:
        """Natural-language account of one decision."""
        trail = self._trails.get(audit_id)
        breakdown = self.confidence_breakdown(audit_id)
        if trail is None or breakdown is None:
            return None

        by_type: dict[str, int] = {}
        for item in _all_evidence(trail):
            by_type[item.type] = by_type.get(item.type, 0) + 1

        summary = (
            f'The {trail.role.upper()} agent analyzed "{trail.context.query}" using '
            f"{trail.evidence_count} pieces of evidence across {len(trail.reasoning)} reasoning steps, "
            f"reaching a confidence level of {round(trail.confidence * 100)}%."
        )
        reasoning = "\n\n".join(
            f"{i}. {step.description} ({round(step.confidence * 100)}% confidence)"
            for i, step in enumerate(trail.reasoning, start=1)
        )
        evidence = ", ".join(
            f"{kind.replace('_', ' ').upper()}: {count} sources" for kind, count in by_type.items()
        )
        c = breakdown.components
        confidence = (
            f"Overall confidence: {round(breakdown.overall * 100)}% "
            f"(Evidence: {round(c['evidence_quality'] * 100)}%, "
            f"Reliability: {round(c['source_reliability'] * 100)}%, "
            f"Consistency: {round(c['reasoning_consistency'] * 100)}%)"
        )

        recommendations = []
        if breakdown.overall < 0.7:
            recommendations.append("Consider gathering additional evidence before making final decision")
        if trail.evidence_count < 5:
            recommendations.append("Expand evidence base with more diverse sources")
        if c["reasoning_consistency"] < 0.6:
            recommendations.append("Review reasoning steps for consistency and logical flow")
        if c["historical_accuracy"] < 0.7:
            recommendations.append("Consider lessons learned from similar past decisions")

        return DecisionExplanation(
            summary=summary,
            reasoning=reasoning,
            evidence=evidence,
            confidence=confidence,
            recommendations=recommendations,
        )

    def metrics(self, role: str | None = None) -> ExplainabilityMetrics:
        trails = [t for t in self._snapshot() if role is None or t.role == role]
        if not trails:
            return ExplainabilityMetrics(
                transparency_score=0.0,
                reasoning_depth=0.0,
                evidence_coverage=0.0,
                user_comprehension=0.0,
                decision_traceability=1.0,
            )

        avg_steps = sum(len(t.reasoning) for t in trails) / len(trails)
        avg_evidence = sum(t.evidence_count for t in trails) / len(trails)
        ratings = [
            float(fb.value)
            for t in trails
            for fb in t.feedback
            if fb.kind == "rating" and isinstance(fb.value, (int, float))
        ]
        comprehension = sum(ratings) / len(ratings) / 5 if ratings else 0.5

        return ExplainabilityMetrics(
            transparency_score=min(1.0, avg_steps / 5),
            reasoning_depth=min(1.0, avg_steps / 8),
            evidence_coverage=min(1.0, avg_evidence / 10),
            user_comprehension=_clamp(comprehension),
            decision_traceability=1.0,
        )


def _positive_factors(trail: DecisionAuditTrail) -> list[str]:
    factors = []
    if trail.evidence_count > 5:
        factors.append(f"Strong evidence base ({trail.evidence_count} sources)")
    if trail.confidence > 0.8:
        factors.append("High confidence score")
    if trail.context.documents:
        factors.append("Company document support")
    if trail.context.market:
        factors.append("Market data validation")
    return factors


def _negative_factors(trail: DecisionAuditTrail) -> list[str]:
    factors = []
    if trail.evidence_count < 3:
        factors.append("Limited evidence available")
    if trail.confidence < 0.6:
        factors.append("Low confidence score")
    if trail.total_processing_time_ms > 10000:
        factors.append("Extended processing time")
    return factors


def _neutral_factors(trail: DecisionAuditTrail) -> list[str]:
    return [
        f"Processing time: {trail.total_processing_time_ms:.0f}ms",
        f"Reasoning steps: {len(trail.reasoning)}",
        f"Agent type: {trail.role.upper()}",
    ]
