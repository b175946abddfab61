"""Per-role memory of past decisions, used to produce advice for new discussions."""

import logging
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

ADVICE_LIMIT = 5
SUMMARY_CHARS = 200

_TOKEN_RE = re.compile(r"[a-z0-9]{3,}")


@dataclass
class MemoryRecord:
    id: str
    role: str
    session_id: str
    context: str
    content: str
    confidence: float
    timestamp: datetime
    tags: list[str] = field(default_factory=list)
    outcome: str | None = None   # "success", "failure", "partial"


def _terms(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


class AgentMemory:
    """In-process store of role decisions. Satisfies the AdviceSource protocol."""

    def __init__(self) -> None:
        self._records: dict[str, list[MemoryRecord]] = {}
        self._lock = threading.Lock()

    def store(
        self,
        role: str,
        session_id: str,
        context: str,
        content: str,
        confidence: float,
        tags: list[str] | None = None,
    ) -> str:
        record = MemoryRecord(
            id=uuid.uuid4().hex,
            role=role,
            session_id=session_id,
            context=context,
            content=content,
            confidence=confidence,
            timestamp=datetime.now(timezone.utc),
            tags=list(tags or []),
        )
        with self._lock:
            self._records.setdefault(role, []).append(record)
        return record.id

    def record_outcome(self, session_id: str, role: str, outcome: str) -> int:
        """Mark every memory of the role from that session. Returns how many were updated."""
        updated = 0
        with self._lock:
            for record in self._records.get(role, []):
                if record.session_id == session_id:
                    record.outcome = outcome
                    updated += 1
        logger.debug("Recorded outcome %s on %d memories for %s", outcome, updated, role)
        return updated

    def relevant(self, role: str, context: str, limit: int = ADVICE_LIMIT) -> list[MemoryRecord]:
        """Memories sharing terms with the context, best match first, newest breaking ties."""
        query = _terms(context)
        if not query:
            return []
        scored = []
        for position, record in enumerate(list(self._records.get(role, []))):
            overlap = len(query & _terms(f"{record.context} {record.content}"))
            if overlap:
                scored.append((overlap / len(query), record.timestamp, position, record))
        scored.sort(key=lambda entry: entry[:3], reverse=True)
        return [entry[3] for entry in scored[:limit]]

    async def advise(self, role: str, context: str) -> str:
        memories = self.relevant(role, context)
        successes = [m for m in memories if m.outcome == "success"]
        failures = [m for m in memories if m.outcome == "failure"]
        if not successes and not failures:
            return ""

        lines = ["Based on past experience:", ""]
        if successes:
            lines.append("**Successful approaches:**")
            for m in successes:
                lines.append(f"• {_summary(m.content)} ({m.confidence * 100:.0f}% confidence)")
            lines.append("")
        if failures:
            lines.append("**Approaches to avoid:**")
            for m in failures:
                lines.append(f"• {_summary(m.content)}")
        return "\n".join(lines).rstrip()


def _summary(text: str) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= SUMMARY_CHARS else flat[:SUMMARY_CHARS] + "..."
