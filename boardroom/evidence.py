"""Evidence providers and once-per-session evidence assembly.

Documents, market data and memory advice are fetched a single time when a
session starts and handed to every role in every round as the same frozen
``SessionEvidence``. A failing source is logged and treated as empty.
"""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

from boardroom.models import EvidenceItem

logger = logging.getLogger(__name__)

DOCUMENT_RELIABILITY = 0.9
MARKET_RELEVANCE = 0.8
MARKET_RELIABILITY = 0.85
MEMORY_RELEVANCE = 0.75
MEMORY_RELIABILITY = 0.7
NEWS_ITEMS = 5
DOCUMENT_EXCERPT_CHARS = 1500
# Advice text that means "nothing to add"
NO_EXPERIENCE = "No relevant past experience found for this context."


@dataclass(frozen=True)
class DocumentHit:
    id: str
    source_name: str
    text: str
    score: float


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    change_percent: float
    pe: float | None = None


@dataclass(frozen=True)
class NewsItem:
    title: str
    source: str
    published_at: datetime
    description: str = ""
    sentiment: str = "neutral"


@dataclass(frozen=True)
class MarketSnapshot:
    indices: dict[str, Quote]
    stocks: list[Quote]
    news: list[NewsItem]
    sector_performance: dict[str, float]
    timestamp: datetime


class DocumentSearch(Protocol):
    async def search(
        self, query: str, top_k: int, min_score: float, user_scope: str | None = None
    ) -> list[DocumentHit]: ...


class MarketDataSource(Protocol):
    async def fetch(self, watchlist: list[str]) -> MarketSnapshot: ...


class AdviceSource(Protocol):
    async def advise(self, role: str, context: str) -> str: ...


@dataclass(frozen=True)
class SessionEvidence:
    """Evidence shared read-only by every role and round of one session."""

    documents: tuple[DocumentHit, ...] = ()
    market: MarketSnapshot | None = None
    advice: dict[str, str] = field(default_factory=dict)
    documents_block: str = ""
    market_block: str = ""
    fingerprint: str = ""

    @property
    def has_documents(self) -> bool:
        return bool(self.documents)

    @property
    def has_market(self) -> bool:
        return self.market is not None

    def advice_for(self, role: str) -> str:
        return self.advice.get(role, "")

    def document_items(self) -> list[EvidenceItem]:
        return [
            EvidenceItem(
                id=doc.id,
                type="document",
                source=doc.source_name,
                content=_excerpt(doc.text, 200),
                relevance=doc.score,
                reliability=DOCUMENT_RELIABILITY,
                citation=f"[{i}] {doc.source_name}",
            )
            for i, doc in enumerate(self.documents, start=1)
        ]

    def market_items(self) -> list[EvidenceItem]:
        if self.market is None:
            return []
        return [EvidenceItem(
            id=f"market_{self.fingerprint[:12]}",
            type="market_data",
            source="Live Market Data",
            content=(
                f"Market conditions with {len(self.market.stocks)} stocks "
                f"and {len(self.market.news)} news items"
            ),
            relevance=MARKET_RELEVANCE,
            reliability=MARKET_RELIABILITY,
            citation="[Market Intelligence]",
        )]

    def memory_items(self, role: str) -> list[EvidenceItem]:
        advice = self.advice_for(role)
        if not advice:
            return []
        return [EvidenceItem(
            id=f"memory_{role}_{self.fingerprint[:12]}",
            type="memory",
            source="Agent Memory",
            content=_excerpt(advice, 200),
            relevance=MEMORY_RELEVANCE,
            reliability=MEMORY_RELIABILITY,
            citation="[Past Experience]",
        )]

    def citation_summary(self) -> dict | None:
        """Document citations reported with session_complete, or None without documents."""
        if not self.documents:
            return None
        return {
            "documents_used": len(self.documents),
            "citations": [
                {
                    "id": doc.id,
                    "name": doc.source_name,
                    "relevance_score": doc.score,
                    "excerpt": _excerpt(doc.text, 150),
                    "citation_index": i,
                }
                for i, doc in enumerate(self.documents, start=1)
            ],
        }


def _excerpt(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _signed(value: float) -> str:
    return f"{'+' if value > 0 else ''}{value:.2f}%"


def format_documents(documents: list[DocumentHit] | tuple[DocumentHit, ...]) -> str:
    """Numbered document excerpts followed by the citation source map."""
    if not documents:
        return ""
    excerpts = "\n\n".join(
        f"[Document {i}] {doc.source_name}:\n{_excerpt(doc.text, DOCUMENT_EXCERPT_CHARS)}"
        for i, doc in enumerate(documents, start=1)
    )
    source_map = "\n".join(f"[{i}] {doc.source_name}" for i, doc in enumerate(documents, start=1))
    return f"{excerpts}\n\nDOCUMENT SOURCES:\n{source_map}"


def format_market(snapshot: MarketSnapshot | None) -> str:
    if snapshot is None:
        return ""
    lines = [f"Market Data ({snapshot.timestamp:%Y-%m-%d %H:%M}):", "", "MAJOR INDICES:"]
    for name, quote in snapshot.indices.items():
        lines.append(f"• {name}: {quote.price:.2f} ({_signed(quote.change_percent)})")

    if snapshot.stocks:
        lines += ["", "KEY STOCKS (Watchlist):"]
        for stock in snapshot.stocks:
            line = f"• {stock.symbol}: ${stock.price:.2f} ({_signed(stock.change_percent)})"
            if stock.pe:
                line += f" [P/E: {stock.pe:.1f}]"
            lines.append(line)

    if snapshot.sector_performance:
        lines += ["", "SECTOR PERFORMANCE:"]
        for sector, perf in sorted(snapshot.sector_performance.items(), key=lambda kv: kv[1], reverse=True):
            lines.append(f"• {sector}: {_signed(perf)}")

    if snapshot.news:
        lines += ["", "RECENT FINANCIAL NEWS:"]
        for i, item in enumerate(snapshot.news[:NEWS_ITEMS], start=1):
            lines.append(f"{i}. [{item.sentiment.upper()}] {item.title}")
            if item.description:
                lines.append(f"   {_excerpt(item.description, 150)}")
            lines.append(f"   Source: {item.source} | {item.published_at:%Y-%m-%d}")
    return "\n".join(lines)


def session_watchlist(roles: list[str], watchlists: dict[str, list[str]]) -> list[str]:
    """Union of the participating roles' watchlists, in first-seen order."""
    symbols: list[str] = []
    for role in roles:
        for symbol in watchlists.get(role, []):
            if symbol not in symbols:
                symbols.append(symbol)
    return symbols


def _fingerprint(documents_block: str, market_block: str, advice: dict[str, str]) -> str:
    digest = hashlib.sha256()
    digest.update(documents_block.encode("utf-8"))
    digest.update(market_block.encode("utf-8"))
    for role in sorted(advice):
        digest.update(f"{role}:{advice[role]}".encode("utf-8"))
    return digest.hexdigest()


async def _search_documents(
    search: DocumentSearch, query: str, top_k: int, min_score: float, user_scope: str | None
) -> list[DocumentHit]:
    try:
        hits = await search.search(query, top_k=top_k, min_score=min_score, user_scope=user_scope)
    except Exception as exc:
        logger.warning("Document retrieval failed, proceeding without document context: %s", exc)
        return []
    logger.info("Retrieved %d relevant documents", len(hits))
    return list(hits)


async def _fetch_market(source: MarketDataSource, watchlist: list[str]) -> MarketSnapshot | None:
    try:
        snapshot = await source.fetch(watchlist)
    except Exception as exc:
        logger.warning("Market intelligence retrieval failed, proceeding without market context: %s", exc)
        return None
    logger.info("Retrieved market data with %d stocks, %d news items", len(snapshot.stocks), len(snapshot.news))
    return snapshot


async def _advise(source: AdviceSource, role: str, context: str) -> str:
    try:
        advice = (await source.advise(role, context)).strip()
    except Exception as exc:
        logger.warning("Memory advice retrieval failed for %s: %s", role, exc)
        return ""
    return "" if advice == NO_EXPERIENCE else advice


async def gather_evidence(
    query: str,
    roles: list[str],
    documents: DocumentSearch | None = None,
    market: MarketDataSource | None = None,
    advice: AdviceSource | None = None,
    top_k: int = 5,
    min_score: float = 0.7,
    watchlists: dict[str, list[str]] | None = None,
    user_scope: str | None = None,
) -> SessionEvidence:
    """Fetch every evidence source once for the session. Never raises on source failure."""
    async def _no_documents() -> list[DocumentHit]:
        return []

    async def _no_market() -> MarketSnapshot | None:
        return None

    doc_task = (
        _search_documents(documents, query, top_k, min_score, user_scope) if documents else _no_documents()
    )
    market_task = (
        _fetch_market(market, session_watchlist(roles, watchlists or {})) if market else _no_market()
    )
    advice_tasks = [_advise(advice, role, query) for role in roles] if advice else []

    hits, snapshot, *advice_texts = await asyncio.gather(doc_task, market_task, *advice_tasks)
    role_advice = {role: text for role, text in zip(roles, advice_texts) if text}

    documents_block = format_documents(hits)
    market_block = format_market(snapshot)
    return SessionEvidence(
        documents=tuple(hits),
        market=snapshot,
        advice=role_advice,
        documents_block=documents_block,
        market_block=market_block,
        fingerprint=_fingerprint(documents_block, market_block, role_advice),
    )


_TOKEN_RE = re.compile(r"[a-z0-9]{3,}")


def _terms(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


class LocalDocumentSearch:
    """Term-overlap search over .md/.txt files in a directory.

    Score is the fraction of query terms present in the document, so it is
    always in [0, 1].
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def _load(self) -> list[tuple[Path, str]]:
        files = sorted(p for p in self._directory.glob("*") if p.suffix.lower() in {".md", ".txt"})
        return [(p, p.read_text(encoding="utf-8", errors="replace")) for p in files]

    async def search(
        self, query: str, top_k: int, min_score: float, user_scope: str | None = None
    ) -> list[DocumentHit]:
        query_terms = _terms(query)
        if not query_terms:
            return []
        docs = await asyncio.to_thread(self._load)
        hits: list[DocumentHit] = []
        for path, text in docs:
            score = len(query_terms & _terms(text)) / len(query_terms)
            if score >= min_score:
                hits.append(DocumentHit(id=path.stem, source_name=path.name, text=text.strip(), score=score))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]
