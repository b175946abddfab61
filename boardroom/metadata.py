"""Structured metadata attached to agent responses.

Agents that receive evidence are asked for a confidence label, key factors,
risks, assumptions and data sources. Providers with a JSON mode return these
from a separate structured call (``from_structured``); otherwise the model is
asked to append a delimited footer, which ``split_metadata`` extracts and
strips from the narrative text. Both paths are best-effort: anything missing
falls back to the defaults below.
"""

import logging
import re
from typing import Any

from boardroom.models import ResponseMetadata

logger = logging.getLogger(__name__)

METADATA_START = "---METADATA---"
METADATA_END = "---END_METADATA---"

DEFAULT_CONFIDENCE_LABEL = "Medium"
CONFIDENCE_VALUES: dict[str, float] = {"High": 0.9, "Medium": 0.75, "Low": 0.5}
DEFAULT_CONFIDENCE = CONFIDENCE_VALUES[DEFAULT_CONFIDENCE_LABEL]

_BLOCK_RE = re.compile(
    re.escape(METADATA_START) + r"(?P<body>.*?)(?:" + re.escape(METADATA_END) + r"|\Z)",
    re.DOTALL,
)
_CITATION_RE = re.compile(r"\[(\d{1,3})\]")
_SECTION_KEYS = {
    "KEY_FACTORS": "key_factors",
    "RISKS": "risks",
    "ASSUMPTIONS": "assumptions",
}


def metadata_footer(has_documents: bool, has_market: bool) -> str:
    """Instructions asking the model to append the delimited metadata block."""
    sources: list[str] = []
    if has_documents:
        sources.append("Company Documents")
    if has_market:
        sources.extend(["Market Intelligence", "Industry Trends"])
    return (
        "REQUIRED METADATA (Include at the end of your response in this exact format):\n"
        f"{METADATA_START}\n"
        "CONFIDENCE: [High/Medium/Low]\n"
        "KEY_FACTORS:\n- [Factor 1]\n- [Factor 2]\n- [Factor 3]\n"
        "RISKS:\n- [Risk 1]\n- [Risk 2]\n"
        "ASSUMPTIONS:\n- [Assumption 1]\n- [Assumption 2]\n"
        f"DATA_SOURCES: {', '.join(sources)}\n"
        f"{METADATA_END}"
    )


def structured_request(narrative: str) -> str:
    """Prompt for the separate JSON metadata call."""
    return (
        "Read the executive analysis below and describe it as a JSON object with keys "
        '"confidence" (one of "High", "Medium", "Low"), "key_factors", "risks", '
        '"assumptions" and "data_sources" (each a list of short strings).\n\n'
        f"ANALYSIS:\n{narrative}"
    )


def normalize_label(raw: str | None) -> str:
    if not raw:
        return DEFAULT_CONFIDENCE_LABEL
    cleaned = raw.strip().strip("[]*").strip().capitalize()
    return cleaned if cleaned in CONFIDENCE_VALUES else DEFAULT_CONFIDENCE_LABEL


def extract_citations(text: str) -> list[str]:
    """Return citation markers like ``[2]`` in first-seen order, de-duplicated."""
    seen: list[str] = []
    for match in _CITATION_RE.finditer(text):
        marker = f"[{match.group(1)}]"
        if marker not in seen:
            seen.append(marker)
    return seen


def _parse_block(body: str) -> ResponseMetadata:
    label = DEFAULT_CONFIDENCE_LABEL
    lists: dict[str, list[str]] = {v: [] for v in _SECTION_KEYS.values()}
    data_sources: list[str] = []
    current: str | None = None

    for raw_line in body.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        key, sep, value = line.partition(":")
        key = key.strip().upper()
        if sep and key == "CONFIDENCE":
            label = normalize_label(value)
            current = None
        elif sep and key in _SECTION_KEYS:
            current = _SECTION_KEYS[key]
            if value.strip():
                lists[current].append(value.strip())
        elif sep and key == "DATA_SOURCES":
            data_sources = [s.strip() for s in value.split(",") if s.strip()]
            current = None
        elif line.startswith(("-", "*", "•")) and current is not None:
            item = line.lstrip("-*• ").strip()
            if item:
                lists[current].append(item)

    return ResponseMetadata(
        confidence_label=label,
        confidence=CONFIDENCE_VALUES[label],
        key_factors=lists["key_factors"],
        risks=lists["risks"],
        assumptions=lists["assumptions"],
        data_sources=data_sources,
    )


def split_metadata(text: str) -> tuple[str, ResponseMetadata | None]:
    """Separate the narrative from a trailing metadata block.

    Returns (narrative, metadata). metadata is None when no block is present;
    sections missing from a present block default to empty lists and the
    default confidence.
    """
    match = _BLOCK_RE.search(text)
    if match is None:
        return text.strip(), None

    narrative = (text[: match.start()] + text[match.end():]).strip()
    metadata = _parse_block(match.group("body"))
    metadata.cited_evidence = extract_citations(narrative)
    logger.debug("Parsed metadata block: confidence=%s", metadata.confidence_label)
    return narrative, metadata


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def from_structured(payload: dict[str, Any], narrative: str) -> ResponseMetadata:
    """Build metadata from a provider's JSON-mode output."""
    label = normalize_label(str(payload.get("confidence", "")))
    return ResponseMetadata(
        confidence_label=label,
        confidence=CONFIDENCE_VALUES[label],
        key_factors=_as_list(payload.get("key_factors")),
        risks=_as_list(payload.get("risks")),
        assumptions=_as_list(payload.get("assumptions")),
        data_sources=_as_list(payload.get("data_sources")),
        cited_evidence=extract_citations(narrative),
    )
