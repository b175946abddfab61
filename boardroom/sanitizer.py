"""Prompt-injection screening and normalisation for user-supplied text."""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_SANITIZED_CHARS = 10000

# Any match blocks the input outright
DANGEROUS_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore\s+(previous|all)\s+(instructions|prompts?)",
        r"forget\s+(everything|all)\s+(above|before)",
        r"you\s+are\s+now\s+a\s+different",
        r"pretend\s+to\s+be",
        r"act\s+as\s+if",
        r"system\s*:\s*",
        r"assistant\s*:\s*",
        r"human\s*:\s*",
        r"jailbreak",
        r"DAN\s+mode",
        r"developer\s+mode",
        r"unrestricted",
        r"bypass\s+safety",
        r"<\s*script\s*",
        r"javascript\s*:",
        r"data\s*:\s*text/html",
        r"on\w+\s*=",
        r"union\s+select",
        r"drop\s+table",
        r"delete\s+from",
        r"'.*or.*'.*=",
    )
)

# Matches are reported as warnings but not blocked
SUSPICIOUS_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"generate\s+(password|token|key)",
        r"create\s+(virus|malware)",
        r"hack\s+into",
        r"personal\s+information",
        r"credit\s+card",
        r"social\s+security",
    )
)

_TAG_RE = re.compile(r"<[^>]*>")
_SPECIAL_RUN_RE = re.compile(r"[!@#$%^&*()]{4,}")


@dataclass
class SanitizationResult:
    sanitized: str
    blocked: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.warnings


def sanitize_for_prompt(text: str) -> SanitizationResult:
    """Screen text for injection patterns and normalise it for prompt use."""
    if not isinstance(text, str) or not text.strip():
        return SanitizationResult(sanitized="", blocked=True, warnings=["Empty or invalid input"])

    result = SanitizationResult(sanitized=text.strip())
    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(result.sanitized):
            result.warnings.append(f"Blocked potentially dangerous content: {pattern.pattern}")
            result.blocked = True
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(result.sanitized):
            result.warnings.append(f"Flagged suspicious content: {pattern.pattern}")

    cleaned = " ".join(result.sanitized.split())
    cleaned = cleaned.replace("\0", "")
    cleaned = _SPECIAL_RUN_RE.sub(lambda m: m.group(0)[:3], cleaned)
    cleaned = _TAG_RE.sub("", cleaned)
    if len(cleaned) > MAX_SANITIZED_CHARS:
        result.warnings.append("Input truncated: exceeds maximum length")
        cleaned = cleaned[:MAX_SANITIZED_CHARS]
    result.sanitized = cleaned

    if result.warnings:
        logger.debug("Sanitizer warnings: %s", result.warnings)
    return result


def sanitize_company_name(name: str, max_len: int = 100) -> str:
    cleaned = re.sub(r"[<>\"']", "", name.strip())
    return " ".join(cleaned.split())[:max_len]
