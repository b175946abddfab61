"""Rich console rendering of session events and markdown transcript save."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from boardroom.audit import DecisionAuditRecorder
from boardroom.events import (
    AgentError,
    AgentResponseEvent,
    AgentStart,
    ErrorEvent,
    RoundComplete,
    RoundStart,
    SessionComplete,
    SessionStart,
)
from boardroom.models import AgentResponse, DecisionExplanation, SessionOutcome
from boardroom.stream import StreamRecord

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 60) -> str:
    """Return first N words of a response."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def render_event(record: StreamRecord) -> None:
    """Print one stream event to the console."""
    event = record.event
    if isinstance(event, SessionStart):
        console.print(
            f"\n[bold cyan]Boardroom[/bold cyan] - {', '.join(r.upper() for r in event.roles)}, "
            f"up to {event.max_rounds} rounds"
        )
        console.print(f"Question: [italic]{event.query[:80]}{'...' if len(event.query) > 80 else ''}[/italic]\n")
    elif isinstance(event, RoundStart):
        label = "Follow-up" if event.is_follow_up else "Opening positions"
        console.print(Rule(f"[bold cyan]Round {event.round_number} of {event.max_rounds}: {label}[/bold cyan]"))
    elif isinstance(event, AgentStart):
        console.print(f"[dim]{event.role.upper()} is thinking ({event.position}/{event.total})...[/dim]")
    elif isinstance(event, AgentResponseEvent):
        subtitle = f"confidence {event.confidence:.0%}" + (" | cached" if event.from_cache else "")
        console.print(
            Panel(
                _preview(event.response),
                title=f"[bold]{event.role.upper()}[/bold] ({event.model})",
                subtitle=subtitle,
                border_style="dim",
            )
        )
    elif isinstance(event, AgentError):
        console.print(f"  [red]FAIL[/red] {event.role.upper()} unavailable ({event.reason}): {event.error[:120]}")
    elif isinstance(event, RoundComplete):
        console.print(f"[green]OK[/green] Round {event.round_number} complete\n")
    elif isinstance(event, SessionComplete):
        console.print(
            Text(
                f"Session complete: {event.total_rounds} rounds, {event.response_count} responses",
                style="dim",
            )
        )
    elif isinstance(event, ErrorEvent):
        console.print(f"[bold red]Error:[/bold red] {event.error}")


def print_outcome(outcome: SessionOutcome) -> None:
    """Print the consensus, or the sole response when no synthesis ran."""
    if outcome.consensus is not None:
        consensus = outcome.consensus
        console.print(Rule("[bold green]Boardroom Consensus[/bold green]"))
        console.print(
            Text(
                f"Synthesized by: {consensus.model} | "
                f"Confidence: {consensus.confidence} | "
                f"Responses: {consensus.agent_count} | "
                f"Duration: {outcome.total_duration_sec:.1f}s",
                style="dim",
            )
        )
        console.print(Markdown(consensus.synthesis))
    elif outcome.sole_response is not None:
        resp = outcome.sole_response
        console.print(Rule(f"[bold green]{resp.role.upper()} Recommendation[/bold green]"))
        console.print(Markdown(resp.content))
    elif outcome.responses:
        console.print("[yellow]Synthesis unavailable; the executive responses above stand on their own.[/yellow]")
    else:
        console.print("[yellow]No executive responded; no recommendation was produced.[/yellow]")


def print_explanation(role: str, explanation: DecisionExplanation) -> None:
    console.print(Rule(f"[bold]Decision audit: {role.upper()}[/bold]"))
    console.print(explanation.summary)
    console.print(Text(explanation.confidence, style="dim"))
    if explanation.evidence:
        console.print(Text(f"Evidence: {explanation.evidence}", style="dim"))
    for rec in explanation.recommendations:
        console.print(f"  - {rec}")


def _response_lines(resp: AgentResponse) -> list[str]:
    lines = [f"### {resp.role.upper()} ({resp.model})", "", resp.content, ""]
    footer = f"*Latency: {resp.latency_sec:.2f}s"
    if resp.metadata is not None:
        footer += f" | Confidence: {resp.metadata.confidence_label}"
    if resp.from_cache:
        footer += " | cached"
    lines += [footer + "*", ""]
    if resp.metadata is not None and resp.metadata.risks:
        lines += ["**Risks:** " + "; ".join(resp.metadata.risks), ""]
    return lines


def save_to_file(
    outcome: SessionOutcome,
    query: str,
    output_dir: Path,
    recorder: DecisionAuditRecorder | None = None,
    slug_override: str | None = None,
) -> Path:
    """Save the full session transcript as a markdown file.

    Args:
        outcome: The finished session.
        query: The question that was discussed.
        output_dir: Directory to save the file in.
        recorder: If given, per-response audit confidence is appended.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the question text. Useful for inbox mode.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(query)
    filepath = output_dir / f"{timestamp}_{slug}.md"
    session = outcome.session

    lines: list[str] = [
        f"# Boardroom Discussion: {query[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Session:** {session.id}",
        f"**Participants:** {', '.join(r.upper() for r in session.roles)}",
        f"**Rounds:** {len(outcome.rounds)} of {session.max_rounds}",
        f"**Status:** {session.status.value}",
        f"**Duration:** {outcome.total_duration_sec:.1f}s",
        "",
        "---",
        "",
    ]

    for rnd in outcome.rounds:
        lines += [f"## Round {rnd.number}", ""]
        for resp in rnd.responses:
            lines += _response_lines(resp)
        for failure in rnd.failures:
            lines += [f"> **{failure.role.upper()} unavailable** ({failure.reason}): {failure.message}", ""]

    if outcome.consensus is not None:
        consensus = outcome.consensus
        lines += [
            f"## Consensus (by {consensus.model}, confidence {consensus.confidence})",
            "",
            consensus.synthesis,
            "",
        ]
        if consensus.sources:
            lines += ["**Sources referenced:**", ""]
            lines += [f"- {s.name} ({s.count}x: {', '.join(s.roles)})" for s in consensus.sources]
            lines.append("")
    elif outcome.sole_response is not None:
        lines += [f"## Recommendation (sole response from {outcome.sole_response.role.upper()})", ""]

    if recorder is not None and outcome.audit_ids:
        lines += ["## Decision Audit", "", "| Role | Round | Confidence | Steps | Evidence |", "|---|---|---|---|---|"]
        for resp in outcome.responses:
            if resp.audit_id is None:
                continue
            breakdown = recorder.confidence_breakdown(resp.audit_id)
            trail = recorder.get_trail(resp.audit_id)
            if breakdown is None or trail is None:
                continue
            lines.append(
                f"| {resp.role.upper()} | {resp.round_number} | {breakdown.overall:.0%} "
                f"| {len(trail.reasoning)} | {trail.evidence_count} |"
            )
        lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Session saved to: %s", filepath)
    return filepath
