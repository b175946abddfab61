"""Click CLI: config loading, provider wiring, a streamed boardroom session, and output."""

import asyncio
import logging
import os
import sys
import uuid
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from boardroom.audit import DecisionAuditRecorder
from boardroom.cache import RedisSharedCache, ResponseCache, TwoTierCache
from boardroom.evidence import LocalDocumentSearch
from boardroom.gateway import FACILITATOR, ResponderGateway
from boardroom.healthcheck import run_health_checks
from boardroom.inbox import InboxItem, archive_file, ensure_dirs, parse_file, scan_inbox
from boardroom.memory import AgentMemory
from boardroom.models import KNOWN_ROLES, SessionOutcome
from boardroom.output import print_explanation, print_outcome, render_event, save_to_file
from boardroom.providers.anthropic import AnthropicProvider
from boardroom.providers.base import AIProvider
from boardroom.providers.gemini import GeminiProvider
from boardroom.providers.openai_provider import OpenAIProvider
from boardroom.session import RequestValidationError, SessionRequest, run_boardroom
from boardroom.stream import EventStream, format_sse

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "claude": AnthropicProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=Console(stderr=True))],
    )


def _build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        if name not in PROVIDER_CLASSES:
            logging.warning("Provider '%s' unknown, skipping", name)
            continue
        try:
            providers[name] = PROVIDER_CLASSES[name](config.models[name])
        except Exception as exc:
            logging.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _pick_provider(preferred: str, providers: dict[str, AIProvider]) -> AIProvider | None:
    if preferred in providers:
        return providers[preferred]
    return next(iter(providers.values()), None)


def _assign_roles(config: AppConfig, providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Map each role (and the facilitator) onto a working provider.

    Per-role overrides from ``role_providers`` win over ``defaults.provider``.
    When the preferred provider is missing, any working provider stands in.
    """
    assigned: dict[str, AIProvider] = {}
    for role in KNOWN_ROLES:
        provider = _pick_provider(config.role_providers.get(role, config.defaults.provider), providers)
        if provider is not None:
            assigned[role] = provider
    facilitator = _pick_provider(config.defaults.facilitator, providers)
    if facilitator is not None:
        assigned[FACILITATOR] = facilitator
    return assigned


def _check_and_filter_providers(all_providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results = asyncio.run(run_health_checks(all_providers))

    failed_names: list[str] = []
    for name in sorted(results):
        result = results[name]
        if result.ok:
            console.print(f"  [green]OK  [/green] {name} ({result.latency_sec:.1f}s)")
        else:
            short_err = result.error.splitlines()[0][:120] if result.error else "unknown error"
            console.print(f"  [red]FAIL[/red] {name} [{result.kind.value}]: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(
        f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}"
    )
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _build_cache(config: AppConfig) -> TwoTierCache:
    shared = None
    redis_url = os.environ.get(config.gateway.shared_cache_url_env, "").strip()
    if redis_url:
        logger.info("Shared response cache enabled (%s)", config.gateway.shared_cache_url_env)
        shared = RedisSharedCache(redis_url)
    return TwoTierCache(
        local=ResponseCache(max_entries=config.gateway.cache_max_entries, ttl_sec=config.gateway.cache_ttl_sec),
        shared=shared,
        ttl_sec=config.gateway.cache_ttl_sec,
    )


async def _consume(stream: EventStream, sse: bool) -> None:
    async for record in stream:
        if sse:
            click.echo(format_sse(record), nl=False)
        else:
            render_event(record)


async def _run_single(
    request: SessionRequest,
    config: AppConfig,
    gateway: ResponderGateway,
    recorder: DecisionAuditRecorder,
    memory: AgentMemory,
    docs_dir: Path | None,
    output_dir: Path,
    sse: bool = False,
    explain: bool = False,
    slug_override: str | None = None,
) -> Path:
    """Run one session with a live consumer and return the saved transcript path."""
    stream = EventStream(request.session_id or f"session_{uuid.uuid4().hex[:12]}")
    documents = LocalDocumentSearch(docs_dir) if docs_dir else None

    outcome, _ = await asyncio.gather(
        run_boardroom(
            request,
            gateway,
            stream,
            recorder=recorder,
            memory=memory,
            documents=documents,
            evidence_config=config.evidence,
            max_context_chars=config.gateway.max_context_chars,
        ),
        _consume(stream, sse),
    )

    if not sse:
        print_outcome(outcome)
        if explain:
            _print_explanations(outcome, recorder)

    saved_path = save_to_file(outcome, request.query, output_dir, recorder=recorder, slug_override=slug_override)
    if not sse:
        console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


def _print_explanations(outcome: SessionOutcome, recorder: DecisionAuditRecorder) -> None:
    for resp in outcome.responses:
        if resp.audit_id is None:
            continue
        explanation = recorder.explain(resp.audit_id)
        if explanation is not None:
            print_explanation(resp.role, explanation)


def _request_for_item(
    item: InboxItem,
    config: AppConfig,
    roles_cli: list[str] | None,
    rounds_cli: int | None,
    company_cli: str | None,
    no_auto_conclusion: bool,
    demo: bool,
) -> SessionRequest:
    """CLI flags always win; frontmatter only fills in when a CLI flag is not set."""
    auto_conclusion = config.defaults.auto_conclusion
    if item.auto_conclusion is not None:
        auto_conclusion = item.auto_conclusion
    if no_auto_conclusion:
        auto_conclusion = False
    return SessionRequest(
        query=item.query,
        roles=roles_cli or item.roles or list(config.defaults.roles),
        max_rounds=(
            rounds_cli if rounds_cli is not None
            else item.rounds if item.rounds is not None
            else config.defaults.max_rounds
        ),
        auto_conclusion=auto_conclusion,
        scenario_description=item.scenario,
        scenario_parameters=item.parameters,
        company_name=company_cli or item.company or config.defaults.company_name,
        demo=demo,
    )


async def _run_inbox(
    config: AppConfig,
    gateway: ResponderGateway,
    recorder: DecisionAuditRecorder,
    memory: AgentMemory,
    inbox_dir: Path,
    archive_dir: Path,
    output_dir: Path,
    docs_dir: Path | None,
    roles_cli: list[str] | None,
    rounds_cli: int | None,
    company_cli: str | None,
    no_auto_conclusion: bool,
    demo: bool,
) -> None:
    """Process all .md files in the inbox folder.

    Precedence for per-file settings: CLI flag > frontmatter > config default.
    """
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)

    if not files:
        click.echo("No files in inbox.")
        return

    for file_path in files:
        try:
            item = parse_file(file_path)
            request = _request_for_item(
                item, config, roles_cli, rounds_cli, company_cli, no_auto_conclusion, demo
            )
            saved = await _run_single(
                request, config, gateway, recorder, memory, docs_dir, output_dir,
                slug_override=file_path.stem,
            )
            archived = archive_file(file_path, archive_dir)
            click.echo(f"Processed: {file_path.name} -> {saved} (archived: {archived.name})")
        except Exception as e:
            logger.error("Failed: %s -- %s", file_path.name, e)
            archive_file(file_path, archive_dir, failed=True)


def _parse_roles(roles: str | None) -> list[str] | None:
    if not roles:
        return None
    return [r.strip().lower() for r in roles.split(",") if r.strip()]


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from .md file")
@click.option("--roles", default=None, help="Comma-separated executives, e.g. ceo,cfo (default: from config)")
@click.option("--rounds", default=None, type=int, help="Maximum discussion rounds, 1-5 (default: from config)")
@click.option("--no-auto-conclusion", is_flag=True, default=False,
              help="Always run every round instead of stopping once a recommendation appears")
@click.option("--company", default=None, help="Company name used in the executive prompts")
@click.option("--scenario", default=None, help="Scenario description framing the discussion")
@click.option("--docs", "docs_dir", type=click.Path(exists=True, file_okay=False), default=None,
              help="Folder of .md/.txt company documents to ground the discussion")
@click.option("--demo", is_flag=True, default=False,
              help="Use canned executive responses; works without API keys")
@click.option("--sse", is_flag=True, default=False, help="Write the event stream to stdout as SSE frames")
@click.option("--explain", is_flag=True, default=False, help="Print the decision audit for every response")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--inbox", "use_inbox", is_flag=True, default=False,
              help="Process all .md files in inbox folder")
@click.option("--inbox-dir", "inbox_dir_override", default=None,
              help="Override inbox folder path (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    question: str | None,
    question_file: str | None,
    roles: str | None,
    rounds: int | None,
    no_auto_conclusion: bool,
    company: str | None,
    scenario: str | None,
    docs_dir: str | None,
    demo: bool,
    sse: bool,
    explain: bool,
    output_path: str | None,
    verbose: bool,
    use_inbox: bool,
    inbox_dir_override: str | None,
    skip_health_check: bool,
) -> None:
    """Boardroom -- CEO, CFO, CTO and HR discuss a business question.

    \b
    Examples:
      boardroom "Should we expand into Europe next year?" --roles ceo,cfo
      boardroom "Hire or outsource the data team?" --rounds 2 --company Acme
      boardroom --file question.md --docs ./company_docs
      boardroom "Raise prices by 5%?" --demo
      boardroom "Open a second office?" --sse
      boardroom --inbox --inbox-dir ./my_queue
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so model responses containing
    # Unicode chars (e.g. non-breaking hyphens) don't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    roles_cli = _parse_roles(roles)

    all_providers = _build_all_providers(config)
    if not all_providers and not demo:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env or use --demo.")
        sys.exit(1)

    if all_providers and not skip_health_check and not demo:
        all_providers = _check_and_filter_providers(all_providers)

    gateway = ResponderGateway(
        _assign_roles(config, all_providers),
        config.prompts,
        cache=_build_cache(config),
        timeout_sec=config.gateway.timeout_sec,
        company_name=config.defaults.company_name,
    )
    recorder = DecisionAuditRecorder(retention_days=config.audit.retention_days)
    memory = AgentMemory()
    docs_path = Path(docs_dir) if docs_dir else None

    if use_inbox:
        inbox_dir = Path(inbox_dir_override) if inbox_dir_override else config.inbox.dir
        asyncio.run(
            _run_inbox(
                config=config,
                gateway=gateway,
                recorder=recorder,
                memory=memory,
                inbox_dir=inbox_dir,
                archive_dir=config.inbox.archive_dir,
                output_dir=effective_output,
                docs_dir=docs_path,
                roles_cli=roles_cli,
                rounds_cli=rounds,
                company_cli=company,
                no_auto_conclusion=no_auto_conclusion,
                demo=demo,
            )
        )
        return

    if question_file:
        question_text = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        question_text = question
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument, --file, or --inbox.")
        sys.exit(1)

    request = SessionRequest(
        query=question_text,
        roles=roles_cli or list(config.defaults.roles),
        max_rounds=rounds if rounds is not None else config.defaults.max_rounds,
        auto_conclusion=config.defaults.auto_conclusion and not no_auto_conclusion,
        scenario_description=scenario,
        company_name=company or config.defaults.company_name,
        demo=demo,
    )

    try:
        asyncio.run(
            _run_single(
                request, config, gateway, recorder, memory, docs_path, effective_output,
                sse=sse, explain=explain,
            )
        )
    except RequestValidationError as exc:
        console.print(f"[bold red]Invalid request:[/bold red] {'; '.join(exc.errors)}")
        sys.exit(2)


if __name__ == "__main__":
    main()
