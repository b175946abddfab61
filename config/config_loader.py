"""Load settings.yaml into typed dataclasses. Reports provider availability at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    max_tokens: int
    temperature: float = 0.7
    base_url: str | None = None


@dataclass
class RoleProfile:
    title: str
    personality: str
    expertise: list[str] = field(default_factory=list)


@dataclass
class PromptsConfig:
    agent: str
    synthesis: str
    personas: dict[str, RoleProfile] = field(default_factory=dict)
    demo_responses: dict[str, str] = field(default_factory=dict)


@dataclass
class DefaultsConfig:
    roles: list[str]
    max_rounds: int
    auto_conclusion: bool
    output_dir: Path
    provider: str
    facilitator: str
    company_name: str = "the company"


@dataclass
class GatewayConfig:
    timeout_sec: float = 30.0
    cache_ttl_sec: int = 1800
    cache_max_entries: int = 100
    shared_cache_url_env: str = "REDIS_URL"
    max_context_chars: int = 24000


@dataclass
class EvidenceConfig:
    top_k: int = 5
    min_score: float = 0.7
    watchlists: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class AuditConfig:
    retention_days: int = 30


@dataclass
class InboxConfig:
    dir: Path = Path("./inbox")
    archive_dir: Path = Path("./inbox/archive")


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    evidence: EvidenceConfig = field(default_factory=EvidenceConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    inbox: InboxConfig = field(default_factory=InboxConfig)
    role_providers: dict[str, str] = field(default_factory=dict)
    available_providers: set[str] = field(default_factory=set)


def _load_personas(raw: dict) -> dict[str, RoleProfile]:
    personas: dict[str, RoleProfile] = {}
    for role, persona_raw in raw.items():
        personas[role] = RoleProfile(
            title=str(persona_raw["title"]),
            personality=str(persona_raw.get("personality", "")),
            expertise=[str(e) for e in persona_raw.get("expertise", [])],
        )
    return personas


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs providers without API keys but does not raise — callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        roles=[str(r) for r in defaults_raw["roles"]],
        max_rounds=int(defaults_raw["max_rounds"]),
        auto_conclusion=bool(defaults_raw.get("auto_conclusion", True)),
        output_dir=Path(defaults_raw["output_dir"]),
        provider=str(defaults_raw["provider"]),
        facilitator=str(defaults_raw.get("facilitator", defaults_raw["provider"])),
        company_name=str(defaults_raw.get("company_name", "the company")),
    )

    gateway_raw = raw.get("gateway", {})
    gateway = GatewayConfig(
        timeout_sec=float(gateway_raw.get("timeout_sec", 30)),
        cache_ttl_sec=int(gateway_raw.get("cache_ttl_sec", 1800)),
        cache_max_entries=int(gateway_raw.get("cache_max_entries", 100)),
        shared_cache_url_env=str(gateway_raw.get("shared_cache_url_env", "REDIS_URL")),
        max_context_chars=int(gateway_raw.get("max_context_chars", 24000)),
    )

    evidence_raw = raw.get("evidence", {})
    evidence = EvidenceConfig(
        top_k=int(evidence_raw.get("top_k", 5)),
        min_score=float(evidence_raw.get("min_score", 0.7)),
        watchlists={k: [str(s) for s in v] for k, v in evidence_raw.get("watchlists", {}).items()},
    )

    audit_raw = raw.get("audit", {})
    audit = AuditConfig(retention_days=int(audit_raw.get("retention_days", 30)))

    inbox_raw = raw.get("inbox", {})
    inbox = InboxConfig(
        dir=Path(inbox_raw.get("dir", "./inbox")),
        archive_dir=Path(inbox_raw.get("archive_dir", "./inbox/archive")),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        agent=prompts_raw["agent"],
        synthesis=prompts_raw["synthesis"],
        personas=_load_personas(raw.get("personas", {})),
        demo_responses={k: str(v).strip() for k, v in raw.get("demo_responses", {}).items()},
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            max_tokens=int(model_raw["max_tokens"]),
            temperature=float(model_raw.get("temperature", 0.7)),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s — set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        gateway=gateway,
        evidence=evidence,
        audit=audit,
        inbox=inbox,
        role_providers={str(k): str(v) for k, v in (raw.get("role_providers") or {}).items()},
        available_providers=available_providers,
    )
