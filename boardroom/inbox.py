"""Inbox folder scanning, scenario frontmatter parsing, and archive logic."""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import frontmatter

logger = logging.getLogger(__name__)


@dataclass
class InboxItem:
    """One queued question plus the discussion settings its frontmatter overrides."""

    path: Path
    query: str
    roles: list[str] | None = None
    rounds: int | None = None
    auto_conclusion: bool | None = None
    company: str | None = None
    scenario: str | None = None
    parameters: dict = field(default_factory=dict)


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, sorted by mtime ascending (oldest first)."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def _parse_roles(raw) -> list[str]:
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw)
    return [str(r).strip().lower() for r in items if str(r).strip()]


def parse_file(file_path: Path) -> InboxItem:
    """Parse a markdown scenario file with optional YAML frontmatter.

    Recognised keys: roles (list or comma string), rounds (int),
    auto_conclusion (bool), company (str), scenario (str), parameters (mapping).
    Unknown keys are ignored.
    """
    post = frontmatter.load(str(file_path))
    meta = dict(post.metadata)
    item = InboxItem(path=file_path, query=post.content.strip())

    if "roles" in meta:
        item.roles = _parse_roles(meta["roles"])
    if "rounds" in meta:
        item.rounds = int(meta["rounds"])
    if "auto_conclusion" in meta:
        item.auto_conclusion = bool(meta["auto_conclusion"])
    if "company" in meta:
        item.company = str(meta["company"])
    if "scenario" in meta:
        item.scenario = str(meta["scenario"])
    if isinstance(meta.get("parameters"), dict):
        item.parameters = dict(meta["parameters"])
    return item


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix.

    Args:
        file_path: Source file to archive.
        archive_dir: Destination directory.
        failed: If True, prefix filename with "FAILED_".

    Returns:
        Path to the archived file.
    """
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest = archive_dir / f"{prefix}{timestamp}_{file_path.name}"
    shutil.move(str(file_path), str(dest))
    logger.debug("Archived %s -> %s", file_path.name, dest.name)
    return dest
