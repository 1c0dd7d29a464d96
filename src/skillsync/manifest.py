from __future__ import annotations

import logging
from pathlib import Path

import yaml

from .models import SkillMetadata

SKILL_MANIFEST = "SKILL.md"

logger = logging.getLogger(__name__)


def split_front_matter(text: str) -> str | None:
    """Return the YAML block between the first two ``---`` markers, if any."""
    content = text.lstrip("\ufeff")
    parts = content.split("---", 2)
    if len(parts) < 3:
        return None
    return parts[1].strip()


def _as_text(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_front_matter(text: str) -> SkillMetadata:
    block = split_front_matter(text)
    if block is None:
        return SkillMetadata()
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError:
        return SkillMetadata()
    if not isinstance(data, dict):
        return SkillMetadata()
    return SkillMetadata(name=_as_text(data.get("name")), description=_as_text(data.get("description")))


def parse_skill_metadata(path: Path) -> SkillMetadata:
    return parse_front_matter(path.read_text(encoding="utf-8", errors="replace"))


def read_skill_metadata(skill_dir: Path) -> SkillMetadata | None:
    """Metadata of ``skill_dir/SKILL.md``; None when there is no manifest."""
    manifest = skill_dir / SKILL_MANIFEST
    if not manifest.is_file():
        return None
    try:
        return parse_skill_metadata(manifest)
    except OSError as e:
        logger.debug("Could not read %s: %s", manifest, e)
        return SkillMetadata()


def name_and_description(skill_dir: Path, directory: str) -> tuple[str, str | None]:
    meta = read_skill_metadata(skill_dir)
    if meta is None:
        return directory, None
    return meta.name or directory, meta.description
