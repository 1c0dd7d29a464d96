from __future__ import annotations

import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .client import SkillSyncError
from .config import INDEX_BACKUP_FILENAME, INDEX_FILENAME, write_json_atomic
from .models import (
    INDEX_VERSION,
    AppFlags,
    AppType,
    InstalledSkill,
    Repository,
    SkillsIndex,
    SyncMethod,
)

logger = logging.getLogger(__name__)

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class IndexFormatError(SkillSyncError):
    pass


def _opt_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if isinstance(value, str):
        return value
    return None


def _parse_timestamp(value: Any, *, path: Path) -> int:
    if isinstance(value, bool):
        raise IndexFormatError(f"Invalid installedAt value in {path}: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        # Python < 3.11 rejects the "Z" suffix and more than 6 fractional digits.
        text = _FRACTION_RE.sub(r"\1", value.strip().replace("Z", "+00:00"))
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise IndexFormatError(f"Invalid installedAt value in {path}: {value!r}") from e
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    raise IndexFormatError(f"Invalid installedAt value in {path}: {value!r}")


def repo_from_json(raw: Any, *, path: Path) -> Repository:
    if not isinstance(raw, dict):
        raise IndexFormatError(f"Invalid repository entry in {path}: {raw!r}")
    owner = raw.get("owner")
    name = raw.get("name")
    if not isinstance(owner, str) or not isinstance(name, str):
        raise IndexFormatError(f"Repository entry needs owner and name in {path}: {raw!r}")
    branch = raw.get("branch")
    return Repository(
        owner=owner,
        name=name,
        branch=branch if isinstance(branch, str) else "main",
        enabled=bool(raw.get("enabled", True)),
        skills_path=_opt_str(raw, "skillsPath"),
    )


def repo_to_json(repo: Repository) -> dict[str, Any]:
    out: dict[str, Any] = {
        "owner": repo.owner,
        "name": repo.name,
        "branch": repo.branch,
        "enabled": repo.enabled,
    }
    if repo.skills_path:
        out["skillsPath"] = repo.skills_path
    return out


def _apps_from_json(raw: Any) -> AppFlags:
    if not isinstance(raw, dict):
        return AppFlags()
    flags = AppFlags()
    for app in AppType:
        flags.set_enabled_for(app, bool(raw.get(app.value, False)))
    return flags


def skill_from_json(directory: str, raw: Any, *, path: Path) -> InstalledSkill:
    if not isinstance(raw, dict):
        raise IndexFormatError(f"Invalid skill entry {directory!r} in {path}")
    skill_id = raw.get("id")
    name = raw.get("name")
    if not isinstance(skill_id, str) or not isinstance(name, str):
        raise IndexFormatError(f"Skill entry {directory!r} needs id and name in {path}")
    return InstalledSkill(
        id=skill_id,
        name=name,
        directory=_opt_str(raw, "directory") or directory,
        apps=_apps_from_json(raw.get("apps")),
        installed_at=_parse_timestamp(raw.get("installedAt", 0), path=path),
        description=_opt_str(raw, "description"),
        readme_url=_opt_str(raw, "readmeUrl"),
        repo_owner=_opt_str(raw, "repoOwner"),
        repo_name=_opt_str(raw, "repoName"),
        repo_branch=_opt_str(raw, "repoBranch"),
    )


def skill_to_json(skill: InstalledSkill) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": skill.id,
        "name": skill.name,
        "directory": skill.directory,
        "apps": {app.value: skill.apps.is_enabled_for(app) for app in AppType},
        "installedAt": skill.installed_at,
    }
    optional = {
        "description": skill.description,
        "readmeUrl": skill.readme_url,
        "repoOwner": skill.repo_owner,
        "repoName": skill.repo_name,
        "repoBranch": skill.repo_branch,
    }
    out.update({k: v for k, v in optional.items() if v is not None})
    return out


def index_to_json(index: SkillsIndex) -> dict[str, Any]:
    return {
        "version": index.version,
        "syncMethod": index.sync_method.value,
        "repos": [repo_to_json(r) for r in index.repos],
        "skills": {d: skill_to_json(s) for d, s in sorted(index.skills.items())},
        "ssotMigrationPending": index.migration_pending,
    }


def index_from_json(raw: dict[str, Any], *, path: Path) -> SkillsIndex:
    method_raw = raw.get("syncMethod", SyncMethod.AUTO.value)
    try:
        sync_method = SyncMethod(method_raw)
    except ValueError as e:
        raise IndexFormatError(f"Unknown syncMethod {method_raw!r} in {path}") from e

    repos_raw = raw.get("repos", [])
    skills_raw = raw.get("skills", {})
    if not isinstance(repos_raw, list) or not isinstance(skills_raw, dict):
        raise IndexFormatError(f"Malformed skills index: {path}")

    version = raw["version"] or INDEX_VERSION
    return SkillsIndex(
        version=version,
        sync_method=sync_method,
        repos=[repo_from_json(r, path=path) for r in repos_raw],
        skills={d: skill_from_json(d, s, path=path) for d, s in skills_raw.items()},
        migration_pending=bool(raw.get("ssotMigrationPending", False)),
    )


def legacy_index_from_json(raw: dict[str, Any], *, path: Path) -> SkillsIndex:
    """Convert the single-app store (``{skills: {dir: {installed, installedAt}}, repos}``)."""
    skills_raw = raw.get("skills")
    repos_raw = raw.get("repos")
    if not isinstance(skills_raw, dict) or not isinstance(repos_raw, list):
        raise IndexFormatError(f"Unrecognized skills store format: {path}")

    index = SkillsIndex(
        version=INDEX_VERSION,
        sync_method=SyncMethod.AUTO,
        repos=[repo_from_json(r, path=path) for r in repos_raw],
        skills={},
        migration_pending=True,
    )
    for directory, state in skills_raw.items():
        if not isinstance(state, dict):
            raise IndexFormatError(f"Invalid legacy skill entry {directory!r} in {path}")
        if not state.get("installed"):
            continue
        index.skills[directory] = InstalledSkill.local(
            directory,
            apps=AppFlags.only(AppType.CLAUDE),
            installed_at=_parse_timestamp(state.get("installedAt", 0), path=path),
        )
    return index


def _has_version(raw: dict[str, Any]) -> bool:
    version = raw.get("version")
    return isinstance(version, int) and not isinstance(version, bool) and version >= 0


class IndexStore:
    """Reads and writes ``skills.json``, the only persisted state."""

    def __init__(self, root: Path) -> None:
        self.path = root / INDEX_FILENAME
        self.backup_path = root / INDEX_BACKUP_FILENAME

    def load(self) -> SkillsIndex:
        if not self.path.exists():
            # Fresh install: import whatever already sits in the app directories.
            index = SkillsIndex(migration_pending=True)
            self.save(index)
            return index

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise IndexFormatError(f"Corrupt skills index {self.path}: {e}") from e
        if not isinstance(raw, dict):
            raise IndexFormatError(f"Skills index is not a JSON object: {self.path}")

        if _has_version(raw):
            return index_from_json(raw, path=self.path)

        index = legacy_index_from_json(raw, path=self.path)
        try:
            shutil.copyfile(self.path, self.backup_path)
        except OSError as e:
            logger.warning("Failed to back up legacy skills index %s: %s", self.path, e)
        self.save(index)
        return index

    def save(self, index: SkillsIndex) -> None:
        write_json_atomic(self.path, index_to_json(index))
