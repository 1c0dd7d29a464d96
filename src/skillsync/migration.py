from __future__ import annotations

import logging
import time
from pathlib import Path

from .config import Settings, app_skills_dir
from .index import IndexStore
from .manifest import name_and_description, read_skill_metadata
from .models import ALL_APPS, AppFlags, AppType, InstalledSkill, SkillsIndex, UnmanagedSkill
from .store import SkillStore, list_skill_dirs

logger = logging.getLogger(__name__)


def _backfill_metadata(record: InstalledSkill, skill_dir: Path) -> None:
    meta = read_skill_metadata(skill_dir)
    if meta is None:
        return
    if not record.name.strip() or record.name.lower() == record.directory.lower():
        record.name = meta.name or record.directory
    if record.description is None:
        record.description = meta.description


def _find_in_apps(directory: str, apps: list[AppType], settings: Settings) -> Path | None:
    for app in apps:
        candidate = app_skills_dir(app, settings) / directory
        if candidate.exists():
            return candidate
    return None


def _populate_managed(index: SkillsIndex, store: SkillStore, settings: Settings) -> int:
    created = 0
    for directory, record in index.skills.items():
        if store.exists(directory):
            continue

        # Prefer apps where the skill is enabled; fall back to all apps.
        candidates = record.apps.enabled_apps() or list(ALL_APPS)
        source = _find_in_apps(directory, candidates, settings)
        if source is None:
            logger.warning("Migration: no source directory found for skill %r, skipped", directory)
            continue

        dest = store.copy_in(source, directory)
        created += 1
        _backfill_metadata(record, dest)
    return created


def _scan_all_apps(index: SkillsIndex, store: SkillStore, settings: Settings) -> int:
    discovered: dict[str, AppFlags] = {}
    for app in ALL_APPS:
        for path in list_skill_dirs(app_skills_dir(app, settings)):
            if not store.exists(path.name):
                store.copy_in(path, path.name)
            discovered.setdefault(path.name, AppFlags()).set_enabled_for(app, True)

    created = 0
    now = int(time.time())
    for directory, apps in sorted(discovered.items()):
        name, description = name_and_description(store.path_for(directory), directory)
        existing = index.skills.get(directory)
        if existing is not None:
            existing.apps.merge_enabled(apps)
            if not existing.name.strip():
                existing.name = name
            if existing.description is None:
                existing.description = description
            continue
        index.skills[directory] = InstalledSkill.local(
            directory, name=name, description=description, apps=apps, installed_at=now
        )
        created += 1
    return created


def migrate_ssot_if_pending(
    index: SkillsIndex,
    *,
    store: SkillStore,
    index_store: IndexStore,
    settings: Settings,
) -> int:
    """
    One-time reconciliation of the app directories into the skills store.

    With managed skills already recorded, only those entries are populated;
    unrecorded directories are left alone so they are never claimed silently.
    With an empty index every app skill directory is imported.

    Returns the number of store entries (populated branch) or index records
    (full scan branch) created.
    """
    if not index.migration_pending:
        return 0

    if index.skills:
        created = _populate_managed(index, store, settings)
    else:
        created = _scan_all_apps(index, store, settings)

    index.migration_pending = False
    index_store.save(index)
    return created


def scan_unmanaged(index: SkillsIndex, settings: Settings) -> list[UnmanagedSkill]:
    managed = set(index.skills)
    found: dict[str, UnmanagedSkill] = {}
    for app in ALL_APPS:
        for path in list_skill_dirs(app_skills_dir(app, settings)):
            if path.name in managed:
                continue
            entry = found.get(path.name)
            if entry is None:
                name, description = name_and_description(path, path.name)
                entry = UnmanagedSkill(directory=path.name, name=name, description=description)
                found[path.name] = entry
            entry.found_in.append(app)
    return [found[d] for d in sorted(found)]


def import_from_apps(
    index: SkillsIndex,
    directories: list[str],
    *,
    store: SkillStore,
    settings: Settings,
) -> list[InstalledSkill]:
    """Adopt ``directories`` from the app directories; the caller persists ``index``."""
    imported: list[InstalledSkill] = []
    for directory in directories:
        source: Path | None = None
        found_in = AppFlags()
        for app in ALL_APPS:
            candidate = app_skills_dir(app, settings) / directory
            if candidate.exists():
                if source is None:
                    source = candidate
                found_in.set_enabled_for(app, True)

        if source is None:
            logger.info("Import: %r not found in any app skills directory", directory)
            continue

        if not store.exists(directory):
            store.copy_in(source, directory)

        name, description = name_and_description(store.path_for(directory), directory)
        record = index.skills.get(directory)
        if record is None:
            record = InstalledSkill.local(
                directory, name=name, description=description, installed_at=int(time.time())
            )
            index.skills[directory] = record
        record.apps.merge_enabled(found_in)
        if record.description is None:
            record.description = description
        if not record.name.strip():
            record.name = name
        imported.append(record)
    return imported
