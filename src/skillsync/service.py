from __future__ import annotations

import logging
import time
from dataclasses import replace
from pathlib import Path

from .client import SkillSyncError
from .config import SSOT_DIRNAME, Settings, config_root, get_settings
from .index import IndexStore
from .manifest import name_and_description
from .migration import import_from_apps, migrate_ssot_if_pending, scan_unmanaged
from .models import (
    ALL_APPS,
    AppFlags,
    AppType,
    DiscoverableSkill,
    InstalledSkill,
    Repository,
    Skill,
    SkillsIndex,
    SyncMethod,
    UnmanagedSkill,
)
from .repos import RepoDownloader, scan_root
from .store import SkillStore
from .sync import SyncEngine

logger = logging.getLogger(__name__)


class SkillNotFoundError(SkillSyncError):
    pass


class AmbiguousSkillError(SkillSyncError):
    pass


class SkillSourceMissingError(SkillSyncError):
    pass


class SkillDirectoryConflictError(SkillSyncError):
    def __init__(self, directory: str, existing_repo: str, new_repo: str) -> None:
        self.directory = directory
        self.existing_repo = existing_repo
        self.new_repo = new_repo
        super().__init__(
            f"Skill directory {directory!r} is already installed from {existing_repo}; "
            f"cannot install it from {new_repo}. Uninstall it first."
        )


def install_name(directory: str) -> str:
    """The final path segment of a discoverable skill's directory."""
    return Path(directory).name or directory


def resolve_directory(index: SkillsIndex, value: str) -> str | None:
    """Match an installed skill by exact directory, case-insensitive directory, then id."""
    raw = value.strip()
    if not raw:
        return None
    if raw in index.skills:
        return raw
    lowered = raw.lower()
    for directory in index.skills:
        if directory.lower() == lowered:
            return directory
    for directory, skill in index.skills.items():
        if skill.id.lower() == lowered:
            return directory
    return None


def filter_skills(skills: list[Skill], query: str) -> list[Skill]:
    needle = query.strip().lower()
    if not needle:
        return list(skills)
    return [
        s
        for s in skills
        if needle in s.name.lower()
        or needle in s.directory.lower()
        or needle in s.description.lower()
        or needle in s.key.lower()
    ]


class SkillService:
    """
    Entry point for every skill operation: load the index, run pending
    migration where needed, act on the skills store and app directories,
    persist the index.

    Network-bound operations (discovery, install) are coroutines; the rest
    is synchronous file system work.
    """

    def __init__(
        self,
        *,
        root: str | Path | None = None,
        settings: Settings | None = None,
        downloader: RepoDownloader | None = None,
    ) -> None:
        self.root = config_root(root)
        self.settings = settings if settings is not None else get_settings()
        self.index_store = IndexStore(self.root)
        self.store = SkillStore(self.root / SSOT_DIRNAME)
        self.engine = SyncEngine(self.store, self.settings)
        self.downloader = downloader or RepoDownloader(timeout_s=self.settings.timeout_s)

    # index

    def load_index(self) -> SkillsIndex:
        return self.index_store.load()

    def save_index(self, index: SkillsIndex) -> None:
        self.index_store.save(index)

    def migrate_ssot_if_pending(self, index: SkillsIndex) -> int:
        return migrate_ssot_if_pending(
            index, store=self.store, index_store=self.index_store, settings=self.settings
        )

    def _load_migrated(self) -> SkillsIndex:
        index = self.load_index()
        self.migrate_ssot_if_pending(index)
        return index

    # queries

    def list_installed(self) -> list[InstalledSkill]:
        index = self._load_migrated()
        return sorted(index.skills.values(), key=lambda s: s.name.lower())

    def list_repos(self) -> list[Repository]:
        return self.load_index().repos

    def get_sync_method(self) -> SyncMethod:
        return self.load_index().sync_method

    def set_sync_method(self, method: SyncMethod) -> None:
        index = self.load_index()
        index.sync_method = method
        self.save_index(index)

    async def discover_available(self, repos: list[Repository] | None = None) -> list[DiscoverableSkill]:
        if repos is None:
            repos = self.load_index().repos
        return await self.downloader.discover_available(repos)

    async def list_skills(self) -> list[Skill]:
        index = self._load_migrated()
        discoverable = await self.downloader.discover_available(index.repos)
        installed_dirs = {d.lower() for d in index.skills}

        rows = [
            Skill(
                key=d.key,
                name=d.name,
                description=d.description,
                directory=d.directory,
                installed=d.directory.lower() in installed_dirs,
                readme_url=d.readme_url,
                repo_owner=d.repo_owner,
                repo_name=d.repo_name,
                repo_branch=d.repo_branch,
                skills_path=d.skills_path,
            )
            for d in discoverable
        ]
        rows = self._merge_local_skills(index, rows)

        seen: set[str] = set()
        out: list[Skill] = []
        for row in rows:
            if row.directory.lower() in seen:
                continue
            seen.add(row.directory.lower())
            out.append(row)
        out.sort(key=lambda s: s.name.lower())
        return out

    def _merge_local_skills(self, index: SkillsIndex, rows: list[Skill]) -> list[Skill]:
        by_dir = {r.directory.lower(): i for i, r in enumerate(rows)}
        out = list(rows)
        for directory in self.store.directories():
            pos = by_dir.get(directory.lower())
            if pos is not None:
                out[pos] = replace(out[pos], installed=True)
                continue
            record = index.skills.get(directory)
            if record is not None:
                name, description = record.name, record.description or ""
            else:
                name, desc = name_and_description(self.store.path_for(directory), directory)
                description = desc or ""
            out.append(
                Skill(
                    key=f"local:{directory}",
                    name=name,
                    description=description,
                    directory=directory,
                    installed=True,
                )
            )
        return out

    # repositories

    def upsert_repo(self, repo: Repository) -> None:
        index = self.load_index()
        for pos, existing in enumerate(index.repos):
            if existing.same_identity(repo.owner, repo.name):
                index.repos[pos] = repo
                break
        else:
            index.repos.append(repo)
        self.save_index(index)

    def remove_repo(self, owner: str, name: str) -> bool:
        index = self.load_index()
        kept = [r for r in index.repos if not r.same_identity(owner, name)]
        removed = len(kept) != len(index.repos)
        index.repos = kept
        self.save_index(index)
        return removed

    def set_repo_enabled(self, owner: str, name: str, enabled: bool) -> None:
        index = self.load_index()
        for repo in index.repos:
            if repo.same_identity(owner, name):
                repo.enabled = enabled
                self.save_index(index)
                return
        raise SkillSyncError(f"Repository not configured: {owner}/{name}")

    # install / uninstall / toggle

    async def resolve_install_spec(self, index: SkillsIndex, spec: str) -> DiscoverableSkill:
        discoverable = await self.downloader.discover_available(index.repos)

        for skill in discoverable:
            if skill.key == spec:
                return skill

        matches = [s for s in discoverable if s.directory.lower() == spec.lower()]
        if not matches:
            raise SkillNotFoundError(f"No installable skill matches {spec!r}.")
        if len(matches) > 1:
            keys = ", ".join(s.key for s in matches)
            raise AmbiguousSkillError(
                f"Skill name {spec!r} is ambiguous; use the full key (owner/name:directory): {keys}"
            )
        return matches[0]

    async def install(self, spec: str, app: AppType) -> InstalledSkill:
        spec = spec.strip()
        if not spec:
            raise SkillSyncError("Skill spec must not be empty.")

        index = self._load_migrated()
        found = await self.resolve_install_spec(index, spec)
        directory = install_name(found.directory)

        existing = index.skills.get(directory)
        if existing is not None:
            same_repo = existing.repo_owner == found.repo_owner and existing.repo_name == found.repo_name
            owned = existing.repo_owner is not None or existing.repo_name is not None or existing.id.startswith("local:")
            if not same_repo and owned:
                existing_repo = f"{existing.repo_owner or 'unknown'}/{existing.repo_name or 'unknown'}"
                raise SkillDirectoryConflictError(
                    directory, existing_repo, f"{found.repo_owner}/{found.repo_name}"
                )

            existing.apps.set_enabled_for(app, True)
            self.save_index(index)
            self.engine.project(directory, app, index.sync_method)
            return existing

        if not self.store.exists(directory):
            repo = found.repository()
            async with self.downloader.checkout(repo) as extracted:
                source = scan_root(extracted, repo) / directory
                if not source.is_dir():
                    raise SkillSourceMissingError(f"Skill directory not found in downloaded archive: {source}")
                self.store.copy_in(source, directory)

        record = InstalledSkill(
            id=found.key,
            name=found.name,
            directory=directory,
            apps=AppFlags.only(app),
            installed_at=int(time.time()),
            description=found.description if found.description.strip() else None,
            readme_url=found.readme_url,
            repo_owner=found.repo_owner,
            repo_name=found.repo_name,
            repo_branch=found.repo_branch,
        )
        index.skills[directory] = record
        self.save_index(index)
        self.engine.project(directory, app, index.sync_method)
        return record

    def _require_directory(self, index: SkillsIndex, directory_or_id: str) -> str:
        directory = resolve_directory(index, directory_or_id)
        if directory is None:
            raise SkillNotFoundError(f"Installed skill not found: {directory_or_id}")
        return directory

    def uninstall(self, directory_or_id: str) -> InstalledSkill:
        index = self.load_index()
        directory = self._require_directory(index, directory_or_id)

        for app in ALL_APPS:
            try:
                self.engine.unproject(directory, app)
            except OSError as e:
                logger.warning("Failed to remove skill %s from %s: %s", directory, app.value, e)

        self.store.remove(directory)
        record = index.skills.pop(directory)
        self.save_index(index)
        return record

    def toggle_app(self, directory_or_id: str, app: AppType, enabled: bool) -> InstalledSkill:
        index = self.load_index()
        directory = self._require_directory(index, directory_or_id)
        record = index.skills[directory]
        record.apps.set_enabled_for(app, enabled)

        if enabled:
            self.engine.project(record.directory, app, index.sync_method)
        else:
            self.engine.unproject(record.directory, app)

        self.save_index(index)
        return record

    # unmanaged

    def scan_unmanaged(self) -> list[UnmanagedSkill]:
        return scan_unmanaged(self.load_index(), self.settings)

    def import_from_apps(self, directories: list[str]) -> list[InstalledSkill]:
        index = self.load_index()
        imported = import_from_apps(index, directories, store=self.store, settings=self.settings)
        self.save_index(index)
        return imported

    # sync

    def sync_all_enabled(self, app: AppType | None = None) -> int:
        index = self._load_migrated()
        return self.engine.sync_all(index, app)

    def sync_all_enabled_best_effort(self) -> int:
        """Re-project everything after an external switch; failures are only logged."""
        index = self.load_index()
        try:
            self.migrate_ssot_if_pending(index)
        except (OSError, SkillSyncError) as e:
            logger.warning("Skills migration failed during sync: %s", e)
        return self.engine.sync_all_best_effort(index)
