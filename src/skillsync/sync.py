from __future__ import annotations

import filecmp
import logging
import os
import shutil
from pathlib import Path

from .client import SkillSyncError
from .config import Settings, app_skills_dir, get_settings
from .models import ALL_APPS, AppType, SkillsIndex, SyncMethod
from .store import SkillStore, copy_dir_recursive

logger = logging.getLogger(__name__)


class ProjectionError(SkillSyncError):
    pass


def create_symlink(src: Path, dest: Path) -> None:
    # target_is_directory only matters on Windows, where it creates a directory link.
    try:
        os.symlink(src, dest, target_is_directory=True)
    except OSError as e:
        raise ProjectionError(f"Failed to create symlink ({src} -> {dest}): {e}") from e


def remove_path(path: Path) -> None:
    """Remove a projection without ever following a symlink into its target."""
    if path.is_symlink():
        if os.name == "nt":
            os.rmdir(path)
        else:
            path.unlink()
        return
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


def _links_to(path: Path, target: Path) -> bool:
    if not path.is_symlink():
        return False
    try:
        return Path(os.readlink(path)) == target
    except OSError:
        return False


def _same_tree(a: Path, b: Path) -> bool:
    cmp = filecmp.dircmp(a, b, ignore=[])
    if cmp.left_only or cmp.right_only or cmp.funny_files:
        return False
    _, mismatch, errors = filecmp.cmpfiles(a, b, cmp.common_files, shallow=False)
    if mismatch or errors:
        return False
    return all(_same_tree(a / sub, b / sub) for sub in cmp.common_dirs)


def _is_current_copy(dest: Path, source: Path) -> bool:
    if dest.is_symlink() or not dest.is_dir():
        return False
    return _same_tree(source, dest)


class SyncEngine:
    """Projects SSOT entries into the per-application skill directories."""

    def __init__(self, store: SkillStore, settings: Settings | None = None) -> None:
        self.store = store
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings if self._settings is not None else get_settings()

    def app_dir(self, app: AppType) -> Path:
        return app_skills_dir(app, self.settings)

    def project(self, directory: str, app: AppType, method: SyncMethod) -> SyncMethod:
        """
        Make ``directory`` visible to ``app``. Returns the strategy that ended
        up in place (symlink or copy).
        """
        source = self.store.path_for(directory).absolute()
        if not source.is_dir():
            raise ProjectionError(f"Skill is not in the skills store: {directory}")

        app_dir = self.app_dir(app)
        try:
            app_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProjectionError(f"Could not create skills directory for {app.value}: {app_dir}") from e

        dest = app_dir / directory
        if method in (SyncMethod.SYMLINK, SyncMethod.AUTO) and _links_to(dest, source):
            return SyncMethod.SYMLINK
        if method in (SyncMethod.COPY, SyncMethod.AUTO) and _is_current_copy(dest, source):
            return SyncMethod.COPY

        if dest.exists() or dest.is_symlink():
            remove_path(dest)

        if method is SyncMethod.SYMLINK:
            create_symlink(source, dest)
            return SyncMethod.SYMLINK
        if method is SyncMethod.COPY:
            copy_dir_recursive(source, dest)
            return SyncMethod.COPY
        if method is SyncMethod.AUTO:
            try:
                create_symlink(source, dest)
                return SyncMethod.SYMLINK
            except ProjectionError as e:
                logger.warning("Symlink failed, falling back to copy: %s -> %s (%s)", source, dest, e)
                copy_dir_recursive(source, dest)
                return SyncMethod.COPY
        raise AssertionError(f"unhandled sync method: {method!r}")

    def unproject(self, directory: str, app: AppType) -> bool:
        path = self.app_dir(app) / directory
        if not (path.exists() or path.is_symlink()):
            return False
        remove_path(path)
        return True

    def sync_app(self, index: SkillsIndex, app: AppType) -> int:
        count = 0
        for skill in index.skills.values():
            if skill.apps.is_enabled_for(app):
                self.project(skill.directory, app, index.sync_method)
                count += 1
        return count

    def sync_all(self, index: SkillsIndex, app: AppType | None = None) -> int:
        apps = ALL_APPS if app is None else (app,)
        return sum(self.sync_app(index, a) for a in apps)

    def sync_all_best_effort(self, index: SkillsIndex) -> int:
        count = 0
        for app in ALL_APPS:
            try:
                count += self.sync_app(index, app)
            except (OSError, SkillSyncError) as e:
                logger.warning("Failed to sync skills to %s: %s", app.value, e)
        return count
