from __future__ import annotations

import shutil
from pathlib import Path

from .client import SkillSyncError


def validate_directory_name(directory: str) -> str:
    name = directory.strip()
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise SkillSyncError(f"Invalid skill directory name: {directory!r}")
    return name


def copy_dir_recursive(src: Path, dest: Path) -> None:
    # Symlinks inside the source are followed so the copy is self-contained.
    shutil.copytree(src, dest, symlinks=False, dirs_exist_ok=True)


def list_skill_dirs(root: Path) -> list[Path]:
    """Immediate, non-hidden subdirectories of ``root`` (sorted by name)."""
    if not root.is_dir():
        return []
    out: list[Path] = []
    for entry in root.iterdir():
        if entry.name.startswith("."):
            continue
        if not entry.is_dir():
            continue
        out.append(entry)
    out.sort(key=lambda p: p.name)
    return out


class SkillStore:
    """The canonical (single source of truth) copy of every managed skill."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def ensure(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SkillSyncError(f"Could not create skills store: {self.root}") from e
        return self.root

    def path_for(self, directory: str) -> Path:
        return self.root / validate_directory_name(directory)

    def exists(self, directory: str) -> bool:
        return self.path_for(directory).exists()

    def copy_in(self, source: Path, directory: str) -> Path:
        dest = self.path_for(directory)
        self.ensure()
        copy_dir_recursive(source, dest)
        return dest

    def remove(self, directory: str) -> bool:
        path = self.path_for(directory)
        if path.is_symlink():
            path.unlink()
            return True
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True

    def directories(self) -> list[str]:
        return [p.name for p in list_skill_dirs(self.root)]
