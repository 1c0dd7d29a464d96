from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

INDEX_VERSION = 1


class AppType(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"

    @classmethod
    def parse(cls, value: str) -> "AppType":
        raw = value.strip().lower()
        for app in cls:
            if app.value == raw:
                return app
        choices = ", ".join(a.value for a in cls)
        raise ValueError(f"Unknown app {value!r}. Expected one of: {choices}.")


ALL_APPS: tuple[AppType, ...] = (AppType.CLAUDE, AppType.CODEX, AppType.GEMINI)


class SyncMethod(str, Enum):
    AUTO = "auto"
    SYMLINK = "symlink"
    COPY = "copy"


@dataclass
class AppFlags:
    claude: bool = False
    codex: bool = False
    gemini: bool = False

    @classmethod
    def only(cls, app: AppType) -> "AppFlags":
        flags = cls()
        flags.set_enabled_for(app, True)
        return flags

    def is_enabled_for(self, app: AppType) -> bool:
        if app is AppType.CLAUDE:
            return self.claude
        if app is AppType.CODEX:
            return self.codex
        if app is AppType.GEMINI:
            return self.gemini
        raise AssertionError(f"unhandled app: {app!r}")

    def set_enabled_for(self, app: AppType, enabled: bool) -> None:
        if app is AppType.CLAUDE:
            self.claude = enabled
        elif app is AppType.CODEX:
            self.codex = enabled
        elif app is AppType.GEMINI:
            self.gemini = enabled
        else:
            raise AssertionError(f"unhandled app: {app!r}")

    def merge_enabled(self, other: "AppFlags") -> None:
        self.claude |= other.claude
        self.codex |= other.codex
        self.gemini |= other.gemini

    def enabled_apps(self) -> list[AppType]:
        return [app for app in ALL_APPS if self.is_enabled_for(app)]


@dataclass
class Repository:
    owner: str
    name: str
    branch: str = "main"
    enabled: bool = True
    skills_path: str | None = None

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.name}"

    def same_identity(self, owner: str, name: str) -> bool:
        return self.owner == owner and self.name == name


@dataclass
class InstalledSkill:
    id: str
    name: str
    directory: str
    apps: AppFlags = field(default_factory=AppFlags)
    installed_at: int = 0
    description: str | None = None
    readme_url: str | None = None
    repo_owner: str | None = None
    repo_name: str | None = None
    repo_branch: str | None = None

    @classmethod
    def local(cls, directory: str, *, name: str | None = None, description: str | None = None,
              apps: AppFlags | None = None, installed_at: int = 0) -> "InstalledSkill":
        return cls(
            id=f"local:{directory}",
            name=name or directory,
            directory=directory,
            description=description,
            apps=apps if apps is not None else AppFlags(),
            installed_at=installed_at,
        )


def default_repos() -> list[Repository]:
    return [
        Repository(owner="anthropics", name="skills", branch="main"),
        Repository(owner="ComposioHQ", name="awesome-claude-skills", branch="master"),
        Repository(owner="cexll", name="myclaude", branch="master", skills_path="skills"),
        Repository(owner="JimLiu", name="baoyu-skills", branch="main"),
    ]


@dataclass
class SkillsIndex:
    version: int = INDEX_VERSION
    sync_method: SyncMethod = SyncMethod.AUTO
    repos: list[Repository] = field(default_factory=default_repos)
    skills: dict[str, InstalledSkill] = field(default_factory=dict)
    migration_pending: bool = False


@dataclass(frozen=True)
class SkillMetadata:
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class DiscoverableSkill:
    key: str  # "owner/name:directory"
    name: str
    description: str
    directory: str
    repo_owner: str
    repo_name: str
    repo_branch: str
    readme_url: str | None = None
    skills_path: str | None = None

    def repository(self) -> Repository:
        return Repository(
            owner=self.repo_owner,
            name=self.repo_name,
            branch=self.repo_branch,
            enabled=True,
            skills_path=self.skills_path,
        )


@dataclass(frozen=True)
class Skill:
    """Listing row: a discoverable or local skill plus its installed flag."""

    key: str
    name: str
    description: str
    directory: str
    installed: bool
    readme_url: str | None = None
    repo_owner: str | None = None
    repo_name: str | None = None
    repo_branch: str | None = None
    skills_path: str | None = None


@dataclass
class UnmanagedSkill:
    directory: str
    name: str
    description: str | None = None
    found_in: list[AppType] = field(default_factory=list)
