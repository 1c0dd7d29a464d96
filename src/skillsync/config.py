from __future__ import annotations

import json
import os
import threading
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

from .models import AppType

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_LANGUAGE = "en"

INDEX_FILENAME = "skills.json"
INDEX_BACKUP_FILENAME = "skills.json.bak"
SSOT_DIRNAME = "skills"
SETTINGS_FILENAME = "settings.json"

# Default per-app config directory names under the user's home.
_APP_HOME_DIRS = {
    AppType.CLAUDE: ".claude",
    AppType.CODEX: ".codex",
    AppType.GEMINI: ".gemini",
}


@dataclass(frozen=True)
class Settings:
    language: str = DEFAULT_LANGUAGE
    claude_config_dir: str | None = None
    codex_config_dir: str | None = None
    gemini_config_dir: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S

    def override_dir(self, app: AppType) -> Path | None:
        raw = {
            AppType.CLAUDE: self.claude_config_dir,
            AppType.CODEX: self.codex_config_dir,
            AppType.GEMINI: self.gemini_config_dir,
        }[app]
        if not raw or not raw.strip():
            return None
        return Path(raw).expanduser()


def config_root(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLSYNC_HOME"):
        return Path(env).expanduser()
    return user_config_path("skillsync")


def settings_path(root: str | Path | None = None) -> Path:
    return config_root(root) / SETTINGS_FILENAME


def app_skills_dir(app: AppType, settings: Settings | None = None) -> Path:
    """Skills directory of one application.

    Overrides follow the ``<override>/skills`` layout; otherwise the directory
    lives under the application's dot-folder in the user's home.
    """
    cfg = settings if settings is not None else get_settings()
    custom = cfg.override_dir(app)
    if custom is not None:
        return custom / "skills"
    return Path.home() / _APP_HOME_DIRS[app] / "skills"


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp.replace(path)


def load_settings(root: str | Path | None = None) -> Settings:
    path = settings_path(root)
    if not path.exists():
        return Settings()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Settings()

    allowed = {f.name for f in Settings.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Settings(**filtered)  # type: ignore[arg-type]


def save_settings(settings: Settings, root: str | Path | None = None) -> Path:
    path = settings_path(root)
    write_json_atomic(path, asdict(settings))
    return path


_settings_lock = threading.Lock()
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = load_settings()
        return _settings


def update_settings(**changes: Any) -> Settings:
    """Apply ``changes`` to the process-wide settings and persist them."""
    global _settings
    with _settings_lock:
        current = _settings if _settings is not None else load_settings()
        updated = replace(current, **changes)
        save_settings(updated)
        _settings = updated
        return updated


def reset_settings() -> None:
    global _settings
    with _settings_lock:
        _settings = None
