import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from skillsync.config import (
    Settings,
    app_skills_dir,
    config_root,
    get_settings,
    load_settings,
    reset_settings,
    update_settings,
)
from skillsync.models import AppType


class TestPaths(unittest.TestCase):
    def test_config_root_prefers_explicit_then_env(self) -> None:
        with patch.dict(os.environ, {"SKILLSYNC_HOME": "/tmp/skillsync-env"}):
            self.assertEqual(config_root(), Path("/tmp/skillsync-env"))
            self.assertEqual(config_root("/tmp/explicit"), Path("/tmp/explicit"))

    def test_app_dir_override_uses_skills_subdirectory(self) -> None:
        settings = Settings(codex_config_dir="/opt/codex")
        self.assertEqual(app_skills_dir(AppType.CODEX, settings), Path("/opt/codex/skills"))

    def test_app_dir_defaults_under_home(self) -> None:
        settings = Settings(claude_config_dir="  ")
        with patch.object(Path, "home", return_value=Path("/home/user")):
            self.assertEqual(app_skills_dir(AppType.CLAUDE, settings), Path("/home/user/.claude/skills"))
            self.assertEqual(app_skills_dir(AppType.GEMINI, settings), Path("/home/user/.gemini/skills"))


class TestSettingsStore(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self._env = patch.dict(os.environ, {"SKILLSYNC_HOME": str(self.root)})
        self._env.start()
        reset_settings()

    def tearDown(self) -> None:
        reset_settings()
        self._env.stop()
        self._td.cleanup()

    def test_unknown_keys_are_ignored(self) -> None:
        (self.root / "settings.json").write_text(
            json.dumps({"language": "zh", "theme": "dark"}), encoding="utf-8"
        )
        self.assertEqual(load_settings().language, "zh")

    def test_missing_file_gives_defaults(self) -> None:
        self.assertEqual(load_settings(), Settings())

    def test_update_persists_and_replaces_cached_value(self) -> None:
        first = get_settings()
        self.assertIsNone(first.gemini_config_dir)

        updated = update_settings(gemini_config_dir="/opt/gemini", timeout_s=3.0)

        self.assertIs(get_settings(), updated)
        saved = json.loads((self.root / "settings.json").read_text(encoding="utf-8"))
        self.assertEqual(saved["gemini_config_dir"], "/opt/gemini")
        self.assertEqual(saved["timeout_s"], 3.0)

        reset_settings()
        self.assertEqual(get_settings().gemini_config_dir, "/opt/gemini")


if __name__ == "__main__":
    unittest.main()
