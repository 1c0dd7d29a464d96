import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from skillsync.client import SkillSyncError
from skillsync.config import Settings
from skillsync.models import AppFlags, AppType, InstalledSkill, SkillsIndex, SyncMethod
from skillsync.store import SkillStore, list_skill_dirs
from skillsync.sync import ProjectionError, SyncEngine


def _settings(root: Path) -> Settings:
    return Settings(
        claude_config_dir=str(root / "claude"),
        codex_config_dir=str(root / "codex"),
        gemini_config_dir=str(root / "gemini"),
    )


class TestSkillStore(unittest.TestCase):
    def test_rejects_path_like_directory_names(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = SkillStore(Path(td))
            for bad in ("", "..", "a/b", "a\\b"):
                with self.assertRaises(SkillSyncError):
                    store.path_for(bad)

    def test_hidden_entries_and_files_are_not_skills(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "b").mkdir()
            (root / "a").mkdir()
            (root / ".git").mkdir()
            (root / "notes.txt").write_text("x", encoding="utf-8")
            self.assertEqual([p.name for p in list_skill_dirs(root)], ["a", "b"])
            self.assertEqual(list_skill_dirs(root / "missing"), [])

    def test_copy_in_and_remove(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "src"
            (src / "sub").mkdir(parents=True)
            (src / "sub" / "f.txt").write_text("hi", encoding="utf-8")
            store = SkillStore(Path(td) / "ssot")

            dest = store.copy_in(src, "demo")
            self.assertEqual((dest / "sub" / "f.txt").read_text(encoding="utf-8"), "hi")
            self.assertEqual(store.directories(), ["demo"])

            self.assertTrue(store.remove("demo"))
            self.assertFalse(store.remove("demo"))
            self.assertFalse(store.exists("demo"))


class TestSyncEngine(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.store = SkillStore(self.root / "ssot")
        self.engine = SyncEngine(self.store, _settings(self.root))
        skill = self.store.ensure() / "demo"
        skill.mkdir()
        (skill / "SKILL.md").write_text("---\nname: Demo\n---\n", encoding="utf-8")
        self.source = skill.absolute()

    def tearDown(self) -> None:
        self._td.cleanup()

    def _dest(self, app: AppType = AppType.CLAUDE) -> Path:
        return self.engine.app_dir(app) / "demo"

    def test_symlink_projection_is_idempotent(self) -> None:
        self.assertEqual(self.engine.project("demo", AppType.CLAUDE, SyncMethod.SYMLINK), SyncMethod.SYMLINK)
        dest = self._dest()
        self.assertTrue(dest.is_symlink())
        self.assertEqual(Path(os.readlink(dest)), self.source)

        with patch("skillsync.sync.create_symlink") as create:
            self.assertEqual(self.engine.project("demo", AppType.CLAUDE, SyncMethod.SYMLINK), SyncMethod.SYMLINK)
        create.assert_not_called()

    def test_copy_projection_is_idempotent_and_refreshes_stale_copies(self) -> None:
        self.engine.project("demo", AppType.CODEX, SyncMethod.COPY)
        dest = self._dest(AppType.CODEX)
        self.assertFalse(dest.is_symlink())
        inode = os.stat(dest).st_ino

        self.engine.project("demo", AppType.CODEX, SyncMethod.COPY)
        self.assertEqual(os.stat(dest).st_ino, inode)

        (self.source / "SKILL.md").write_text("---\nname: Changed\n---\n", encoding="utf-8")
        self.engine.project("demo", AppType.CODEX, SyncMethod.COPY)
        self.assertEqual((dest / "SKILL.md").read_text(encoding="utf-8"), "---\nname: Changed\n---\n")

    def test_auto_falls_back_to_copy_when_symlink_fails(self) -> None:
        with (
            patch("skillsync.sync.create_symlink", side_effect=ProjectionError("not permitted")),
            self.assertLogs("skillsync.sync", level="WARNING"),
        ):
            used = self.engine.project("demo", AppType.GEMINI, SyncMethod.AUTO)

        self.assertEqual(used, SyncMethod.COPY)
        dest = self._dest(AppType.GEMINI)
        self.assertTrue(dest.is_dir())
        self.assertFalse(dest.is_symlink())

    def test_switching_method_replaces_existing_projection(self) -> None:
        self.engine.project("demo", AppType.CLAUDE, SyncMethod.SYMLINK)
        self.engine.project("demo", AppType.CLAUDE, SyncMethod.COPY)
        dest = self._dest()
        self.assertFalse(dest.is_symlink())
        self.assertTrue((dest / "SKILL.md").is_file())

    def test_missing_store_entry_is_an_error(self) -> None:
        with self.assertRaises(ProjectionError):
            self.engine.project("ghost", AppType.CLAUDE, SyncMethod.AUTO)

    def test_unproject_does_not_touch_store(self) -> None:
        self.engine.project("demo", AppType.CLAUDE, SyncMethod.SYMLINK)
        self.assertTrue(self.engine.unproject("demo", AppType.CLAUDE))
        self.assertFalse(self._dest().exists())
        self.assertTrue((self.source / "SKILL.md").is_file())
        self.assertFalse(self.engine.unproject("demo", AppType.CLAUDE))

    def test_sync_all_projects_enabled_apps_only(self) -> None:
        index = SkillsIndex(
            sync_method=SyncMethod.SYMLINK,
            skills={"demo": InstalledSkill.local("demo", apps=AppFlags(claude=True, gemini=True))},
        )
        self.assertEqual(self.engine.sync_all(index), 2)
        self.assertTrue(self._dest(AppType.CLAUDE).is_symlink())
        self.assertFalse(self._dest(AppType.CODEX).exists())
        self.assertTrue(self._dest(AppType.GEMINI).is_symlink())

        self.assertEqual(self.engine.sync_all(index, AppType.CLAUDE), 1)
        self.assertEqual(Path(os.readlink(self._dest())), self.source)

    def test_best_effort_sync_logs_and_continues(self) -> None:
        index = SkillsIndex(
            skills={
                "demo": InstalledSkill.local("demo", apps=AppFlags(claude=True, codex=True)),
                "ghost": InstalledSkill.local("ghost", apps=AppFlags(claude=True)),
            },
        )
        with self.assertLogs("skillsync.sync", level="WARNING"):
            count = self.engine.sync_all_best_effort(index)
        self.assertEqual(count, 1)
        self.assertTrue(self._dest(AppType.CODEX).exists())


if __name__ == "__main__":
    unittest.main()
