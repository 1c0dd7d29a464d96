import tempfile
import unittest
from pathlib import Path

from skillsync.config import Settings, app_skills_dir
from skillsync.index import IndexStore
from skillsync.migration import import_from_apps, migrate_ssot_if_pending, scan_unmanaged
from skillsync.models import AppFlags, AppType, InstalledSkill, SkillsIndex
from skillsync.store import SkillStore


class _Fixture(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.settings = Settings(
            claude_config_dir=str(self.root / "claude"),
            codex_config_dir=str(self.root / "codex"),
            gemini_config_dir=str(self.root / "gemini"),
        )
        self.store = SkillStore(self.root / "home" / "skills")
        self.index_store = IndexStore(self.root / "home")

    def tearDown(self) -> None:
        self._td.cleanup()

    def make_skill(self, app: AppType, directory: str, name: str | None = None) -> Path:
        path = app_skills_dir(app, self.settings) / directory
        path.mkdir(parents=True)
        if name is not None:
            (path / "SKILL.md").write_text(f"---\nname: {name}\ndescription: about {name}\n---\n", encoding="utf-8")
        return path

    def migrate(self, index: SkillsIndex) -> int:
        return migrate_ssot_if_pending(index, store=self.store, index_store=self.index_store, settings=self.settings)


class TestMigration(_Fixture):
    def test_empty_index_imports_every_app_directory(self) -> None:
        self.make_skill(AppType.CLAUDE, "a", name="Alpha")
        self.make_skill(AppType.CODEX, "a", name="Alpha")
        self.make_skill(AppType.CODEX, "b")
        (app_skills_dir(AppType.GEMINI, self.settings) / ".cache").mkdir(parents=True)
        index = SkillsIndex(migration_pending=True)

        created = self.migrate(index)

        self.assertEqual(created, 2)
        self.assertEqual(sorted(index.skills), ["a", "b"])
        self.assertEqual(index.skills["a"].id, "local:a")
        self.assertEqual(index.skills["a"].name, "Alpha")
        self.assertEqual(index.skills["a"].description, "about Alpha")
        self.assertEqual(index.skills["a"].apps.enabled_apps(), [AppType.CLAUDE, AppType.CODEX])
        self.assertEqual(index.skills["b"].name, "b")
        self.assertEqual(index.skills["b"].apps.enabled_apps(), [AppType.CODEX])
        self.assertEqual(self.store.directories(), ["a", "b"])
        self.assertFalse(index.migration_pending)
        self.assertFalse(self.index_store.load().migration_pending)

    def test_populated_index_only_copies_managed_skills(self) -> None:
        self.make_skill(AppType.CLAUDE, "a", name="Alpha")
        self.make_skill(AppType.CLAUDE, "b", name="Beta")
        index = SkillsIndex(
            migration_pending=True,
            skills={"a": InstalledSkill.local("a", apps=AppFlags(claude=True))},
        )

        created = self.migrate(index)

        self.assertEqual(created, 1)
        self.assertEqual(self.store.directories(), ["a"])
        self.assertEqual(list(index.skills), ["a"])
        self.assertEqual(index.skills["a"].name, "Alpha")
        self.assertEqual([u.directory for u in scan_unmanaged(index, self.settings)], ["b"])

    def test_populated_index_falls_back_to_any_app(self) -> None:
        self.make_skill(AppType.GEMINI, "a")
        index = SkillsIndex(migration_pending=True, skills={"a": InstalledSkill.local("a")})

        self.assertEqual(self.migrate(index), 1)
        self.assertTrue(self.store.exists("a"))

    def test_missing_source_is_skipped_and_flag_cleared(self) -> None:
        index = SkillsIndex(
            migration_pending=True,
            skills={"ghost": InstalledSkill.local("ghost", apps=AppFlags(claude=True))},
        )
        with self.assertLogs("skillsync.migration", level="WARNING"):
            self.assertEqual(self.migrate(index), 0)
        self.assertFalse(index.migration_pending)

    def test_no_pending_flag_is_a_no_op(self) -> None:
        self.make_skill(AppType.CLAUDE, "a")
        index = SkillsIndex(migration_pending=False)
        self.assertEqual(self.migrate(index), 0)
        self.assertEqual(index.skills, {})
        self.assertFalse(self.index_store.path.exists())


class TestUnmanagedImport(_Fixture):
    def test_scan_reports_every_app_it_was_found_in(self) -> None:
        self.make_skill(AppType.CODEX, "b", name="Beta")
        self.make_skill(AppType.GEMINI, "b", name="Beta")
        self.make_skill(AppType.CLAUDE, "a")

        found = scan_unmanaged(SkillsIndex(), self.settings)

        self.assertEqual([u.directory for u in found], ["a", "b"])
        self.assertEqual(found[1].name, "Beta")
        self.assertEqual(found[1].found_in, [AppType.CODEX, AppType.GEMINI])

    def test_import_adopts_directories(self) -> None:
        self.make_skill(AppType.CODEX, "b", name="Beta")
        self.make_skill(AppType.GEMINI, "b", name="Beta")
        index = SkillsIndex()

        imported = import_from_apps(index, ["b", "missing"], store=self.store, settings=self.settings)

        self.assertEqual([s.directory for s in imported], ["b"])
        self.assertEqual(index.skills["b"].id, "local:b")
        self.assertEqual(index.skills["b"].apps.enabled_apps(), [AppType.CODEX, AppType.GEMINI])
        self.assertTrue(self.store.exists("b"))
        self.assertEqual(scan_unmanaged(index, self.settings), [])


if __name__ == "__main__":
    unittest.main()
