import tempfile
import unittest
from pathlib import Path

from skillsync.manifest import (
    name_and_description,
    parse_front_matter,
    read_skill_metadata,
    split_front_matter,
)


class TestFrontMatter(unittest.TestCase):
    def test_reads_name_and_description(self) -> None:
        meta = parse_front_matter("---\nname: PDF Tools\ndescription: Work with PDFs\n---\n# Body\n")
        self.assertEqual(meta.name, "PDF Tools")
        self.assertEqual(meta.description, "Work with PDFs")

    def test_leading_bom_is_ignored(self) -> None:
        meta = parse_front_matter("\ufeff---\nname: Bom\n---\n")
        self.assertEqual(meta.name, "Bom")
        self.assertIsNone(meta.description)

    def test_missing_block_yields_empty_metadata(self) -> None:
        self.assertIsNone(split_front_matter("# Just markdown\n"))
        meta = parse_front_matter("# Just markdown\n")
        self.assertIsNone(meta.name)
        self.assertIsNone(meta.description)

    def test_invalid_yaml_yields_empty_metadata(self) -> None:
        meta = parse_front_matter("---\nname: [unclosed\n---\n")
        self.assertIsNone(meta.name)

    def test_non_mapping_yaml_yields_empty_metadata(self) -> None:
        meta = parse_front_matter("---\n- a\n- b\n---\n")
        self.assertIsNone(meta.name)

    def test_blank_values_are_dropped(self) -> None:
        meta = parse_front_matter("---\nname: '   '\ndescription: 42\n---\n")
        self.assertIsNone(meta.name)
        self.assertIsNone(meta.description)


class TestSkillDirectoryMetadata(unittest.TestCase):
    def test_missing_manifest(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            skill_dir = Path(td) / "demo"
            skill_dir.mkdir()
            self.assertIsNone(read_skill_metadata(skill_dir))
            self.assertEqual(name_and_description(skill_dir, "demo"), ("demo", None))

    def test_name_falls_back_to_directory(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            skill_dir = Path(td) / "demo"
            skill_dir.mkdir()
            (skill_dir / "SKILL.md").write_text("---\ndescription: Only a description\n---\n", encoding="utf-8")
            self.assertEqual(name_and_description(skill_dir, "demo"), ("demo", "Only a description"))


if __name__ == "__main__":
    unittest.main()
