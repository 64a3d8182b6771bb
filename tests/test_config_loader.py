from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from buildcore.config_loader import (
    format_properties,
    load_config_file,
    normalize_string_list,
    normalize_string_mapping,
    parse_properties,
)


class PropertiesFormatTests(unittest.TestCase):
    def test_parse_properties(self) -> None:
        text = textwrap.dedent(
            """
            # comment
            ! another comment
            a=1
            b : two
            c = spaced value
            long = first \\
                   second
            key\\=with\\ eq=v
            uni=\\u00e9
            """
        )
        self.assertEqual(
            parse_properties(text),
            {
                "a": "1",
                "b": "two",
                "c": "spaced value",
                "long": "first second",
                "key=with eq": "v",
                "uni": "é",
            },
        )

    def test_format_properties_sorts_keys(self) -> None:
        text = format_properties({"org.b:x": "2", "org.a:y": "1"})
        self.assertEqual(text, "org.a:y=1\norg.b:x=2\n")

    def test_format_properties_escapes_keys(self) -> None:
        text = format_properties({"k=1": "v", "with space": "x"}, comment="generated")
        self.assertEqual(text, "# generated\nk\\=1=v\nwith\\ space=x\n")
        self.assertEqual(parse_properties(text), {"k=1": "v", "with space": "x"})


class LoadConfigFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_loads_supported_formats(self) -> None:
        (self.root / "a.toml").write_text('name = "toml"\n')
        (self.root / "a.json").write_text('{"name": "json"}')
        (self.root / "a.yaml").write_text("name: yaml\n")
        (self.root / "a.properties").write_text("name=properties\n")
        for suffix in ("toml", "json", "yaml", "properties"):
            with self.subTest(suffix=suffix):
                self.assertEqual(load_config_file(self.root / f"a.{suffix}"), {"name": suffix})

    def test_empty_yaml_is_empty_mapping(self) -> None:
        (self.root / "empty.yml").write_text("")
        self.assertEqual(load_config_file(self.root / "empty.yml"), {})

    def test_unsupported_suffix(self) -> None:
        (self.root / "a.ini").write_text("[x]\n")
        with self.assertRaises(ValueError):
            load_config_file(self.root / "a.ini")

    def test_non_mapping_root(self) -> None:
        (self.root / "list.json").write_text("[1, 2]")
        with self.assertRaises(TypeError):
            load_config_file(self.root / "list.json")


class NormalizationTests(unittest.TestCase):
    def test_normalize_string_list(self) -> None:
        self.assertEqual(normalize_string_list(" one "), ["one"])
        self.assertEqual(normalize_string_list(["a", " ", "b"]), ["a", "b"])
        self.assertEqual(normalize_string_list(None), [])
        with self.assertRaises(TypeError):
            normalize_string_list([1], field_name="mkdirs")

    def test_normalize_string_mapping(self) -> None:
        self.assertEqual(
            normalize_string_mapping({"flag": True, "n": 3, "s": "x"}),
            {"flag": "true", "n": "3", "s": "x"},
        )
        with self.assertRaises(TypeError):
            normalize_string_mapping({"nested": {"a": 1}}, field_name="properties")
        with self.assertRaises(TypeError):
            normalize_string_mapping(["a"])


if __name__ == "__main__":
    unittest.main()
