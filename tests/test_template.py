from __future__ import annotations

import os
import unittest

from unittest.mock import patch

from buildcore.template import (
    PropertyReplacer,
    TemplateError,
    is_placeholder,
    placeholder_name,
)


class PropertyReplacerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.replacer = PropertyReplacer.from_mappings(
            {"name": "demo", "version": "1.0", "full": "${name}-${version}"},
            environment=False,
        )

    def test_replace_placeholders(self) -> None:
        self.assertEqual(self.replacer.replace("${name}:${version}"), "demo:1.0")

    def test_nested_property_resolution(self) -> None:
        self.assertEqual(self.replacer.replace("artifact ${full}"), "artifact demo-1.0")

    def test_unknown_placeholder_is_left_untouched(self) -> None:
        self.assertEqual(self.replacer.replace("${missing} and ${name}"), "${missing} and demo")

    def test_strict_mode_raises_for_unknown(self) -> None:
        strict = PropertyReplacer.from_mappings({}, strict=True, environment=False)
        with self.assertRaises(TemplateError):
            strict.replace("${missing}")

    def test_default_value_is_used_when_missing(self) -> None:
        self.assertEqual(self.replacer.replace("${missing:-fallback}"), "fallback")
        self.assertEqual(self.replacer.replace("${name:-fallback}"), "demo")

    def test_names_with_colons_resolve_before_defaults(self) -> None:
        replacer = PropertyReplacer.from_mappings({"org.foo:bar": "2.3"}, environment=False)
        self.assertEqual(replacer.replace("${org.foo:bar}"), "2.3")
        self.assertEqual(replacer.replace("${org.foo:baz:-0.1}"), "0.1")

    def test_unknown_coordinate_is_left_untouched(self) -> None:
        self.assertEqual(self.replacer.replace("lib=${org.unknown:thing}"), "lib=${org.unknown:thing}")
        strict = PropertyReplacer.from_mappings({}, strict=True, environment=False)
        with self.assertRaises(TemplateError):
            strict.replace("${org.unknown:thing}")

    def test_circular_reference_detected(self) -> None:
        replacer = PropertyReplacer.from_mappings({"a": "${b}", "b": "${a}"}, environment=False)
        with self.assertRaises(TemplateError):
            replacer.replace("${a}")

    def test_first_source_wins(self) -> None:
        replacer = PropertyReplacer.from_mappings({"key": "first"}, {"key": "second"}, environment=False)
        self.assertEqual(replacer.lookup("key"), "first")

    def test_environment_properties(self) -> None:
        replacer = PropertyReplacer.from_mappings({})
        with patch.dict(os.environ, {"FEATUREPACK_TEST_VALUE": "from-env"}):
            self.assertEqual(replacer.replace("${env.FEATUREPACK_TEST_VALUE}"), "from-env")

    def test_resolve_nested_structures(self) -> None:
        value = {"list": ["${name}", 3], "nested": {"key": "${version}"}}
        self.assertEqual(
            self.replacer.resolve(value),
            {"list": ["demo", 3], "nested": {"key": "1.0"}},
        )


class PlaceholderHelpersTests(unittest.TestCase):
    def test_is_placeholder(self) -> None:
        self.assertTrue(is_placeholder("${org.foo:bar}"))
        self.assertTrue(is_placeholder("  ${x}  "))
        self.assertFalse(is_placeholder("org.foo:bar:1.0"))
        self.assertFalse(is_placeholder("${a}-${b}"))

    def test_placeholder_name(self) -> None:
        self.assertEqual(placeholder_name("${org.foo:bar?jandex}"), "org.foo:bar?jandex")
        with self.assertRaises(TemplateError):
            placeholder_name("plain")


if __name__ == "__main__":
    unittest.main()
