from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from featurepack.errors import DescriptorError
from featurepack.modules import (
    DEFAULT_DESCRIPTOR_PARSERS,
    ArtifactReference,
    ModuleDependency,
    ModuleDescriptor,
    ModuleDocument,
    ModuleIdentifier,
    iter_module_descriptors,
    parse_module_xml,
)


class ModuleIdentifierTests(unittest.TestCase):
    def test_parse_and_format(self) -> None:
        self.assertEqual(ModuleIdentifier.parse("org.jboss.foo"), ModuleIdentifier("org.jboss.foo", "main"))
        self.assertEqual(ModuleIdentifier.parse("org.jboss.foo:1.2"), ModuleIdentifier("org.jboss.foo", "1.2"))
        self.assertEqual(str(ModuleIdentifier("org.app")), "org.app:main")
        with self.assertRaises(ValueError):
            ModuleIdentifier.parse(":main")

    def test_ordering(self) -> None:
        identifiers = [ModuleIdentifier("b"), ModuleIdentifier("a", "2"), ModuleIdentifier("a", "1")]
        self.assertEqual([str(item) for item in sorted(identifiers)], ["a:1", "a:2", "b:main"])


class ArtifactReferenceTests(unittest.TestCase):
    def test_placeholder_reference(self) -> None:
        reference = ArtifactReference("${org.foo:bar?jandex}")
        self.assertTrue(reference.is_placeholder)
        self.assertEqual(reference.name, "org.foo:bar")
        self.assertEqual(reference.options, "jandex")

    def test_literal_reference(self) -> None:
        reference = ArtifactReference("org.foo:bar:1.0")
        self.assertFalse(reference.is_placeholder)
        self.assertEqual(reference.name, "org.foo:bar:1.0")
        self.assertIsNone(reference.options)


class ModuleXmlParserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _write(self, relative: str, text: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text))
        return path

    def test_parse_module(self) -> None:
        path = self._write(
            "org/app/main/module.xml",
            """\
            <?xml version="1.0" encoding="UTF-8"?>
            <module xmlns="urn:jboss:module:1.9" name="org.app">
                <resources>
                    <resource-root path="app.jar"/>
                    <artifact name="${org.app:app}"/>
                    <artifact name="org.foo:bar:1.0"/>
                </resources>
                <dependencies>
                    <module name="org.jboss.foo"/>
                    <module name="org.jboss.missing" optional="true"/>
                    <module name="org.jboss.slotted" slot="2.0"/>
                </dependencies>
            </module>
            """,
        )
        descriptor = parse_module_xml(path)
        self.assertEqual(descriptor.identifier, ModuleIdentifier("org.app"))
        self.assertEqual(
            descriptor.artifacts,
            (ArtifactReference("${org.app:app}"), ArtifactReference("org.foo:bar:1.0")),
        )
        self.assertEqual(
            descriptor.dependencies,
            (
                ModuleDependency(ModuleIdentifier("org.jboss.foo")),
                ModuleDependency(ModuleIdentifier("org.jboss.missing"), optional=True),
                ModuleDependency(ModuleIdentifier("org.jboss.slotted", "2.0")),
            ),
        )
        self.assertEqual(
            [dependency.target for dependency in descriptor.required_dependencies],
            [ModuleIdentifier("org.jboss.foo"), ModuleIdentifier("org.jboss.slotted", "2.0")],
        )
        self.assertEqual(descriptor.path, path)

    def test_parse_module_alias(self) -> None:
        path = self._write(
            "javax/api/main/module.xml",
            """\
            <module-alias xmlns="urn:jboss:module:1.9" name="javax.api" target-name="java.se"/>
            """,
        )
        descriptor = parse_module_xml(path)
        self.assertEqual(descriptor.identifier, ModuleIdentifier("javax.api"))
        self.assertEqual(descriptor.alias_of, ModuleIdentifier("java.se"))
        self.assertEqual(descriptor.dependencies, (ModuleDependency(ModuleIdentifier("java.se")),))

    def test_malformed_descriptor(self) -> None:
        path = self._write("broken/main/module.xml", "<module name='broken'>")
        with self.assertRaises(DescriptorError):
            parse_module_xml(path)

    def test_missing_name(self) -> None:
        path = self._write("noname/main/module.xml", "<module/>")
        with self.assertRaises(DescriptorError):
            parse_module_xml(path)

    def test_unexpected_root(self) -> None:
        path = self._write("other/main/module.xml", "<project name='x'/>")
        with self.assertRaises(DescriptorError):
            parse_module_xml(path)


class ModuleTreeWalkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        for name in ("org.b", "org.a", "org.c"):
            directory = self.root / name.replace(".", "/") / "main"
            directory.mkdir(parents=True)
            (directory / "module.xml").write_text(f'<module name="{name}"/>')
        (self.root / "org" / "a" / "main" / "README.txt").write_text("ignored")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_walk_is_sorted(self) -> None:
        names = [descriptor.identifier.name for _, descriptor in iter_module_descriptors(self.root)]
        self.assertEqual(names, ["org.a", "org.b", "org.c"])

    def test_walk_missing_root(self) -> None:
        self.assertEqual(list(iter_module_descriptors(self.root / "absent")), [])

    def test_walk_is_lazy(self) -> None:
        (self.root / "org" / "b" / "main" / "module.xml").write_text("<module")
        walk = iter_module_descriptors(self.root)
        _, first = next(walk)
        self.assertEqual(first.identifier.name, "org.a")
        with self.assertRaises(DescriptorError):
            next(walk)

    def test_extra_descriptor_parsers(self) -> None:
        def _parse(path: Path) -> ModuleDescriptor:
            return ModuleDescriptor(ModuleIdentifier(path.read_text().strip()), path=path)

        directory = self.root / "org" / "d" / "main"
        directory.mkdir(parents=True)
        (directory / "module.json").write_text("org.d")
        parsers = {**DEFAULT_DESCRIPTOR_PARSERS, "module.json": _parse}
        names = [descriptor.identifier.name for _, descriptor in iter_module_descriptors(self.root, parsers)]
        self.assertEqual(names, ["org.a", "org.b", "org.c", "org.d"])

        names = [descriptor.identifier.name for _, descriptor in iter_module_descriptors(self.root)]
        self.assertEqual(names, ["org.a", "org.b", "org.c"])
        with self.assertRaises(TypeError):
            DEFAULT_DESCRIPTOR_PARSERS["module.json"] = _parse  # type: ignore[index]


class ModuleDocumentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "module.xml"
        self.path.write_text(
            textwrap.dedent(
                """\
                <module xmlns="urn:jboss:module:1.9" name="org.app" version="${org.app:app}">
                    <!-- application jars -->
                    <resources>
                        <artifact name="${org.app:app}"/>
                    </resources>
                </module>
                """
            )
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_version_attribute_is_parsed(self) -> None:
        self.assertEqual(parse_module_xml(self.path).version, ArtifactReference("${org.app:app}"))

    def test_rewrite_keeps_namespace_and_comments(self) -> None:
        document = ModuleDocument.read(self.path)
        [artifact] = document.artifact_elements()
        artifact.tag = document.qualified("resource-root")
        del artifact.attrib["name"]
        artifact.set("path", "app-1.0.jar")
        document.root.set("version", "1.0")
        self.path.write_bytes(document.to_bytes())

        text = self.path.read_text()
        self.assertIn('<module xmlns="urn:jboss:module:1.9" name="org.app" version="1.0">', text)
        self.assertIn("<!-- application jars -->", text)
        self.assertIn('<resource-root path="app-1.0.jar" />', text)
        self.assertNotIn("ns0:", text)
        self.assertEqual(parse_module_xml(self.path).artifacts, ())


if __name__ == "__main__":
    unittest.main()
