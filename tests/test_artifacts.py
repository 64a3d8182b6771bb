from __future__ import annotations

from pathlib import Path
from unittest import mock
import tempfile
import textwrap
import unittest

from featurepack.artifacts import (
    ArtifactCoordinate,
    ChainedArtifactResolver,
    MapArtifactResolver,
    PropertiesArtifactResolver,
    RemoteRepositoryResolver,
    ResolvedArtifact,
)


class ArtifactCoordinateTests(unittest.TestCase):
    def test_parse_forms(self) -> None:
        self.assertEqual(ArtifactCoordinate.parse("org.foo:bar"), ArtifactCoordinate("org.foo", "bar"))
        self.assertEqual(ArtifactCoordinate.parse("org.foo:bar:1.0").version, "1.0")
        coordinate = ArtifactCoordinate.parse("org.foo:bar::tests")
        self.assertEqual(coordinate.classifier, "tests")
        self.assertIsNone(coordinate.version)
        coordinate = ArtifactCoordinate.parse("org.foo:bar:1.0::tests")
        self.assertEqual((coordinate.version, coordinate.classifier), ("1.0", "tests"))
        coordinate = ArtifactCoordinate.parse("org.foo:bar:1.0:tests")
        self.assertEqual((coordinate.version, coordinate.classifier), ("1.0", "tests"))
        coordinate = ArtifactCoordinate.parse("org.foo:bar:zip:sources:2.0")
        self.assertEqual((coordinate.type, coordinate.classifier, coordinate.version), ("zip", "sources", "2.0"))

    def test_invalid_coordinates(self) -> None:
        for text in ("foo", "", ":bar", "a:b:c:d:e:f"):
            with self.subTest(text=text):
                with self.assertRaises(ValueError):
                    ArtifactCoordinate.parse(text)

    def test_key_ignores_version_and_type(self) -> None:
        coordinate = ArtifactCoordinate("org.foo", "bar", classifier="tests", type="zip", version="1.0")
        self.assertEqual(coordinate.key, "org.foo:bar::tests")
        self.assertEqual(ArtifactCoordinate("org.foo", "bar", version="1.0").key, "org.foo:bar")

    def test_string_form_round_trips(self) -> None:
        coordinate = ArtifactCoordinate("org.foo", "bar", classifier="tests", version="1.0")
        self.assertEqual(str(coordinate), "org.foo:bar:1.0::tests")
        self.assertEqual(ArtifactCoordinate.parse(str(coordinate)), coordinate)

    def test_repository_path(self) -> None:
        coordinate = ArtifactCoordinate("org.foo", "bar", classifier="tests", type="zip", version="1.0")
        self.assertEqual(coordinate.repository_path(), "org/foo/bar/1.0/bar-1.0-tests.zip")
        self.assertEqual(ArtifactCoordinate("org.foo", "bar", version="2").file_name(), "bar-2.jar")

    def test_module_artifact_name(self) -> None:
        coordinate = ArtifactCoordinate("org.foo", "bar", classifier="tests", type="zip", version="1.0")
        self.assertEqual(coordinate.module_artifact_name(), "org.foo:bar:1.0:tests")
        self.assertEqual(ArtifactCoordinate("org.foo", "bar", version="2").module_artifact_name(), "org.foo:bar:2")
        with self.assertRaises(ValueError):
            ArtifactCoordinate("org.foo", "bar").module_artifact_name()


class MapArtifactResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.jar = self.root / "bar-1.0.jar"
        self.jar.write_bytes(b"jar")
        self.resolver = MapArtifactResolver(
            [
                ResolvedArtifact(ArtifactCoordinate("org.foo", "bar", version="1.0"), self.jar),
                ResolvedArtifact(ArtifactCoordinate("org.foo", "bar", classifier="tests", version="1.1")),
            ]
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_lookup_ignores_version_segment(self) -> None:
        self.assertEqual(self.resolver.get_version("org.foo:bar"), "1.0")
        self.assertEqual(self.resolver.get_version("org.foo:bar:9.9"), "1.0")
        self.assertEqual(self.resolver.get_artifact("org.foo:bar:9.9"), self.jar)

    def test_classifier_is_part_of_identity(self) -> None:
        self.assertEqual(self.resolver.get_version("org.foo:bar::tests"), "1.1")
        self.assertIsNone(self.resolver.get_artifact("org.foo:bar::tests"))

    def test_absent_results(self) -> None:
        self.assertIsNone(self.resolver.get_version("org.foo:missing"))
        self.assertIsNone(self.resolver.get_version("foo"))
        self.assertIsNone(self.resolver.get_artifact("org.foo:missing"))

    def test_from_file(self) -> None:
        path = self.root / "dependencies.toml"
        path.write_text(
            textwrap.dedent(
                """
                [[artifacts]]
                group-id = "org.example"
                artifact-id = "base-pack"
                version = "3.0"
                type = "zip"
                file = "packs/base"

                [[artifacts]]
                coordinate = "org.example:lib:1.2"
                """
            )
        )
        resolver = MapArtifactResolver.from_file(path)
        self.assertEqual(resolver.keys(), ["org.example:base-pack", "org.example:lib"])
        self.assertEqual(resolver.get_version("org.example:base-pack"), "3.0")
        self.assertEqual(resolver.get_artifact("org.example:base-pack"), (self.root / "packs" / "base").resolve())
        self.assertEqual(resolver.get_version("org.example:lib"), "1.2")

    def test_from_mapping_requires_version(self) -> None:
        with self.assertRaises(ValueError):
            MapArtifactResolver.from_mapping({"artifacts": [{"group_id": "a", "artifact_id": "b"}]})


class PropertiesArtifactResolverTests(unittest.TestCase):
    def test_version_properties(self) -> None:
        resolver = PropertiesArtifactResolver({"version.org.foo:bar": "2.0", "other": "x"})
        self.assertEqual(resolver.get_version("org.foo:bar:1.0"), "2.0")
        self.assertIsNone(resolver.get_version("other"))
        self.assertIsNone(resolver.get_artifact("org.foo:bar"))


class ChainedArtifactResolverTests(unittest.TestCase):
    def test_first_present_answer_wins(self) -> None:
        first = MapArtifactResolver.from_versions({"org.foo:bar": "1.0"})
        second = MapArtifactResolver.from_versions({"org.foo:bar": "2.0", "org.foo:baz": "3.0"})
        chain = ChainedArtifactResolver([first, second])
        self.assertEqual(chain.get_version("org.foo:bar"), "1.0")
        self.assertEqual(chain.get_version("org.foo:baz"), "3.0")
        self.assertIsNone(chain.get_version("org.foo:none"))
        self.assertIsNone(chain.get_artifact("org.foo:bar"))

    def test_empty_chain(self) -> None:
        self.assertIsNone(ChainedArtifactResolver([]).get_version("org.foo:bar"))


class RemoteRepositoryResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.repository = self.root / "remote"
        artifact_dir = self.repository / "org" / "foo" / "bar"
        (artifact_dir / "1.0").mkdir(parents=True)
        (artifact_dir / "2.0").mkdir(parents=True)
        (artifact_dir / "1.0" / "bar-1.0.jar").write_bytes(b"one")
        (artifact_dir / "2.0" / "bar-2.0.jar").write_bytes(b"two")
        (artifact_dir / "maven-metadata.xml").write_text(
            textwrap.dedent(
                """\
                <metadata>
                  <groupId>org.foo</groupId>
                  <artifactId>bar</artifactId>
                  <versioning>
                    <release>2.0</release>
                    <versions><version>1.0</version><version>2.0</version></versions>
                  </versioning>
                </metadata>
                """
            )
        )
        self.local = self.root / "local"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_repository_metadata_never_supplies_versions(self) -> None:
        resolver = RemoteRepositoryResolver([self.repository.as_uri()], self.local)
        self.assertIsNone(resolver.get_version("org.foo:bar"))
        self.assertIsNone(resolver.get_artifact("org.foo:bar"))
        artifact = resolver.get_artifact("org.foo:bar:2.0")
        self.assertEqual(artifact, self.local / "org" / "foo" / "bar" / "2.0" / "bar-2.0.jar")
        self.assertEqual(artifact.read_bytes(), b"two")

    def test_interrupted_download_leaves_no_files(self) -> None:
        response = mock.MagicMock()
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        response.read.side_effect = [b"partial", OSError("connection reset")]
        resolver = RemoteRepositoryResolver(["https://repo.example.org/maven2"], self.local)
        with mock.patch("featurepack.artifacts.urllib.request.urlopen", return_value=response):
            self.assertIsNone(resolver.get_artifact("org.foo:bar:1.0"))
        self.assertEqual([path for path in self.local.rglob("*") if path.is_file()], [])

    def test_pinned_versions_take_precedence(self) -> None:
        pinned = MapArtifactResolver.from_versions({"org.foo:bar": "1.0"})
        resolver = RemoteRepositoryResolver([self.repository.as_uri()], self.local, versions=pinned)
        self.assertEqual(resolver.get_version("org.foo:bar"), "1.0")
        self.assertEqual(resolver.get_artifact("org.foo:bar").read_bytes(), b"one")
        self.assertIsNone(resolver.get_version("org.foo:other"))

    def test_local_copy_is_reused(self) -> None:
        cached = self.local / "org" / "foo" / "bar" / "1.0" / "bar-1.0.jar"
        cached.parent.mkdir(parents=True)
        cached.write_bytes(b"cached")
        resolver = RemoteRepositoryResolver([], self.local)
        self.assertEqual(resolver.get_artifact(ArtifactCoordinate("org.foo", "bar", version="1.0")), cached)

    def test_missing_artifacts_are_absent(self) -> None:
        resolver = RemoteRepositoryResolver([self.repository.as_uri()], self.local)
        self.assertIsNone(resolver.get_version("org.foo:missing"))
        self.assertIsNone(resolver.get_artifact(ArtifactCoordinate("org.foo", "bar", version="9.9")))
        self.assertIsNone(resolver.get_artifact("not-a-coordinate"))


if __name__ == "__main__":
    unittest.main()
