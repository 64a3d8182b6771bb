"""Feature pack layout and loading of previously built packs."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Tuple
import json
import re

from buildcore.archive import ArchiveError, ArchiveManager, archive_format_for
from buildcore.config_loader import parse_properties
from buildcore.console import Console, default_console

from .artifacts import ArtifactCoordinate
from .config_loader import CopyArtifact, FilePermission
from .errors import DescriptorError, PackFormatError
from .modules import DescriptorParser, ModuleIdentifier, iter_module_descriptors

MODULES = "modules"
CONTENT = "content"
CONFIGURATION = "configuration"
VERSIONS_PROPERTIES = "versions.properties"
FEATURE_PACK_DESCRIPTION = "feature-pack.json"

PACK_ROOTS: Tuple[str, ...] = (MODULES, CONFIGURATION, CONTENT)
"""Pack directories copied into a provisioned server, in copy order."""


@dataclass(frozen=True, slots=True)
class PackDescription:
    """Contents of ``feature-pack.json``."""

    dependencies: Tuple[ArtifactCoordinate, ...] = ()
    copy_artifacts: Tuple[CopyArtifact, ...] = ()
    file_permissions: Tuple[FilePermission, ...] = ()

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"dependencies": [str(coordinate) for coordinate in self.dependencies]}
        if self.copy_artifacts:
            data["copy_artifacts"] = [entry.to_mapping() for entry in self.copy_artifacts]
        if self.file_permissions:
            data["file_permissions"] = [entry.to_mapping() for entry in self.file_permissions]
        return data


@dataclass(frozen=True, slots=True)
class Pack:
    coordinate: ArtifactCoordinate
    root: Path
    provided_modules: FrozenSet[ModuleIdentifier] = frozenset()
    versions: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    description: PackDescription = PackDescription()

    @property
    def dependencies(self) -> Tuple[ArtifactCoordinate, ...]:
        return self.description.dependencies

    def __str__(self) -> str:
        return str(self.coordinate)


def _table_list(data: Mapping[str, Any], key: str, path: Path) -> List[Mapping[str, Any]]:
    entries = data.get(key, [])
    if not isinstance(entries, list) or not all(isinstance(entry, Mapping) for entry in entries):
        raise PackFormatError(f"{path}: {key} must be a list of objects")
    return entries


def read_pack_description(root: Path) -> PackDescription:
    """Read ``feature-pack.json`` below *root*; a pack without one has an empty description."""

    path = root / FEATURE_PACK_DESCRIPTION
    if not path.is_file():
        return PackDescription()
    try:
        with path.open("r", encoding="utf-8") as handle:
            data: Any = json.load(handle)
    except (OSError, ValueError) as exc:
        raise PackFormatError(f"Could not read {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise PackFormatError(f"{path} must contain a JSON object")
    entries = data.get("dependencies", [])
    if not isinstance(entries, list):
        raise PackFormatError(f"{path}: dependencies must be a list")
    try:
        return PackDescription(
            dependencies=tuple(ArtifactCoordinate.parse(str(entry)) for entry in entries),
            copy_artifacts=tuple(CopyArtifact.from_mapping(entry) for entry in _table_list(data, "copy_artifacts", path)),
            file_permissions=tuple(
                FilePermission.from_mapping(entry) for entry in _table_list(data, "file_permissions", path)
            ),
        )
    except (ValueError, TypeError) as exc:
        raise PackFormatError(f"{path}: {exc}") from exc


def write_pack_description(root: Path, description: PackDescription) -> Path:
    path = root / FEATURE_PACK_DESCRIPTION
    root.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(description.to_mapping(), handle, indent=2, sort_keys=True)
        handle.write("\n")
    return path


def _work_dir_name(coordinate: ArtifactCoordinate) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", coordinate.key)


class PackLoader:
    """Loads dependency packs from unpacked directories or pack archives."""

    def __init__(
        self,
        *,
        archive_manager: ArchiveManager | None = None,
        console: Console | None = None,
        descriptor_parsers: Mapping[str, DescriptorParser] | None = None,
    ) -> None:
        self._console = console or default_console()
        self._archives = archive_manager or ArchiveManager(self._console)
        self._descriptor_parsers = descriptor_parsers

    def load(self, coordinate: ArtifactCoordinate, location: Path, work_dir: Path) -> Pack:
        """Load the pack for *coordinate* stored at *location*.

        Archives are extracted below *work_dir*; directories are used in place.
        """

        if location.is_dir():
            root = location
        elif location.is_file():
            if archive_format_for(location) is None:
                raise PackFormatError(f"Feature pack {coordinate} at {location} is not a supported archive")
            root = work_dir / _work_dir_name(coordinate)
            try:
                self._archives.extract_archive(archive_path=location, destination_dir=root)
            except ArchiveError as exc:
                raise PackFormatError(f"Feature pack {coordinate}: {exc}") from exc
        else:
            raise PackFormatError(f"Feature pack {coordinate} does not exist at {location}")

        if not any((root / name).exists() for name in (*PACK_ROOTS, VERSIONS_PROPERTIES, FEATURE_PACK_DESCRIPTION)):
            raise PackFormatError(f"{location} does not contain a feature pack layout")

        provided: List[ModuleIdentifier] = []
        try:
            for _, descriptor in iter_module_descriptors(root / MODULES, self._descriptor_parsers):
                provided.append(descriptor.identifier)
        except DescriptorError as exc:
            raise PackFormatError(f"Feature pack {coordinate}: {exc}") from exc

        versions_file = root / VERSIONS_PROPERTIES
        versions = parse_properties(versions_file.read_text(encoding="utf-8")) if versions_file.is_file() else {}

        pack = Pack(
            coordinate=coordinate,
            root=root,
            provided_modules=frozenset(provided),
            versions=MappingProxyType(dict(versions)),
            description=read_pack_description(root),
        )
        self._console.debug(f"Loaded feature pack {coordinate} from {location} ({len(provided)} modules)")
        return pack


__all__ = [
    "CONFIGURATION",
    "CONTENT",
    "FEATURE_PACK_DESCRIPTION",
    "MODULES",
    "PACK_ROOTS",
    "Pack",
    "PackDescription",
    "PackLoader",
    "VERSIONS_PROPERTIES",
    "read_pack_description",
    "write_pack_description",
]
