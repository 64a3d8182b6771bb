"""Feature pack assembly: dependency packs, module validation and version manifest.

The assembler assumes the pack's files have already been laid out under the
target directory (``modules/``, ``configuration/``, ``content/``). It checks
that tree against the declared dependency packs, records the resolved
artifact versions in ``versions.properties`` and reports every validation
problem of the run together.
"""
from __future__ import annotations

from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Sequence, Set, Tuple
import os
import re
import tempfile

from buildcore.archive import ArchiveManager
from buildcore.config_loader import format_properties, parse_properties
from buildcore.console import Console, default_console
from buildcore.template import PropertyReplacer

from .artifacts import ArtifactCoordinate, ArtifactResolver
from .config_loader import CopyArtifact, FeaturePackBuild, ResourceSpec
from .copier import FileTreeCopier
from .errors import AssemblyValidationError, UnresolvedArtifactError
from .modules import DescriptorParser, ModuleIdentifier
from .packs import (
    CONTENT,
    MODULES,
    VERSIONS_PROPERTIES,
    Pack,
    PackDescription,
    PackLoader,
    write_pack_description,
)
from .validator import ModuleGraphValidator, ValidationResult

DEFAULT_PACK_TYPE = "zip"

_CRLF = re.compile(rb"\r\n")
_BARE_LF = re.compile(rb"(?<!\r)\n")


class VersionManifest(MappingABC):
    """Immutable placeholder-name to version mapping, iterated in key order."""

    def __init__(self, versions: Mapping[str, str] | None = None) -> None:
        self._versions: Dict[str, str] = {key: str(versions[key]) for key in sorted(versions or {})}

    @classmethod
    def merge(cls, *sources: Mapping[str, str]) -> "VersionManifest":
        """Combine *sources*; later sources win on equal keys."""

        combined: Dict[str, str] = {}
        for source in sources:
            combined.update(source)
        return cls(combined)

    @classmethod
    def read(cls, path: Path) -> "VersionManifest":
        return cls(parse_properties(path.read_text(encoding="utf-8")))

    def __getitem__(self, key: str) -> str:
        return self._versions[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._versions)

    def __len__(self) -> int:
        return len(self._versions)

    def to_properties(self) -> str:
        return format_properties(self._versions)

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_properties(), encoding="utf-8")
        return path

    def __repr__(self) -> str:
        return f"VersionManifest({self._versions!r})"


@dataclass(slots=True)
class AssemblyResult:
    target: Path
    manifest: VersionManifest
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    packs: Tuple[Pack, ...] = ()
    known_modules: FrozenSet[ModuleIdentifier] = frozenset()

    @property
    def ok(self) -> bool:
        return not self.errors


def _dependency_coordinate(reference: str | ArtifactCoordinate) -> ArtifactCoordinate:
    coordinate = reference if isinstance(reference, ArtifactCoordinate) else ArtifactCoordinate.parse(reference)
    if coordinate.type is None:
        coordinate = coordinate.with_type(DEFAULT_PACK_TYPE)
    return coordinate


def resolve_pack(
    reference: str | ArtifactCoordinate,
    coordinate_resolver: ArtifactResolver,
    file_resolver: ArtifactResolver,
    loader: PackLoader,
    work_dir: Path,
    *,
    use_recorded_version: bool = False,
) -> Pack:
    """Resolve and load one dependency pack, raising when it cannot be located.

    With ``use_recorded_version`` a version carried by *reference* is used
    when the resolver has none; dependencies recorded inside a pack rely on it.
    """

    try:
        coordinate = _dependency_coordinate(reference)
    except ValueError as exc:
        raise UnresolvedArtifactError(str(reference), reason=str(exc)) from exc
    version = coordinate_resolver.get_version(coordinate)
    if version is None and use_recorded_version:
        version = coordinate.version
    if not version:
        raise UnresolvedArtifactError(str(reference), reason="no version in the project dependency set")
    coordinate = coordinate.with_version(version)
    location = file_resolver.get_artifact(coordinate)
    if location is None:
        raise UnresolvedArtifactError(str(coordinate), reason="artifact file not found")
    return loader.load(coordinate, Path(location), work_dir)


def _normalize_line_endings(path: Path, pattern: re.Pattern[bytes], replacement: bytes) -> None:
    data = path.read_bytes()
    updated = pattern.sub(replacement, data)
    if updated != data:
        path.write_bytes(updated)


class FeaturePackAssembler:
    """Builds one feature pack from the tree under a target directory."""

    def __init__(
        self,
        console: Console | None = None,
        *,
        hard_coded_artifacts: str = "warn",
        platform_modules: Iterable[ModuleIdentifier] | None = None,
        archive_manager: ArchiveManager | None = None,
        work_dir: Path | None = None,
        descriptor_parsers: Mapping[str, DescriptorParser] | None = None,
    ) -> None:
        self._console = console or default_console()
        self._hard_coded_artifacts = hard_coded_artifacts
        self._platform_modules = platform_modules
        self._archives = archive_manager or ArchiveManager(self._console)
        self._work_dir = work_dir
        self._descriptor_parsers = descriptor_parsers
        self._copier = FileTreeCopier(self._console)

    def build(
        self,
        build: FeaturePackBuild,
        target_directory: Path,
        coordinate_resolver: ArtifactResolver,
        file_resolver: ArtifactResolver | None = None,
    ) -> AssemblyResult:
        """Assemble and raise :class:`AssemblyValidationError` when errors were found."""

        result = self.assemble(build, target_directory, coordinate_resolver, file_resolver)
        if result.errors:
            raise AssemblyValidationError(result.errors)
        return result

    def assemble(
        self,
        build: FeaturePackBuild,
        target_directory: Path,
        coordinate_resolver: ArtifactResolver,
        file_resolver: ArtifactResolver | None = None,
    ) -> AssemblyResult:
        """Run every assembly step and return the collected diagnostics.

        Unresolvable dependency packs raise :class:`UnresolvedArtifactError`
        before the module tree is looked at. Pack roots extracted from
        archives only outlive this call when a ``work_dir`` was configured.
        """

        target = Path(target_directory)
        files = file_resolver or coordinate_resolver
        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
            return self._assemble(build, target, coordinate_resolver, files, self._work_dir)
        with tempfile.TemporaryDirectory(prefix="featurepack-") as temp_dir:
            return self._assemble(build, target, coordinate_resolver, files, Path(temp_dir))

    def _assemble(
        self,
        build: FeaturePackBuild,
        target: Path,
        coordinate_resolver: ArtifactResolver,
        file_resolver: ArtifactResolver,
        work_dir: Path,
    ) -> AssemblyResult:
        direct, packs = self._load_dependency_packs(build.dependencies, coordinate_resolver, file_resolver, work_dir)
        provided: Set[ModuleIdentifier] = set()
        for pack in packs:
            provided.update(pack.provided_modules)
        self._console.info(f"Loaded {len(packs)} dependency feature packs providing {len(provided)} modules")

        pack_versions = VersionManifest.merge(*(pack.versions for pack in packs))
        validation = self._copy_and_validate(build, target, coordinate_resolver, provided, pack_versions, work_dir)
        copy_versions = self._copy_artifact_versions(build.copy_artifacts, coordinate_resolver, validation)

        manifest = VersionManifest.merge(
            pack_versions,
            {pack.coordinate.key: pack.coordinate.version for pack in packs if pack.coordinate.version},
            validation.resolved_versions,
            copy_versions,
        )
        if not self._console.dry_run:
            manifest.write(target / VERSIONS_PROPERTIES)
            write_pack_description(
                target,
                PackDescription(tuple(direct), tuple(build.copy_artifacts), tuple(build.file_permissions)),
            )
            self._process_content(build, target / CONTENT)

        for error in validation.errors:
            self._console.error(error)
        return AssemblyResult(
            target=target,
            manifest=manifest,
            errors=list(validation.errors),
            warnings=list(validation.warnings),
            packs=tuple(packs),
            known_modules=validation.known_modules,
        )

    def _copy_and_validate(
        self,
        build: FeaturePackBuild,
        target: Path,
        coordinate_resolver: ArtifactResolver,
        provided: Set[ModuleIdentifier],
        versions: Mapping[str, str],
        work_dir: Path,
    ) -> ValidationResult:
        """Copy the build resources into *target* and validate the module tree.

        On a dry run the resources are not written to *target*; they are laid
        over a staged copy of its modules instead, so the validated tree is
        the one a real run would produce.
        """

        validator = ModuleGraphValidator(
            coordinate_resolver,
            console=self._console,
            platform_modules=self._platform_modules,
            hard_coded_artifacts=self._hard_coded_artifacts,
            descriptor_parsers=self._descriptor_parsers,
        )
        self._copy_resources(build.resources, target, build.properties, versions, self._copier)
        if not self._console.dry_run or not build.resources:
            return validator.validate(target / MODULES, provided)

        with tempfile.TemporaryDirectory(prefix="validation-", dir=work_dir) as staging_dir:
            staging = Path(staging_dir)
            staging_copier = FileTreeCopier(self._console, dry_run=False)
            if (target / MODULES).is_dir():
                staging_copier.copy_tree(target / MODULES, staging / MODULES)
            self._copy_resources(build.resources, staging, build.properties, versions, staging_copier)
            return validator.validate(staging / MODULES, provided)

    def _copy_artifact_versions(
        self,
        copy_artifacts: Sequence[CopyArtifact],
        coordinate_resolver: ArtifactResolver,
        validation: ValidationResult,
    ) -> Dict[str, str]:
        """Versions of the copy artifacts that name none; failures become validation errors."""

        versions: Dict[str, str] = {}
        for copy_artifact in copy_artifacts:
            try:
                coordinate = ArtifactCoordinate.parse(copy_artifact.artifact)
            except ValueError as exc:
                validation.errors.append(f"Invalid copy artifact {copy_artifact.artifact}: {exc}")
                continue
            if coordinate.version:
                continue
            version = coordinate_resolver.get_version(coordinate)
            if version is None:
                validation.errors.append(f"Could not determine version for copy artifact {copy_artifact.artifact}")
            else:
                versions[coordinate.key] = version
        return versions

    def _load_dependency_packs(
        self,
        dependencies: Sequence[str],
        coordinate_resolver: ArtifactResolver,
        file_resolver: ArtifactResolver,
        work_dir: Path,
    ) -> Tuple[List[ArtifactCoordinate], List[Pack]]:
        loader = PackLoader(
            archive_manager=self._archives,
            console=self._console,
            descriptor_parsers=self._descriptor_parsers,
        )
        seen: Set[str] = set()
        direct: List[ArtifactCoordinate] = []
        packs: List[Pack] = []

        def _visit(reference: str | ArtifactCoordinate, is_direct: bool) -> None:
            pack = resolve_pack(
                reference,
                coordinate_resolver,
                file_resolver,
                loader,
                work_dir,
                use_recorded_version=not is_direct,
            )
            if is_direct:
                direct.append(pack.coordinate)
            packs.append(pack)
            for transitive in pack.dependencies:
                if transitive.key in seen:
                    continue
                seen.add(transitive.key)
                _visit(transitive, False)

        queue: List[str] = []
        for dependency in dependencies:
            try:
                key = _dependency_coordinate(dependency).key
            except ValueError as exc:
                raise UnresolvedArtifactError(dependency, reason=str(exc)) from exc
            if key not in seen:
                seen.add(key)
                queue.append(dependency)
        for dependency in queue:
            _visit(dependency, True)
        return direct, packs

    def _copy_resources(
        self,
        resources: Sequence[ResourceSpec],
        target: Path,
        properties: Mapping[str, str],
        versions: Mapping[str, str],
        copier: FileTreeCopier,
    ) -> None:
        if not resources:
            return
        replacer = PropertyReplacer.from_mappings(properties, versions)
        for resource in resources:
            destination = target / resource.target if resource.target else target
            report = copier.copy_tree(
                resource.source,
                destination,
                filtering=resource.filtering,
                replacer=replacer,
                overwrite=resource.overwrite,
            )
            self._console.debug(
                f"Copied resource {resource.source} to {destination}: "
                f"{len(report.copied)} copied, {len(report.skipped)} skipped"
            )

    def _process_content(self, build: FeaturePackBuild, content_dir: Path) -> None:
        for directory in build.mkdirs:
            (content_dir / directory).mkdir(parents=True, exist_ok=True)
        if not content_dir.is_dir():
            return
        unix = [re.compile(pattern) for pattern in build.unix_line_endings]
        windows = [re.compile(pattern) for pattern in build.windows_line_endings]
        if not unix and not windows:
            return
        for dirpath, dirnames, filenames in os.walk(content_dir):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                relative = path.relative_to(content_dir).as_posix()
                if any(pattern.fullmatch(relative) for pattern in unix):
                    _normalize_line_endings(path, _CRLF, b"\n")
                if any(pattern.fullmatch(relative) for pattern in windows):
                    _normalize_line_endings(path, _BARE_LF, b"\r\n")

    def package(self, target_directory: Path, archive_path: Path, *, format_hint: str | None = None) -> Path:
        """Archive an assembled pack directory."""

        return self._archives.create_archive(
            source_dir=target_directory,
            target_path=archive_path,
            format_hint=format_hint,
        )


__all__ = [
    "AssemblyResult",
    "DEFAULT_PACK_TYPE",
    "FeaturePackAssembler",
    "VersionManifest",
    "resolve_pack",
]
