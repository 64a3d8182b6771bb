"""Server provisioning: compose built feature packs into one server tree."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Mapping, Sequence, Set, Tuple
import os
import shutil
import tempfile

from buildcore.archive import ArchiveError, ArchiveManager
from buildcore.console import Console, default_console
from buildcore.template import PropertyReplacer

from .artifacts import (
    ArtifactCoordinate,
    ArtifactResolver,
    ChainedArtifactResolver,
    MapArtifactResolver,
    parse_reference,
)
from .assembler import VersionManifest, resolve_pack
from .config_loader import CopyArtifact, FeaturePackEntry, FilePermission, ServerProvisioningDescription
from .copier import CopyReport, FileTreeCopier, PathFilter, copy_permissions
from .errors import CopyError, PackFormatError, UnresolvedArtifactError
from .modules import ArtifactReference, DescriptorParser, ModuleDocument
from .packs import MODULES, PACK_ROOTS, VERSIONS_PROPERTIES, Pack, PackLoader

MODULE_XML = "module.xml"


@dataclass(slots=True)
class ProvisioningResult:
    server_dir: Path
    manifest: VersionManifest
    packs: Tuple[Pack, ...] = ()
    report: CopyReport = field(default_factory=CopyReport)


@dataclass(slots=True)
class _Run:
    description: ServerProvisioningDescription
    server_dir: Path
    resolver: ArtifactResolver
    file_resolver: ArtifactResolver
    overrides: ArtifactResolver | None
    work_dir: Path
    loader: PackLoader
    report: CopyReport = field(default_factory=CopyReport)
    versions: Dict[str, str] = field(default_factory=dict)
    applied: List[Pack] = field(default_factory=list)

    def version_for(self, coordinate: ArtifactCoordinate, pack_versions: Mapping[str, str]) -> str | None:
        """Version overrides first, then the versions recorded by the pack, then the resolver."""

        if self.overrides is not None:
            version = self.overrides.get_version(coordinate)
            if version:
                return version
        return pack_versions.get(coordinate.key) or self.resolver.get_version(coordinate)


class ServerProvisioner:
    """Materialises ``<target>/<server_name>`` from a provisioning description.

    Packs are applied in declaration order, each after the packs it records
    as dependencies unless ``exclude_dependencies`` is set. A later pack
    replaces files of an earlier one; ``overwrite = false`` on an entry keeps
    files that already exist.

    Module descriptors are copied without filtering. Their artifact
    references are rewritten to ``group:artifact:version`` names, or with
    ``copy_module_artifacts`` to a ``resource-root`` next to a copy of the
    artifact file.
    """

    def __init__(
        self,
        console: Console | None = None,
        *,
        archive_manager: ArchiveManager | None = None,
        work_dir: Path | None = None,
        descriptor_parsers: Mapping[str, DescriptorParser] | None = None,
    ) -> None:
        self._console = console or default_console()
        self._archives = archive_manager or ArchiveManager(self._console)
        self._copier = FileTreeCopier(self._console)
        self._work_dir = work_dir
        self._descriptor_parsers = descriptor_parsers

    def build(
        self,
        description: ServerProvisioningDescription,
        target_directory: Path,
        coordinate_resolver: ArtifactResolver,
        file_resolver: ArtifactResolver | None = None,
    ) -> ProvisioningResult:
        overrides: ArtifactResolver | None = None
        resolver: ArtifactResolver = coordinate_resolver
        if description.version_overrides:
            overrides = MapArtifactResolver.from_versions(description.version_overrides, name="version-overrides")
            resolver = ChainedArtifactResolver([overrides, coordinate_resolver])
        files = file_resolver or coordinate_resolver

        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
            return self._provision(description, Path(target_directory), resolver, files, overrides, self._work_dir)
        with tempfile.TemporaryDirectory(prefix="featurepack-server-") as temp_dir:
            return self._provision(description, Path(target_directory), resolver, files, overrides, Path(temp_dir))

    def _provision(
        self,
        description: ServerProvisioningDescription,
        target: Path,
        resolver: ArtifactResolver,
        file_resolver: ArtifactResolver,
        overrides: ArtifactResolver | None,
        work_dir: Path,
    ) -> ProvisioningResult:
        server_dir = target / description.server_name
        self._prepare_server_dir(server_dir, overlay=description.overlay)

        run = _Run(
            description=description,
            server_dir=server_dir,
            resolver=resolver,
            file_resolver=file_resolver,
            overrides=overrides,
            work_dir=work_dir,
            loader=PackLoader(
                archive_manager=self._archives,
                console=self._console,
                descriptor_parsers=self._descriptor_parsers,
            ),
        )

        for entry in description.feature_packs:
            for pack in self._packs_for(entry, run):
                self._apply_pack(pack, entry, run)

        replacer = PropertyReplacer.from_mappings(description.properties, run.versions)
        for resource in description.resources:
            destination = server_dir / resource.target if resource.target else server_dir
            resource_report = self._copier.copy_tree(
                resource.source,
                destination,
                filtering=resource.filtering,
                replacer=replacer,
                overwrite=resource.overwrite,
            )
            prefix = f"{resource.target}/" if resource.target else ""
            run.report.extend(resource_report, prefix=prefix)

        for copy_artifact in description.copy_artifacts:
            key, version = self._copy_artifact(copy_artifact, run, {})
            run.versions[key] = version

        self._apply_file_permissions(description.file_permissions, server_dir)

        manifest = VersionManifest(run.versions)
        if not self._console.dry_run:
            manifest.write(server_dir / VERSIONS_PROPERTIES)
        self._console.info(
            f"Provisioned {server_dir} from {len(run.applied)} feature packs "
            f"({len(run.report.copied)} files copied, {len(run.report.skipped)} kept)"
        )
        return ProvisioningResult(server_dir=server_dir, manifest=manifest, packs=tuple(run.applied), report=run.report)

    def _apply_pack(self, pack: Pack, entry: FeaturePackEntry, run: _Run) -> None:
        run.versions.update(pack.versions)
        run.versions[pack.coordinate.key] = pack.coordinate.version or ""
        replacer = PropertyReplacer.from_mappings(run.description.properties, run.versions)
        self._console.info(f"Applying feature pack {pack.coordinate}")

        for root in PACK_ROOTS:
            source = pack.root / root
            if not source.is_dir():
                continue
            pack_report = self._copier.copy_tree(
                source,
                run.server_dir / root,
                filtering=entry.filtering,
                replacer=replacer,
                overwrite=entry.overwrite,
                verbatim=lambda relative: PurePosixPath(relative).name == MODULE_XML,
            )
            run.report.extend(pack_report, prefix=f"{root}/")
            if root == MODULES:
                for relative in pack_report.copied:
                    if PurePosixPath(relative).name == MODULE_XML:
                        self._process_module(pack, relative, run)

        for copy_artifact in pack.description.copy_artifacts:
            key, version = self._copy_artifact(copy_artifact, run, pack.versions)
            run.versions[key] = version
        self._apply_file_permissions(pack.description.file_permissions, run.server_dir)
        run.applied.append(pack)

    def _module_coordinate(self, reference: ArtifactReference, pack: Pack, run: _Run) -> ArtifactCoordinate:
        coordinate = parse_reference(reference.name)
        if coordinate is None:
            raise UnresolvedArtifactError(str(reference), reason=f"not an artifact coordinate in feature pack {pack}")
        if coordinate.version:
            return coordinate
        version = run.version_for(coordinate, pack.versions)
        if not version:
            raise UnresolvedArtifactError(str(reference), reason=f"no version for module artifact in feature pack {pack}")
        return coordinate.with_version(version)

    def _process_module(self, pack: Pack, relative: str, run: _Run) -> None:
        """Rewrite the artifact references of one copied ``module.xml``."""

        source = pack.root / MODULES / relative
        destination = run.server_dir / MODULES / relative
        document = ModuleDocument.read(source)
        changed = False

        for element in document.artifact_elements():
            name = element.get("name")
            if not name:
                continue
            coordinate = self._module_coordinate(ArtifactReference(name), pack, run)
            if run.description.copy_module_artifacts:
                artifact_file = run.file_resolver.get_artifact(coordinate)
                if artifact_file is None:
                    raise UnresolvedArtifactError(str(coordinate), reason="module artifact file not found")
                artifact_file = Path(artifact_file)
                self._copier.copy_file(artifact_file, destination.parent / artifact_file.name)
                run.report.copied.append(f"{MODULES}/{PurePosixPath(relative).parent / artifact_file.name}")
                element.tag = document.qualified("resource-root")
                del element.attrib["name"]
                element.set("path", artifact_file.name)
                changed = True
            elif name != coordinate.module_artifact_name():
                element.set("name", coordinate.module_artifact_name())
                changed = True

        version = document.root.get("version")
        if version and ArtifactReference(version).is_placeholder:
            coordinate = self._module_coordinate(ArtifactReference(version), pack, run)
            document.root.set("version", coordinate.version or "")
            changed = True

        if not changed or self._console.dry_run:
            return
        try:
            destination.unlink(missing_ok=True)
            destination.write_bytes(document.to_bytes())
            copy_permissions(source, destination)
        except OSError as exc:
            raise CopyError(f"Could not write {destination}: {exc}") from exc

    def _prepare_server_dir(self, server_dir: Path, *, overlay: bool) -> None:
        if self._console.dry_run:
            self._console.info(f"[dry-run] Would provision {server_dir}")
            return
        if server_dir.exists() and not overlay:
            self._console.debug(f"Removing existing server directory {server_dir}")
            try:
                shutil.rmtree(server_dir)
            except OSError as exc:
                raise CopyError(f"Could not remove {server_dir}: {exc}") from exc
        server_dir.mkdir(parents=True, exist_ok=True)

    def _packs_for(self, entry: FeaturePackEntry, run: _Run) -> List[Pack]:
        """Packs to apply for *entry*, dependencies first, skipping applied ones.

        A version written in the entry is used when the resolvers have none.
        """

        done: Set[str] = {pack.coordinate.key for pack in run.applied}
        ordered: List[Pack] = []

        def _visit(reference: str | ArtifactCoordinate) -> None:
            pack = resolve_pack(
                reference,
                run.resolver,
                run.file_resolver,
                run.loader,
                run.work_dir,
                use_recorded_version=True,
            )
            done.add(pack.coordinate.key)
            if not run.description.exclude_dependencies:
                for dependency in pack.dependencies:
                    if dependency.key in done:
                        continue
                    _visit(dependency)
            ordered.append(pack)

        _visit(entry.artifact)
        return ordered

    def _copy_artifact(
        self,
        copy_artifact: CopyArtifact,
        run: _Run,
        pack_versions: Mapping[str, str],
    ) -> Tuple[str, str]:
        try:
            coordinate = ArtifactCoordinate.parse(copy_artifact.artifact)
        except ValueError as exc:
            raise UnresolvedArtifactError(copy_artifact.artifact, reason=str(exc)) from exc
        version = run.version_for(coordinate, pack_versions) or coordinate.version
        if not version:
            raise UnresolvedArtifactError(copy_artifact.artifact, reason="no version for artifact to copy")
        coordinate = coordinate.with_version(version)
        artifact_file = run.file_resolver.get_artifact(coordinate)
        if artifact_file is None:
            raise UnresolvedArtifactError(str(coordinate), reason="artifact file to copy not found")
        artifact_file = Path(artifact_file)

        location = copy_artifact.to_location
        if location == "" or location.endswith("/"):
            location = f"{location}{artifact_file.name}"
        destination = run.server_dir / location

        if copy_artifact.extract:
            extracted = run.work_dir / "copy-artifacts" / coordinate.key.replace(":", "_")
            try:
                self._archives.extract_archive(archive_path=artifact_file, destination_dir=extracted)
            except ArchiveError as exc:
                raise PackFormatError(f"Artifact {coordinate} to copy: {exc}") from exc
            source = extracted / copy_artifact.from_location if copy_artifact.from_location else extracted
            if not source.is_dir():
                raise CopyError(f"{copy_artifact.from_location} does not exist in {artifact_file}")
            accept = PathFilter.compile(copy_artifact.include, copy_artifact.exclude)
            extract_report = self._copier.copy_tree(source, destination, accept=accept)
            run.report.extend(extract_report, prefix=f"{location.rstrip('/')}/")
        else:
            self._copier.copy_file(artifact_file, destination)
            run.report.copied.append(location)
        self._console.debug(f"Copied artifact {coordinate} to {destination}")
        return coordinate.key, version

    def _apply_file_permissions(self, permissions: Sequence[FilePermission], server_dir: Path) -> None:
        if not permissions or os.name == "nt" or self._console.dry_run:
            return
        filters = [(permission, PathFilter.compile(permission.include, permission.exclude)) for permission in permissions]
        for dirpath, dirnames, filenames in os.walk(server_dir, topdown=False):
            current = Path(dirpath)
            for name in sorted(dirnames) + sorted(filenames):
                path = current / name
                relative = path.relative_to(server_dir).as_posix()
                if path.is_dir():
                    relative += "/"
                for permission, accept in filters:
                    if accept(relative):
                        os.chmod(path, permission.value)
                        break


__all__ = [
    "MODULE_XML",
    "ProvisioningResult",
    "ServerProvisioner",
]
