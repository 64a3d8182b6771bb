"""Artifact coordinates and the resolver capability used by the build.

A resolver answers two questions about a symbolic artifact reference: which
version the current build uses for it, and where its file lives locally.
Lookups match on ``group:artifact[::classifier]`` only; a version segment in
the reference is ignored. "Not found" is always ``None``.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence, Union, runtime_checkable
import http.client
import os
import shutil
import tempfile
import urllib.error
import urllib.parse
import urllib.request

from buildcore.config_loader import load_config_file
from buildcore.console import Console, default_console


@dataclass(frozen=True, slots=True)
class ArtifactCoordinate:
    group_id: str
    artifact_id: str
    classifier: str | None = None
    type: str | None = None
    version: str | None = None

    def __post_init__(self) -> None:
        if not self.group_id or not self.artifact_id:
            raise ValueError("Artifact coordinates require a group id and an artifact id")

    @property
    def key(self) -> str:
        """Identity key ``group:artifact[::classifier]``; never includes the version."""

        base = f"{self.group_id}:{self.artifact_id}"
        if self.classifier:
            return f"{base}::{self.classifier}"
        return base

    @property
    def extension(self) -> str:
        return self.type or "jar"

    def with_version(self, version: str | None) -> "ArtifactCoordinate":
        return replace(self, version=version)

    def with_type(self, type_: str | None) -> "ArtifactCoordinate":
        return replace(self, type=type_)

    def file_name(self) -> str:
        if not self.version:
            raise ValueError(f"Artifact {self.key} has no version")
        name = f"{self.artifact_id}-{self.version}"
        if self.classifier:
            name = f"{name}-{self.classifier}"
        return f"{name}.{self.extension}"

    def module_artifact_name(self) -> str:
        """Name used by a module descriptor: ``g:a:v`` with an optional ``:classifier``."""

        if not self.version:
            raise ValueError(f"Artifact {self.key} has no version")
        name = f"{self.group_id}:{self.artifact_id}:{self.version}"
        if self.classifier:
            name = f"{name}:{self.classifier}"
        return name

    def repository_path(self) -> str:
        """Relative path of this artifact in a Maven-layout repository."""

        group_path = self.group_id.replace(".", "/")
        return f"{group_path}/{self.artifact_id}/{self.version}/{self.file_name()}"

    @classmethod
    def parse(cls, text: str) -> "ArtifactCoordinate":
        """Parse a coordinate string.

        Accepted forms: ``g:a``, ``g:a:v``, ``g:a::c``, ``g:a:v::c``,
        ``g:a:v:c`` and the Maven ``g:a:type:classifier:version`` form.
        """

        value = text.strip()
        classifier: str | None = None
        if "::" in value:
            value, _, classifier = value.partition("::")
            parts = value.split(":")
            if len(parts) not in (2, 3):
                raise ValueError(f"Invalid artifact coordinate '{text}'")
            version = parts[2] if len(parts) == 3 else None
            return cls(parts[0], parts[1], classifier=classifier or None, version=version or None)

        parts = value.split(":")
        if len(parts) == 2:
            return cls(parts[0], parts[1])
        if len(parts) == 3:
            return cls(parts[0], parts[1], version=parts[2] or None)
        if len(parts) == 4:
            return cls(parts[0], parts[1], version=parts[2] or None, classifier=parts[3] or None)
        if len(parts) == 5:
            return cls(parts[0], parts[1], type=parts[2] or None, classifier=parts[3] or None, version=parts[4] or None)
        raise ValueError(f"Invalid artifact coordinate '{text}'")

    def __str__(self) -> str:
        base = f"{self.group_id}:{self.artifact_id}"
        if self.version:
            base = f"{base}:{self.version}"
        if self.classifier:
            base = f"{base}::{self.classifier}"
        return base


ArtifactRef = Union[str, ArtifactCoordinate]


def parse_reference(ref: ArtifactRef) -> ArtifactCoordinate | None:
    """Return the coordinate for *ref*, or ``None`` when it is not one."""

    if isinstance(ref, ArtifactCoordinate):
        return ref
    try:
        return ArtifactCoordinate.parse(ref)
    except ValueError:
        return None


def lookup_key(ref: ArtifactRef) -> str:
    """Key used by map based resolvers; falls back to the raw reference text."""

    coordinate = parse_reference(ref)
    if coordinate is not None:
        return coordinate.key
    return str(ref).strip()


@dataclass(frozen=True, slots=True)
class ResolvedArtifact:
    coordinate: ArtifactCoordinate
    file: Path | None = None

    @property
    def version(self) -> str | None:
        return self.coordinate.version


@runtime_checkable
class ArtifactResolver(Protocol):
    """Resolver capability consumed by the assembler and provisioner."""

    def get_version(self, ref: ArtifactRef) -> str | None:
        ...

    def get_artifact(self, ref: ArtifactRef) -> Path | None:
        ...


def _entry_value(entry: Mapping[str, Any], name: str) -> Any:
    if name in entry:
        return entry[name]
    return entry.get(name.replace("_", "-"))


class MapArtifactResolver:
    """In-memory resolver over a pre-resolved project dependency set."""

    def __init__(self, artifacts: Iterable[ResolvedArtifact] = (), *, name: str = "project") -> None:
        self._name = name
        self._artifacts: Dict[str, ResolvedArtifact] = {}
        for artifact in artifacts:
            self.add(artifact)

    def add(self, artifact: ResolvedArtifact) -> None:
        self._artifacts[artifact.coordinate.key] = artifact

    @classmethod
    def from_versions(cls, versions: Mapping[str, str], *, name: str = "versions") -> "MapArtifactResolver":
        resolver = cls(name=name)
        for ref, version in versions.items():
            coordinate = parse_reference(ref)
            if coordinate is None:
                raise ValueError(f"Invalid artifact coordinate '{ref}'")
            resolver.add(ResolvedArtifact(coordinate.with_version(str(version))))
        return resolver

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None, name: str = "project") -> "MapArtifactResolver":
        """Build a resolver from an ``artifacts`` list of mappings.

        Each entry names ``group_id``, ``artifact_id`` and ``version`` (or a
        single ``coordinate`` string) plus optional ``classifier``, ``type``
        and ``file``. Relative files are resolved against *base_dir*.
        """

        entries = data.get("artifacts", [])
        if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
            raise TypeError("artifacts must be a list of tables")

        resolver = cls(name=name)
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                raise TypeError(f"artifacts[{index}] must be a table")
            coordinate_text = entry.get("coordinate")
            if coordinate_text:
                coordinate = ArtifactCoordinate.parse(str(coordinate_text))
            else:
                group_id = _entry_value(entry, "group_id")
                artifact_id = _entry_value(entry, "artifact_id")
                if not group_id or not artifact_id:
                    raise ValueError(f"artifacts[{index}] requires group_id and artifact_id")
                coordinate = ArtifactCoordinate(
                    str(group_id),
                    str(artifact_id),
                    classifier=str(entry["classifier"]) if entry.get("classifier") else None,
                    type=str(entry["type"]) if entry.get("type") else None,
                    version=str(entry["version"]) if entry.get("version") else None,
                )
            if not coordinate.version:
                raise ValueError(f"artifacts[{index}] ({coordinate.key}) requires a version")
            file_value = entry.get("file")
            file_path: Path | None = None
            if file_value:
                file_path = Path(str(file_value)).expanduser()
                if not file_path.is_absolute() and base_dir is not None:
                    file_path = (base_dir / file_path).resolve()
            resolver.add(ResolvedArtifact(coordinate, file_path))
        return resolver

    @classmethod
    def from_file(cls, path: Path, *, name: str | None = None) -> "MapArtifactResolver":
        return cls.from_mapping(load_config_file(path), base_dir=path.parent, name=name or path.name)

    def keys(self) -> List[str]:
        return sorted(self._artifacts)

    def get_version(self, ref: ArtifactRef) -> str | None:
        artifact = self._artifacts.get(lookup_key(ref))
        return artifact.version if artifact else None

    def get_artifact(self, ref: ArtifactRef) -> Path | None:
        artifact = self._artifacts.get(lookup_key(ref))
        if artifact is None or artifact.file is None:
            return None
        return artifact.file

    def __repr__(self) -> str:
        return f"MapArtifactResolver(name={self._name!r}, artifacts={len(self._artifacts)})"


class PropertiesArtifactResolver:
    """Version-only resolver backed by ``version.<coordinate>`` properties."""

    PREFIX = "version."

    def __init__(self, properties: Mapping[str, Any], *, prefix: str = PREFIX) -> None:
        self._versions: Dict[str, str] = {}
        for name, value in properties.items():
            name = str(name)
            if prefix and not name.startswith(prefix):
                continue
            if value is None:
                continue
            self._versions[lookup_key(name[len(prefix):])] = str(value)

    @classmethod
    def from_file(cls, path: Path) -> "PropertiesArtifactResolver":
        return cls(load_config_file(path))

    @property
    def versions(self) -> Mapping[str, str]:
        return dict(self._versions)

    def get_version(self, ref: ArtifactRef) -> str | None:
        return self._versions.get(lookup_key(ref))

    def get_artifact(self, ref: ArtifactRef) -> Path | None:
        return None

    def __repr__(self) -> str:
        return f"PropertiesArtifactResolver(versions={len(self._versions)})"


class RemoteRepositoryResolver:
    """Resolver that fetches artifacts from Maven-layout repositories.

    Files land in ``local_repository`` using the same layout, and an existing
    local copy is used without contacting the repositories. Repositories only
    supply files: versions come from the coordinate itself or from the
    ``versions`` resolver, never from repository metadata.
    """

    def __init__(
        self,
        repositories: Sequence[str],
        local_repository: Path,
        *,
        versions: ArtifactResolver | None = None,
        console: Console | None = None,
        timeout: float | None = None,
    ) -> None:
        self._repositories = [url.rstrip("/") for url in repositories if url]
        self._local_repository = Path(local_repository).expanduser()
        self._versions = versions
        self._console = console or default_console()
        self._timeout = timeout

    @property
    def repositories(self) -> List[str]:
        return list(self._repositories)

    def get_version(self, ref: ArtifactRef) -> str | None:
        coordinate = parse_reference(ref)
        if coordinate is None or self._versions is None:
            return None
        return self._versions.get_version(coordinate)

    def get_artifact(self, ref: ArtifactRef) -> Path | None:
        coordinate = parse_reference(ref)
        if coordinate is None:
            return None
        version = coordinate.version or self.get_version(coordinate)
        if not version:
            return None
        versioned = coordinate.with_version(version)
        relative = versioned.repository_path()
        local_file = self._local_repository / relative
        if local_file.is_file():
            return local_file
        for repository in self._repositories:
            url = f"{repository}/{urllib.parse.quote(relative)}"
            if self._download(url, local_file):
                self._console.info(f"Downloaded {versioned} from {repository}")
                return local_file
        self._console.debug(f"Artifact {versioned} not found in {len(self._repositories)} repositories")
        return None

    def _open(self, url: str):
        request = urllib.request.Request(url, headers={"User-Agent": "featurepack-tools"})
        if self._timeout is None:
            return urllib.request.urlopen(request)
        return urllib.request.urlopen(request, timeout=self._timeout)

    def _download(self, url: str, destination: Path) -> bool:
        temp_path: Path | None = None
        try:
            with self._open(url) as response:
                destination.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(dir=destination.parent, prefix=".download-", delete=False) as handle:
                    temp_path = Path(handle.name)
                    shutil.copyfileobj(response, handle, 1 << 16)
            os.replace(temp_path, destination)
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            self._console.debug(f"Could not fetch {url}: {exc}")
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            return False
        return True

    def __repr__(self) -> str:
        return f"RemoteRepositoryResolver(repositories={self._repositories!r}, local_repository={str(self._local_repository)!r})"


class ChainedArtifactResolver:
    """Tries an ordered list of resolvers and returns the first answer."""

    def __init__(self, resolvers: Iterable[ArtifactResolver]) -> None:
        self._resolvers: List[ArtifactResolver] = list(resolvers)

    @property
    def resolvers(self) -> List[ArtifactResolver]:
        return list(self._resolvers)

    def get_version(self, ref: ArtifactRef) -> str | None:
        for resolver in self._resolvers:
            version = resolver.get_version(ref)
            if version is not None:
                return version
        return None

    def get_artifact(self, ref: ArtifactRef) -> Path | None:
        for resolver in self._resolvers:
            artifact = resolver.get_artifact(ref)
            if artifact is not None:
                return artifact
        return None

    def __repr__(self) -> str:
        return f"ChainedArtifactResolver({self._resolvers!r})"


__all__ = [
    "ArtifactCoordinate",
    "ArtifactRef",
    "ArtifactResolver",
    "ChainedArtifactResolver",
    "MapArtifactResolver",
    "PropertiesArtifactResolver",
    "RemoteRepositoryResolver",
    "ResolvedArtifact",
    "lookup_key",
    "parse_reference",
]
