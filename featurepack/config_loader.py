"""Settings and descriptor loading for the feature pack tools."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import os

from buildcore.config_loader import (
    load_config_file,
    normalize_string_list,
    normalize_string_mapping,
)
from buildcore.template import PropertyReplacer

from .modules import ModuleIdentifier
from .validator import HARD_CODED_POLICIES

SETTINGS_ENV_VAR = "FEATUREPACK_SETTINGS"
DEFAULT_REPOSITORIES = ("https://repo.maven.apache.org/maven2",)
DEFAULT_LOCAL_REPOSITORY = "~/.m2/repository"
DEFAULT_SERVER_NAME = "server"


def _get(section: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Read ``key`` accepting both ``snake_case`` and ``kebab-case`` spellings."""

    if key in section:
        return section[key]
    return section.get(key.replace("_", "-"), default)


def _get_bool(section: Mapping[str, Any], key: str, default: bool, *, context: str) -> bool:
    value = _get(section, key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise TypeError(f"{context}.{key} must be a boolean")


def _get_table_list(data: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    value = _get(data, key)
    if value is None:
        return []
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise TypeError(f"[[{key}]] must be an array of tables")
    tables: List[Mapping[str, Any]] = []
    for index, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            raise TypeError(f"{key}[{index}] must be a table")
        tables.append(entry)
    return tables


def _resolve_path(value: str, base_dir: Path | None) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path


@dataclass(slots=True)
class Settings:
    log_level: str = "info"
    hard_coded_artifacts: str = "warn"
    local_repository: Path = field(default_factory=lambda: Path(DEFAULT_LOCAL_REPOSITORY).expanduser())
    repositories: List[str] = field(default_factory=lambda: list(DEFAULT_REPOSITORIES))
    platform_modules: List[ModuleIdentifier] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        section = data.get("settings", {}) if isinstance(data, Mapping) else {}
        if not isinstance(section, Mapping):
            raise TypeError("[settings] must be a table")
        hard_coded = str(_get(section, "hard_coded_artifacts", "warn")).strip().lower()
        if hard_coded not in HARD_CODED_POLICIES:
            raise ValueError(
                f"settings.hard_coded_artifacts must be one of {', '.join(HARD_CODED_POLICIES)}"
            )
        repositories_value = _get(section, "repositories")
        repositories = (
            list(DEFAULT_REPOSITORIES)
            if repositories_value is None
            else normalize_string_list(repositories_value, field_name="settings.repositories")
        )
        platform_value = _get(section, "platform_modules")
        platform_modules = None
        if platform_value is not None:
            platform_modules = [
                ModuleIdentifier.parse(name)
                for name in normalize_string_list(platform_value, field_name="settings.platform_modules")
            ]
        return cls(
            log_level=str(_get(section, "log_level", "info")),
            hard_coded_artifacts=hard_coded,
            local_repository=Path(str(_get(section, "local_repository", DEFAULT_LOCAL_REPOSITORY))).expanduser(),
            repositories=repositories,
            platform_modules=platform_modules,
        )


@dataclass(slots=True)
class ResourceSpec:
    """Supplementary tree copied into the output: ``source`` dir to ``target`` subpath."""

    source: Path
    target: str = ""
    filtering: bool = False
    overwrite: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "ResourceSpec":
        source = _get(data, "source")
        if not source:
            raise ValueError("resources entries require a 'source'")
        target = str(_get(data, "target", "") or "").strip().strip("/")
        return cls(
            source=_resolve_path(str(source), base_dir),
            target=target,
            filtering=_get_bool(data, "filtering", False, context="resources"),
            overwrite=_get_bool(data, "overwrite", True, context="resources"),
        )


@dataclass(slots=True)
class FeaturePackEntry:
    artifact: str
    filtering: bool = False
    overwrite: bool = True

    @classmethod
    def from_value(cls, value: Any) -> "FeaturePackEntry":
        if isinstance(value, str):
            if not value.strip():
                raise ValueError("feature_packs entries cannot be empty strings")
            return cls(artifact=value.strip())
        if isinstance(value, Mapping):
            artifact = _get(value, "artifact")
            if not artifact or not str(artifact).strip():
                raise ValueError("feature_packs entries must include a non-empty 'artifact'")
            return cls(
                artifact=str(artifact).strip(),
                filtering=_get_bool(value, "filtering", False, context="feature_packs"),
                overwrite=_get_bool(value, "overwrite", True, context="feature_packs"),
            )
        raise TypeError("feature_packs entries must be strings or tables")


@dataclass(slots=True)
class CopyArtifact:
    artifact: str
    to_location: str
    extract: bool = False
    from_location: str | None = None
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CopyArtifact":
        artifact = _get(data, "artifact")
        to_location = _get(data, "to_location")
        if not artifact or to_location is None:
            raise ValueError("copy_artifacts entries require 'artifact' and 'to_location'")
        from_location = _get(data, "from_location")
        if from_location:
            from_location = str(from_location).strip("/") + "/"
        return cls(
            artifact=str(artifact).strip(),
            to_location=str(to_location).lstrip("/"),
            extract=_get_bool(data, "extract", False, context="copy_artifacts") or bool(from_location),
            from_location=from_location or None,
            include=normalize_string_list(_get(data, "include"), field_name="copy_artifacts.include"),
            exclude=normalize_string_list(_get(data, "exclude"), field_name="copy_artifacts.exclude"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"artifact": self.artifact, "to_location": self.to_location, "extract": self.extract}
        if self.from_location:
            data["from_location"] = self.from_location
        if self.include:
            data["include"] = list(self.include)
        if self.exclude:
            data["exclude"] = list(self.exclude)
        return data


@dataclass(slots=True)
class FilePermission:
    value: int
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FilePermission":
        raw = _get(data, "value")
        if raw is None:
            raise ValueError("file_permissions entries require a 'value'")
        try:
            value = int(str(raw), 8)
        except ValueError as exc:
            raise ValueError(f"file_permissions value '{raw}' is not an octal mode") from exc
        return cls(
            value=value,
            include=normalize_string_list(_get(data, "include"), field_name="file_permissions.include"),
            exclude=normalize_string_list(_get(data, "exclude"), field_name="file_permissions.exclude"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"value": f"{self.value:o}"}
        if self.include:
            data["include"] = list(self.include)
        if self.exclude:
            data["exclude"] = list(self.exclude)
        return data


@dataclass(slots=True)
class FeaturePackBuild:
    """Build descriptor of one pack.

    ``copy_artifacts`` and ``file_permissions`` are not applied while
    building; they are recorded in the pack description and applied by
    every server the pack is provisioned into.
    """

    dependencies: List[str] = field(default_factory=list)
    resources: List[ResourceSpec] = field(default_factory=list)
    mkdirs: List[str] = field(default_factory=list)
    unix_line_endings: List[str] = field(default_factory=list)
    windows_line_endings: List[str] = field(default_factory=list)
    properties: Dict[str, str] = field(default_factory=dict)
    copy_artifacts: List[CopyArtifact] = field(default_factory=list)
    file_permissions: List[FilePermission] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "FeaturePackBuild":
        line_endings = _get(data, "line_endings", {}) or {}
        if not isinstance(line_endings, Mapping):
            raise TypeError("[line_endings] must be a table")
        return cls(
            dependencies=normalize_string_list(_get(data, "dependencies"), field_name="dependencies"),
            resources=[ResourceSpec.from_mapping(entry, base_dir=base_dir) for entry in _get_table_list(data, "resources")],
            mkdirs=normalize_string_list(_get(data, "mkdirs"), field_name="mkdirs"),
            unix_line_endings=normalize_string_list(line_endings.get("unix"), field_name="line_endings.unix"),
            windows_line_endings=normalize_string_list(line_endings.get("windows"), field_name="line_endings.windows"),
            properties=normalize_string_mapping(_get(data, "properties"), field_name="properties"),
            copy_artifacts=[CopyArtifact.from_mapping(entry) for entry in _get_table_list(data, "copy_artifacts")],
            file_permissions=[FilePermission.from_mapping(entry) for entry in _get_table_list(data, "file_permissions")],
        )


@dataclass(slots=True)
class ServerProvisioningDescription:
    server_name: str = DEFAULT_SERVER_NAME
    overlay: bool = False
    exclude_dependencies: bool = False
    copy_module_artifacts: bool = False
    properties: Dict[str, str] = field(default_factory=dict)
    version_overrides: Dict[str, str] = field(default_factory=dict)
    feature_packs: List[FeaturePackEntry] = field(default_factory=list)
    resources: List[ResourceSpec] = field(default_factory=list)
    copy_artifacts: List[CopyArtifact] = field(default_factory=list)
    file_permissions: List[FilePermission] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "ServerProvisioningDescription":
        server_name = str(_get(data, "server_name", DEFAULT_SERVER_NAME) or "").strip()
        if not server_name or "/" in server_name or "\\" in server_name or server_name in (".", ".."):
            raise ValueError(f"server_name '{server_name}' is not a valid directory name")

        packs_value = _get(data, "feature_packs", [])
        if not isinstance(packs_value, Sequence) or isinstance(packs_value, (str, bytes)):
            raise TypeError("[[feature_packs]] must be an array of tables or strings")

        return cls(
            server_name=server_name,
            overlay=_get_bool(data, "overlay", False, context="provisioning"),
            exclude_dependencies=_get_bool(data, "exclude_dependencies", False, context="provisioning"),
            copy_module_artifacts=_get_bool(data, "copy_module_artifacts", False, context="provisioning"),
            properties=normalize_string_mapping(_get(data, "properties"), field_name="properties"),
            version_overrides=normalize_string_mapping(_get(data, "version_overrides"), field_name="version_overrides"),
            feature_packs=[FeaturePackEntry.from_value(entry) for entry in packs_value],
            resources=[ResourceSpec.from_mapping(entry, base_dir=base_dir) for entry in _get_table_list(data, "resources")],
            copy_artifacts=[CopyArtifact.from_mapping(entry) for entry in _get_table_list(data, "copy_artifacts")],
            file_permissions=[FilePermission.from_mapping(entry) for entry in _get_table_list(data, "file_permissions")],
        )


def _substituted(data: Mapping[str, Any], properties: Mapping[str, str]) -> Mapping[str, Any]:
    own = normalize_string_mapping(_get(data, "properties"), field_name="properties")
    replacer = PropertyReplacer.from_mappings(properties, own)
    return replacer.resolve(data)


def load_feature_pack_build(path: Path, properties: Mapping[str, str] | None = None) -> FeaturePackBuild:
    """Load a feature pack build descriptor, substituting ``${name}`` values."""

    data = _substituted(load_config_file(path), properties or {})
    return FeaturePackBuild.from_mapping(data, base_dir=path.parent)


def load_provisioning_description(path: Path, properties: Mapping[str, str] | None = None) -> ServerProvisioningDescription:
    """Load a server provisioning descriptor; ``properties`` win over the file's own."""

    raw = load_config_file(path)
    data = dict(_substituted(raw, properties or {}))
    merged = dict(normalize_string_mapping(_get(data, "properties"), field_name="properties"))
    merged.update(properties or {})
    data["properties"] = merged
    return ServerProvisioningDescription.from_mapping(data, base_dir=path.parent)


def load_settings(path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> Settings:
    """Load settings from *path*, or from ``$FEATUREPACK_SETTINGS`` when unset."""

    env = os.environ if environ is None else environ
    if path is None and env.get(SETTINGS_ENV_VAR):
        path = Path(env[SETTINGS_ENV_VAR]).expanduser()
    if path is None:
        return Settings()
    if not path.is_file():
        raise FileNotFoundError(f"Settings file '{path}' does not exist")
    return Settings.from_mapping(load_config_file(path))


__all__ = [
    "CopyArtifact",
    "DEFAULT_REPOSITORIES",
    "FeaturePackBuild",
    "FeaturePackEntry",
    "FilePermission",
    "ResourceSpec",
    "SETTINGS_ENV_VAR",
    "ServerProvisioningDescription",
    "Settings",
    "load_feature_pack_build",
    "load_provisioning_description",
    "load_settings",
]
