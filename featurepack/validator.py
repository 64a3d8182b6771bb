"""Module dependency graph validation across the packs of one build."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Set

from buildcore.console import Console, default_console

from .artifacts import ArtifactResolver
from .modules import ArtifactReference, DescriptorParser, ModuleDescriptor, ModuleIdentifier, iter_module_descriptors

PLATFORM_MODULES: FrozenSet[ModuleIdentifier] = frozenset(
    ModuleIdentifier(name)
    for name in (
        "java.base",
        "java.compiler",
        "java.corba",
        "java.datatransfer",
        "java.desktop",
        "java.instrument",
        "java.jnlp",
        "java.logging",
        "java.management",
        "java.management.rmi",
        "java.naming",
        "java.prefs",
        "java.rmi",
        "java.scripting",
        "java.se",
        "java.security.jgss",
        "java.security.sasl",
        "java.smartcardio",
        "java.sql",
        "java.sql.rowset",
        "java.transaction",
        "java.xml",
        "java.xml.crypto",
        "javafx.base",
        "javafx.controls",
        "javafx.fxml",
        "javafx.graphics",
        "javafx.media",
        "javafx.swing",
        "javafx.web",
        "jdk.accessibility",
        "jdk.attach",
        "jdk.compiler",
        "jdk.httpserver",
        "jdk.jartool",
        "jdk.javadoc",
        "jdk.jconsole",
        "jdk.jdi",
        "jdk.jfr",
        "jdk.jsobject",
        "jdk.management",
        "jdk.management.cmm",
        "jdk.management.jfr",
        "jdk.management.resource",
        "jdk.net",
        "jdk.plugin.dom",
        "jdk.scripting.nashorn",
        "jdk.sctp",
        "jdk.security.auth",
        "jdk.security.jgss",
        "jdk.unsupported",
        "jdk.xml.dom",
        "org.jboss.modules",
    )
)
"""Modules supplied by the runtime itself; always satisfied."""

HARD_CODED_POLICIES = ("warn", "error")


@dataclass(slots=True)
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    known_modules: FrozenSet[ModuleIdentifier] = frozenset()
    local_modules: FrozenSet[ModuleIdentifier] = frozenset()
    resolved_versions: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class ModuleGraphValidator:
    """Checks a module tree against the modules known to the build.

    Every descriptor below the modules root is visited. Placeholder artifact
    versions are resolved as they are found, and required dependency edges
    are recorded by target so that each missing module is reported once with
    all of its dependents.
    """

    def __init__(
        self,
        resolver: ArtifactResolver,
        *,
        console: Console | None = None,
        platform_modules: Iterable[ModuleIdentifier] | None = None,
        hard_coded_artifacts: str = "warn",
        descriptor_parsers: Mapping[str, DescriptorParser] | None = None,
    ) -> None:
        if hard_coded_artifacts not in HARD_CODED_POLICIES:
            raise ValueError(
                f"hard_coded_artifacts must be one of {', '.join(HARD_CODED_POLICIES)}, got '{hard_coded_artifacts}'"
            )
        self._resolver = resolver
        self._console = console or default_console()
        self._platform_modules = frozenset(PLATFORM_MODULES if platform_modules is None else platform_modules)
        self._hard_coded_is_error = hard_coded_artifacts == "error"
        self._descriptor_parsers = descriptor_parsers

    def validate(self, modules_root: Path, provided_modules: Iterable[ModuleIdentifier] = ()) -> ValidationResult:
        provided = frozenset(provided_modules)
        known: Set[ModuleIdentifier] = set(self._platform_modules) | provided
        local: Dict[ModuleIdentifier, str] = {}
        required_by: Dict[ModuleIdentifier, Set[ModuleIdentifier]] = {}
        result = ValidationResult()

        for path, descriptor in iter_module_descriptors(modules_root, self._descriptor_parsers):
            identifier = descriptor.identifier
            relative = path.relative_to(modules_root).as_posix()
            self._console.debug(f"Checking module {identifier} ({path})")
            if identifier in provided:
                result.errors.append(
                    f"Duplicate module {identifier} in {relative}. Module is already provided by a dependency feature pack"
                )
            elif identifier in local:
                result.errors.append(
                    f"Duplicate module {identifier} in {relative}. Module is already defined in {local[identifier]}"
                )
            else:
                local[identifier] = relative
            known.add(identifier)

            self._check_artifacts(descriptor, result)
            for dependency in descriptor.required_dependencies:
                required_by.setdefault(dependency.target, set()).add(identifier)

        for target in sorted(required_by):
            if target in known:
                continue
            dependents = ", ".join(str(module) for module in sorted(required_by[target]))
            result.errors.append(f"Missing module {target}. Module was required by [{dependents}]")

        result.known_modules = frozenset(known)
        result.local_modules = frozenset(local)
        return result

    def _resolve_placeholder(self, reference: ArtifactReference, descriptor: ModuleDescriptor, result: ValidationResult) -> None:
        version = self._resolver.get_version(reference.name)
        if version is None:
            result.errors.append(
                f"Could not determine version for artifact ${{{reference.name}}} in module {descriptor.identifier}"
            )
        else:
            result.resolved_versions[reference.name] = version

    def _check_artifacts(self, descriptor: ModuleDescriptor, result: ValidationResult) -> None:
        if descriptor.version is not None and descriptor.version.is_placeholder:
            self._resolve_placeholder(descriptor.version, descriptor, result)
        for reference in descriptor.artifacts:
            if reference.is_placeholder:
                self._resolve_placeholder(reference, descriptor, result)
                continue

            message = f"Hard coded artifact {reference} in module {descriptor.identifier}"
            if self._hard_coded_is_error:
                result.errors.append(message)
            else:
                result.warnings.append(message)
                self._console.warning(message)


__all__ = [
    "HARD_CODED_POLICIES",
    "ModuleGraphValidator",
    "PLATFORM_MODULES",
    "ValidationResult",
]
