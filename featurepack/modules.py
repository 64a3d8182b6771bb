"""Module descriptor model, ``module.xml`` parsing and the module tree walk."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Iterator, List, Mapping, Tuple
import os
import xml.etree.ElementTree as ET

from buildcore.template import is_placeholder, placeholder_name

from .errors import DescriptorError

DEFAULT_SLOT = "main"


@dataclass(frozen=True, order=True, slots=True)
class ModuleIdentifier:
    name: str
    slot: str = DEFAULT_SLOT

    @classmethod
    def parse(cls, text: str) -> "ModuleIdentifier":
        name, _, slot = text.strip().partition(":")
        if not name:
            raise ValueError(f"Invalid module identifier '{text}'")
        return cls(name, slot or DEFAULT_SLOT)

    def __str__(self) -> str:
        return f"{self.name}:{self.slot}"


@dataclass(frozen=True, slots=True)
class ArtifactReference:
    """Raw ``<artifact name="...">`` value: a placeholder or a literal coordinate."""

    raw: str

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder(self.raw)

    @property
    def name(self) -> str:
        """Placeholder name without ``?options``; the literal text otherwise."""

        if not self.is_placeholder:
            return self.raw.strip()
        name, _, _ = placeholder_name(self.raw).partition("?")
        return name.strip()

    @property
    def options(self) -> str | None:
        if not self.is_placeholder:
            return None
        _, separator, options = placeholder_name(self.raw).partition("?")
        return options if separator else None

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True, slots=True)
class ModuleDependency:
    target: ModuleIdentifier
    optional: bool = False


@dataclass(frozen=True, slots=True)
class ModuleDescriptor:
    identifier: ModuleIdentifier
    artifacts: Tuple[ArtifactReference, ...] = ()
    dependencies: Tuple[ModuleDependency, ...] = ()
    path: Path | None = field(default=None, compare=False)
    alias_of: ModuleIdentifier | None = None
    version: ArtifactReference | None = None

    @property
    def required_dependencies(self) -> Tuple[ModuleDependency, ...]:
        return tuple(dependency for dependency in self.dependencies if not dependency.optional)


DescriptorParser = Callable[[Path], ModuleDescriptor]


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _namespace(tag: str) -> str | None:
    if tag.startswith("{"):
        return tag[1:].partition("}")[0]
    return None


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in element:
        if isinstance(child.tag, str) and _local_name(child.tag) == name:
            yield child


def _first_child(element: ET.Element, name: str) -> ET.Element | None:
    return next(_children(element, name), None)


def _required_attribute(element: ET.Element, name: str, path: Path) -> str:
    value = element.get(name)
    if not value:
        raise DescriptorError(f"Module descriptor {path} is missing the '{name}' attribute on <{_local_name(element.tag)}>")
    return value


def _parse_document(path: Path) -> ET.Element:
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    try:
        return ET.parse(path, parser=parser).getroot()
    except (ET.ParseError, OSError) as exc:
        raise DescriptorError(f"Could not parse module descriptor {path}: {exc}") from exc


def parse_module_xml(path: Path) -> ModuleDescriptor:
    """Parse a JBoss Modules ``module.xml`` (``module`` or ``module-alias`` root)."""

    root = _parse_document(path)
    kind = _local_name(root.tag)
    identifier = ModuleIdentifier(
        _required_attribute(root, "name", path),
        root.get("slot") or DEFAULT_SLOT,
    )

    if kind == "module-alias":
        target = ModuleIdentifier(
            _required_attribute(root, "target-name", path),
            root.get("target-slot") or DEFAULT_SLOT,
        )
        return ModuleDescriptor(
            identifier,
            dependencies=(ModuleDependency(target, optional=False),),
            path=path,
            alias_of=target,
        )

    if kind != "module":
        raise DescriptorError(f"Unexpected root element <{kind}> in module descriptor {path}")

    dependencies = []
    dependencies_element = _first_child(root, "dependencies")
    if dependencies_element is not None:
        for module_element in _children(dependencies_element, "module"):
            target = ModuleIdentifier(
                _required_attribute(module_element, "name", path),
                module_element.get("slot") or DEFAULT_SLOT,
            )
            optional = (module_element.get("optional") or "false").strip().lower() == "true"
            dependencies.append(ModuleDependency(target, optional))

    artifacts = []
    resources_element = _first_child(root, "resources")
    if resources_element is not None:
        for artifact_element in _children(resources_element, "artifact"):
            name = artifact_element.get("name")
            if name:
                artifacts.append(ArtifactReference(name))

    version = root.get("version")
    return ModuleDescriptor(
        identifier,
        tuple(artifacts),
        tuple(dependencies),
        path=path,
        version=ArtifactReference(version) if version else None,
    )


class ModuleDocument:
    """Editable ``module.xml`` tree.

    Comments survive a rewrite and the root's namespace is written back as
    the default namespace, so the output stays readable by JBoss Modules.
    """

    def __init__(self, root: ET.Element) -> None:
        self.root = root
        self._namespace = _namespace(root.tag)

    @classmethod
    def read(cls, path: Path) -> "ModuleDocument":
        return cls(_parse_document(path))

    def artifact_elements(self) -> List[ET.Element]:
        resources = _first_child(self.root, "resources")
        if resources is None:
            return []
        return list(_children(resources, "artifact"))

    def qualified(self, local_name: str) -> str:
        return f"{{{self._namespace}}}{local_name}" if self._namespace else local_name

    def to_bytes(self) -> bytes:
        return ET.tostring(
            self.root,
            encoding="utf-8",
            xml_declaration=True,
            default_namespace=self._namespace,
        )


DEFAULT_DESCRIPTOR_PARSERS: Mapping[str, DescriptorParser] = MappingProxyType({"module.xml": parse_module_xml})
"""Descriptor file names and their parsers; pass another mapping to add formats."""


def iter_module_descriptors(
    root: Path,
    parsers: Mapping[str, DescriptorParser] | None = None,
) -> Iterator[Tuple[Path, ModuleDescriptor]]:
    """Yield ``(path, descriptor)`` pairs under *root* in sorted order.

    Descriptors are parsed as they are reached; a malformed file raises
    :class:`DescriptorError` at that point of the walk.
    """

    parsers = DEFAULT_DESCRIPTOR_PARSERS if parsers is None else parsers
    if not root.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        dirnames.sort()
        for filename in sorted(filenames):
            parser = parsers.get(filename)
            if parser is None:
                continue
            path = Path(dirpath) / filename
            yield path, parser(path)


__all__ = [
    "ArtifactReference",
    "DEFAULT_DESCRIPTOR_PARSERS",
    "DEFAULT_SLOT",
    "DescriptorParser",
    "ModuleDependency",
    "ModuleDescriptor",
    "ModuleDocument",
    "ModuleIdentifier",
    "iter_module_descriptors",
    "parse_module_xml",
]
