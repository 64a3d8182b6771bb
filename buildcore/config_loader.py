"""Shared helpers for locating and loading configuration mappings."""
from __future__ import annotations

from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterable, List, Mapping, Sequence

import json
import tomllib

import yaml


ConfigLoader = Callable[[Any], Mapping[str, Any]]

_PROPERTY_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def _logical_property_lines(text: str) -> Iterable[str]:
    pending = ""
    for raw in text.splitlines():
        line = raw.lstrip()
        if not pending and (not line or line[0] in "#!"):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        yield pending + line
        pending = ""
    if pending:
        yield pending


def _unescape_property(text: str) -> str:
    chars: List[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            index += 1
            escaped = text[index]
            if escaped == "u" and index + 4 < len(text):
                chars.append(chr(int(text[index + 1:index + 5], 16)))
                index += 5
                continue
            chars.append(_PROPERTY_ESCAPES.get(escaped, escaped))
        else:
            chars.append(char)
        index += 1
    return "".join(chars)


def _split_property(line: str) -> tuple[str, str]:
    separator = -1
    for wanted in ("=", ":"):
        index = 0
        while index < len(line):
            if line[index] == "\\":
                index += 2
                continue
            if line[index] == wanted:
                separator = index
                break
            index += 1
        if separator >= 0:
            break
    if separator < 0:
        return _unescape_property(line.strip()), ""
    key = line[:separator].strip()
    value = line[separator + 1:].lstrip()
    return _unescape_property(key), _unescape_property(value)


def parse_properties(text: str) -> Dict[str, str]:
    """Parse Java-style ``key=value`` properties text into an ordered mapping."""

    properties: Dict[str, str] = {}
    for line in _logical_property_lines(text):
        key, value = _split_property(line)
        if key:
            properties[key] = value
    return properties


def _escape_property(text: str, *, is_key: bool) -> str:
    escaped = text.replace("\\", "\\\\").replace("\n", "\\n").replace("\t", "\\t")
    if is_key:
        escaped = escaped.replace("=", "\\=").replace(" ", "\\ ")
    elif escaped.startswith(" "):
        escaped = "\\" + escaped
    return escaped


def format_properties(values: Mapping[str, str], *, comment: str | None = None) -> str:
    """Render ``values`` as properties text with keys sorted lexicographically."""

    lines: List[str] = []
    if comment:
        lines.append(f"# {comment}")
    for key in sorted(values):
        lines.append(f"{_escape_property(key, is_key=True)}={_escape_property(str(values[key]), is_key=False)}")
    return "\n".join(lines) + "\n"


def _load_properties(stream: IO[str]) -> Mapping[str, Any]:
    return parse_properties(stream.read())


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
    ".properties": _load_properties,
}
"""Mapping of file suffixes to loader callables."""


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``."""

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS)) or "<none>"
        raise ValueError(
            f"Unsupported configuration file extension: {suffix}. Supported: {supported}"
        )

    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"

    with path.open(mode, **kwargs) as handle:
        data = loader(handle)

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")

    return data


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Coerce ``value`` into a list of trimmed strings."""

    if value is None:
        return []

    if isinstance(value, (str, bytes)):
        text = str(value).strip()
        return [text] if text else []

    if isinstance(value, Sequence):
        items: List[str] = []
        for item in value:
            if not isinstance(item, (str, bytes)):
                label = f"{field_name} " if field_name else ""
                raise TypeError(f"{label}entries must be strings")
            text = str(item).strip()
            if text:
                items.append(text)
        return items

    label = f"{field_name} " if field_name else ""
    raise TypeError(f"{label}must be a string or sequence of strings")


def normalize_string_mapping(value: Any, *, field_name: str | None = None) -> Dict[str, str]:
    """Coerce a mapping of scalars into a ``str -> str`` mapping."""

    if value is None:
        return {}
    if not isinstance(value, Mapping):
        label = f"{field_name} " if field_name else ""
        raise TypeError(f"{label}must be a mapping")
    result: Dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, (Mapping, list, tuple)):
            label = f"{field_name} " if field_name else ""
            raise TypeError(f"{label}values must be scalars (key '{key}')")
        if isinstance(item, bool):
            result[str(key)] = "true" if item else "false"
        else:
            result[str(key)] = str(item)
    return result


__all__ = [
    "ConfigLoader",
    "FILE_LOADERS",
    "format_properties",
    "load_config_file",
    "normalize_string_list",
    "normalize_string_mapping",
    "parse_properties",
]
