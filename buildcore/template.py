"""``${name}`` placeholder detection and substitution utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence
import os
import re


PLACEHOLDER_PATTERN = re.compile(r"\$\{([^{}]+)\}")
_SINGLE_PLACEHOLDER_PATTERN = re.compile(r"^\$\{([^{}]+)\}$")
DEFAULT_SEPARATOR = ":-"

PropertySource = Callable[[str], "str | None"]


class TemplateError(ValueError):
    """Raised when placeholder substitution fails."""


def is_placeholder(text: str) -> bool:
    """Return ``True`` when *text* is exactly one ``${...}`` token."""

    return bool(_SINGLE_PLACEHOLDER_PATTERN.match(text.strip()))


def placeholder_name(text: str) -> str:
    """Return the name inside a single ``${...}`` token."""

    match = _SINGLE_PLACEHOLDER_PATTERN.match(text.strip())
    if not match:
        raise TemplateError(f"'{text}' is not a placeholder")
    return match.group(1).strip()


def mapping_source(values: Mapping[str, Any]) -> PropertySource:
    """Adapt a mapping into a property lookup callable."""

    def _lookup(name: str) -> str | None:
        value = values.get(name)
        return None if value is None else str(value)

    return _lookup


def environment_source(name: str) -> str | None:
    """Resolve ``env.NAME`` properties from the process environment."""

    if name.startswith("env."):
        return os.environ.get(name[4:])
    return None


@dataclass(slots=True)
class PropertyReplacer:
    """Substitutes ``${name}`` and ``${name:-default}`` tokens.

    Sources are consulted in order; the first non-``None`` answer wins.
    Unknown placeholders are left untouched unless ``strict`` is set. A
    single colon belongs to the name, so an unknown ``${group:artifact}``
    stays as written.
    """

    sources: Sequence[PropertySource]
    strict: bool = False
    _cache: dict[str, str | None] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_mappings(cls, *mappings: Mapping[str, Any], strict: bool = False, environment: bool = True) -> "PropertyReplacer":
        sources: list[PropertySource] = [mapping_source(mapping) for mapping in mappings]
        if environment:
            sources.append(environment_source)
        return cls(sources=sources, strict=strict)

    def replace(self, text: str) -> str:
        return self._substitute(text, stack=[])

    def resolve(self, value: Any) -> Any:
        """Substitute placeholders within nested strings, lists and mappings."""

        if isinstance(value, str):
            return self.replace(value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        return value

    def lookup(self, name: str) -> str | None:
        return self._resolve_name(name, stack=[])

    def _substitute(self, text: str, *, stack: list[str]) -> str:
        if "${" not in text:
            return text

        def replacement(match: re.Match[str]) -> str:
            expression = match.group(1).strip()
            resolved = self._resolve_expression(expression, stack=stack)
            if resolved is None:
                if self.strict:
                    raise TemplateError(f"Cannot resolve property '{expression}'")
                return match.group(0)
            return resolved

        return PLACEHOLDER_PATTERN.sub(replacement, text)

    def _resolve_expression(self, expression: str, *, stack: list[str]) -> str | None:
        value = self._resolve_name(expression, stack=stack)
        if value is not None or DEFAULT_SEPARATOR not in expression:
            return value
        name, _, default = expression.partition(DEFAULT_SEPARATOR)
        value = self._resolve_name(name.strip(), stack=stack)
        if value is not None:
            return value
        return self._substitute(default, stack=stack)

    def _resolve_name(self, name: str, *, stack: list[str]) -> str | None:
        if name in self._cache:
            return self._cache[name]
        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise TemplateError(f"Circular property reference detected: {cycle}")

        raw: str | None = None
        for source in self.sources:
            raw = source(name)
            if raw is not None:
                break
        if raw is None:
            return None

        stack.append(name)
        resolved = self._substitute(raw, stack=stack)
        stack.pop()
        self._cache[name] = resolved
        return resolved


__all__ = [
    "DEFAULT_SEPARATOR",
    "PLACEHOLDER_PATTERN",
    "PropertyReplacer",
    "PropertySource",
    "TemplateError",
    "environment_source",
    "is_placeholder",
    "mapping_source",
    "placeholder_name",
]
