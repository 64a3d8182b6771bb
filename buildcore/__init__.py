"""Shared core utilities for feature pack assembly and provisioning."""

from .archive import ArchiveError, ArchiveManager, archive_format_for, normalize_format
from .config_loader import (
    ConfigLoader,
    FILE_LOADERS,
    format_properties,
    load_config_file,
    normalize_string_list,
    normalize_string_mapping,
    parse_properties,
)
from .console import Console, RecordingConsole, StreamConsole, default_console
from .template import PropertyReplacer, TemplateError, is_placeholder, placeholder_name

__all__ = [
    "ArchiveError",
    "ArchiveManager",
    "archive_format_for",
    "normalize_format",
    "ConfigLoader",
    "FILE_LOADERS",
    "format_properties",
    "load_config_file",
    "normalize_string_list",
    "normalize_string_mapping",
    "parse_properties",
    "Console",
    "RecordingConsole",
    "StreamConsole",
    "default_console",
    "PropertyReplacer",
    "TemplateError",
    "is_placeholder",
    "placeholder_name",
]
