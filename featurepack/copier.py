"""Recursive file tree materialisation with filtering and overwrite policy."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Pattern
import os
import re
import shutil

from buildcore.console import Console, default_console
from buildcore.template import PropertyReplacer

from .errors import CopyError

PathPredicate = Callable[[str], bool]


@dataclass(slots=True)
class CopyReport:
    """Relative (POSIX) paths written or skipped by one copy operation."""

    copied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def extend(self, other: "CopyReport", prefix: str = "") -> None:
        self.copied.extend(f"{prefix}{path}" for path in other.copied)
        self.skipped.extend(f"{prefix}{path}" for path in other.skipped)


@dataclass(frozen=True, slots=True)
class PathFilter:
    """Include/exclude regular expressions matched against relative paths.

    A path is accepted when no exclude pattern matches it and either no
    include patterns are set or one of them matches.
    """

    include: tuple[Pattern[str], ...] = ()
    exclude: tuple[Pattern[str], ...] = ()

    @classmethod
    def compile(cls, include: Iterable[str] = (), exclude: Iterable[str] = ()) -> "PathFilter":
        try:
            return cls(tuple(re.compile(p) for p in include), tuple(re.compile(p) for p in exclude))
        except re.error as exc:
            raise ValueError(f"Invalid path filter pattern: {exc}") from exc

    def __call__(self, relative_path: str) -> bool:
        if any(pattern.fullmatch(relative_path) for pattern in self.exclude):
            return False
        if not self.include:
            return True
        return any(pattern.fullmatch(relative_path) for pattern in self.include)


def copy_permissions(source: Path, target: Path) -> None:
    if os.name != "nt":
        shutil.copymode(source, target)


class FileTreeCopier:
    """Copies files and directory trees into a target tree.

    Directories are created before anything is placed in them. With
    ``filtering`` the file text goes through a :class:`PropertyReplacer`;
    with ``overwrite=False`` an existing destination file is left alone,
    otherwise it is replaced even when read-only. Paths accepted by
    ``verbatim`` are never filtered. A failed copy raises :class:`CopyError`
    and leaves what was already written.
    """

    def __init__(self, console: Console | None = None, *, dry_run: bool | None = None) -> None:
        self._console = console or default_console()
        self._dry_run = self._console.dry_run if dry_run is None else dry_run

    def copy_tree(
        self,
        source: Path,
        target: Path,
        *,
        filtering: bool = False,
        replacer: PropertyReplacer | None = None,
        overwrite: bool = True,
        accept: PathPredicate | None = None,
        verbatim: PathPredicate | None = None,
    ) -> CopyReport:
        report = CopyReport()
        if not source.is_dir():
            raise CopyError(f"Source directory {source} does not exist")

        self._ensure_dir(target)
        for dirpath, dirnames, filenames in os.walk(source, topdown=True):
            dirnames.sort()
            current = Path(dirpath)
            relative_dir = current.relative_to(source)
            for dirname in dirnames:
                relative = (relative_dir / dirname).as_posix()
                if accept is None or accept(relative + "/"):
                    self._ensure_dir(target / relative_dir / dirname)
            for filename in sorted(filenames):
                relative = (relative_dir / filename).as_posix()
                if accept is not None and not accept(relative):
                    continue
                if self.copy_file(
                    current / filename,
                    target / relative_dir / filename,
                    filtering=filtering and not (verbatim is not None and verbatim(relative)),
                    replacer=replacer,
                    overwrite=overwrite,
                ):
                    report.copied.append(relative)
                else:
                    report.skipped.append(relative)
        return report

    def copy_file(
        self,
        source: Path,
        target: Path,
        *,
        filtering: bool = False,
        replacer: PropertyReplacer | None = None,
        overwrite: bool = True,
    ) -> bool:
        """Copy one file; return ``False`` when it was skipped."""

        if not overwrite and target.exists():
            self._console.debug(f"Keeping existing {target}")
            return False
        if self._dry_run:
            self._console.info(f"[dry-run] Would copy {source} to {target}")
            return True

        self._ensure_dir(target.parent)
        try:
            if overwrite and target.exists():
                target.unlink()
            if filtering and replacer is not None:
                self._copy_filtered(source, target, replacer)
            else:
                shutil.copyfile(source, target)
            copy_permissions(source, target)
        except OSError as exc:
            raise CopyError(f"Could not copy {source} to {target}: {exc}") from exc
        return True

    def _copy_filtered(self, source: Path, target: Path, replacer: PropertyReplacer) -> None:
        data = source.read_bytes()
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            self._console.debug(f"Copying binary file {source} without filtering")
            target.write_bytes(data)
            return
        target.write_bytes(replacer.replace(text).encode("utf-8"))

    def _ensure_dir(self, path: Path) -> None:
        if self._dry_run:
            return
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CopyError(f"Could not create directory {path}: {exc}") from exc


__all__ = [
    "CopyReport",
    "FileTreeCopier",
    "PathFilter",
    "PathPredicate",
    "copy_permissions",
]
