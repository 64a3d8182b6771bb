"""Archive helpers used to package and unpack feature packs."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator
import os
import stat
import tarfile
import zipfile

import zstandard as zstd

from .console import Console, default_console

_FORMAT_SUFFIXES: dict[str, tuple[str, ...]] = {
    "zst": (".tar.zst", ".tzst"),
    "gztar": (".tar.gz", ".tgz"),
    "bztar": (".tar.bz2", ".tbz"),
    "xztar": (".tar.xz", ".txz"),
    "tar": (".tar",),
    "zip": (".zip", ".jar"),
}

_SHORT_NAMES: dict[str, str] = {"gz": "gztar", "bz2": "bztar", "xz": "xztar"}

# Longest suffix first.
_SUFFIXES: list[tuple[str, str]] = sorted(
    ((suffix, fmt) for fmt, suffixes in _FORMAT_SUFFIXES.items() for suffix in suffixes),
    key=lambda item: len(item[0]),
    reverse=True,
)

_TAR_WRITE_MODES: dict[str, str] = {
    "gztar": "w:gz",
    "bztar": "w:bz2",
    "xztar": "w:xz",
    "tar": "w",
}


class ArchiveError(ValueError):
    """Raised when an archive cannot be read."""


_READ_ERRORS = (zipfile.BadZipFile, tarfile.TarError, zstd.ZstdError, EOFError)


def archive_format_for(path: Path | str) -> str | None:
    """Return the archive format implied by *path*'s suffix, if any."""

    filename = Path(path).name.lower()
    for suffix, fmt in _SUFFIXES:
        if filename.endswith(suffix):
            return fmt
    return None


def normalize_format(name: str) -> str:
    """Map a format name or suffix (``tgz``, ``.tar.zst``, ``zip``) to its format."""

    key = name.strip().lower().lstrip(".")
    if key in _FORMAT_SUFFIXES:
        return key
    if key in _SHORT_NAMES:
        return _SHORT_NAMES[key]
    for suffix, fmt in _SUFFIXES:
        if suffix.lstrip(".") == key:
            return fmt
    raise ValueError(f"Unsupported archive format hint '{name}'")


def _iter_sorted_files(source_dir: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(source_dir, topdown=True):
        dirnames.sort()
        current = Path(dirpath)
        for filename in sorted(filenames):
            yield current / filename


class ArchiveManager:
    """Create and extract feature pack archives.

    Members are written in sorted path order. Tar based formats use the PAX
    header format; extraction applies the ``data`` filter so members cannot
    escape the destination directory.
    """

    def __init__(self, console: Console | None = None, *, zstd_level: int = 19) -> None:
        self._console = console or default_console()
        self._zstd_level = zstd_level

    @staticmethod
    def _zstd_thread_count(source_size: int) -> int:
        cpu_count = os.cpu_count() or 1
        size_mb = max(1, source_size) / (1024 * 1024)
        desired = 1
        if size_mb >= 32:
            desired = 2
        if size_mb >= 256:
            desired = 4
        return max(1, min(desired, cpu_count))

    def _resolve_format(self, path: Path, format_hint: str | None) -> str:
        if format_hint:
            return normalize_format(format_hint)
        fmt = archive_format_for(path)
        if fmt is None:
            raise ValueError(
                f"Unable to determine archive format of '{path}'. "
                "Provide an explicit format_hint or use a supported suffix."
            )
        return fmt

    def create_archive(
        self,
        *,
        source_dir: Path | str,
        target_path: Path | str,
        format_hint: str | None = None,
        overwrite: bool = True,
    ) -> Path:
        """Archive the contents of *source_dir* (not the directory itself) to *target_path*."""

        target = Path(target_path).expanduser()
        source = Path(source_dir).expanduser()
        if not source.is_dir():
            raise FileNotFoundError(f"Archive source directory '{source}' does not exist")
        archive_format = self._resolve_format(target, format_hint)

        if self._console.dry_run:
            self._console.info(f"[dry-run] Would archive {source} to {target}")
            return target
        if target.exists() and not overwrite:
            raise FileExistsError(f"Archive target '{target}' already exists")

        target.parent.mkdir(parents=True, exist_ok=True)
        if archive_format == "zip":
            self._write_zip(source, target)
        elif archive_format == "zst":
            self._write_zst(source, target)
        else:
            with tarfile.open(target, _TAR_WRITE_MODES[archive_format], format=tarfile.PAX_FORMAT) as tar:
                self._add_members(tar, source)

        self._console.info(f"Created archive {target}")
        return target

    @staticmethod
    def _add_members(tar: tarfile.TarFile, source: Path) -> None:
        for file_path in _iter_sorted_files(source):
            tar.add(file_path, arcname=file_path.relative_to(source).as_posix(), recursive=False)

    @staticmethod
    def _write_zip(source: Path, target: Path) -> None:
        with zipfile.ZipFile(target, mode="w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False) as archive:
            for file_path in _iter_sorted_files(source):
                archive.write(file_path, file_path.relative_to(source).as_posix())

    def _write_zst(self, source: Path, target: Path) -> None:
        source_size = sum(path.stat().st_size for path in _iter_sorted_files(source))
        compressor = zstd.ZstdCompressor(
            level=self._zstd_level,
            threads=self._zstd_thread_count(source_size),
            write_checksum=True,
        )
        with target.open("wb") as handle:
            with compressor.stream_writer(handle, closefd=False) as writer:
                with tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                    self._add_members(tar, source)

    def extract_archive(
        self,
        *,
        archive_path: Path | str,
        destination_dir: Path | str,
        format_hint: str | None = None,
    ) -> Path:
        """Extract an archive into *destination_dir* and return the directory.

        Zip members get their stored POSIX permission bits back. A corrupt
        or truncated archive raises :class:`ArchiveError`.
        """

        archive = Path(archive_path).expanduser()
        dest = Path(destination_dir).expanduser()
        if not archive.is_file():
            raise FileNotFoundError(f"Archive '{archive}' does not exist")
        archive_format = self._resolve_format(archive, format_hint)
        dest.mkdir(parents=True, exist_ok=True)

        try:
            if archive_format == "zip":
                self._extract_zip(archive, dest)
            elif archive_format == "zst":
                with archive.open("rb") as handle:
                    with zstd.ZstdDecompressor().stream_reader(handle) as reader:
                        with tarfile.open(fileobj=reader, mode="r|") as tar:
                            tar.extractall(path=dest, filter="data")
            else:
                with tarfile.open(archive, "r:*") as tar:
                    tar.extractall(path=dest, filter="data")
        except _READ_ERRORS as exc:
            raise ArchiveError(f"Could not read archive '{archive}': {exc}") from exc

        self._console.debug(f"Extracted {archive} to {dest}")
        return dest

    @staticmethod
    def _extract_zip(archive: Path, dest: Path) -> None:
        with zipfile.ZipFile(archive, "r") as zip_ref:
            for info in zip_ref.infolist():
                extracted = zip_ref.extract(info, dest)
                mode = stat.S_IMODE(info.external_attr >> 16) & 0o777
                if mode and not info.is_dir() and os.name != "nt":
                    os.chmod(extracted, mode)


__all__ = [
    "ArchiveError",
    "ArchiveManager",
    "archive_format_for",
    "normalize_format",
]
