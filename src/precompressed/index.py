"""Asset index: maps request paths to the precompressed variants on disk.

The index is built once by walking the compressed root (and, when it differs,
the uncompressed fallback root) and is immutable afterwards. Requests only do
dict lookups against it, so it needs no locking and cannot be used for path
traversal.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeAlias

from precompressed.compressions import NONE, CompressionRegistry, Encoding
from precompressed.errors import RootNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AssetEntry:
    """One URL-addressable asset and the encodings it can be served with."""

    canonical_path: str  # e.g. "css/app.css" or "about" (inferred .html)
    relative_path: str  # physical base relative to a root, e.g. "about"
    missing_extension: str  # e.g. ".html" when inferred, else ""
    encodings: frozenset[Encoding]  # compressed variants under compressed_root
    uncompressed: bool  # an as-is file exists under uncompressed_root
    compressed_root: Path
    uncompressed_root: Path

    @property
    def available_encodings(self) -> frozenset[Encoding]:
        if self.uncompressed:
            return self.encodings | {NONE}
        return self.encodings

    @property
    def file_name(self) -> str:
        """Relative path of the uncompressed file, used for MIME lookup."""
        return self.relative_path + self.missing_extension

    def physical_path(self, encoding: Encoding) -> Path:
        """Path of the file holding this asset in the given encoding."""
        root = self.uncompressed_root if encoding == NONE else self.compressed_root
        return root / f"{self.file_name}{encoding.file_suffix}"


class AssetIndex(Mapping[str, AssetEntry]):
    """Read-only mapping of canonical path to AssetEntry."""

    __slots__ = ("_entries", "compressed_root", "uncompressed_root")

    def __init__(
        self,
        entries: Mapping[str, AssetEntry],
        compressed_root: Path,
        uncompressed_root: Path,
    ) -> None:
        self._entries = dict(entries)
        self.compressed_root = compressed_root
        self.uncompressed_root = uncompressed_root

    def __getitem__(self, canonical_path: str) -> AssetEntry:
        return self._entries[canonical_path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"AssetIndex({len(self)} assets, root={str(self.compressed_root)!r})"


@dataclass(slots=True)
class _PendingEntry:
    relative_path: str
    missing_extension: str
    encodings: set[Encoding] = field(default_factory=set)
    uncompressed: bool = False


@dataclass(slots=True)
class _Registration:
    canonical_path: str
    relative_path: str
    missing_extension: str
    encoding: Encoding


@dataclass(slots=True)
class _IndexStats:
    files_total: int = 0
    files_indexed: int = 0  # files that produced at least one registration
    files_skipped: int = 0  # unreadable entries
    directories: int = 0


class _IndexBuilder:
    """Collects registrations while the walk is in flight.

    Only touched from the event loop thread, never from scan workers.
    """

    def __init__(
        self, registry: CompressionRegistry, extensions: Iterable[str]
    ) -> None:
        self.registry = registry
        self.extensions = tuple(f".{ext}" for ext in extensions)
        self.pending: dict[str, _PendingEntry] = {}
        self.stats = _IndexStats()

    def classify(
        self, rel_dir: str, names: list[str], *, as_uncompressed: bool
    ) -> None:
        """Register every file of one directory.

        Direct registrations go before extension-inferred ones so an exact
        file name always owns its canonical path.
        """
        direct: list[_Registration] = []
        inferred: list[_Registration] = []
        for name in names:
            self.stats.files_total += 1
            before = len(direct) + len(inferred)
            rel_path = name if not rel_dir else f"{rel_dir}/{name}"

            encoding = None
            if "." in name:
                encoding = self.registry.by_suffix(name.rpartition(".")[2])
            if encoding is not None:
                stem = rel_path[: -len(encoding.file_suffix)]
                self._collect(direct, inferred, stem, name, encoding)
            if as_uncompressed:
                self._collect(direct, inferred, rel_path, name, NONE)

            if len(direct) + len(inferred) > before:
                self.stats.files_indexed += 1

        for registration in direct + inferred:
            self._add(registration)

    def _collect(
        self,
        direct: list[_Registration],
        inferred: list[_Registration],
        stem: str,
        name: str,
        encoding: Encoding,
    ) -> None:
        if not stem or stem.endswith("/"):
            return
        direct.append(_Registration(stem, stem, "", encoding))
        for ext in self.extensions:
            if name.endswith(f"{ext}{encoding.file_suffix}"):
                base = stem[: -len(ext)]
                if base and not base.endswith("/"):
                    inferred.append(_Registration(base, base, ext, encoding))
                break

    def _add(self, registration: _Registration) -> None:
        entry = self.pending.get(registration.canonical_path)
        if entry is None:
            entry = _PendingEntry(
                registration.relative_path, registration.missing_extension
            )
            self.pending[registration.canonical_path] = entry
        elif (entry.relative_path, entry.missing_extension) != (
            registration.relative_path,
            registration.missing_extension,
        ):
            logger.debug(
                "ignoring %s variant of %r: path already maps to %r",
                registration.encoding.name,
                registration.canonical_path,
                entry.relative_path + entry.missing_extension,
            )
            return

        if registration.encoding == NONE:
            entry.uncompressed = True
        else:
            entry.encodings.add(registration.encoding)

    def build(
        self,
        compressed_root: Path,
        uncompressed_root: Path,
        fallback_files: set[str] | None,
    ) -> AssetIndex:
        entries: dict[str, AssetEntry] = {}
        for canonical_path, pending in self.pending.items():
            uncompressed = pending.uncompressed
            if fallback_files is not None:
                uncompressed = (
                    pending.relative_path + pending.missing_extension
                ) in fallback_files
            entries[canonical_path] = AssetEntry(
                canonical_path=canonical_path,
                relative_path=pending.relative_path,
                missing_extension=pending.missing_extension,
                encodings=frozenset(pending.encodings),
                uncompressed=uncompressed,
                compressed_root=compressed_root,
                uncompressed_root=uncompressed_root,
            )
        return AssetIndex(entries, compressed_root, uncompressed_root)


_DirKey: TypeAlias = tuple[int, int]
_FilesCallback: TypeAlias = Callable[[str, list[str]], None]


def _scan(directory: Path) -> tuple[list[str], list[tuple[Path, _DirKey]], int]:
    """List one directory in name order.

    Runs in a worker thread. Entries that can't be stat'ed are skipped and
    counted.

    Returns:
        (file names, [(subdirectory, (st_dev, st_ino))], skipped count)
    """
    files: list[str] = []
    subdirs: list[tuple[Path, _DirKey]] = []
    skipped = 0
    with os.scandir(directory) as it:
        for entry in sorted(it, key=lambda e: e.name):
            try:
                if entry.is_dir():
                    st = entry.stat()
                    subdirs.append((Path(entry.path), (st.st_dev, st.st_ino)))
                elif entry.is_file():
                    files.append(entry.name)
            except OSError as e:
                logger.warning("skipping %s: %s", entry.path, e)
                skipped += 1
    return files, subdirs, skipped


async def _walk(
    root: Path,
    directory: Path,
    visited: set[_DirKey],
    stats: _IndexStats,
    on_files: _FilesCallback,
) -> None:
    """Walk a directory tree, fanning out one task per subdirectory.

    Returns only once every subdirectory beneath `directory` has been walked.
    """
    try:
        files, subdirs, skipped = await asyncio.to_thread(_scan, directory)
    except OSError as e:
        if directory == root:
            raise
        logger.warning("skipping directory %s: %s", directory, e)
        stats.files_skipped += 1
        return

    stats.directories += 1
    stats.files_skipped += skipped
    rel_dir = "" if directory == root else directory.relative_to(root).as_posix()
    on_files(rel_dir, files)

    async with asyncio.TaskGroup() as tg:
        for subdir, key in subdirs:
            if key in visited:  # symlink loop
                continue
            visited.add(key)
            tg.create_task(_walk(root, subdir, visited, stats, on_files))


def _dir_key(root: Path) -> _DirKey:
    if not root.is_dir():
        raise RootNotFoundError(root)
    st = root.stat()
    return st.st_dev, st.st_ino


def _first_error(group: BaseExceptionGroup) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc


async def build_index(
    compressed_root: Path | str,
    uncompressed_root: Path | str | None = None,
    *,
    registry: CompressionRegistry,
    extensions: Iterable[str] = (),
) -> AssetIndex:
    """Walk the roots and build the asset index.

    Both roots are walked concurrently. The index is returned only after every
    directory beneath both roots has been walked.

    Args:
        compressed_root: Directory holding the precompressed files.
        uncompressed_root: Directory holding the as-is files. Defaults to
            `compressed_root`, in which case every file there is also indexed
            as servable uncompressed.
        registry: Known encodings; files are matched by their final suffix.
        extensions: Extensions to infer, e.g. ("html",) maps "page" to
            "page.html(.gz)".

    Raises:
        RootNotFoundError: if a root directory does not exist.
        OSError: if a root directory exists but can't be listed.
    """
    compressed_root = Path(compressed_root)
    uncompressed_root = (
        Path(uncompressed_root) if uncompressed_root is not None else compressed_root
    )
    start_time = time.perf_counter()

    compressed_key = await asyncio.to_thread(_dir_key, compressed_root)
    uncompressed_key = await asyncio.to_thread(_dir_key, uncompressed_root)
    same_root = compressed_key == uncompressed_key

    builder = _IndexBuilder(registry, extensions)
    fallback_files: set[str] = set()

    def on_compressed(rel_dir: str, names: list[str]) -> None:
        builder.classify(rel_dir, names, as_uncompressed=same_root)

    def on_uncompressed(rel_dir: str, names: list[str]) -> None:
        fallback_files.update(n if not rel_dir else f"{rel_dir}/{n}" for n in names)

    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(
                _walk(
                    compressed_root,
                    compressed_root,
                    {compressed_key},
                    builder.stats,
                    on_compressed,
                )
            )
            if not same_root:
                tg.create_task(
                    _walk(
                        uncompressed_root,
                        uncompressed_root,
                        {uncompressed_key},
                        _IndexStats(),
                        on_uncompressed,
                    )
                )
    except BaseExceptionGroup as eg:
        raise _first_error(eg) from eg

    index = builder.build(
        compressed_root, uncompressed_root, None if same_root else fallback_files
    )
    elapsed_ms = (time.perf_counter() - start_time) * 1000

    stats = builder.stats
    logger.info(
        "static_files.index: %d files in %d directories (%d indexed, %d skipped), "
        "%d assets, %.1fms",
        stats.files_total,
        stats.directories,
        stats.files_indexed,
        stats.files_skipped,
        len(index),
        elapsed_ms,
    )
    return index
