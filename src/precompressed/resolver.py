"""Resolves a request path and Accept-Encoding header to a file to send."""

from __future__ import annotations

import logging
import mimetypes
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal, TypeAlias
from urllib.parse import unquote

from precompressed.compressions import NONE, Encoding
from precompressed.errors import (
    BadRequestPath,
    NoAcceptableEncoding,
    PrecompressedError,
)
from precompressed.index import AssetEntry, AssetIndex
from precompressed.negotiation import select_encoding
from precompressed.options import Options

logger = logging.getLogger(__name__)

UnresolvedReason: TypeAlias = Literal[
    "bad_request_path", "not_found", "no_acceptable_encoding"
]

_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

# Non-text types that are UTF-8 encoded
_UTF8_TYPES: frozenset[str] = frozenset(
    {
        "application/javascript",
        "application/json",
        "application/manifest+json",
        "application/xml",
        "image/svg+xml",
        "text/javascript",
    }
)


@dataclass(frozen=True, slots=True)
class Resolved:
    entry: AssetEntry
    encoding: Encoding
    path: Path  # physical file to send
    headers: list[tuple[str, str]]


@dataclass(frozen=True, slots=True)
class Unresolved:
    reason: UnresolvedReason
    path: str  # raw request path
    error: PrecompressedError | None = None


def normalize_path(path: str, index: str | None = "index.html") -> str:
    """Turn a request path into an index key.

    Percent-decodes the path and strips surrounding slashes. The empty (root)
    path becomes `index` unless index substitution is disabled.

    Raises:
        BadRequestPath: if the path has a malformed escape or isn't UTF-8.
    """
    if _MALFORMED_ESCAPE.search(path):
        raise BadRequestPath(path)
    try:
        decoded = unquote(path, errors="strict")
    except UnicodeDecodeError:
        raise BadRequestPath(path) from None

    decoded = decoded.strip("/")
    if not decoded and index:
        return index
    return decoded


@lru_cache(maxsize=1024)
def content_type(file_name: str) -> str:
    """MIME type for a file name, with a charset for textual types."""
    mime_type, _ = mimetypes.guess_type(file_name)
    if mime_type is None:
        return "application/octet-stream"
    if mime_type.startswith("text/") or mime_type in _UTF8_TYPES:
        return f"{mime_type}; charset=utf-8"
    return mime_type


def response_headers(entry: AssetEntry, encoding: Encoding) -> list[tuple[str, str]]:
    headers = [
        ("content-type", content_type(entry.file_name)),
        ("vary", "accept-encoding"),
    ]
    if encoding != NONE:
        headers.append(("content-encoding", encoding.name))
    return headers


class Resolver:
    """Looks requests up in an asset index and negotiates their encoding."""

    __slots__ = ("_index", "_options")

    def __init__(self, index: AssetIndex, options: Options) -> None:
        self._index = index
        self._options = options

    @property
    def index(self) -> AssetIndex:
        return self._index

    def lookup(self, path: str) -> AssetEntry | None:
        """Find the asset for a request path.

        Raises:
            BadRequestPath: if the path can't be decoded.
        """
        return self._index.get(normalize_path(path, self._options.index))

    def negotiate(self, entry: AssetEntry, accept_encoding: str | None) -> Encoding:
        """Pick the encoding to serve `entry` with.

        Raises:
            NoAcceptableEncoding: if no available encoding suits the client.
        """
        encoding = select_encoding(
            accept_encoding,
            entry.available_encodings,
            self._options.order_preference,
        )
        if encoding is None:
            raise NoAcceptableEncoding(entry.canonical_path, accept_encoding)
        return encoding

    def resolve(self, path: str, accept_encoding: str | None) -> Resolved | Unresolved:
        """Resolve a request to a file and its response headers.

        Never raises for client input: every failure is reported as
        Unresolved so the caller can hand the request to the next handler.
        """
        try:
            entry = self.lookup(path)
        except BadRequestPath as e:
            logger.debug("%s", e)
            return Unresolved("bad_request_path", path, e)
        if entry is None:
            return Unresolved("not_found", path)

        try:
            encoding = self.negotiate(entry, accept_encoding)
        except NoAcceptableEncoding as e:
            logger.debug("%s", e)
            return Unresolved("no_acceptable_encoding", path, e)

        return Resolved(
            entry=entry,
            encoding=encoding,
            path=entry.physical_path(encoding),
            headers=response_headers(entry, encoding),
        )


def find_on_disk(
    root: Path, canonical_path: str, options: Options
) -> AssetEntry | None:
    """Look an uncompressed file up under `root` without an index.

    Tries the path as given, then with each configured extension, then the
    index file when the path names a directory. Paths escaping `root` are
    never matched. Blocking; run it in a worker thread.
    """
    if not canonical_path or "\x00" in canonical_path:
        return None
    real_root = root.resolve()

    candidates = [(canonical_path, "")]
    candidates += [(canonical_path, f".{ext}") for ext in options.extensions]
    if options.index:
        candidates.append((f"{canonical_path}/{options.index}", ""))

    for relative_path, missing_extension in candidates:
        target = (root / f"{relative_path}{missing_extension}").resolve()
        if target.is_relative_to(real_root) and target.is_file():
            return AssetEntry(
                canonical_path=canonical_path,
                relative_path=relative_path,
                missing_extension=missing_extension,
                encodings=frozenset(),
                uncompressed=True,
                compressed_root=root,
                uncompressed_root=root,
            )
    return None


def resolve_on_disk(
    root: Path, path: str, options: Options
) -> Resolved | Unresolved:
    """Resolve a request against the files currently under `root`.

    Serving is always uncompressed, so Accept-Encoding is not consulted.
    Blocking; run it in a worker thread.
    """
    try:
        canonical_path = normalize_path(path, options.index)
    except BadRequestPath as e:
        logger.debug("%s", e)
        return Unresolved("bad_request_path", path, e)

    entry = find_on_disk(root, canonical_path, options)
    if entry is None:
        return Unresolved("not_found", path)
    return Resolved(
        entry=entry,
        encoding=NONE,
        path=entry.physical_path(NONE),
        headers=response_headers(entry, NONE),
    )
