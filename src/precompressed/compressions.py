"""Registry of known content encodings and the file suffixes that identify them."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from precompressed.options import Options

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Encoding:
    """A content encoding and the suffix its precompressed files carry."""

    name: str  # compared against Accept-Encoding tokens, e.g. "gzip"
    suffix: str  # without the dot, e.g. "gz"; "" for the uncompressed encoding

    @property
    def file_suffix(self) -> str:
        """Suffix as appended to a file name, e.g. ".gz"."""
        return f".{self.suffix}" if self.suffix else ""

    def __repr__(self) -> str:
        return f"Encoding({self.name!r})"


NONE = Encoding("none", "")
GZIP = Encoding("gzip", "gz")
BROTLI = Encoding("br", "br")


class CompressionRegistry:
    """Keyed set of encodings. The first registration of a suffix wins."""

    __slots__ = ("_by_name", "_by_suffix", "_encodings")

    def __init__(self) -> None:
        self._encodings: list[Encoding] = []
        self._by_suffix: dict[str, Encoding] = {}
        self._by_name: dict[str, Encoding] = {}

    def register(self, name: str, suffix: str) -> Encoding:
        """Register an encoding, returning whichever encoding owns the suffix."""
        suffix = suffix.removeprefix(".")
        if suffix:
            existing = self._by_suffix.get(suffix)
        else:
            existing = self._by_name.get(name)
        if existing is not None:
            logger.debug(
                "ignoring encoding %r: suffix %r already registered to %r",
                name,
                suffix,
                existing.name,
            )
            return existing

        encoding = Encoding(name, suffix)
        self._encodings.append(encoding)
        if suffix:
            self._by_suffix[suffix] = encoding
        self._by_name.setdefault(name, encoding)
        return encoding

    def by_suffix(self, suffix: str) -> Encoding | None:
        """Return the compressed encoding for a file suffix ("gz" or ".gz")."""
        suffix = suffix.removeprefix(".")
        if not suffix:
            return None
        return self._by_suffix.get(suffix)

    @property
    def compressed(self) -> tuple[Encoding, ...]:
        """Registered encodings that have a file suffix."""
        return tuple(e for e in self._encodings if e.suffix)

    def __contains__(self, encoding: object) -> bool:
        return encoding in self._encodings

    def __iter__(self) -> Iterator[Encoding]:
        return iter(self._encodings)

    def __len__(self) -> int:
        return len(self._encodings)


def build_registry(options: Options) -> CompressionRegistry:
    """Build the registry for the given options.

    Registration order is uncompressed, gzip, custom compressions as given,
    then brotli when enabled. With compression disabled only the uncompressed
    encoding is registered.
    """
    registry = CompressionRegistry()
    registry.register(NONE.name, NONE.suffix)
    if options.disable_compression:
        return registry

    registry.register(GZIP.name, GZIP.suffix)
    for custom in options.custom_compressions:
        registry.register(custom.encoding_name, custom.file_extension)
    if options.enable_brotli:
        registry.register(BROTLI.name, BROTLI.suffix)
    return registry
