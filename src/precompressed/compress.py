"""Build-time precompression of static files.

Writes `<file>.gz`, `<file>.br` and `<file>.zst` sidecars next to the
originals, ready to be served by the static files app.

Install with: uv add "precompressed[compress]"
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, TypeAlias

logger = logging.getLogger(__name__)

try:
    from cramjam import (
        brotli,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
        gzip,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
        zstd,  # ty: ignore[unresolved-import]  # fixed in cramjam >2.11
    )
except ImportError as e:
    msg = (
        "Precompression requires the 'compress' extra. "
        "Install with: uv add 'precompressed[compress]'"
    )
    raise ImportError(msg) from e


CompressEncoding: TypeAlias = Literal["zstd", "br", "gzip"]


@dataclass(slots=True)
class PrecompressStats:
    """Stats collected while precompressing a directory."""

    files_total: int = 0
    files_compressed: int = 0  # Files that got at least one compressed variant
    variants_created: int = 0  # New compressed files written
    variants_reused: int = 0  # Existing compressed files left alone
    variants_skipped: int = 0  # Compression skipped (not smaller than original)
    original_bytes: int = 0
    compressed_bytes: int = 0  # Total size of variants written or reused


DEFAULT_COMPRESSIBLE_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".css",
        ".js",
        ".mjs",
        ".cjs",
        ".html",
        ".htm",
        ".xml",
        ".svg",
        ".json",
        ".map",
        ".txt",
        ".md",
        ".wasm",
    }
)

# Encoding name to file suffix mapping, matching the app's built-in registry
ENCODING_SUFFIXES: dict[str, str] = {"zstd": ".zst", "br": ".br", "gzip": ".gz"}

# Max compression levels for each encoding
_MAX_LEVELS: dict[str, int] = {"zstd": 22, "br": 11, "gzip": 9}


def compress_bytes(data: bytes, encoding: CompressEncoding) -> bytes:
    """Compress data with the given encoding at max level."""
    level = _MAX_LEVELS[encoding]
    if encoding == "zstd":
        return bytes(zstd.compress(data, level=level))
    elif encoding == "br":
        return bytes(brotli.compress(data, level=level))
    else:  # gzip
        return bytes(gzip.compress(data, level=level))


def precompress(
    directory: Path | str,
    *,
    encodings: Iterable[CompressEncoding] = ("br", "gzip"),
    compressible_extensions: Iterable[str] = DEFAULT_COMPRESSIBLE_EXTENSIONS,
) -> PrecompressStats:
    """Write compressed sidecars for every compressible file in a directory.

    Existing sidecars are reused, never rewritten. A variant is only kept when
    it is smaller than the original.

    Args:
        directory: Build output directory, e.g. Path("./dist")
        encodings: Encodings to create. Serving "br" needs
            `enable_brotli`, serving "zstd" needs a custom compression
            ("zstd", "zst").
        compressible_extensions: File extensions to compress.

    Example:
        # In a build script, before deploying:
        precompress(Path("./dist"), encodings=("br", "gzip"))
        app = static_files(Path("./dist"), options={"enable_brotli": True})
    """
    directory = Path(directory)
    encodings_tuple = tuple(encodings)
    for encoding in encodings_tuple:
        if encoding not in ENCODING_SUFFIXES:
            msg = (
                f"unsupported encoding {encoding!r}, "
                f"use one of {sorted(ENCODING_SUFFIXES)}"
            )
            raise ValueError(msg)
    compressible_set = frozenset(ext.lower() for ext in compressible_extensions)
    sidecar_suffixes = frozenset(ENCODING_SUFFIXES.values())

    stats = PrecompressStats()
    start_time = time.perf_counter()

    for dirpath, _dirnames, filenames in os.walk(directory, followlinks=True):
        for filename in sorted(filenames):
            file_path = Path(dirpath) / filename
            ext = file_path.suffix.lower()

            # Skip existing compressed files
            if ext in sidecar_suffixes or ext not in compressible_set:
                continue

            content = file_path.read_bytes()
            stats.files_total += 1
            stats.original_bytes += len(content)

            file_got_variant = False
            for encoding in encodings_tuple:
                compressed_path = file_path.with_name(
                    filename + ENCODING_SUFFIXES[encoding]
                )
                if compressed_path.exists():
                    stats.variants_reused += 1
                    stats.compressed_bytes += compressed_path.stat().st_size
                    file_got_variant = True
                    continue

                compressed = compress_bytes(content, encoding)
                # Only store if smaller than original
                if len(compressed) < len(content):
                    compressed_path.write_bytes(compressed)
                    stats.variants_created += 1
                    stats.compressed_bytes += len(compressed)
                    file_got_variant = True
                else:
                    stats.variants_skipped += 1

            if file_got_variant:
                stats.files_compressed += 1

    elapsed_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "static_files.precompress: %d files (%d compressed), "
        "%d variants created, %d reused, %d skipped, %.1fms",
        stats.files_total,
        stats.files_compressed,
        stats.variants_created,
        stats.variants_reused,
        stats.variants_skipped,
        elapsed_ms,
    )
    return stats
