"""Precompressed static files app.

Serves `<file>.gz`, `<file>.br` (or custom encoding) sidecars produced at build
time, picking the variant from the request's Accept-Encoding header. The
directory trees are indexed once; files added afterwards are not seen until
the app is recreated. With compression disabled, requests are looked up on
disk instead (unless `use_built_in_when_disabled` is off).

    from precompressed import static_files

    app = static_files(
        Path("./dist/compressed"),
        Path("./dist/public"),
        options={"enable_brotli": True, "extensions": ["html"]},
    )

    # granian --interface rsgi module:app
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from precompressed.compressions import CompressionRegistry, build_registry
from precompressed.index import AssetIndex, build_index
from precompressed.options import Options, sanitize_options
from precompressed.resolver import Resolver, Unresolved, resolve_on_disk

if TYPE_CHECKING:
    from precompressed.rsgi import HTTPProtocol, HTTPScope, RSGIHTTPHandler

logger = logging.getLogger(__name__)

_RESOLVED_METHODS = frozenset({"GET", "HEAD"})


def _retrieve_exception(task: asyncio.Task[Resolver]) -> None:
    # failures are logged by _build and re-raised to waiters; mark them seen
    if not task.cancelled():
        task.exception()


async def _not_found(_scope: HTTPScope, proto: HTTPProtocol) -> None:
    proto.response_bytes(404, [("content-type", "text/plain")], b"Not found")


class StaticFiles:
    """RSGI app serving the best precompressed variant of each asset.

    The index is built on first use: when granian initialises the worker
    (`__rsgi_init__`), on an explicit `await app.startup()`, or on the first
    request. Requests arriving while indexing is in flight wait for it.
    """

    __slots__ = (
        "_compressed_root",
        "_fallback",
        "_index_timeout",
        "_options",
        "_prefix",
        "_registry",
        "_reject_unacceptable",
        "_resolver",
        "_serve_live",
        "_task",
        "_uncompressed_root",
    )

    def __init__(
        self,
        compressed_root: Path,
        uncompressed_root: Path,
        *,
        options: Options,
        registry: CompressionRegistry,
        prefix: str,
        fallback: RSGIHTTPHandler,
        reject_unacceptable: bool,
        index_timeout: float | None,
        serve_live: bool = False,
    ) -> None:
        self._compressed_root = compressed_root
        self._uncompressed_root = uncompressed_root
        self._options = options
        self._registry = registry
        self._prefix = prefix
        self._fallback = fallback
        self._reject_unacceptable = reject_unacceptable
        self._index_timeout = index_timeout
        self._serve_live = serve_live
        self._resolver: Resolver | None = None
        self._task: asyncio.Task[Resolver] | None = None

    @property
    def options(self) -> Options:
        return self._options

    @property
    def registry(self) -> CompressionRegistry:
        return self._registry

    async def startup(self) -> AssetIndex:
        """Build the index if it isn't built yet and return it. Idempotent."""
        resolver = await self._ready()
        return resolver.index

    def __rsgi_init__(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._task is None and not self._serve_live:
            self._task = loop.create_task(self._build())
            self._task.add_done_callback(_retrieve_exception)

    async def _build(self) -> Resolver:
        try:
            async with asyncio.timeout(self._index_timeout):
                index = await build_index(
                    self._compressed_root,
                    self._uncompressed_root,
                    registry=self._registry,
                    extensions=self._options.extensions,
                )
        except TimeoutError:
            logger.error(
                "static_files: indexing %s did not finish within %ss",
                self._compressed_root,
                self._index_timeout,
            )
            raise
        except Exception:
            logger.exception("static_files: indexing %s failed", self._compressed_root)
            raise
        self._resolver = Resolver(index, self._options)
        return self._resolver

    async def _ready(self) -> Resolver:
        if self._resolver is not None:
            return self._resolver
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._build())
            self._task.add_done_callback(_retrieve_exception)
        # shield: a cancelled request must not cancel indexing for everyone else
        return await asyncio.shield(self._task)

    def _strip_prefix(self, path: str) -> str | None:
        if not self._prefix:
            return path
        if path == self._prefix or path.startswith(self._prefix + "/"):
            return path[len(self._prefix) :]
        return None

    async def __call__(self, scope: HTTPScope, proto: HTTPProtocol) -> None:
        if scope.method not in _RESOLVED_METHODS:
            await self._fallback(scope, proto)
            return

        path = self._strip_prefix(scope.path)
        if path is None:
            await self._fallback(scope, proto)
            return

        if self._serve_live:
            result = await asyncio.to_thread(
                resolve_on_disk, self._uncompressed_root, path, self._options
            )
        else:
            resolver = await self._ready()
            result = resolver.resolve(path, scope.headers.get("accept-encoding"))

        if isinstance(result, Unresolved):
            if (
                result.reason == "no_acceptable_encoding"
                and self._reject_unacceptable
            ):
                proto.response_bytes(
                    406, [("content-type", "text/plain")], b"Not acceptable"
                )
                return
            await self._fallback(scope, proto)
            return

        if scope.method == "HEAD":
            proto.response_empty(200, result.headers)
        else:
            proto.response_file(200, result.headers, str(result.path))


def static_files(
    root: Path | str,
    uncompressed_root: Path | str | None = None,
    *,
    options: Options | Mapping[str, object] | None = None,
    prefix: str = "",
    fallback: RSGIHTTPHandler | None = None,
    reject_unacceptable: bool = False,
    index_timeout: float | None = 30.0,
) -> StaticFiles:
    """Create a precompressed static files app.

    Args:
        root: Directory holding the precompressed files, named like the
            original file plus the encoding suffix (e.g. `app.js.gz`).
        uncompressed_root: Fallback directory with the original files, served
            to clients that accept none of the available encodings. Defaults
            to `root`. Files only present here are not served unless
            compression is disabled, in which case only this directory is
            served.
        options: Options, or a mapping passed through `sanitize_options`.
        prefix: URL prefix stripped from request paths, e.g. "/static".
            Requests outside the prefix go to `fallback`.
        fallback: Handler for requests that don't resolve to an asset.
            Defaults to a plain 404.
        reject_unacceptable: Answer 406 instead of calling `fallback` when an
            asset exists but none of its encodings is acceptable.
        index_timeout: Seconds indexing may take before failing. None waits
            forever.

    Returns:
        The RSGI app.
    """
    if not isinstance(options, Options):
        options = sanitize_options(options)
    if index_timeout is not None and index_timeout <= 0:
        msg = f"index_timeout must be > 0, got {index_timeout}"
        raise ValueError(msg)

    compressed_root = Path(root)
    fallback_root = (
        Path(uncompressed_root) if uncompressed_root is not None else compressed_root
    )
    if options.disable_compression:
        compressed_root = fallback_root

    registry = build_registry(options)
    logger.info(
        "static_files: %s (uncompressed: %s), encodings: %s",
        compressed_root,
        fallback_root,
        ", ".join(e.name for e in registry),
    )

    return StaticFiles(
        compressed_root,
        fallback_root,
        options=options,
        registry=registry,
        prefix=prefix.rstrip("/"),
        fallback=fallback or _not_found,
        reject_unacceptable=reject_unacceptable,
        index_timeout=index_timeout,
        serve_live=options.disable_compression
        and options.use_built_in_when_disabled,
    )
