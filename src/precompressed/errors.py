"""Error taxonomy for indexing and request resolution."""

from __future__ import annotations

from pathlib import Path


class PrecompressedError(Exception):
    """Base class for all errors raised by this package."""


class RootNotFoundError(PrecompressedError):
    """A configured root directory does not exist. Fatal at startup."""

    def __init__(self, root: Path) -> None:
        self.root = root
        super().__init__(f"root directory not found: {root}")


class BadRequestPath(PrecompressedError):  # noqa: N818
    """The request path could not be percent-decoded."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"malformed request path: {path!r}")


class NoAcceptableEncoding(PrecompressedError):  # noqa: N818
    """None of the asset's encodings is acceptable to the client."""

    def __init__(self, canonical_path: str, accept_encoding: str | None) -> None:
        self.canonical_path = canonical_path
        self.accept_encoding = accept_encoding
        super().__init__(
            f"no acceptable encoding for {canonical_path!r} "
            f"(accept-encoding: {accept_encoding!r})"
        )
