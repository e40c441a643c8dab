from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import pytest

from precompressed.rsgi import HTTPScope


@dataclass
class MockHTTPScope:
    proto: Literal["http"] = "http"
    http_version: Literal["1", "1.1", "2"] = "1.1"
    rsgi_version: str = "1.0"
    server: str = "localhost"
    client: str = "127.0.0.1"
    scheme: str = "http"
    method: str = "GET"
    path: str = "/"
    query_string: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    authority: str | None = None


class MockHTTPProtocol:
    """Mock protocol that captures response data."""

    def __init__(self) -> None:
        self.response_status: int | None = None
        self.response_headers: list[tuple[str, str]] | None = None
        self.response_body: bytes | None = None
        self.response_file_path: str | None = None

    async def __call__(self) -> bytes:
        raise NotImplementedError

    def __aiter__(self) -> bytes:
        raise NotImplementedError

    async def client_disconnect(self) -> None:
        raise NotImplementedError

    def response_empty(self, status: int, headers: list[tuple[str, str]]) -> None:
        self.response_status = status
        self.response_headers = headers
        self.response_body = b""

    def response_str(
        self, status: int, headers: list[tuple[str, str]], body: str
    ) -> None:
        self.response_status = status
        self.response_headers = headers
        self.response_body = body.encode("utf-8")

    def response_bytes(
        self, status: int, headers: list[tuple[str, str]], body: bytes
    ) -> None:
        self.response_status = status
        self.response_headers = headers
        self.response_body = body

    def response_file(
        self, status: int, headers: list[tuple[str, str]], file: str
    ) -> None:
        self.response_status = status
        self.response_headers = headers
        self.response_file_path = file

    def response_file_range(
        self,
        status: int,
        headers: list[tuple[str, str]],
        file: str,
        start: int,
        end: int,
    ) -> None:
        raise NotImplementedError

    def response_stream(self, status: int, headers: list[tuple[str, str]]) -> None:
        raise NotImplementedError

    @property
    def headers_dict(self) -> dict[str, str]:
        return dict(self.response_headers or [])


def mock_scope(
    path: str = "/",
    method: str = "GET",
    headers: dict[str, str] | None = None,
) -> HTTPScope:
    return MockHTTPScope(path=path, method=method, headers=headers or {})


def write_files(root: Path, files: Mapping[str, str | bytes]) -> Path:
    """Create `files` (relative path -> content) under root."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
    return root


# --- Shared fixtures ----------------------------------------------------------
@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A single build directory with originals next to their sidecars."""
    return write_files(
        tmp_path / "site",
        {
            "index.html": "<h1>home</h1>",
            "index.html.gz": b"gz:index",
            "index.html.br": b"br:index",
            "about.html": "<h1>about</h1>",
            "about.html.gz": b"gz:about",
            "css/app.css": "body { color: red; }",
            "css/app.css.gz": b"gz:css",
            "css/app.css.br": b"br:css",
            "js/vendor/lib.js": "export const x = 1;",
            "js/vendor/lib.js.zst": b"zst:lib",
            "logo.png": b"\x89PNG\r\n",
        },
    )


@pytest.fixture
def split_dirs(tmp_path: Path) -> tuple[Path, Path]:
    """Separate compressed and uncompressed roots."""
    compressed = write_files(
        tmp_path / "compressed",
        {
            "a.txt.gz": b"gz:a",
            "a.txt.br": b"br:a",
            "page.html.gz": b"gz:page",
            "only-compressed.js.gz": b"gz:only",
            "nested/deep/b.css.gz": b"gz:b",
        },
    )
    uncompressed = write_files(
        tmp_path / "public",
        {
            "a.txt": "a",
            "page.html": "<p>page</p>",
            "nested/deep/b.css": "b {}",
            "only-public.txt": "not served",
        },
    )
    return compressed, uncompressed
