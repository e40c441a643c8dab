# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "precompressed[compress,otel]",
#     "granian[uvloop]>=2.6.0,<3.0.0",
#     "httpx>=0.28.1,<0.29.0",
#     "opentelemetry-sdk>=1.39.1,<2.0.0",
# ]
#
# [tool.uv.sources]
# precompressed = { path = "../", editable = true }
# ///
"""Precompressed static files demo.

Builds a small site, writes brotli/gzip/zstd sidecars into a separate
directory, then serves it and shows which variant each Accept-Encoding gets.
Spans are collected in memory and printed at the end.
"""

import asyncio
import logging
import shutil
import sys
import tempfile
from pathlib import Path

import httpx
import uvloop
from granian.server.embed import Server
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from precompressed import static_files
from precompressed.compress import precompress
from precompressed.middleware.otel import otel
from precompressed.rsgi import HTTPProtocol, HTTPScope

ADDRESS = "127.0.0.1"
PORT = 8000


async def main() -> None:
    """Script entrypoint"""
    logging.basicConfig(level=logging.INFO)

    with tempfile.TemporaryDirectory() as tmpdir:
        public = Path(tmpdir) / "public"
        compressed = Path(tmpdir) / "compressed"
        create_sample_files(public)

        # Compress a copy, then drop the originals from it so the compressed
        # tree only holds sidecars
        shutil.copytree(public, compressed)
        precompress(compressed, encodings=("br", "gzip", "zstd"))
        for f in compressed.rglob("*"):
            if f.is_file() and f.suffix not in {".br", ".gz", ".zst"}:
                f.unlink()

        print("--- Compressed tree ---", file=sys.stderr)
        for f in sorted(compressed.rglob("*")):
            if f.is_file():
                print(
                    f"  {f.relative_to(compressed)} ({f.stat().st_size} bytes)",
                    file=sys.stderr,
                )
        print(file=sys.stderr)

        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))

        app = otel(tracer_provider=provider)(
            static_files(
                compressed,
                public,
                options={
                    "enableBrotli": True,
                    "customCompressions": [
                        {"encodingName": "zstd", "fileExtension": "zst"}
                    ],
                    "orderPreference": ["zstd", "br"],
                    "extensions": ["html"],
                },
                prefix="/static",
                fallback=not_found,
            )
        )

        task = asyncio.create_task(serve(app))
        await asyncio.sleep(0.5)
        await requests()
        task.cancel()

        print("--- Spans ---", file=sys.stderr)
        for span in exporter.get_finished_spans():
            attrs = span.attributes or {}
            print(
                f"  {span.name}: {attrs.get('http.response.status_code')} "
                f"{attrs.get('http.response.content_encoding', 'identity')}",
                file=sys.stderr,
            )


def create_sample_files(public: Path) -> None:
    """Create sample build output for the demo."""
    (public / "css").mkdir(parents=True)
    (public / "css" / "styles.css").write_text(
        """\
body {
    font-family: system-ui, sans-serif;
    background: #f5f5f5;
    color: #333;
}
h1 { color: #0066cc; }
"""
        + "/* padding */" * 100
    )
    (public / "index.html").write_text(
        '<!DOCTYPE html><link rel="stylesheet" href="/static/css/styles.css">'
        + "<h1>Precompressed</h1>" * 50
    )
    (public / "about.html").write_text("<h1>About</h1>" + "<p>padding</p>" * 100)


async def not_found(_scope: HTTPScope, proto: HTTPProtocol) -> None:
    proto.response_str(404, [("content-type", "text/plain")], "Not found")


async def serve(app) -> None:
    """Runtime for the RSGI-app."""
    server = Server(app, address=ADDRESS, port=PORT, log_access=True)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await server.shutdown()


async def requests() -> None:
    """Make requests demonstrating content negotiation."""
    base_url = f"http://{ADDRESS}:{PORT}"

    cases = [
        ("/static/css/styles.css", "zstd, br, gzip"),
        ("/static/css/styles.css", "br;q=1.0, gzip;q=0.8"),
        ("/static/css/styles.css", "gzip"),
        ("/static/css/styles.css", "identity"),
        ("/static/", "gzip"),
        ("/static/about", "br"),
        ("/static/missing.js", "gzip"),
    ]

    print("--- Content negotiation demo ---", file=sys.stderr)
    async with httpx.AsyncClient(base_url=base_url) as client:
        for path, accept_encoding in cases:
            # raw bytes, httpx would otherwise decode the body
            async with client.stream(
                "GET", path, headers={"accept-encoding": accept_encoding}
            ) as response:
                body = b"".join([chunk async for chunk in response.aiter_raw()])
            print(f"GET {path}  Accept-Encoding: {accept_encoding}", file=sys.stderr)
            print(f"  Status: {response.status_code}", file=sys.stderr)
            print(
                f"  Content-Encoding: {response.headers.get('content-encoding', 'none')}",
                file=sys.stderr,
            )
            print(f"  Bytes on the wire: {len(body)}", file=sys.stderr)
            print(file=sys.stderr)


if __name__ == "__main__":
    uvloop.run(main())
