import logging
import os
import threading
from pathlib import Path

import pytest
from conftest import write_files

from precompressed.compressions import (
    BROTLI,
    GZIP,
    NONE,
    CompressionRegistry,
    Encoding,
    build_registry,
)
from precompressed import index as index_module
from precompressed.errors import RootNotFoundError
from precompressed.index import AssetEntry, AssetIndex, build_index
from precompressed.options import CustomCompression, Options

ZSTD = Encoding("zstd", "zst")


@pytest.fixture
def registry() -> CompressionRegistry:
    return build_registry(
        Options(
            enable_brotli=True,
            custom_compressions=(CustomCompression("zstd", "zst"),),
        )
    )


# --- Single root -------------------------------------------------------------
class TestSameRoot:
    @pytest.mark.asyncio
    async def test_original_and_gzip(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"a.txt": "a", "a.txt.gz": b"gz"})

        index = await build_index(tmp_path, registry=build_registry(Options()))

        entry = index["a.txt"]
        assert entry.available_encodings == {NONE, GZIP}
        assert entry.canonical_path == "a.txt"

    @pytest.mark.asyncio
    async def test_only_compressed(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"a.txt.gz": b"gz"})

        index = await build_index(tmp_path, registry=build_registry(Options()))

        assert index["a.txt"].available_encodings == {GZIP}

    @pytest.mark.asyncio
    async def test_every_file_servable_as_is(
        self, site_dir: Path, registry: CompressionRegistry
    ) -> None:
        index = await build_index(site_dir, registry=registry)

        assert index["logo.png"].available_encodings == {NONE}
        # the sidecar itself is a file too
        assert index["css/app.css.gz"].available_encodings == {NONE}

    @pytest.mark.asyncio
    async def test_nested_directories(
        self, site_dir: Path, registry: CompressionRegistry
    ) -> None:
        index = await build_index(site_dir, registry=registry)

        assert index["css/app.css"].available_encodings == {NONE, GZIP, BROTLI}
        assert index["js/vendor/lib.js"].available_encodings == {NONE, ZSTD}

    @pytest.mark.asyncio
    async def test_unregistered_suffix_not_stripped(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"a.txt.br": b"br"})

        index = await build_index(tmp_path, registry=build_registry(Options()))

        assert "a.txt" not in index
        assert index["a.txt.br"].available_encodings == {NONE}

    @pytest.mark.asyncio
    async def test_same_root_given_twice(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"a.txt": "a", "a.txt.gz": b"gz"})

        index = await build_index(
            tmp_path, tmp_path / ".", registry=build_registry(Options())
        )

        assert index["a.txt"].available_encodings == {NONE, GZIP}

    @pytest.mark.asyncio
    async def test_disabled_compression_registry(self, site_dir: Path) -> None:
        registry = build_registry(Options(disable_compression=True))

        index = await build_index(site_dir, registry=registry)

        assert index["css/app.css"].available_encodings == {NONE}
        assert index["css/app.css.gz"].available_encodings == {NONE}


# --- Separate roots ----------------------------------------------------------
class TestSplitRoots:
    @pytest.mark.asyncio
    async def test_uncompressed_from_fallback_root(
        self, split_dirs: tuple[Path, Path], registry: CompressionRegistry
    ) -> None:
        compressed, public = split_dirs

        index = await build_index(compressed, public, registry=registry)

        entry = index["a.txt"]
        assert entry.available_encodings == {NONE, GZIP, BROTLI}
        assert entry.physical_path(NONE) == public / "a.txt"
        assert entry.physical_path(GZIP) == compressed / "a.txt.gz"

    @pytest.mark.asyncio
    async def test_nested_fallback(
        self, split_dirs: tuple[Path, Path], registry: CompressionRegistry
    ) -> None:
        compressed, public = split_dirs

        index = await build_index(compressed, public, registry=registry)

        assert index["nested/deep/b.css"].available_encodings == {NONE, GZIP}

    @pytest.mark.asyncio
    async def test_missing_fallback_file_not_offered(
        self, split_dirs: tuple[Path, Path], registry: CompressionRegistry
    ) -> None:
        compressed, public = split_dirs

        index = await build_index(compressed, public, registry=registry)

        assert index["only-compressed.js"].available_encodings == {GZIP}

    @pytest.mark.asyncio
    async def test_fallback_only_files_not_indexed(
        self, split_dirs: tuple[Path, Path], registry: CompressionRegistry
    ) -> None:
        compressed, public = split_dirs

        index = await build_index(compressed, public, registry=registry)

        assert "only-public.txt" not in index
        assert "a.txt.gz" not in index


# --- Extension inference -----------------------------------------------------
class TestExtensions:
    @pytest.mark.asyncio
    async def test_inferred_and_direct_entries(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"page.html.gz": b"gz", "page.html": "<p>"})

        index = await build_index(
            tmp_path, registry=build_registry(Options()), extensions=["html"]
        )

        inferred = index["page"]
        assert inferred.available_encodings == {NONE, GZIP}
        assert inferred.missing_extension == ".html"
        assert inferred.physical_path(GZIP) == tmp_path / "page.html.gz"
        assert inferred.physical_path(NONE) == tmp_path / "page.html"
        assert index["page.html"].available_encodings == {NONE, GZIP}

    @pytest.mark.asyncio
    async def test_inferred_compressed_only(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"page.html.gz": b"gz"})

        index = await build_index(
            tmp_path, registry=build_registry(Options()), extensions=["html"]
        )

        assert index["page"].available_encodings == {GZIP}
        assert index["page.html"].available_encodings == {GZIP}

    @pytest.mark.asyncio
    async def test_no_inference_without_extensions(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"page.html.gz": b"gz"})

        index = await build_index(tmp_path, registry=build_registry(Options()))

        assert "page" not in index

    @pytest.mark.asyncio
    async def test_unconfigured_extension_not_inferred(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"data.json.gz": b"gz"})

        index = await build_index(
            tmp_path, registry=build_registry(Options()), extensions=["html"]
        )

        assert "data" not in index
        assert "data.json" in index

    @pytest.mark.asyncio
    async def test_exact_file_owns_canonical_path(self, tmp_path: Path) -> None:
        """A file literally named "page" wins over the inferred "page.html"."""
        write_files(tmp_path, {"page": "raw", "page.html.gz": b"gz"})

        index = await build_index(
            tmp_path, registry=build_registry(Options()), extensions=["html"]
        )

        entry = index["page"]
        assert entry.missing_extension == ""
        assert entry.available_encodings == {NONE}

    @pytest.mark.asyncio
    async def test_inference_with_split_roots(
        self, split_dirs: tuple[Path, Path], registry: CompressionRegistry
    ) -> None:
        compressed, public = split_dirs

        index = await build_index(
            compressed, public, registry=registry, extensions=["html"]
        )

        entry = index["page"]
        assert entry.available_encodings == {NONE, GZIP}
        assert entry.physical_path(NONE) == public / "page.html"


# --- Invariants --------------------------------------------------------------
@pytest.mark.asyncio
async def test_every_encoding_maps_to_existing_file(
    site_dir: Path, registry: CompressionRegistry
) -> None:
    index = await build_index(
        site_dir, registry=registry, extensions=["html", "css"]
    )

    assert len(index) > 0
    for entry in index.values():
        assert entry.available_encodings
        for encoding in entry.available_encodings:
            assert entry.physical_path(encoding).is_file(), (entry, encoding)


@pytest.mark.asyncio
async def test_every_encoding_maps_to_existing_file_split(
    split_dirs: tuple[Path, Path], registry: CompressionRegistry
) -> None:
    compressed, public = split_dirs
    index = await build_index(
        compressed, public, registry=registry, extensions=["html"]
    )

    for entry in index.values():
        assert entry.available_encodings
        for encoding in entry.available_encodings:
            assert entry.physical_path(encoding).is_file(), (entry, encoding)


@pytest.mark.asyncio
async def test_index_is_read_only(tmp_path: Path) -> None:
    write_files(tmp_path, {"a.txt": "a"})
    index = await build_index(tmp_path, registry=build_registry(Options()))

    assert isinstance(index, AssetIndex)
    assert isinstance(index["a.txt"], AssetEntry)
    with pytest.raises(TypeError):
        index["b.txt"] = index["a.txt"]  # type: ignore[index]


# --- Errors ------------------------------------------------------------------
class TestErrors:
    @pytest.mark.asyncio
    async def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(RootNotFoundError) as exc_info:
            await build_index(tmp_path / "nope", registry=build_registry(Options()))
        assert exc_info.value.root == tmp_path / "nope"

    @pytest.mark.asyncio
    async def test_missing_uncompressed_root(self, tmp_path: Path) -> None:
        with pytest.raises(RootNotFoundError):
            await build_index(
                tmp_path, tmp_path / "nope", registry=build_registry(Options())
            )

    @pytest.mark.asyncio
    async def test_root_is_a_file(self, tmp_path: Path) -> None:
        file_path = tmp_path / "file.txt"
        file_path.write_text("x")
        with pytest.raises(RootNotFoundError):
            await build_index(file_path, registry=build_registry(Options()))

    @pytest.mark.asyncio
    async def test_broken_symlink_skipped(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_files(tmp_path, {"a.txt": "a"})
        os.symlink(tmp_path / "missing.txt.gz", tmp_path / "broken.txt.gz")

        with caplog.at_level(logging.INFO, logger="precompressed.index"):
            index = await build_index(tmp_path, registry=build_registry(Options()))

        assert "a.txt" in index
        assert "broken.txt" not in index
        assert any("static_files.index" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_symlink_loop_terminates(self, tmp_path: Path) -> None:
        write_files(tmp_path, {"sub/a.txt.gz": b"gz"})
        os.symlink(tmp_path, tmp_path / "sub" / "loop")

        index = await build_index(tmp_path, registry=build_registry(Options()))

        assert index["sub/a.txt"].available_encodings == {GZIP}

    @pytest.mark.asyncio
    async def test_self_referencing_symlink_skipped(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_files(tmp_path, {"a.txt": "a"})
        os.symlink("self", tmp_path / "self")

        with caplog.at_level(logging.INFO, logger="precompressed.index"):
            index = await build_index(tmp_path, registry=build_registry(Options()))

        assert "a.txt" in index
        assert "self" not in index
        assert any(
            r.levelno == logging.WARNING and "skipping" in r.message
            for r in caplog.records
        )
        assert any("1 skipped" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unreadable_subdirectory_skipped(
        self,
        site_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        real_scan = index_module._scan

        def scan(directory: Path):
            if directory.name == "css":
                raise PermissionError(13, "Permission denied", str(directory))
            return real_scan(directory)

        monkeypatch.setattr(index_module, "_scan", scan)

        with caplog.at_level(logging.INFO, logger="precompressed.index"):
            index = await build_index(site_dir, registry=build_registry(Options()))

        assert "css/app.css" not in index
        assert "index.html" in index
        assert "js/vendor/lib.js" in index
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "skipping directory" in warnings[0].message
        assert any("1 skipped" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unreadable_root_raises(
        self, site_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def scan(directory: Path):
            raise PermissionError(13, "Permission denied", str(directory))

        monkeypatch.setattr(index_module, "_scan", scan)

        with pytest.raises(PermissionError):
            await build_index(site_dir, registry=build_registry(Options()))

    @pytest.mark.asyncio
    async def test_root_checked_off_the_event_loop(
        self, site_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real_dir_key = index_module._dir_key
        threads: list[threading.Thread] = []

        def dir_key(root: Path):
            threads.append(threading.current_thread())
            return real_dir_key(root)

        monkeypatch.setattr(index_module, "_dir_key", dir_key)

        await build_index(site_dir, registry=build_registry(Options()))

        assert len(threads) == 2
        assert threading.main_thread() not in threads
