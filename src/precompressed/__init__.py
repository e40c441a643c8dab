from importlib.metadata import version

from .apps.static_files import StaticFiles, static_files
from .compressions import NONE, CompressionRegistry, Encoding, build_registry
from .errors import (
    BadRequestPath,
    NoAcceptableEncoding,
    PrecompressedError,
    RootNotFoundError,
)
from .index import AssetEntry, AssetIndex, build_index
from .negotiation import select_encoding
from .options import CustomCompression, Options, sanitize_options
from .resolver import Resolved, Resolver, Unresolved

__all__ = [
    "NONE",
    "AssetEntry",
    "AssetIndex",
    "BadRequestPath",
    "CompressionRegistry",
    "CustomCompression",
    "Encoding",
    "NoAcceptableEncoding",
    "Options",
    "PrecompressedError",
    "Resolved",
    "Resolver",
    "RootNotFoundError",
    "StaticFiles",
    "Unresolved",
    "__version__",
    "build_index",
    "build_registry",
    "sanitize_options",
    "select_encoding",
    "static_files",
]

__version__ = version("precompressed")
