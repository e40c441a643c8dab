"""Configuration for the static files app."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class CustomCompression:
    """An operator-declared encoding, e.g. CustomCompression("zstd", "zst")."""

    encoding_name: str  # checked against the request's Accept-Encoding
    file_extension: str  # used to find files, no leading dot

    def __post_init__(self) -> None:
        if not self.encoding_name:
            msg = "encoding_name must not be empty"
            raise ValueError(msg)
        ext = self.file_extension.removeprefix(".")
        if not ext:
            msg = f"file_extension must not be empty for {self.encoding_name!r}"
            raise ValueError(msg)
        object.__setattr__(self, "file_extension", ext)


@dataclass(frozen=True, slots=True)
class Options:
    """Resolved configuration.

    Attributes:
        index: File served for the root path. None disables index substitution.
        disable_compression: Serve only the uncompressed root, as-is.
        enable_brotli: Register the "br" encoding (files ending in ".br").
        custom_compressions: Extra encodings, registered after gzip.
        order_preference: Encoding names the server prefers over the client's
            order, highest priority first.
        extensions: Extensions inferred when a request omits them, e.g. "html"
            lets "/page" resolve to "page.html".
        use_built_in_when_disabled: With compression disabled, look requests up
            on disk instead of in the index, so files added after startup are
            served.
    """

    index: str | None = "index.html"
    disable_compression: bool = False
    enable_brotli: bool = False
    custom_compressions: tuple[CustomCompression, ...] = ()
    order_preference: tuple[str, ...] = ("br",)
    extensions: tuple[str, ...] = field(default=())
    use_built_in_when_disabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "extensions",
            tuple(ext.removeprefix(".") for ext in self.extensions if ext),
        )


_CAMEL_KEYS = {
    "indexFromEmptyFile": "index_from_empty_file",
    "disableCompression": "disable_compression",
    "enableBrotli": "enable_brotli",
    "customCompressions": "custom_compressions",
    "orderPreference": "order_preference",
    "useBuiltInWhenDisabled": "use_built_in_when_disabled",
}


def sanitize_options(user_options: Mapping[str, object] | None = None) -> Options:
    """Build Options from loose user input.

    Unknown keys are ignored so options meant for other handlers can be passed
    through. Keys may be snake_case or camelCase. The deprecated
    `index_from_empty_file` is honoured only when `index` is not given.

    Raises:
        ValueError: if a known option has an unusable value.
    """
    raw = {_CAMEL_KEYS.get(k, k): v for k, v in (user_options or {}).items()}
    kwargs: dict[str, object] = {"index": _index_value(raw)}

    for key in (
        "disable_compression",
        "enable_brotli",
        "use_built_in_when_disabled",
    ):
        if raw.get(key) is not None:
            kwargs[key] = bool(raw[key])

    if raw.get("custom_compressions") is not None:
        kwargs["custom_compressions"] = tuple(
            _custom_compression(c) for c in _iterable(raw, "custom_compressions")
        )

    if raw.get("order_preference") is not None:
        kwargs["order_preference"] = tuple(
            _string("order_preference", p)
            for p in _iterable(raw, "order_preference")
        )

    if raw.get("extensions") is not None:
        kwargs["extensions"] = tuple(
            _string("extensions", e) for e in _iterable(raw, "extensions")
        )

    return Options(**kwargs)  # ty: ignore[invalid-argument-type]


def _index_value(raw: Mapping[str, object]) -> str | None:
    if "index" in raw:
        value = raw["index"]
    elif "index_from_empty_file" in raw:
        value = raw["index_from_empty_file"]
    else:
        return "index.html"

    if value is False or value is None:
        return None
    if value is True:
        return "index.html"
    if not isinstance(value, str):
        msg = f"index must be a string or bool, got {type(value).__name__}"
        raise ValueError(msg)
    return value


def _iterable(raw: Mapping[str, object], key: str) -> Iterable[object]:
    value = raw[key]
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        msg = f"{key} must be a list, got {type(value).__name__}"
        raise ValueError(msg)
    return value


def _string(key: str, value: object) -> str:
    if not isinstance(value, str):
        msg = f"{key} entries must be strings, got {type(value).__name__}"
        raise ValueError(msg)
    return value


def _custom_compression(value: object) -> CustomCompression:
    if isinstance(value, CustomCompression):
        return value
    if isinstance(value, Mapping):
        name = value.get("encoding_name", value.get("encodingName"))
        ext = value.get("file_extension", value.get("fileExtension"))
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        name, ext = value
    else:
        msg = f"invalid custom compression: {value!r}"
        raise ValueError(msg)
    if not isinstance(name, str) or not isinstance(ext, str):
        msg = f"custom compression needs encoding_name and file_extension: {value!r}"
        raise ValueError(msg)
    return CustomCompression(name, ext)
