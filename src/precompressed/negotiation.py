"""Accept-Encoding content negotiation.

See https://developer.mozilla.org/en-US/docs/Web/HTTP/Headers/Accept-Encoding
"""

import math
from collections.abc import Collection, Sequence

from precompressed.compressions import NONE, Encoding

# Indicates the identity function (i.e. no compression, nor modification)
IDENTITY = "identity"
WILDCARD = "*"


def _parse_quality(params: list[str]) -> float:
    """Return the q value from an entry's parameters, 1.0 if absent or invalid."""
    for param in params:
        key, sep, value = param.partition("=")
        if not sep or key.strip().lower() != "q":
            continue
        try:
            quality = float(value.strip())
        except ValueError:
            return 1.0
        return quality if math.isfinite(quality) else 1.0
    return 1.0


def parse_accept_encoding(header: str) -> list[tuple[str, float]]:
    """Parse an Accept-Encoding header into (token, quality) pairs.

    Malformed entries are skipped. The result is sorted by descending quality,
    ties keeping header order. Zero-quality entries are kept so callers can see
    what the client rejected.
    """
    encodings: list[tuple[str, float]] = []
    for part in header.split(","):
        token, *params = part.split(";")
        token = token.strip().lower()
        if not token:
            continue
        encodings.append((token, _parse_quality(params)))
    encodings.sort(key=lambda e: -e[1])  # stable
    return encodings


def _apply_preference(tokens: list[str], preference: Sequence[str]) -> list[str]:
    """Move each preferred token present to the front, lowest priority first."""
    for name in reversed(preference):
        if name in tokens:
            tokens.remove(name)
            tokens.insert(0, name)
    return tokens


def _wildcard_match(
    available: Collection[Encoding], preference: Sequence[str]
) -> Encoding | None:
    by_name = {e.name: e for e in available}
    for name in preference:
        if name in by_name:
            return by_name[name]
    compressed = sorted((e for e in available if e != NONE), key=lambda e: e.name)
    if compressed:
        return compressed[0]
    return NONE if NONE in available else None


def select_encoding(
    accept_encoding: str | None,
    available: Collection[Encoding],
    preference: Sequence[str] = (),
) -> Encoding | None:
    """Select the encoding to serve an asset with.

    Client tokens are ordered by quality, then the server's preferred encodings
    are moved to the front. The first token naming an available encoding wins.
    Uncompressed ("none") is always a last resort unless the client sent
    `identity;q=0`.

    Args:
        accept_encoding: Raw Accept-Encoding header value, or None if absent.
        available: Encodings indexed for the asset.
        preference: Server-preferred encoding names, highest priority first.

    Returns:
        The selected Encoding, or None if nothing available is acceptable.
    """
    if not accept_encoding:
        return NONE if NONE in available else None

    parsed = parse_accept_encoding(accept_encoding)
    tokens = [token for token, quality in parsed if quality > 0]
    identity_rejected = any(
        token == IDENTITY and quality <= 0 for token, quality in parsed
    )
    if not identity_rejected:
        tokens.append(NONE.name)

    by_name = {e.name: e for e in available}
    for token in _apply_preference(tokens, preference):
        if token == IDENTITY:
            if NONE in available:
                return NONE
        elif token == WILDCARD:
            match = _wildcard_match(available, preference)
            if match is not None:
                return match
        elif token in by_name:
            return by_name[token]
    return None
