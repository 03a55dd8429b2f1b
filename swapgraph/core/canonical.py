"""
SwapGraph: Canonical JSON Encoding (RFC 8785 / JCS)

Every hash and signature in SwapGraph goes through this module:
idempotency payload hashes, receipt signatures, journal chain hashes,
matching snapshot hashes and proposal ids.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib
from typing import Any

try:
    import jcs as _jcs
except ImportError as exc:
    raise ImportError(
        "SwapGraph requires the 'jcs' package for RFC 8785 compliance.\n"
        "Install with: pip install jcs\n"
        f"Original error: {exc}"
    ) from exc


def canonicalize(obj: Any) -> bytes:
    """
    Encode a JSON-primitive value to RFC 8785 canonical JSON bytes.

    Output is deterministic regardless of key insertion order.
    Do NOT pass datetime or dataclass objects; call to_dict() first.
    """
    return _jcs.canonicalize(obj)


def canonical_hash(obj: Any) -> str:
    """Lowercase hex SHA-256 of the RFC 8785 canonical form (64 characters)."""
    return hashlib.sha256(canonicalize(obj)).hexdigest()


def short_hash(text: str, length: int = 12) -> str:
    """Truncated SHA-256 over a plain UTF-8 string. Used for stable ids."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]
