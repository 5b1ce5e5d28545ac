"""Cache entry codec.

Every cached value is wrapped in a versioned envelope:

    {"data": <value>, "cached_at": "<ISO-8601 UTC>", "version": "1.0"}

serialized with orjson. Payloads larger than the compression threshold are
gzip-compressed and prefixed with COMPRESSED_TAG so decode() can detect them.

decode() never raises for malformed input; it returns None and the caller
treats the key as corrupt.
"""

from __future__ import annotations

import gzip
import logging
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import orjson
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "1.0"
COMPRESSED_TAG = b"compressed:"
DEFAULT_COMPRESSION_THRESHOLD = 10240  # 10KB


@dataclass(frozen=True)
class CacheEnvelope:
    """Decoded cache entry."""

    data: Any
    cached_at: str
    version: str = ENVELOPE_VERSION


@dataclass(frozen=True)
class EncodedEntry:
    """Encoded payload plus the stats recorded in the audit log."""

    payload: bytes
    size: int  # serialized size before compression
    compressed: bool


def _default(obj: Any) -> Any:
    """orjson fallback for types it does not serialize natively."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"Type is not cacheable: {type(obj).__name__}")


def encode_entry(
    value: Any,
    *,
    compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
    now: datetime | None = None,
) -> EncodedEntry:
    """Wrap a value in an envelope and serialize it.

    Raises:
        TypeError: value is not JSON serializable
    """
    cached_at = (now or datetime.now(UTC)).isoformat()
    serialized = orjson.dumps(
        {"data": value, "cached_at": cached_at, "version": ENVELOPE_VERSION},
        default=_default,
    )

    if len(serialized) > compression_threshold:
        return EncodedEntry(
            payload=COMPRESSED_TAG + gzip.compress(serialized),
            size=len(serialized),
            compressed=True,
        )

    return EncodedEntry(payload=serialized, size=len(serialized), compressed=False)


def encode(value: Any, *, compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD) -> bytes:
    """Serialize a value into its stored form."""
    return encode_entry(value, compression_threshold=compression_threshold).payload


def decode(raw: bytes | str) -> CacheEnvelope | None:
    """Parse a stored payload.

    Returns:
        The envelope, or None if the payload is corrupt (bad compression,
        invalid JSON, or missing ``data``/``cached_at``).
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    if raw.startswith(COMPRESSED_TAG):
        try:
            raw = gzip.decompress(raw[len(COMPRESSED_TAG) :])
        except (OSError, EOFError, zlib.error):
            logger.warning("Cache payload has a broken compression stream")
            return None

    try:
        parsed = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None

    if not isinstance(parsed, dict) or "data" not in parsed or not parsed.get("cached_at"):
        return None

    return CacheEnvelope(
        data=parsed["data"],
        cached_at=str(parsed["cached_at"]),
        version=str(parsed.get("version", ENVELOPE_VERSION)),
    )
