"""Content hashing for CAS digests."""

from remotecas.hashing.generator import (
    HASH_BUFFER_SIZE_BYTES,
    DigestContext,
    DigestFunction,
    DigestGenerator,
    HashingError,
    make_digest,
)

__all__ = [
    "HASH_BUFFER_SIZE_BYTES",
    "DigestContext",
    "DigestFunction",
    "DigestGenerator",
    "HashingError",
    "make_digest",
]
