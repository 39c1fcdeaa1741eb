from __future__ import annotations

import cbor2


def encode(obj) -> bytes:
    # Canonical: sorted map keys, shortest integer encodings.
    return cbor2.dumps(obj, canonical=True)


def decode(b: bytes):
    if not isinstance(b, (bytes, bytearray, memoryview)):
        raise TypeError("payload must be bytes")
    try:
        return cbor2.loads(bytes(b))
    except cbor2.CBORDecodeError as e:
        raise ValueError(f"invalid CBOR: {e}") from e
