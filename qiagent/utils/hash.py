from __future__ import annotations

from typing import Iterable

from gmssl import func as gmssl_func
from gmssl import sm3 as gmssl_sm3


def sm3_digest(data: bytes) -> bytes:
    return bytes.fromhex(gmssl_sm3.sm3_hash(gmssl_func.bytes_to_list(data)))


def sm3_hex(data: bytes) -> str:
    return sm3_digest(data).hex()


def sm3_concat(parts: Iterable[bytes]) -> bytes:
    """Hash length-prefixed parts so adjacent fields cannot run together."""
    buf = bytearray()
    for part in parts:
        buf += len(part).to_bytes(4, "big")
        buf += part
    return sm3_digest(bytes(buf))
