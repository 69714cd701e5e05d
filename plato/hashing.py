"""String hashing."""

import zlib


def hash_str(key: str) -> int:
    """IEEE CRC-32 of the UTF-8 encoding of ``key``."""
    return zlib.crc32(key.encode("utf-8")) & 0xFFFFFFFF