"""
ERC-8021 (schema 0) builder-code attribution suffix:

    <utf8("code1,code2,...")><len: 1 byte><schema id: 0x00><marker: 0x8021 * 8>
"""
from typing import Sequence

MARKER = bytes.fromhex("8021" * 8)
SCHEMA_ID = b"\x00"


def builder_codes_suffix(codes: Sequence[str]) -> bytes:
    codes = [c.strip() for c in (codes or []) if c and c.strip()]
    if not codes:
        return b""
    payload = ",".join(codes).encode("utf-8")
    if len(payload) > 255:
        return b""
    return payload + bytes([len(payload)]) + SCHEMA_ID + MARKER


def append_builder_codes(data: bytes, codes: Sequence[str]) -> bytes:
    return bytes(data or b"") + builder_codes_suffix(codes)
