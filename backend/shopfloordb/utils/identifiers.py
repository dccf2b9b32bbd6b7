from __future__ import annotations

import os
import time
import uuid


def generate_uuid7() -> str:
    """
    Time-ordered UUIDv7 string used for audit events and generator run ids.

    48-bit millisecond timestamp, version nibble 0b0111, variant bits 0b10,
    the remaining 74 bits random.
    """
    millis = int(time.time() * 1000)
    raw = bytearray(millis.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))
