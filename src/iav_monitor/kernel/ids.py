"""
Event ID generation using UUIDv7-like (time-ordered) identifiers

Certificates get integer IDs from the store; lifecycle events get a
time-ordered string ID so receivers can deduplicate redelivered events
and sort them by creation time.
"""

import secrets
import time


def generate_event_id() -> str:
    """
    Generate a UUIDv7-like identifier

    First 48 bits: Unix timestamp in milliseconds, then a version nibble
    (7), 12 random bits, the variant bits (10) and 62 random bits.

    Returns:
        Sortable UUID string (e.g., "01908e9a-3b87-7000-8000-123456789abc")
    """
    timestamp_48 = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand_12 = secrets.randbits(12)
    rand_62 = secrets.randbits(62)

    version_and_rand = 0x7000 | rand_12
    variant_and_rand = 0x8000 | ((rand_62 >> 48) & 0x3FFF)
    node = rand_62 & 0xFFFFFFFFFFFF

    return (
        f"{(timestamp_48 >> 16) & 0xFFFFFFFF:08x}-"
        f"{timestamp_48 & 0xFFFF:04x}-"
        f"{version_and_rand:04x}-"
        f"{variant_and_rand:04x}-"
        f"{node:012x}"
    )
