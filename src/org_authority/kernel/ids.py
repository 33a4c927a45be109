"""
Identifier generation

Identifiers are time-ordered (UUIDv7 layout) so that records created later
sort later, with a short kind prefix ("org", "dept", "usr", ...) that makes
ids readable in audit trails and logs.
"""

import secrets
import time
from typing import Protocol


class IdFactory(Protocol):
    """Protocol for ID generation strategies"""

    def generate(self, prefix: str) -> str:
        """Generate a new unique ID"""
        ...


def _uuid7_hex() -> str:
    # 48 bits of millisecond timestamp, version nibble 7, variant bits 10
    timestamp_ms = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)

    value = (timestamp_ms << 80) | (0x7 << 76) | (rand_a << 64) | (0b10 << 62) | rand_b
    raw = f"{value:032x}"
    return f"{raw[:8]}-{raw[8:12]}-{raw[12:16]}-{raw[16:20]}-{raw[20:]}"


def generate_id(prefix: str | None = None) -> str:
    """
    Generate a time-ordered identifier

    Args:
        prefix: Optional kind prefix, e.g. "org" gives "org-0192f3a1-..."

    Returns:
        Sortable unique identifier string
    """
    uid = _uuid7_hex()
    return f"{prefix}-{uid}" if prefix else uid


class DefaultIdFactory:
    """Default ID factory using UUIDv7-style generation"""

    def generate(self, prefix: str) -> str:
        return generate_id(prefix)


class SequentialIdFactory:
    """
    Predictable ids for tests ("org-1", "org-2", "usr-1", ...)

    Counters are kept per prefix.
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}

    def generate(self, prefix: str) -> str:
        self._counters[prefix] = self._counters.get(prefix, 0) + 1
        return f"{prefix}-{self._counters[prefix]}"
