"""ULID record id generation.

A ULID is 26 Crockford base32 characters: a 48-bit millisecond timestamp
followed by 80 random bits. Ids sort lexicographically in creation order.
"""

from __future__ import annotations

import os
import threading
import time

CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
RANDOM_BITS = 80


class ULIDGenerator:
    """Monotonic ULID factory.

    Within one millisecond the random part is incremented instead of redrawn,
    so ids from the same process keep strict creation order.
    """

    def __init__(self, clock=time.time, randbytes=os.urandom):
        self._clock = clock
        self._randbytes = randbytes
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_rand = 0

    def __call__(self) -> str:
        with self._lock:
            ms = int(self._clock() * 1000)
            if ms <= self._last_ms:
                ms = self._last_ms
                rand = self._last_rand + 1
                if rand >= 1 << RANDOM_BITS:
                    # random part exhausted for this millisecond
                    ms += 1
                    rand = int.from_bytes(self._randbytes(10), "big")
            else:
                rand = int.from_bytes(self._randbytes(10), "big")
            self._last_ms = ms
            self._last_rand = rand
        return encode(ms, rand)


def encode(ms: int, rand: int) -> str:
    value = ((ms & ((1 << 48) - 1)) << RANDOM_BITS) | rand
    chars = []
    for _ in range(26):
        chars.append(CROCKFORD[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


new_id = ULIDGenerator()
