"""Opaque 22-character ids for boards and tasks.

Both kinds are 128-bit integers written in fixed-width base58, so string
order matches numeric order. Task ids put a millisecond timestamp in the
high 48 bits, which makes ``TASK#<id>`` sort keys follow creation order.
"""

from __future__ import annotations

import secrets
import time

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
ID_LENGTH = 22
TAIL_BITS = 80

_last_ms = -1
_last_tail = 0


def _encode(value: int) -> str:
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 58)
        digits.append(ALPHABET[rem])
    return "".join(reversed(digits)).rjust(ID_LENGTH, ALPHABET[0])


def new_board_id() -> str:
    return _encode(secrets.randbits(128))


def new_task_id() -> str:
    """Strictly increasing within a process.

    A second id in the same millisecond, or after the clock steps back, reuses
    the previous timestamp and bumps the random tail by one.
    """
    global _last_ms, _last_tail
    now_ms = int(time.time() * 1000)
    if now_ms > _last_ms:
        # Top tail bit stays clear so increments never carry into the timestamp.
        _last_ms, _last_tail = now_ms, secrets.randbits(TAIL_BITS - 1)
    else:
        _last_tail += 1
    return _encode((_last_ms << TAIL_BITS) | _last_tail)
