# roomsync/util/ids.py
from __future__ import annotations

import random
import string
import threading

# No 0/O or 1/I: codes are read aloud and typed by hand.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6

# Ordered by ASCII so generated keys sort lexicographically by creation time.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_rng = random.SystemRandom()


def gen_room_code(n: int = ROOM_CODE_LENGTH) -> str:
    return "".join(_rng.choice(ROOM_CODE_ALPHABET) for _ in range(n))


def is_valid_room_code(code: str) -> bool:
    return len(code) == ROOM_CODE_LENGTH and all(c in ROOM_CODE_ALPHABET for c in code)


def gen_player_id(game_id: str) -> str:
    """Random, unverified participant id, e.g. ``pacman_k3j9x0a2b``."""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(_rng.choice(alphabet) for _ in range(9))
    return f"{game_id}_{suffix}"


class PushKeyGenerator:
    """
    Generates 20-char keys that sort in creation order.

    8 chars encode the millisecond timestamp, 12 chars are random. Two keys
    minted in the same millisecond increment the random tail instead of
    re-rolling it, so ordering holds within a millisecond too.
    """

    def __init__(self) -> None:
        self._last_ts = -1
        self._last_rand = [0] * 12
        self._lock = threading.Lock()

    def next_key(self, ts_ms: int) -> str:
        with self._lock:
            same_ms = ts_ms == self._last_ts
            self._last_ts = ts_ms

            ts_chars = []
            t = ts_ms
            for _ in range(8):
                ts_chars.append(PUSH_CHARS[t % 64])
                t //= 64
            head = "".join(reversed(ts_chars))

            if not same_ms:
                self._last_rand = [_rng.randrange(64) for _ in range(12)]
            else:
                i = 11
                while i >= 0 and self._last_rand[i] == 63:
                    self._last_rand[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_rand[i] += 1

            return head + "".join(PUSH_CHARS[x] for x in self._last_rand)
