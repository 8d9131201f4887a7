import hashlib
import secrets
import threading
import time
import uuid
from datetime import datetime, UTC

# Characters in ASCII order so that ids sort lexicographically by creation time.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def make_id(prefix: str) -> str:
    """Generate a unique ID with a given prefix."""
    return f"{prefix}_{uuid.uuid4()}"


def time_now() -> str:
    """Return the current time in ISO format (UTC, no microseconds)."""
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def hash_password(password: str, salt: str) -> str:
    """Hash a password with its per-user salt using SHA-256."""
    return hashlib.sha256(f"{salt}:{password}".encode()).hexdigest()


class PushIdGenerator:
    """
    Generates 20-character, chronologically ordered ids for pushed records.

    The first 8 characters encode the millisecond timestamp, the remaining 12
    are random. Two ids generated in the same millisecond reuse the random
    part incremented by one, so ordering holds inside a millisecond as well.
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._lock = threading.Lock()
        self._last_time = -1
        self._last_rand = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now = self._clock()
            if now == self._last_time:
                self._increment()
            else:
                self._last_rand = [secrets.randbelow(64) for _ in range(12)]
            self._last_time = now

            ts_chars = []
            for _ in range(8):
                ts_chars.append(PUSH_CHARS[now % 64])
                now //= 64
            return "".join(reversed(ts_chars)) + "".join(PUSH_CHARS[i] for i in self._last_rand)

    def _increment(self):
        for i in range(11, -1, -1):
            if self._last_rand[i] != 63:
                self._last_rand[i] += 1
                return
            self._last_rand[i] = 0


push_id = PushIdGenerator()
