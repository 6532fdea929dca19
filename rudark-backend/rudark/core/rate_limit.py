import time
from dataclasses import dataclass, field
from threading import Lock

from fastapi import Request


@dataclass
class _WindowState:
    timestamps: list[float] = field(default_factory=list)
    lock_until: float = 0.0


class _WindowedLimiter:
    def __init__(self, *, window_seconds: int):
        self.window_seconds = window_seconds
        self._states: dict[str, _WindowState] = {}
        self._lock = Lock()

    def clear(self) -> None:
        with self._lock:
            self._states.clear()

    def _state(self, key: str, now: float) -> _WindowState:
        state = self._states.setdefault(key, _WindowState())
        cutoff = now - self.window_seconds
        state.timestamps = [ts for ts in state.timestamps if ts >= cutoff]
        return state


class LoginRateLimiter(_WindowedLimiter):
    """Locks a key out after too many failed logins inside the window."""

    def __init__(self, *, max_attempts: int, window_seconds: int, lock_seconds: int):
        super().__init__(window_seconds=window_seconds)
        self.max_attempts = max_attempts
        self.lock_seconds = lock_seconds

    def check(self, key: str) -> int:
        """Returns retry-after seconds when blocked, otherwise 0."""
        now = time.time()
        with self._lock:
            if key not in self._states:
                return 0
            state = self._state(key, now)
            if state.lock_until > now:
                return int(state.lock_until - now) + 1
            return 0

    def register_failure(self, key: str) -> None:
        now = time.time()
        with self._lock:
            state = self._state(key, now)
            state.timestamps.append(now)
            if len(state.timestamps) >= self.max_attempts:
                state.lock_until = now + self.lock_seconds

    def register_success(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)


class SlidingWindowRateLimiter(_WindowedLimiter):
    def __init__(self, *, max_requests: int, window_seconds: int):
        super().__init__(window_seconds=window_seconds)
        self.max_requests = max_requests

    def check_and_consume(self, key: str) -> int:
        """
        Consume one request token for the key.
        Returns retry-after seconds when blocked, otherwise 0.
        """
        now = time.time()
        with self._lock:
            state = self._state(key, now)
            if len(state.timestamps) >= self.max_requests:
                oldest = min(state.timestamps)
                return max(int((oldest + self.window_seconds) - now) + 1, 1)
            state.timestamps.append(now)
            return 0


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
