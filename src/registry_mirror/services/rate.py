"""Transfer rate control.

A rate expression is "<count>/<duration>", e.g. "100/1m" (100 images per
minute) or "10/1s". An empty expression means unlimited. Durations use
the short form also accepted by --duration: "30s", "1m", "1h30m", "1.5h".

RateController is a token bucket with a burst size of 1: the first
admission is immediate, each following one waits until 1/rate seconds
have passed since the previous slot.
"""

import math
import re
import threading
import time
from typing import Callable

from registry_mirror.errors import AdmissionCancelled, RateExpressionError

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h30m" or "250ms" into seconds."""
    value = text.strip()
    if value in ("0", "+0", "-0"):
        return 0.0
    sign = 1.0
    if value[:1] in ("+", "-"):
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if not value:
        raise RateExpressionError(f"invalid duration '{text}'")

    total = 0.0
    pos = 0
    while pos < len(value):
        match = _DURATION_PART.match(value, pos)
        if not match:
            raise RateExpressionError(f"invalid duration '{text}'")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def parse_rate(expression: str) -> float:
    """Parse "<count>/<duration>" into operations per second.

    Returns math.inf for an empty expression.
    """
    if not expression:
        return math.inf
    parts = expression.split("/")
    if len(parts) != 2:
        raise RateExpressionError(f"unable to parse rate '{expression}'")
    try:
        count = int(parts[0])
    except ValueError:
        raise RateExpressionError(f"invalid count '{parts[0]}' in rate '{expression}'")
    seconds = parse_duration(parts[1])
    if count <= 0 or seconds <= 0:
        raise RateExpressionError(f"rate '{expression}' must be positive")
    return count / seconds


class RateController:
    def __init__(
        self,
        rate: float = math.inf,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self.rate = rate
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = 1.0
        self._last = clock()

    @classmethod
    def from_expression(cls, expression: str, **kwargs) -> "RateController":
        return cls(parse_rate(expression), **kwargs)

    @property
    def unlimited(self) -> bool:
        return math.isinf(self.rate)

    def admit(self, cancel: threading.Event | None = None) -> None:
        """Block until the next slot is available.

        Raises AdmissionCancelled if ``cancel`` is set before or while waiting.
        """
        if cancel is not None and cancel.is_set():
            raise AdmissionCancelled("rate controller wait aborted")
        if self.unlimited:
            return

        delay = self._reserve()
        if delay <= 0:
            return
        if self._sleep is not None:
            self._sleep(delay)
            cancelled = cancel is not None and cancel.is_set()
        elif cancel is not None:
            cancelled = cancel.wait(delay)
        else:
            time.sleep(delay)
            cancelled = False
        if cancelled:
            raise AdmissionCancelled("rate controller wait aborted")

    def _reserve(self) -> float:
        # Takes one token, possibly going negative; returns how long to wait.
        with self._lock:
            now = self._clock()
            self._tokens = min(1.0, self._tokens + (now - self._last) * self.rate)
            self._last = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate
