from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, List
import time


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_floats(text: str, count: int) -> List[float]:
    """Parse 'a,b,c,d' (commas or whitespace) into exactly `count` floats."""
    parts = [p for p in text.replace(",", " ").split() if p]
    if len(parts) != count:
        raise ValueError(f"expected {count} numbers, got {len(parts)}: {text!r}")
    return [float(p) for p in parts]


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes}m {seconds % 60:.0f}s"
    return f"{minutes // 60}h {minutes % 60}m"


@dataclass(slots=True)
class ProgressMeter:
    """
    Counts work items and reports a sliding-window rate.

    Usage:
        pm = ProgressMeter(every=500)
        for tile in tiles:
            ...
            if pm.tick():
                log.info("progress", extra={"extra": pm.snapshot()})
    """
    every: int = 500
    window: int = 200
    count: int = 0
    _stamps: Deque[float] = field(default_factory=deque)
    _t0: float = field(default_factory=time.perf_counter)

    def __post_init__(self) -> None:
        self._stamps = deque(maxlen=max(2, self.window))

    def tick(self) -> bool:
        """Record one item; True when a progress line is due."""
        self.count += 1
        self._stamps.append(time.perf_counter())
        return self.every > 0 and self.count % self.every == 0

    @property
    def rate(self) -> float:
        if len(self._stamps) < 2:
            return 0.0
        dt = self._stamps[-1] - self._stamps[0]
        return 0.0 if dt <= 0 else (len(self._stamps) - 1) / dt

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self._t0

    def snapshot(self) -> dict:
        return {"count": self.count, "rate_per_s": round(self.rate, 2), "elapsed_s": round(self.elapsed, 2)}
