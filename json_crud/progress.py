from __future__ import annotations
from typing import Any, Callable, Dict, Optional

ProgressCallback = Callable[[Dict[str, Any]], None]


class Progress:
    """
    Emits {"phase", "pct", "msg"} events to an optional callback.
    step() reports a fan-out of `total` items, at most every 5%.
    """
    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._cb = callback

    def emit(self, phase: str, pct: float, msg: str = "") -> None:
        if self._cb is None:
            return
        self._cb({"phase": phase, "pct": max(0, min(100, int(pct))), "msg": msg})

    def step(self, phase: str, done: int, total: int) -> None:
        if self._cb is None:
            return
        if total <= 0:
            self.emit(phase, 100)
            return
        pct = done * 100 // total
        prev = (done - 1) * 100 // total
        if done in (0, total) or pct // 5 != prev // 5:
            self.emit(phase, pct, f"{done}/{total}")
