"""
Capture Clock
=============

Millisecond time source injected into the capture session.

A live clock reads wall time and remembers every stamp it handed out, so a
capture run can be saved and stamped identically later. A replaying clock
only hands back a recorded stamp sequence and never looks at wall time.

INVARIANTS:
- Live stamps never go backwards, even if wall time does
- Replay returns exactly the recorded stamps, in order, then raises
"""

from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Tuple
import json

from ..contracts.base import now_millis

TICK_LOG_VERSION = "1.0"


class ClockExhausted(Exception):
    """A replaying clock was asked for more stamps than were recorded."""
    pass


class LogicalClock:
    """Injectable stamp source with a live and a replaying mode."""

    def __init__(self, ticks: Iterable[int] = (), live: bool = True):
        self._ticks: List[int] = [int(t) for t in ticks]
        self._live = live
        self._position = len(self._ticks) if live else 0

    @classmethod
    def live(cls) -> 'LogicalClock':
        return cls(live=True)

    @classmethod
    def replaying(cls, ticks: Iterable[int]) -> 'LogicalClock':
        return cls(ticks, live=False)

    @classmethod
    def from_log(cls, path: Path) -> 'LogicalClock':
        """Replaying clock over the stamps saved by save_log()."""
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
        return cls.replaying(document['ticks'])

    def now(self) -> int:
        if self._live:
            stamp = now_millis()
            if self._ticks and stamp < self._ticks[-1]:
                stamp = self._ticks[-1]
            self._ticks.append(stamp)
            self._position = len(self._ticks)
            return stamp

        if self._position >= len(self._ticks):
            raise ClockExhausted(
                f"no recorded stamp left after {len(self._ticks)} ticks"
            )
        stamp = self._ticks[self._position]
        self._position += 1
        return stamp

    def is_live(self) -> bool:
        return self._live

    @property
    def tick_count(self) -> int:
        """Stamps handed out so far."""
        return self._position

    @property
    def ticks(self) -> Tuple[int, ...]:
        return tuple(self._ticks)

    def save_log(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            'version': TICK_LOG_VERSION,
            'live': self._live,
            'ticks': self._ticks,
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2)

    def __repr__(self) -> str:
        mode = "live" if self._live else "replaying"
        return f"LogicalClock({mode}, {self._position}/{len(self._ticks)})"
