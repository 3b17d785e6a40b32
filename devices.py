"""
CHIP-8 Host Peripherals
=======================
Host-side devices that feed the interpreter core between instruction
batches.  None of these are visible to the CHIP-8 program directly; the
host loop (system.py) reads them and injects their state into the
machine:

  TimerClock   : converts elapsed wall-clock time into 60 Hz ticks
  Keypad       : thread-safe 16-key snapshot holder plus a keyboard map
  RandomSource : byte source for CXNN (seeded or os.urandom-backed)
"""

from __future__ import annotations
import os as _os
import random
import threading
from typing import Optional

TIMER_HZ = 60
NUM_KEYS = 16

# ---------------------------------------------------------------------------
#  Device base class
# ---------------------------------------------------------------------------

class Device:
    """Host peripheral with a reset hook and an optional clock."""

    def __init__(self, name: str):
        self.name = name

    def reset(self):
        pass

    def tick(self, seconds: float) -> int:
        """Advance the device by wall-clock time.  Returns events produced."""
        return 0


# ---------------------------------------------------------------------------
#  Timer clock
# ---------------------------------------------------------------------------

class TimerClock(Device):
    """Fixed-rate tick generator for the delay and sound timers.

    Accumulates elapsed time and reports how many whole ticks have
    passed, carrying the remainder so no time is lost between calls.
    """

    def __init__(self, hz: int = TIMER_HZ):
        super().__init__("TimerClock")
        if hz <= 0:
            raise ValueError(f"timer rate must be positive, got {hz}")
        self.hz = hz
        self.period = 1.0 / hz
        self._carry = 0.0
        self.total_ticks = 0

    def reset(self):
        self._carry = 0.0
        self.total_ticks = 0

    def tick(self, seconds: float) -> int:
        if seconds <= 0:
            return 0
        self._carry += seconds
        n = int(self._carry / self.period)
        self._carry -= n * self.period
        self.total_ticks += n
        return n


# ---------------------------------------------------------------------------
#  Keypad
# ---------------------------------------------------------------------------
# COSMAC VIP hex keypad      Default keyboard layout
#   1 2 3 C                    1 2 3 4
#   4 5 6 D                    q w e r
#   7 8 9 E                    a s d f
#   A 0 B F                    z x c v

DEFAULT_KEYMAP: dict[str, int] = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}


class Keypad(Device):
    """16-key pressed/released state, written by the UI thread and read
    by the host loop once per frame."""

    def __init__(self, keymap: Optional[dict[str, int]] = None):
        super().__init__("Keypad")
        self.keymap = dict(DEFAULT_KEYMAP if keymap is None else keymap)
        self._state = [False] * NUM_KEYS
        self._lock = threading.Lock()

    def reset(self):
        with self._lock:
            self._state = [False] * NUM_KEYS

    def press(self, key: int):
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"keypad has no key {key:#x}")
        with self._lock:
            self._state[key] = True

    def release(self, key: int):
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"keypad has no key {key:#x}")
        with self._lock:
            self._state[key] = False

    def key_for(self, name: str) -> Optional[int]:
        """Map a host key name (e.g. 'q') to a hex key, or None."""
        return self.keymap.get(name.lower())

    def press_named(self, name: str) -> bool:
        key = self.key_for(name)
        if key is None:
            return False
        self.press(key)
        return True

    def release_named(self, name: str) -> bool:
        key = self.key_for(name)
        if key is None:
            return False
        self.release(key)
        return True

    def snapshot(self) -> list[bool]:
        with self._lock:
            return list(self._state)

    def is_pressed(self, key: int) -> bool:
        with self._lock:
            return self._state[key]


# ---------------------------------------------------------------------------
#  Random byte source
# ---------------------------------------------------------------------------
# Unseeded sources draw from an os.urandom() pool; a seed switches to a
# deterministic random.Random stream for reproducible runs and tests.

class RandomSource(Device):
    """Byte source for the CXNN instruction."""

    POOL_SIZE = 64

    def __init__(self, seed: Optional[int] = None):
        super().__init__("Random")
        self.seed = seed
        self._rng: Optional[random.Random] = None
        self._pool = bytearray()
        self._pool_pos = 0
        self.reset()

    def reset(self):
        if self.seed is not None:
            self._rng = random.Random(self.seed)
        else:
            self._rng = None
            self._pool = bytearray(_os.urandom(self.POOL_SIZE))
            self._pool_pos = 0

    def next_byte(self) -> int:
        if self._rng is not None:
            return self._rng.randrange(256)
        if self._pool_pos >= len(self._pool):
            self._pool = bytearray(_os.urandom(self.POOL_SIZE))
            self._pool_pos = 0
        b = self._pool[self._pool_pos]
        self._pool_pos += 1
        return b

    __call__ = next_byte
