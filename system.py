"""
CHIP-8 System Emulator
======================
Wires together:
  - the Chip8 interpreter core (chip8.py)
  - host peripherals (devices.py): timer clock, keypad, random source
  - a 60 Hz frame loop that batches instructions, ticks the delay and
    sound timers, delivers keypad snapshots and paces real time

The core never sleeps or touches the outside world; everything with a
wall clock lives here.
"""

from __future__ import annotations
import sys
import time
from typing import Callable, Optional

from chip8 import (
    Chip8, Quirks, StepResult, Status, Chip8Fault, HaltError,
    MAX_IMAGE, PROGRAM_START,
)
from devices import TimerClock, Keypad, RandomSource, TIMER_HZ

# Instructions per 60 Hz frame.  11 gives ~660 Hz, close to the
# speed most VIP-era programs were written against.
DEFAULT_CYCLES_PER_FRAME = 11


class Chip8System:
    """Complete CHIP-8 machine: interpreter core + host peripherals."""

    def __init__(self, cycles_per_frame: int = DEFAULT_CYCLES_PER_FRAME,
                 quirks: Optional[Quirks] = None,
                 seed: Optional[int] = None,
                 keymap: Optional[dict[str, int]] = None):
        if cycles_per_frame < 1:
            raise ValueError(f"cycles_per_frame must be >= 1, got {cycles_per_frame}")
        self.cycles_per_frame = cycles_per_frame

        self.rng = RandomSource(seed)
        self.clock = TimerClock(TIMER_HZ)
        self.keypad = Keypad(keymap)
        self.cpu = Chip8(quirks=quirks, rand=self.rng)

        self.image: bytes = b""
        self.frame_count: int = 0
        self.last_result: StepResult = StepResult(Status.RUNNING)

        # Callbacks
        self.on_halt: Optional[Callable[[Chip8Fault], None]] = None
        self.on_sound: Optional[Callable[[bool], None]] = None   # buzzer on/off edge
        self._sound_on = False

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_binary(self, data: bytes | bytearray) -> int:
        """Reset the machine with *data* as the program image.

        Returns the number of bytes actually loaded (images longer than
        the program area are truncated).
        """
        self.image = bytes(data[:MAX_IMAGE])
        self.boot()
        return len(self.image)

    def load_binary_file(self, path: str) -> int:
        """Load a ROM file from disk."""
        with open(path, "rb") as f:
            data = f.read()
        return self.load_binary(data)

    # -----------------------------------------------------------------
    #  Boot
    # -----------------------------------------------------------------

    def boot(self):
        """Cold boot: reset every device and reload the current image."""
        self.rng.reset()
        self.clock.reset()
        self.keypad.reset()
        self.cpu.reset(self.image)
        self.frame_count = 0
        self.last_result = StepResult(Status.RUNNING)
        self._set_sound(False)

    # -----------------------------------------------------------------
    #  Execution
    # -----------------------------------------------------------------

    def step(self, cycles: int = 1) -> StepResult:
        """Execute instructions without touching timers or keypad."""
        result = self.cpu.step(cycles)
        self._record(result)
        return result

    def run_frame(self) -> StepResult:
        """One 60 Hz frame: keypad snapshot, a batch of cycles, one timer tick."""
        cpu = self.cpu
        cpu.set_keypad(self.keypad.snapshot())
        result = cpu.step(self.cycles_per_frame)
        if not result.halted:
            cpu.tick_timers()
            self.frame_count += 1
        self._set_sound(cpu.sound_active)
        self._record(result)
        return result

    def run(self, max_frames: int = 1_000_000, realtime: bool = False,
            should_stop: Optional[Callable[[], bool]] = None) -> StepResult:
        """Run frames until a fault, *max_frames*, or *should_stop* returns True.

        With realtime=True, frames are paced against the wall clock; if
        the host falls behind, extra frames are run to catch up.
        """
        result = self.last_result
        frames = 0
        last = time.monotonic()
        while frames < max_frames:
            if should_stop is not None and should_stop():
                break
            if realtime:
                now = time.monotonic()
                due = self.clock.tick(now - last)
                last = now
                if due == 0:
                    time.sleep(self.clock.period / 4)
                    continue
            else:
                due = 1
            for _ in range(min(due, max_frames - frames)):
                result = self.run_frame()
                frames += 1
                if result.halted:
                    return result
        return result

    def run_until_halt(self, max_frames: int = 100_000) -> StepResult:
        """Run headless until a fault or *max_frames*; waits are not resolved."""
        if self.cpu.halted:
            raise HaltError(f"machine is halted: {self.cpu.fault.describe()}")
        return self.run(max_frames)

    def _record(self, result: StepResult):
        newly_halted = result.halted and not self.last_result.halted
        self.last_result = result
        if newly_halted:
            self._set_sound(False)
            if self.on_halt is not None:
                self.on_halt(result.fault)
            else:
                print(f"[chip8] halted: {result.fault.describe()}", file=sys.stderr)

    def _set_sound(self, on: bool):
        if on != self._sound_on:
            self._sound_on = on
            if self.on_sound is not None:
                self.on_sound(on)

    # -----------------------------------------------------------------
    #  State queries
    # -----------------------------------------------------------------

    @property
    def halted(self) -> bool:
        return self.cpu.halted

    @property
    def waiting(self) -> bool:
        return self.cpu.waiting

    @property
    def sound_on(self) -> bool:
        return self._sound_on

    def dump_state(self) -> str:
        """Full CPU + host state dump."""
        cpu = self.cpu
        lines = ["=== Registers ===", cpu.dump_regs()]
        stack = cpu.stack.entries()
        lines.append("=== Stack ===")
        if stack:
            for n, addr in enumerate(stack):
                lines.append(f"  [{n:2d}] {addr:#05x}")
        else:
            lines.append("  (empty)")
        lines.append("=== Host ===")
        pressed = [f"{k:X}" for k, down in enumerate(cpu.keypad) if down]
        lines.append(f"  Keys: {' '.join(pressed) or '-'}")
        lines.append(f"  Image: {len(self.image)} bytes at {PROGRAM_START:#05x}")
        lines.append(f"  Frames: {self.frame_count}  Cycles: {cpu.cycle_count}  "
                     f"CPF: {self.cycles_per_frame}")
        lines.append(f"  Status: {self.last_result.status.value}  "
                     f"Sound: {'on' if self._sound_on else 'off'}")
        return "\n".join(lines)
