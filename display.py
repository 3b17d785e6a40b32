"""
CHIP-8 Display
==============
Renders the interpreter's 64x32 display buffer in a pygame window and
turns keyboard events into keypad state.  Runs in a background thread
so it doesn't block the host frame loop.  The sound timer drives a
square-wave buzzer through pygame.mixer.

Also provides a headless display for tests (framebuffer snapshots) and
an ANSI text renderer for the debug monitor.

Usage (programmatic):
    from display import FramebufferDisplay
    disp = FramebufferDisplay(sys_emu)
    disp.start()       # launches background thread
    sys_emu.run(realtime=True, should_stop=lambda: not disp.running)
    disp.stop()        # clean shutdown

Usage (CLI):
    python cli.py game.ch8 --display --scale 10
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from chip8 import WIDTH, HEIGHT

if TYPE_CHECKING:
    from chip8 import Chip8
    from system import Chip8System

OFF_COLOR = (16, 24, 16)
ON_COLOR = (120, 240, 120)

BUZZER_HZ = 440
SAMPLE_RATE = 22050

# ANSI blocks for text rendering (two columns per pixel)
ANSI_PIXEL = ("\x1b[40m  \x1b[0m", "\x1b[47m  \x1b[0m")
ASCII_PIXEL = (" ", "#")


# ── Text rendering ────────────────────────────────────────────────────


def render_text(cpu: "Chip8", ansi: bool = True) -> str:
    """Render the display buffer as text, one line per pixel row."""
    cells = ANSI_PIXEL if ansi else ASCII_PIXEL
    rows = []
    for y in range(HEIGHT):
        rows.append("".join(cells[cpu.get_pixel(x, y)] for x in range(WIDTH)))
    return "\n".join(rows)


def framebuffer_rgb(fb: bytes, on=ON_COLOR, off=OFF_COLOR):
    """Convert a row-major 0/1 framebuffer into a (W, H, 3) uint8 array,
    the layout pygame.surfarray expects."""
    import numpy as np

    palette = np.array([off, on], dtype=np.uint8)
    pixels = np.frombuffer(fb, dtype=np.uint8).reshape(HEIGHT, WIDTH)
    return palette[pixels].transpose(1, 0, 2)


def square_wave(hz: int = BUZZER_HZ, rate: int = SAMPLE_RATE,
                volume: float = 0.25):
    """One period-aligned buffer of a 16-bit mono square wave."""
    import numpy as np

    period = max(2, rate // hz)
    samples = rate // 10 // period * period  # ~100 ms, whole periods
    t = np.arange(samples)
    amp = int(32767 * volume)
    return np.where((t % period) < period // 2, amp, -amp).astype(np.int16)


# ── pygame window ─────────────────────────────────────────────────────


class FramebufferDisplay:
    """Background-threaded pygame display for the CHIP-8 framebuffer."""

    def __init__(self, sys_emu: "Chip8System", scale: int = 10,
                 title: str = "CHIP-8", sound: bool = True):
        # Fail here, not on the display thread, when pygame is missing
        import pygame  # noqa: F401

        self.sys = sys_emu
        self.scale = max(1, scale)
        self.title = title
        self.sound = sound
        self.fps = 60
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._started = threading.Event()
        self._buzz = threading.Event()
        self._orig_on_sound = None

    # -- public API -------------------------------------------------------

    def start(self):
        """Start the display thread.  Returns once the window is open."""
        self._orig_on_sound = self.sys.on_sound
        orig = self._orig_on_sound

        def _tee_sound(on: bool):
            if on:
                self._buzz.set()
            else:
                self._buzz.clear()
            if orig is not None:
                orig(on)

        self.sys.on_sound = _tee_sound

        self._stop_event.clear()
        self._started.clear()
        self._thread = threading.Thread(target=self._run, daemon=True,
                                        name="chip8-display")
        self._thread.start()
        self._started.wait(timeout=5.0)

    def stop(self):
        """Signal the display thread to shut down and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3.0)
            self._thread = None
        self.sys.on_sound = self._orig_on_sound

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -- internals --------------------------------------------------------

    def _run(self):
        """Main display loop (runs in background thread)."""
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        screen = pygame.display.set_mode((WIDTH * self.scale, HEIGHT * self.scale))
        clock = pygame.time.Clock()
        fb_surface = pygame.Surface((WIDTH, HEIGHT))

        buzzer = self._open_buzzer(pygame) if self.sound else None
        playing = False
        last_draw = -1

        self._started.set()

        try:
            while not self._stop_event.is_set():
                for event in pygame.event.get():
                    if event.type == pygame.QUIT:
                        self._stop_event.set()
                        return
                    elif event.type == pygame.KEYDOWN:
                        if event.key == pygame.K_ESCAPE:
                            self._stop_event.set()
                            return
                        self.sys.keypad.press_named(pygame.key.name(event.key))
                    elif event.type == pygame.KEYUP:
                        self.sys.keypad.release_named(pygame.key.name(event.key))

                if buzzer is not None:
                    want = self._buzz.is_set()
                    if want and not playing:
                        buzzer.play(loops=-1)
                    elif playing and not want:
                        buzzer.stop()
                    playing = want

                cpu = self.sys.cpu
                if cpu.draw_count != last_draw:
                    last_draw = cpu.draw_count
                    pygame.surfarray.blit_array(
                        fb_surface, framebuffer_rgb(cpu.framebuffer_bytes()))
                    pygame.transform.scale(fb_surface, screen.get_size(), screen)
                    pygame.display.flip()

                clock.tick(self.fps)

        except Exception as e:
            print(f"\n[display] error: {e}")
        finally:
            pygame.quit()

    def _open_buzzer(self, pygame):
        try:
            pygame.mixer.init(frequency=SAMPLE_RATE, size=-16, channels=1)
            return pygame.sndarray.make_sound(square_wave())
        except pygame.error as e:
            print(f"[display] audio unavailable: {e}")
            return None


# ── Headless ──────────────────────────────────────────────────────────


class HeadlessDisplay:
    """No-op display for testing: records framebuffer snapshots."""

    def __init__(self, sys_emu: "Chip8System"):
        self.sys = sys_emu
        self.snapshots: list[bytes] = []
        self._last_draw = -1

    def start(self):
        pass

    def stop(self):
        pass

    def snapshot(self, only_changed: bool = False) -> bytes | None:
        """Capture the current framebuffer as raw 0/1 bytes.

        With only_changed=True, returns None when nothing was drawn
        since the last capture.
        """
        cpu = self.sys.cpu
        if only_changed and cpu.draw_count == self._last_draw:
            return None
        self._last_draw = cpu.draw_count
        data = cpu.framebuffer_bytes()
        self.snapshots.append(data)
        return data

    @property
    def running(self) -> bool:
        return False
