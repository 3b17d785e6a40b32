"""
CHIP-8 Interpreter Core
=======================
An instruction-step interpreter for the CHIP-8 ISA: 4 KiB of memory,
sixteen 8-bit registers, a 16-bit address register, a 12-level call
stack, delay/sound timers, a 64x32 monochrome display and a hex keypad.

Every instruction is a big-endian 16-bit word.  The fetch/decode/execute
loop reads the word at PC, advances PC by 2 and dispatches through
layered tables keyed on the top nibble (then the bottom nibble, then
bits 4-7 for the FX5 group).  Handlers are plain functions taking
(machine, word).

The core does no I/O.  Timers, keypad and image loading are driven by
the host (system.py); faults are reported through StepResult instead of
aborting the process.
"""

from __future__ import annotations
import enum
import random
from dataclasses import dataclass
from typing import Callable, Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE      = 0x1000   # 4096 bytes
PROGRAM_START = 0x200
PROGRAM_END   = 0xFFF    # highest valid jump/call target
MAX_IMAGE     = PROGRAM_END - PROGRAM_START   # 3583 bytes

NUM_REGS      = 16
FLAG_REG      = 0xF
STACK_LEVELS  = 12
NUM_KEYS      = 16

WIDTH         = 64
HEIGHT        = 32

FONT_BASE     = 0x000
FONT_GLYPH    = 5        # bytes per digit sprite

FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Operand fields
# ---------------------------------------------------------------------------

def op_x(word: int) -> int:
    return (word >> 8) & 0xF

def op_y(word: int) -> int:
    return (word >> 4) & 0xF

def op_n(word: int) -> int:
    return word & 0xF

def op_nn(word: int) -> int:
    return word & 0xFF

def op_nnn(word: int) -> int:
    return word & 0xFFF

# ---------------------------------------------------------------------------
#  Faults
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for interpreter-generated errors."""
    pass


class Chip8Fault(Chip8Error):
    """Fatal machine fault.  Carries the instruction word and its PC."""

    kind = "fault"

    def __init__(self, message: str = "", word: Optional[int] = None,
                 pc: Optional[int] = None):
        self.word = word
        self.pc = pc
        super().__init__(message or self.kind)

    def describe(self) -> str:
        parts = [f"{self.kind}: {self.args[0]}"]
        if self.word is not None:
            parts.append(f"word={self.word:04x}")
        if self.pc is not None:
            parts.append(f"pc={self.pc:#05x}")
        return "  ".join(parts)


class InvalidInstruction(Chip8Fault):
    kind = "invalid instruction"


class StackOverflow(Chip8Fault):
    kind = "stack overflow"


class StackUnderflow(Chip8Fault):
    kind = "stack underflow"


class AddressFault(Chip8Fault):
    kind = "address fault"

    def __init__(self, address: int, message: str = "", **kw):
        self.address = address
        super().__init__(message or f"address {address:#06x} out of range", **kw)


class HaltError(Chip8Error):
    pass

# ---------------------------------------------------------------------------
#  Configuration
# ---------------------------------------------------------------------------

@dataclass
class Quirks:
    """Historically divergent opcode behaviours.

    Defaults: shift from VY, VF=1 on no borrow, I advances past the
    block, sprite pixels wrap.  The first three match the COSMAC VIP;
    the VIP clipped sprites, so set clip_sprites for VIP behaviour.
      - shift_uses_vy:            8XY6/8XYE shift VY into VX (False: shift VX)
      - borrow_flag_on_no_borrow: 8XY5/8XY7 set VF=1 when no borrow occurred
      - load_store_increments_i:  FX55/FX65 leave I pointing past the block
      - clip_sprites:             drop sprite pixels past the edge (False: wrap)
    """
    shift_uses_vy: bool = True
    borrow_flag_on_no_borrow: bool = True
    load_store_increments_i: bool = True
    clip_sprites: bool = False

# ---------------------------------------------------------------------------
#  Step outcome
# ---------------------------------------------------------------------------

class Status(enum.Enum):
    RUNNING = "running"
    WAITING = "waiting"   # FX0A is blocked on a key press
    HALTED  = "halted"


@dataclass
class StepResult:
    status: Status
    executed: int = 0
    fault: Optional[Chip8Fault] = None

    @property
    def running(self) -> bool:
        return self.status is Status.RUNNING

    @property
    def waiting(self) -> bool:
        return self.status is Status.WAITING

    @property
    def halted(self) -> bool:
        return self.status is Status.HALTED

# ---------------------------------------------------------------------------
#  Call stack
# ---------------------------------------------------------------------------

class CallStack:
    """Bounded LIFO of return addresses."""

    def __init__(self, levels: int = STACK_LEVELS):
        self.levels = levels
        self.slots: list[int] = [0] * levels
        self.sp: int = 0

    def reset(self):
        self.slots = [0] * self.levels
        self.sp = 0

    def push(self, address: int):
        if self.sp >= self.levels:
            raise StackOverflow(f"push of {address:#05x} onto full stack "
                                f"({self.levels} levels)")
        self.slots[self.sp] = address & 0xFFFF
        self.sp += 1

    def pop(self) -> int:
        if self.sp == 0:
            raise StackUnderflow("return with empty stack")
        self.sp -= 1
        return self.slots[self.sp]

    @property
    def depth(self) -> int:
        return self.sp

    def entries(self) -> list[int]:
        return self.slots[:self.sp]

    def __len__(self) -> int:
        return self.sp

# ---------------------------------------------------------------------------
#  Machine
# ---------------------------------------------------------------------------

RandomSource = Callable[[], int]


class Chip8:
    """CHIP-8 machine state plus the fetch/decode/execute loop."""

    def __init__(self, quirks: Optional[Quirks] = None,
                 rand: Optional[RandomSource] = None):
        self.quirks = quirks or Quirks()
        if rand is None:
            rng = random.Random()
            rand = lambda: rng.randrange(256)
        self.rand: RandomSource = rand

        self.mem = bytearray(MEM_SIZE)
        self.v: list[int] = [0] * NUM_REGS
        self.i: int = 0
        self.pc: int = PROGRAM_START
        self.stack = CallStack()

        self.delay_timer: int = 0
        self.sound_timer: int = 0

        self.display = bytearray(WIDTH * HEIGHT)
        self.keypad: list[bool] = [False] * NUM_KEYS

        # Register index blocked in FX0A, or None
        self.wait_reg: Optional[int] = None
        self.halted: bool = False
        self.fault: Optional[Chip8Fault] = None

        self.cycle_count: int = 0
        self.draw_count: int = 0   # bumped by CLS/DRW so renderers can skip idle frames

        self.reset()

    # -- Reset / loading --

    def reset(self, image: bytes | bytearray = b""):
        """Zero all state, seed the font table and load *image* at 0x200."""
        self.mem = bytearray(MEM_SIZE)
        self.v = [0] * NUM_REGS
        self.i = 0
        self.pc = PROGRAM_START
        self.stack.reset()
        self.delay_timer = 0
        self.sound_timer = 0
        self.display = bytearray(WIDTH * HEIGHT)
        self.keypad = [False] * NUM_KEYS
        self.wait_reg = None
        self.halted = False
        self.fault = None
        self.cycle_count = 0
        self.draw_count = 0

        self.mem[FONT_BASE:FONT_BASE + len(FONT)] = FONT
        self.load_image(image)

    def load_image(self, image: bytes | bytearray) -> int:
        """Copy a program image to 0x200; bytes past MAX_IMAGE are dropped."""
        data = bytes(image[:MAX_IMAGE])
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data
        return len(data)

    def load_bytes(self, addr: int, data: bytes | bytearray):
        """Write raw bytes into memory at the given address."""
        for n, b in enumerate(data):
            self.write8(addr + n, b)

    # -- Memory access --

    def read8(self, addr: int) -> int:
        if not 0 <= addr < MEM_SIZE:
            raise AddressFault(addr, f"read at {addr:#06x}")
        return self.mem[addr]

    def write8(self, addr: int, val: int):
        if not 0 <= addr < MEM_SIZE:
            raise AddressFault(addr, f"write at {addr:#06x}")
        self.mem[addr] = val & 0xFF

    def fetch16(self) -> int:
        """Fetch the big-endian word at PC and advance PC by 2."""
        hi = self.read8(self.pc)
        lo = self.read8(self.pc + 1)
        self.pc = (self.pc + 2) & 0xFFFF
        return (hi << 8) | lo

    def skip(self):
        self.pc = (self.pc + 2) & 0xFFFF

    # -- Display --

    def get_pixel(self, x: int, y: int) -> int:
        if not (0 <= x < WIDTH and 0 <= y < HEIGHT):
            raise ValueError(f"pixel ({x}, {y}) outside the {WIDTH}x{HEIGHT} display")
        return self.display[y * WIDTH + x]

    def clear_display(self):
        self.display = bytearray(WIDTH * HEIGHT)
        self.draw_count += 1

    def framebuffer_bytes(self) -> bytes:
        """Row-major copy of the display, one byte (0/1) per pixel."""
        return bytes(self.display)

    # -- Host-side inputs --

    def tick_timers(self):
        """One 60 Hz tick: decrement both timers, floor at zero."""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    @property
    def sound_active(self) -> bool:
        return self.sound_timer > 0

    @property
    def waiting(self) -> bool:
        return self.wait_reg is not None

    def set_keypad(self, snapshot):
        """Install a 16-entry pressed/released snapshot from the host.

        If FX0A is pending, the lowest key that went from released to
        pressed resolves it.
        """
        new = [bool(k) for k in snapshot]
        if len(new) != NUM_KEYS:
            raise ValueError(f"keypad snapshot needs {NUM_KEYS} entries, got {len(new)}")
        old = self.keypad
        self.keypad = new
        if self.wait_reg is not None:
            for k in range(NUM_KEYS):
                if new[k] and not old[k]:
                    self.press_key(k)
                    break

    def press_key(self, key: int):
        """Deliver a key press.  Resolves a pending FX0A wait."""
        key &= 0xF
        self.keypad[key] = True
        if self.wait_reg is not None:
            self.v[self.wait_reg] = key
            self.wait_reg = None

    def release_key(self, key: int):
        self.keypad[key & 0xF] = False

    # =====================================================================
    #  STEP: the core fetch/decode/execute loop
    # =====================================================================

    def step(self, cycles: int = 1) -> StepResult:
        """Execute up to *cycles* instructions back to back.

        Stops early when the machine halts on a fault or blocks in FX0A.
        """
        executed = 0
        for _ in range(cycles):
            if self.halted:
                return StepResult(Status.HALTED, executed, self.fault)
            if self.wait_reg is not None:
                return StepResult(Status.WAITING, executed)

            pc = self.pc
            word = None
            try:
                word = self.fetch16()
                execute(self, word)
            except Chip8Fault as e:
                if e.word is None:
                    e.word = word
                if e.pc is None:
                    e.pc = pc
                self.halted = True
                self.fault = e
                return StepResult(Status.HALTED, executed, e)
            executed += 1
            self.cycle_count += 1

        if self.halted:
            return StepResult(Status.HALTED, executed, self.fault)
        if self.wait_reg is not None:
            return StepResult(Status.WAITING, executed)
        return StepResult(Status.RUNNING, executed)

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{r:X}={self.v[r]:02x}" for r in range(row, row + 4)))
        lines.append(f"  PC={self.pc:#05x}  I={self.i:#06x}  SP={self.stack.sp}")
        lines.append(f"  DT={self.delay_timer}  ST={self.sound_timer}")
        if self.wait_reg is not None:
            lines.append(f"  waiting for key -> V{self.wait_reg:X}")
        if self.fault is not None:
            lines.append(f"  HALTED  {self.fault.describe()}")
        return "\n".join(lines)

# ---------------------------------------------------------------------------
#  Jump target validation
# ---------------------------------------------------------------------------

def _check_target(addr: int) -> int:
    if not PROGRAM_START <= addr <= PROGRAM_END:
        raise AddressFault(addr, f"jump target {addr:#05x} outside program space")
    return addr

# ---------------------------------------------------------------------------
#  Opcode handlers
# ---------------------------------------------------------------------------

# -- 0x0: CLS / RET --

def op_cls(m: Chip8, word: int):
    m.clear_display()

def op_ret(m: Chip8, word: int):
    m.pc = m.stack.pop()

# -- 0x1 / 0x2: JP / CALL --

def op_jp(m: Chip8, word: int):
    m.pc = _check_target(op_nnn(word))

def op_call(m: Chip8, word: int):
    target = _check_target(op_nnn(word))
    m.stack.push(m.pc)
    m.pc = target

# -- 0x3 .. 0x5, 0x9: conditional skips --

def op_se_imm(m: Chip8, word: int):
    if m.v[op_x(word)] == op_nn(word):
        m.skip()

def op_sne_imm(m: Chip8, word: int):
    if m.v[op_x(word)] != op_nn(word):
        m.skip()

def op_se_reg(m: Chip8, word: int):
    if m.v[op_x(word)] == m.v[op_y(word)]:
        m.skip()

def op_sne_reg(m: Chip8, word: int):
    if m.v[op_x(word)] != m.v[op_y(word)]:
        m.skip()

# -- 0x6 / 0x7: immediates --

def op_ld_imm(m: Chip8, word: int):
    m.v[op_x(word)] = op_nn(word)

def op_add_imm(m: Chip8, word: int):
    # No carry: VF is left alone
    x = op_x(word)
    m.v[x] = (m.v[x] + op_nn(word)) & 0xFF

# -- 0x8: register ALU --
# VX is written before VF so the flag wins when X == F.

def op_mov(m: Chip8, word: int):
    m.v[op_x(word)] = m.v[op_y(word)]

def op_or(m: Chip8, word: int):
    m.v[op_x(word)] |= m.v[op_y(word)]

def op_and(m: Chip8, word: int):
    m.v[op_x(word)] &= m.v[op_y(word)]

def op_xor(m: Chip8, word: int):
    m.v[op_x(word)] ^= m.v[op_y(word)]

def op_add(m: Chip8, word: int):
    x = op_x(word)
    total = m.v[x] + m.v[op_y(word)]
    m.v[x] = total & 0xFF
    m.v[FLAG_REG] = 1 if total > 0xFF else 0

def _sub(m: Chip8, x: int, minuend: int, subtrahend: int):
    no_borrow = minuend >= subtrahend
    m.v[x] = (minuend - subtrahend) & 0xFF
    if m.quirks.borrow_flag_on_no_borrow:
        m.v[FLAG_REG] = 1 if no_borrow else 0
    else:
        m.v[FLAG_REG] = 0 if no_borrow else 1

def op_sub(m: Chip8, word: int):
    x = op_x(word)
    _sub(m, x, m.v[x], m.v[op_y(word)])

def op_subn(m: Chip8, word: int):
    x = op_x(word)
    _sub(m, x, m.v[op_y(word)], m.v[x])

def _shift_source(m: Chip8, word: int) -> int:
    return m.v[op_y(word)] if m.quirks.shift_uses_vy else m.v[op_x(word)]

def op_shr(m: Chip8, word: int):
    src = _shift_source(m, word)
    m.v[op_x(word)] = src >> 1
    m.v[FLAG_REG] = src & 1

def op_shl(m: Chip8, word: int):
    src = _shift_source(m, word)
    m.v[op_x(word)] = (src << 1) & 0xFF
    m.v[FLAG_REG] = (src >> 7) & 1

# -- 0xA .. 0xC --

def op_ld_i(m: Chip8, word: int):
    m.i = op_nnn(word)

def op_jp_v0(m: Chip8, word: int):
    target = op_nnn(word) + m.v[0]
    if target > PROGRAM_END:
        raise AddressFault(target, f"jump target {target:#05x} past end of memory")
    m.pc = target

def op_rnd(m: Chip8, word: int):
    m.v[op_x(word)] = (m.rand() & 0xFF) & op_nn(word)

# -- 0xD: DRW --

def op_drw(m: Chip8, word: int):
    # The origin always wraps; the quirk only decides what happens to
    # pixels that run past the right or bottom edge.
    x0 = m.v[op_x(word)] % WIDTH
    y0 = m.v[op_y(word)] % HEIGHT
    rows = op_n(word)
    clip = m.quirks.clip_sprites

    m.v[FLAG_REG] = 0
    collided = False
    for r in range(rows):
        bits = m.read8(m.i + r)
        py = y0 + r
        if py >= HEIGHT:
            if clip:
                break
            py %= HEIGHT
        for b in range(8):
            if not bits & (0x80 >> b):
                continue
            px = x0 + b
            if px >= WIDTH:
                if clip:
                    break
                px %= WIDTH
            idx = py * WIDTH + px
            if m.display[idx]:
                collided = True
            m.display[idx] ^= 1
    if collided:
        m.v[FLAG_REG] = 1
    m.draw_count += 1

# -- 0xE: keypad skips --

def op_skp(m: Chip8, word: int):
    if m.keypad[m.v[op_x(word)] & 0xF]:
        m.skip()

def op_sknp(m: Chip8, word: int):
    if not m.keypad[m.v[op_x(word)] & 0xF]:
        m.skip()

# -- 0xF: timers, keypad wait, I arithmetic, memory blocks --

def op_ld_vx_dt(m: Chip8, word: int):
    m.v[op_x(word)] = m.delay_timer

def op_ld_vx_k(m: Chip8, word: int):
    m.wait_reg = op_x(word)

def op_ld_dt_vx(m: Chip8, word: int):
    m.delay_timer = m.v[op_x(word)]

def op_ld_st_vx(m: Chip8, word: int):
    m.sound_timer = m.v[op_x(word)]

def op_add_i(m: Chip8, word: int):
    m.i = (m.i + m.v[op_x(word)]) & 0xFFFF

def op_ld_f(m: Chip8, word: int):
    m.i = FONT_BASE + m.v[op_x(word)] * FONT_GLYPH

def op_ld_b(m: Chip8, word: int):
    val = m.v[op_x(word)]
    m.write8(m.i, val // 100)
    m.write8(m.i + 1, (val // 10) % 10)
    m.write8(m.i + 2, val % 10)

def op_store(m: Chip8, word: int):
    x = op_x(word)
    for r in range(x + 1):
        m.write8(m.i + r, m.v[r])
    if m.quirks.load_store_increments_i:
        m.i = (m.i + x + 1) & 0xFFFF

def op_load(m: Chip8, word: int):
    x = op_x(word)
    for r in range(x + 1):
        m.v[r] = m.read8(m.i + r)
    if m.quirks.load_store_increments_i:
        m.i = (m.i + x + 1) & 0xFFFF

# ---------------------------------------------------------------------------
#  Dispatch tables
# ---------------------------------------------------------------------------

Handler = Callable[[Chip8, int], None]

SYS_TABLE: dict[int, Handler] = {        # 0x00E?, keyed by bottom nibble
    0x0: op_cls,
    0xE: op_ret,
}

ALU_TABLE: dict[int, Handler] = {        # 0x8XY?, keyed by bottom nibble
    0x0: op_mov,
    0x1: op_or,
    0x2: op_and,
    0x3: op_xor,
    0x4: op_add,
    0x5: op_sub,
    0x6: op_shr,
    0x7: op_subn,
    0xE: op_shl,
}

KEY_TABLE: dict[int, Handler] = {        # 0xEX??, keyed by bottom nibble
    0xE: op_skp,
    0x1: op_sknp,
}

MEMBLOCK_TABLE: dict[int, Handler] = {   # 0xFX?5, keyed by bits 4-7
    0x1: op_ld_dt_vx,
    0x5: op_store,
    0x6: op_load,
}


def _sub_dispatch(table: dict[int, Handler], shift: int) -> Handler:
    def dispatch(m: Chip8, word: int):
        handler = table.get((word >> shift) & 0xF)
        if handler is None:
            raise InvalidInstruction(f"unknown instruction {word:04x}", word=word)
        handler(m, word)
    return dispatch


MISC_TABLE: dict[int, Handler] = {       # 0xFX??, keyed by bottom nibble
    0x7: op_ld_vx_dt,
    0xA: op_ld_vx_k,
    0x5: _sub_dispatch(MEMBLOCK_TABLE, 4),
    0x8: op_ld_st_vx,
    0xE: op_add_i,
    0x9: op_ld_f,
    0x3: op_ld_b,
}

PRIMARY_TABLE: dict[int, Handler] = {
    0x0: _sub_dispatch(SYS_TABLE, 0),
    0x1: op_jp,
    0x2: op_call,
    0x3: op_se_imm,
    0x4: op_sne_imm,
    0x5: op_se_reg,
    0x6: op_ld_imm,
    0x7: op_add_imm,
    0x8: _sub_dispatch(ALU_TABLE, 0),
    0x9: op_sne_reg,
    0xA: op_ld_i,
    0xB: op_jp_v0,
    0xC: op_rnd,
    0xD: op_drw,
    0xE: _sub_dispatch(KEY_TABLE, 0),
    0xF: _sub_dispatch(MISC_TABLE, 0),
}


def execute(m: Chip8, word: int):
    """Decode and run one already-fetched instruction word."""
    PRIMARY_TABLE[(word >> 12) & 0xF](m, word)
