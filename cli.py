#!/usr/bin/env python3
"""
CHIP-8 Monitor / CLI
====================
Command-line front end for the CHIP-8 system emulator.

Provides:
  - ROM loading and assembly (.asm sources are assembled on load)
  - Run / step / breakpoint execution
  - Register, stack and memory inspection / modification
  - Disassembly
  - Text rendering of the display, keypad poking, timer ticking
  - A pygame window (--display) for playing ROMs in real time

Usage:
  python cli.py ROM [--display] [--scale N] [--cpf N] [--seed N]
                    [--shift-vx] [--borrow-inverted] [--no-i-increment] [--clip]
  python cli.py ROM --run [--frames N]      # headless run, print screen
  python cli.py ROM --monitor               # interactive debug monitor
  python cli.py --assemble SRC OUT [--listing]
"""

from __future__ import annotations
import argparse
import cmd
import shlex
import sys
from typing import Optional

from chip8 import Quirks, MEM_SIZE, NUM_REGS, op_x, op_y, op_n, op_nn, op_nnn
from asm import assemble, AsmError
from system import Chip8System, DEFAULT_CYCLES_PER_FRAME
from display import render_text

# ---------------------------------------------------------------------------
#  Disassembler
# ---------------------------------------------------------------------------

ALU_NAMES = {
    0x0: "LD", 0x1: "OR", 0x2: "AND", 0x3: "XOR", 0x4: "ADD",
    0x5: "SUB", 0x6: "SHR", 0x7: "SUBN", 0xE: "SHL",
}

MISC_NAMES = {
    0x07: "LD V{x:X}, DT", 0x0A: "LD V{x:X}, K", 0x15: "LD DT, V{x:X}",
    0x18: "LD ST, V{x:X}", 0x1E: "ADD I, V{x:X}", 0x29: "LD F, V{x:X}",
    0x33: "LD B, V{x:X}", 0x55: "LD [I], V{x:X}", 0x65: "LD V{x:X}, [I]",
}


def disasm_one(word: int) -> str:
    """Disassemble one 16-bit instruction word.

    Words the interpreter would reject render as a '.dw' directive.
    """
    f = (word >> 12) & 0xF
    x, y, n, nn, nnn = op_x(word), op_y(word), op_n(word), op_nn(word), op_nnn(word)

    if f == 0x0:
        if n == 0x0:
            return "CLS"
        if n == 0xE:
            return "RET"
    elif f == 0x1:
        return f"JP {nnn:#05x}"
    elif f == 0x2:
        return f"CALL {nnn:#05x}"
    elif f == 0x3:
        return f"SE V{x:X}, {nn:#04x}"
    elif f == 0x4:
        return f"SNE V{x:X}, {nn:#04x}"
    elif f == 0x5:
        return f"SE V{x:X}, V{y:X}"
    elif f == 0x6:
        return f"LD V{x:X}, {nn:#04x}"
    elif f == 0x7:
        return f"ADD V{x:X}, {nn:#04x}"
    elif f == 0x8:
        if n in ALU_NAMES:
            return f"{ALU_NAMES[n]} V{x:X}, V{y:X}"
    elif f == 0x9:
        return f"SNE V{x:X}, V{y:X}"
    elif f == 0xA:
        return f"LD I, {nnn:#05x}"
    elif f == 0xB:
        return f"JP V0, {nnn:#05x}"
    elif f == 0xC:
        return f"RND V{x:X}, {nn:#04x}"
    elif f == 0xD:
        return f"DRW V{x:X}, V{y:X}, {n}"
    elif f == 0xE:
        if n == 0xE:
            return f"SKP V{x:X}"
        if n == 0x1:
            return f"SKNP V{x:X}"
    elif f == 0xF:
        # The interpreter keys on the bottom nibble (and bits 4-7 for ?5),
        # so FX?3 etc. decode even when bits 4-7 differ from the canonical form.
        canon = {0x7: 0x07, 0xA: 0x0A, 0x8: 0x18, 0xE: 0x1E, 0x9: 0x29, 0x3: 0x33}
        if n == 0x5:
            if y in (0x1, 0x5, 0x6):
                return MISC_NAMES[(y << 4) | 0x5].format(x=x)
        elif n in canon:
            return MISC_NAMES[canon[n]].format(x=x)
    return f".dw {word:#06x}"


def disasm_at(mem: bytes | bytearray, addr: int) -> tuple[int, str]:
    """Fetch the word at *addr* and disassemble it.  Returns (word, text)."""
    word = (mem[addr % MEM_SIZE] << 8) | mem[(addr + 1) % MEM_SIZE]
    return word, disasm_one(word)

# ---------------------------------------------------------------------------
#  Monitor
# ---------------------------------------------------------------------------

class Chip8CLI(cmd.Cmd):
    """Interactive monitor for the CHIP-8 system."""

    intro = (
        "\n"
        "CHIP-8 System Monitor\n"
        "  Type 'help' for commands.  'quit' to exit.\n"
    )
    prompt = "CHIP8> "

    def __init__(self, system: Chip8System, stdout=None):
        super().__init__(stdout=stdout)
        self.sys = system
        self.breakpoints: set[int] = set()

    def _print(self, text: str = ""):
        self.stdout.write(text + "\n")

    # -- Parsing helpers --

    def _parse_addr(self, s: str) -> int:
        """Parse an address (hex/decimal literal, 'pc' or 'i')."""
        s = s.strip().lower()
        if s == "pc":
            return self.sys.cpu.pc
        if s == "i":
            return self.sys.cpu.i
        return int(s, 0)

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except (ValueError, IndexError) as e:
            self._print(f"Error: {e}")
            return False

    # ================================================================
    #  Commands
    # ================================================================

    # -- Loading --

    def do_load(self, arg):
        """Load a ROM and reset: load <file>"""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: load <file>")
            return
        try:
            n = self.sys.load_binary_file(parts[0])
            self._print(f"Loaded {n} bytes from '{parts[0]}' at 0x200")
        except OSError as e:
            self._print(f"Error: {e}")

    def do_asm(self, arg):
        """Assemble source and load: asm <file.asm>
        Or inline:  asm -e "LD V0, 5; ADD V0, 1" """
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: asm <file.asm>  OR  asm -e \"code\"")
            return
        try:
            if parts[0] == "-e":
                source = parts[1].replace(";", "\n") if len(parts) > 1 else ""
            else:
                with open(parts[0], "r") as f:
                    source = f.read()
            code = assemble(source)
        except (OSError, AsmError) as e:
            self._print(f"Error: {e}")
            return
        self.sys.load_binary(code)
        self._print(f"Assembled and loaded {len(code)} bytes at 0x200")

    def do_reset(self, arg):
        """Reset the machine and reload the current image."""
        self.sys.boot()
        self._print("Reset.")

    # -- Execution --

    def do_step(self, arg):
        """Step N instructions: step [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        cpu = self.sys.cpu
        for _ in range(count):
            addr_before = cpu.pc
            word, text = disasm_at(cpu.mem, addr_before)
            result = self.sys.step()
            if result.executed:
                self._print(f"  {addr_before:#05x}: {word:04x}  {text}")
            if result.halted:
                self._print(f"Halted: {result.fault.describe()}")
                break
            if result.waiting:
                self._print(f"Waiting for key -> V{cpu.wait_reg:X}  (use 'key <k>')")
                break

    def do_run(self, arg):
        """Run N frames (default 600, ~10 s) or until halt/breakpoint: run [frames]"""
        frames = self._parse_int(arg) if arg.strip() else 600
        cpu = self.sys.cpu
        result = self.sys.last_result
        if self.breakpoints:
            # Single-step so breakpoints are honoured; timers are not ticked
            limit = frames * self.sys.cycles_per_frame
            for _ in range(limit):
                result = self.sys.step()
                if not result.running:
                    break
                if cpu.pc in self.breakpoints:
                    self._print(f"Breakpoint hit at {cpu.pc:#05x}")
                    return
        else:
            result = self.sys.run(frames)
        if result.halted:
            self._print(f"Halted: {result.fault.describe()}")
        elif result.waiting:
            self._print(f"Waiting for key -> V{cpu.wait_reg:X}  (use 'key <k>')")
        else:
            self._print(f"Stopped at {cpu.pc:#05x} after {self.sys.frame_count} frames.")

    def do_continue(self, arg):
        """Alias for 'run'."""
        self.do_run(arg)
    do_c = do_continue

    def do_tick(self, arg):
        """Tick the delay/sound timers N times: tick [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        for _ in range(count):
            self.sys.cpu.tick_timers()
        self._print(f"  DT={self.sys.cpu.delay_timer}  ST={self.sys.cpu.sound_timer}")

    # -- Breakpoints --

    def do_bp(self, arg):
        """Set breakpoint: bp <address>"""
        if not arg.strip():
            if self.breakpoints:
                self._print("Breakpoints:")
                for a in sorted(self.breakpoints):
                    self._print(f"  {a:#05x}")
            else:
                self._print("No breakpoints set.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.add(addr)
        self._print(f"Breakpoint set at {addr:#05x}")

    def do_bpd(self, arg):
        """Delete breakpoint: bpd <address|all>"""
        if arg.strip().lower() == "all":
            self.breakpoints.clear()
            self._print("All breakpoints cleared.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.discard(addr)
        self._print(f"Breakpoint at {addr:#05x} removed.")

    # -- Input --

    def do_key(self, arg):
        """Press or release a hex key: key <0-F> [up]"""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: key <0-F> [up]")
            return
        key = int(parts[0], 16)
        if not 0 <= key <= 0xF:
            self._print("Key must be 0-F.")
            return
        if len(parts) > 1 and parts[1].lower() == "up":
            self.sys.cpu.release_key(key)
            self._print(f"  key {key:X} released")
        else:
            self.sys.cpu.press_key(key)
            self._print(f"  key {key:X} pressed")

    # -- Inspection --

    def do_regs(self, arg):
        """Show CPU registers."""
        self._print(self.sys.cpu.dump_regs())
        self._print(f"  Cycles: {self.sys.cpu.cycle_count}")

    def do_stack(self, arg):
        """Show the call stack."""
        entries = self.sys.cpu.stack.entries()
        if not entries:
            self._print("  (empty)")
        for n, addr in enumerate(entries):
            self._print(f"  [{n:2d}] {addr:#05x}")

    def do_setreg(self, arg):
        """Set register: setreg <V0-VF|pc|i> <value>"""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._print("Usage: setreg <reg> <value>")
            return
        reg_s = parts[0].lower()
        val = self._parse_int(parts[1])
        cpu = self.sys.cpu
        if reg_s == "pc":
            cpu.pc = val & 0xFFFF
        elif reg_s == "i":
            cpu.i = val & 0xFFFF
        elif len(reg_s) == 2 and reg_s[0] == "v":
            idx = int(reg_s[1], 16)
            if not 0 <= idx < NUM_REGS:
                self._print("Register must be V0-VF.")
                return
            cpu.v[idx] = val & 0xFF
        else:
            self._print("Unknown register.")
            return
        self._print(f"  {reg_s.upper()} = {val:#x}")

    def do_dump(self, arg):
        """Hex dump memory: dump <address> [count]
        Count defaults to 64 bytes."""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: dump <address> [count]")
            return
        addr = self._parse_addr(parts[0])
        count = self._parse_int(parts[1]) if len(parts) > 1 else 64
        end = min(addr + count, MEM_SIZE)
        mem = self.sys.cpu.mem

        for row_start in range(addr, end, 16):
            hex_bytes = [f"{mem[a]:02x}" if a < end else "  "
                         for a in range(row_start, row_start + 16)]
            hex_str = ' '.join(hex_bytes[:8]) + '  ' + ' '.join(hex_bytes[8:])
            self._print(f"  {row_start:#05x}: {hex_str}")

    def do_setmem(self, arg):
        """Set memory bytes: setmem <address> <byte> [byte] ..."""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._print("Usage: setmem <addr> <byte...>")
            return
        addr = self._parse_addr(parts[0])
        data = bytes(self._parse_int(tok) & 0xFF for tok in parts[1:])
        self.sys.cpu.load_bytes(addr, data)
        self._print(f"  Wrote {len(data)} bytes at {addr:#05x}")

    def do_disasm(self, arg):
        """Disassemble: disasm [address] [count]
        Defaults to current PC, 16 instructions."""
        parts = shlex.split(arg)
        cpu = self.sys.cpu
        addr = self._parse_addr(parts[0]) if parts else cpu.pc
        count = self._parse_int(parts[1]) if len(parts) > 1 else 16

        for _ in range(count):
            if addr + 1 >= MEM_SIZE:
                break
            word, text = disasm_at(cpu.mem, addr)
            marker = ">>>" if addr == cpu.pc else "   "
            self._print(f"  {marker} {addr:#05x}: {word:04x}  {text}")
            addr += 2

    def do_screen(self, arg):
        """Print the display: screen [ascii]"""
        self._print(render_text(self.sys.cpu, ansi=arg.strip().lower() != "ascii"))

    def do_status(self, arg):
        """Show full system status."""
        self._print(self.sys.dump_state())

    def do_quit(self, arg):
        """Exit the monitor."""
        self._print("Goodbye.")
        return True
    do_exit = do_quit
    do_q = do_quit

    def do_EOF(self, arg):
        self._print()
        return self.do_quit(arg)

    def default(self, line):
        """Handle unknown commands gracefully."""
        self._print(f"Unknown command: {line.split()[0]!r}. Type 'help' for available commands.")

    def emptyline(self):
        """Don't repeat the last command on empty input."""
        pass

# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def quirks_from_args(args) -> Quirks:
    return Quirks(
        shift_uses_vy=not args.shift_vx,
        borrow_flag_on_no_borrow=not args.borrow_inverted,
        load_store_increments_i=not args.no_i_increment,
        clip_sprites=args.clip,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CHIP-8 interpreter and debug monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Keyboard layout (--display):\n"
               "  1 2 3 4      1 2 3 C\n"
               "  q w e r  ->  4 5 6 D\n"
               "  a s d f      7 8 9 E\n"
               "  z x c v      A 0 B F\n",
    )
    parser.add_argument("rom", nargs="?", default=None,
                        help="ROM image (raw bytes) or .asm source")
    parser.add_argument("--assemble", nargs=2, metavar=("SRC", "OUT"),
                        help="Assemble SRC.asm to OUT.ch8 and exit")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print assembly listing (with --assemble)")
    parser.add_argument("--run", action="store_true",
                        help="Run headless for --frames frames and print the screen")
    parser.add_argument("--frames", type=int, default=600,
                        help="Frames to run with --run (default: 600)")
    parser.add_argument("--monitor", action="store_true",
                        help="Enter the interactive debug monitor")
    parser.add_argument("--display", action="store_true",
                        help="Open a pygame window and run in real time")
    parser.add_argument("--scale", type=int, default=10, metavar="N",
                        help="Pixel scale factor for display window (default: 10)")
    parser.add_argument("--no-sound", action="store_true",
                        help="Disable the buzzer (with --display)")
    parser.add_argument("--cpf", type=int, default=DEFAULT_CYCLES_PER_FRAME, metavar="N",
                        help=f"Instructions per 60 Hz frame (default: {DEFAULT_CYCLES_PER_FRAME})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed the random source for reproducible runs")

    q = parser.add_argument_group("quirks")
    q.add_argument("--shift-vx", action="store_true",
                   help="8XY6/8XYE shift VX in place instead of VY")
    q.add_argument("--borrow-inverted", action="store_true",
                   help="8XY5/8XY7 set VF=1 on borrow instead of on no borrow")
    q.add_argument("--no-i-increment", action="store_true",
                   help="FX55/FX65 leave I unchanged")
    q.add_argument("--clip", action="store_true",
                   help="Clip sprites at the screen edge instead of wrapping")
    return parser


def load_rom(sys_emu: Chip8System, path: str) -> int:
    """Load a ROM file, assembling it first if it is a .asm source."""
    if path.endswith(".asm"):
        with open(path, "r") as f:
            source = f.read()
        return sys_emu.load_binary(assemble(source))
    return sys_emu.load_binary_file(path)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # ---- Assemble-only mode -------------------------------------------
    if args.assemble:
        src_path, out_path = args.assemble
        try:
            with open(src_path, "r") as f:
                source = f.read()
            code = assemble(source, listing=args.listing)
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            return 1
        with open(out_path, "wb") as f:
            f.write(code)
        print(f"Assembled {src_path} -> {out_path} ({len(code)} bytes)")
        return 0

    if args.cpf < 1:
        print("Error: --cpf must be at least 1", file=sys.stderr)
        return 2

    sys_emu = Chip8System(cycles_per_frame=args.cpf,
                          quirks=quirks_from_args(args), seed=args.seed)

    if args.rom:
        try:
            n = load_rom(sys_emu, args.rom)
        except OSError as e:
            print(f"Error opening ROM: {e}", file=sys.stderr)
            return 1
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            return 1
        print(f"Loaded {n} bytes from '{args.rom}'")
    elif not args.monitor:
        print("Error: a ROM is required unless --monitor or --assemble is given",
              file=sys.stderr)
        return 2

    # ---- Real-time window ---------------------------------------------
    if args.display:
        try:
            from display import FramebufferDisplay
            display = FramebufferDisplay(sys_emu, scale=args.scale,
                                         sound=not args.no_sound)
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame", file=sys.stderr)
            return 1
        display.start()
        if not display.running:
            print("[display] window failed to open", file=sys.stderr)
            display.stop()
            return 1
        try:
            result = sys_emu.run(realtime=True, should_stop=lambda: not display.running)
        except KeyboardInterrupt:
            result = sys_emu.last_result
        finally:
            display.stop()
        return 1 if result.halted else 0

    # ---- Headless run --------------------------------------------------
    if args.run:
        result = sys_emu.run(args.frames)
        print(render_text(sys_emu.cpu, ansi=sys.stdout.isatty()))
        if result.halted:
            return 1
        if not args.monitor:
            return 0

    cli = Chip8CLI(sys_emu)
    try:
        cli.cmdloop()
    except KeyboardInterrupt:
        print("\nInterrupted. Goodbye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
