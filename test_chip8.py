"""
CHIP-8 Interpreter Test Suite
=============================
Covers reset, the call stack, the dispatcher and every instruction
family, including the quirk toggles and fault reporting.
"""

import unittest

from chip8 import (
    Chip8, Quirks, CallStack, Status, execute,
    InvalidInstruction, StackOverflow, StackUnderflow, AddressFault,
    FONT, MAX_IMAGE, PROGRAM_START, WIDTH, HEIGHT,
)
from asm import assemble


def run_asm(source: str, steps: int = None, quirks: Quirks = None,
            rand=None) -> Chip8:
    """Assemble, reset with the image and execute *steps* instructions
    (default: one per emitted word)."""
    code = assemble(source)
    cpu = Chip8(quirks=quirks, rand=rand)
    cpu.reset(code)
    cpu.step(steps if steps is not None else len(code) // 2)
    return cpu


def machine(quirks: Quirks = None) -> Chip8:
    cpu = Chip8(quirks=quirks)
    cpu.reset()
    return cpu


def lit(cpu: Chip8) -> set:
    return {(x, y) for y in range(HEIGHT) for x in range(WIDTH) if cpu.get_pixel(x, y)}

# =========================================================================
#  Reset and loading
# =========================================================================

class TestReset(unittest.TestCase):
    def test_font_table_seeded(self):
        cpu = machine()
        self.assertEqual(bytes(cpu.mem[0:80]), FONT)
        self.assertEqual(cpu.mem[0:5], bytearray([0xF0, 0x90, 0x90, 0x90, 0xF0]))
        self.assertEqual(cpu.mem[75:80], bytearray([0xF0, 0x80, 0xF0, 0x80, 0x80]))

    def test_initial_state(self):
        cpu = machine()
        self.assertEqual(cpu.pc, 0x200)
        self.assertEqual(cpu.i, 0)
        self.assertEqual(cpu.v, [0] * 16)
        self.assertEqual(cpu.stack.depth, 0)
        self.assertEqual((cpu.delay_timer, cpu.sound_timer), (0, 0))
        self.assertEqual(cpu.keypad, [False] * 16)
        self.assertFalse(cpu.halted)
        self.assertFalse(cpu.waiting)

    def test_default_quirks(self):
        q = machine().quirks
        self.assertTrue(q.shift_uses_vy)
        self.assertTrue(q.borrow_flag_on_no_borrow)
        self.assertTrue(q.load_store_increments_i)
        self.assertFalse(q.clip_sprites)

    def test_load_immediate_program(self):
        cpu = Chip8()
        cpu.reset(bytes([0x60, 0x05]))
        result = cpu.step()
        self.assertEqual(result.status, Status.RUNNING)
        self.assertEqual(result.executed, 1)
        self.assertEqual(cpu.v[0], 5)
        self.assertEqual(cpu.pc, 0x202)

    def test_oversized_image_truncated(self):
        image = bytes((n % 251) + 1 for n in range(4000))
        cpu = Chip8()
        self.assertEqual(cpu.load_image(image), MAX_IMAGE)
        cpu.reset(image)
        self.assertEqual(cpu.mem[PROGRAM_START + MAX_IMAGE - 1], image[MAX_IMAGE - 1])
        self.assertEqual(cpu.mem[0xFFF], 0)

    def test_reset_clears_previous_run(self):
        cpu = run_asm("LD V3, 9\nLD I, 0x123\nCALL 0x208\n.org 0x208\nCLS")
        cpu.delay_timer = 4
        cpu.reset()
        self.assertEqual(cpu.v[3], 0)
        self.assertEqual(cpu.i, 0)
        self.assertEqual(cpu.stack.depth, 0)
        self.assertEqual(cpu.delay_timer, 0)
        self.assertEqual(cpu.mem[0x200], 0)

# =========================================================================
#  Call stack
# =========================================================================

class TestCallStack(unittest.TestCase):
    def test_push_pop_lifo(self):
        s = CallStack()
        s.push(0x202)
        s.push(0x304)
        self.assertEqual(s.entries(), [0x202, 0x304])
        self.assertEqual(s.pop(), 0x304)
        self.assertEqual(s.pop(), 0x202)
        self.assertEqual(len(s), 0)

    def test_twelve_levels_then_overflow(self):
        s = CallStack()
        for n in range(12):
            s.push(0x200 + 2 * n)
        self.assertEqual(s.depth, 12)
        with self.assertRaises(StackOverflow):
            s.push(0x300)

    def test_underflow(self):
        s = CallStack()
        s.push(0x200)
        s.pop()
        with self.assertRaises(StackUnderflow):
            s.pop()

    def test_reset(self):
        s = CallStack()
        s.push(0x200)
        s.reset()
        self.assertEqual(s.depth, 0)

    def test_runaway_recursion_halts(self):
        cpu = Chip8()
        cpu.reset(assemble("CALL 0x200"))
        result = cpu.step(20)
        self.assertTrue(result.halted)
        self.assertEqual(result.executed, 12)
        self.assertIsInstance(result.fault, StackOverflow)
        self.assertEqual(result.fault.word, 0x2200)
        self.assertEqual(result.fault.pc, 0x200)

    def test_return_on_empty_stack_halts(self):
        cpu = run_asm("RET")
        self.assertTrue(cpu.halted)
        self.assertIsInstance(cpu.fault, StackUnderflow)

# =========================================================================
#  Dispatcher
# =========================================================================

class TestDispatch(unittest.TestCase):
    def _halts_on(self, word: int):
        cpu = Chip8()
        cpu.reset(bytes([word >> 8, word & 0xFF]))
        result = cpu.step()
        self.assertTrue(result.halted, f"{word:04x} should be invalid")
        self.assertIsInstance(result.fault, InvalidInstruction)
        self.assertEqual(result.fault.word, word)
        self.assertEqual(result.fault.pc, 0x200)
        return cpu

    def test_invalid_family0(self):
        self._halts_on(0x0123)
        self._halts_on(0x00E5)

    def test_invalid_alu(self):
        for n in (0x8, 0x9, 0xA, 0xB, 0xC, 0xD, 0xF):
            self._halts_on(0x8120 | n)

    def test_invalid_key_family(self):
        self._halts_on(0xE19F)
        self._halts_on(0xE1A2)

    def test_invalid_misc_family(self):
        self._halts_on(0xF0FF)
        self._halts_on(0xF000)

    def test_invalid_memblock_subfamily(self):
        self._halts_on(0xF025)
        self._halts_on(0xF075)

    def test_halted_machine_stays_halted(self):
        cpu = self._halts_on(0x0001)
        pc = cpu.pc
        again = cpu.step(5)
        self.assertTrue(again.halted)
        self.assertEqual(again.executed, 0)
        self.assertIs(again.fault, cpu.fault)
        self.assertEqual(cpu.pc, pc)

    def test_batch_stops_at_fault(self):
        cpu = Chip8()
        cpu.reset(assemble("LD V0, 1\nLD V1, 2\nSYS 0x0FF\nLD V2, 3"))
        result = cpu.step(10)
        self.assertTrue(result.halted)
        self.assertEqual(result.executed, 2)
        self.assertEqual(cpu.v[2], 0)
        self.assertEqual(cpu.cycle_count, 2)

    def test_batch_runs_requested_cycles(self):
        cpu = Chip8()
        cpu.reset(assemble("loop:\nADD V0, 1\nJP loop"))
        result = cpu.step(10)
        self.assertTrue(result.running)
        self.assertEqual(result.executed, 10)
        self.assertEqual(cpu.v[0], 5)

    def test_fetch_past_end_of_memory(self):
        cpu = run_asm("JP 0xFFF", steps=2)
        self.assertTrue(cpu.halted)
        self.assertIsInstance(cpu.fault, AddressFault)
        self.assertEqual(cpu.fault.pc, 0xFFF)

# =========================================================================
#  Control flow
# =========================================================================

class TestControlFlow(unittest.TestCase):
    def test_jump(self):
        cpu = run_asm("JP 0x234", steps=1)
        self.assertEqual(cpu.pc, 0x234)

    def test_jump_below_program_space_faults(self):
        cpu = run_asm("JP 0x100", steps=1)
        self.assertTrue(cpu.halted)
        self.assertIsInstance(cpu.fault, AddressFault)
        self.assertEqual(cpu.fault.address, 0x100)
        self.assertEqual(cpu.fault.word, 0x1100)

    def test_call_and_return(self):
        cpu = run_asm("""
            CALL sub
            LD V1, 2
        sub:
            LD V0, 1
            RET
        """, steps=2)
        self.assertEqual(cpu.pc, 0x206)
        self.assertEqual(cpu.stack.entries(), [0x202])
        cpu.step(3)
        self.assertEqual(cpu.v[0], 1)
        self.assertEqual(cpu.v[1], 2)
        self.assertEqual(cpu.stack.depth, 0)

    def test_call_validates_target(self):
        cpu = run_asm("CALL 0x050", steps=1)
        self.assertIsInstance(cpu.fault, AddressFault)
        self.assertEqual(cpu.stack.depth, 0)

    def test_jump_with_offset(self):
        cpu = run_asm("LD V0, 0x10\nJP V0, 0x300")
        self.assertEqual(cpu.pc, 0x310)

    def test_jump_with_offset_past_memory_faults(self):
        cpu = run_asm("LD V0, 0xFF\nJP V0, 0xFFF")
        self.assertIsInstance(cpu.fault, AddressFault)
        self.assertEqual(cpu.fault.address, 0xFFF + 0xFF)

    def test_skip_equal_immediate(self):
        cpu = run_asm("LD V4, 7\nSE V4, 7", steps=2)
        self.assertEqual(cpu.pc, 0x206)
        cpu = run_asm("LD V4, 7\nSE V4, 8", steps=2)
        self.assertEqual(cpu.pc, 0x204)

    def test_skip_not_equal_immediate(self):
        cpu = run_asm("LD V4, 7\nSNE V4, 8", steps=2)
        self.assertEqual(cpu.pc, 0x206)
        cpu = run_asm("LD V4, 7\nSNE V4, 7", steps=2)
        self.assertEqual(cpu.pc, 0x204)

    def test_skip_registers_equal(self):
        cpu = run_asm("LD V1, 3\nLD V2, 3\nSE V1, V2", steps=3)
        self.assertEqual(cpu.pc, 0x208)
        cpu = run_asm("LD V1, 3\nLD V2, 4\nSE V1, V2", steps=3)
        self.assertEqual(cpu.pc, 0x206)

    def test_skip_registers_not_equal(self):
        cpu = run_asm("LD V1, 3\nLD V2, 4\nSNE V1, V2", steps=3)
        self.assertEqual(cpu.pc, 0x208)
        cpu = run_asm("LD V1, 3\nLD V2, 3\nSNE V1, V2", steps=3)
        self.assertEqual(cpu.pc, 0x206)

# =========================================================================
#  Immediates and register ALU
# =========================================================================

class TestArithmetic(unittest.TestCase):
    def test_add_immediate_wraps_without_flag(self):
        cpu = run_asm("LD VF, 7\nLD V0, 0xFF\nADD V0, 2")
        self.assertEqual(cpu.v[0], 1)
        self.assertEqual(cpu.v[0xF], 7)

    def test_logic_ops(self):
        cpu = run_asm("""
            LD V0, 0b1100
            LD V1, 0b1010
            LD V2, 0b1100
            LD V3, 0b1100
            LD V4, 0
            OR V0, V1
            AND V2, V1
            XOR V3, V1
            LD V4, V1
        """)
        self.assertEqual(cpu.v[0], 0b1110)
        self.assertEqual(cpu.v[2], 0b1000)
        self.assertEqual(cpu.v[3], 0b0110)
        self.assertEqual(cpu.v[4], 0b1010)

    def test_add_with_carry_all_pairs(self):
        cpu = machine()
        for a in range(256):
            for b in range(256):
                cpu.v[0], cpu.v[1] = a, b
                execute(cpu, 0x8014)
                self.assertEqual(cpu.v[0], (a + b) & 0xFF)
                self.assertEqual(cpu.v[0xF], 1 if a + b > 255 else 0)

    def test_subtract_borrow_all_pairs(self):
        cpu = machine()
        for a in range(256):
            for b in range(256):
                cpu.v[0], cpu.v[1] = a, b
                execute(cpu, 0x8015)          # V0 = V0 - V1
                self.assertEqual(cpu.v[0], (a - b) & 0xFF)
                self.assertEqual(cpu.v[0xF], 0 if b > a else 1)

                cpu.v[0], cpu.v[1] = a, b
                execute(cpu, 0x8017)          # V0 = V1 - V0
                self.assertEqual(cpu.v[0], (b - a) & 0xFF)
                self.assertEqual(cpu.v[0xF], 0 if a > b else 1)

    def test_subtract_equal_operands_is_no_borrow(self):
        cpu = run_asm("LD V0, 9\nLD V1, 9\nSUB V0, V1")
        self.assertEqual(cpu.v[0], 0)
        self.assertEqual(cpu.v[0xF], 1)

    def test_inverted_borrow_polarity(self):
        q = Quirks(borrow_flag_on_no_borrow=False)
        cpu = run_asm("LD V0, 3\nLD V1, 5\nSUB V0, V1", quirks=q)
        self.assertEqual(cpu.v[0], 0xFE)
        self.assertEqual(cpu.v[0xF], 1)
        cpu = run_asm("LD V0, 3\nLD V1, 5\nSUBN V0, V1", quirks=q)
        self.assertEqual(cpu.v[0], 2)
        self.assertEqual(cpu.v[0xF], 0)

    def test_flag_wins_when_vf_is_destination(self):
        cpu = run_asm("LD VF, 0x80\nADD VF, VF")
        self.assertEqual(cpu.v[0xF], 1)
        cpu = run_asm("LD VF, 0x10\nLD V1, 0x01\nSUB VF, V1")
        self.assertEqual(cpu.v[0xF], 1)

    def test_shift_right_uses_vy(self):
        cpu = run_asm("LD V0, 0x40\nLD V1, 0x03\nSHR V0, V1")
        self.assertEqual(cpu.v[0], 0x01)
        self.assertEqual(cpu.v[1], 0x03)
        self.assertEqual(cpu.v[0xF], 1)

    def test_shift_left_uses_vy(self):
        cpu = run_asm("LD V0, 0x01\nLD V1, 0x81\nSHL V0, V1")
        self.assertEqual(cpu.v[0], 0x02)
        self.assertEqual(cpu.v[1], 0x81)
        self.assertEqual(cpu.v[0xF], 1)
        cpu = run_asm("LD V0, 0xFF\nLD V1, 0x41\nSHL V0, V1")
        self.assertEqual(cpu.v[0], 0x82)
        self.assertEqual(cpu.v[0xF], 0)

    def test_shift_flag_is_bit_shifted_out_of_source(self):
        cpu = machine()
        for src in range(256):
            cpu.v[2], cpu.v[3] = 0x55, src
            execute(cpu, 0x8236)
            self.assertEqual(cpu.v[0xF], src & 1)
            self.assertEqual(cpu.v[2], src >> 1)
            cpu.v[2], cpu.v[3] = 0x55, src
            execute(cpu, 0x823E)
            self.assertEqual(cpu.v[0xF], src >> 7)
            self.assertEqual(cpu.v[2], (src << 1) & 0xFF)

    def test_shift_vx_quirk(self):
        q = Quirks(shift_uses_vy=False)
        cpu = run_asm("LD V0, 0x04\nLD V1, 0x03\nSHR V0, V1", quirks=q)
        self.assertEqual(cpu.v[0], 0x02)
        self.assertEqual(cpu.v[0xF], 0)
        cpu = run_asm("LD V0, 0x80\nLD V1, 0x01\nSHL V0, V1", quirks=q)
        self.assertEqual(cpu.v[0], 0x00)
        self.assertEqual(cpu.v[0xF], 1)

    def test_random_is_masked(self):
        cpu = run_asm("RND V5, 0x0F", rand=lambda: 0xAB)
        self.assertEqual(cpu.v[5], 0x0B)
        cpu = run_asm("RND V5, 0x00", rand=lambda: 0xFF)
        self.assertEqual(cpu.v[5], 0)

# =========================================================================
#  Display
# =========================================================================

class TestDraw(unittest.TestCase):
    def test_draw_digit_sprite(self):
        cpu = run_asm("LD V0, 1\nLD F, V0\nLD V1, 3\nLD V2, 4\nDRW V1, V2, 5")
        # "1" is 20 60 20 20 70
        self.assertEqual(cpu.i, 5)
        self.assertEqual(cpu.v[0xF], 0)
        self.assertEqual(cpu.get_pixel(5, 4), 1)
        self.assertEqual(cpu.get_pixel(4, 5), 1)
        self.assertEqual(cpu.get_pixel(5, 5), 1)
        self.assertEqual(cpu.get_pixel(3, 4), 0)
        self.assertEqual({(x, 8) for x in (4, 5, 6)}, {p for p in lit(cpu) if p[1] == 8})

    def test_draw_twice_restores_and_reports_collision(self):
        cpu = run_asm("LD I, 0x00A\nLD V1, 20\nLD V2, 10\nDRW V1, V2, 5")
        first = lit(cpu)
        self.assertTrue(first)
        self.assertEqual(cpu.v[0xF], 0)
        cpu.pc = 0x206
        cpu.step()
        self.assertEqual(lit(cpu), set())
        self.assertEqual(cpu.v[0xF], 1)
        self.assertEqual(cpu.i, 0x00A)

    def test_no_collision_without_overlap(self):
        cpu = run_asm("""
            LD I, 0x000
            LD V1, 0
            LD V2, 0
            DRW V1, V2, 5
            LD V1, 8
            DRW V1, V2, 5
        """)
        self.assertEqual(cpu.v[0xF], 0)
        self.assertEqual(len(lit(cpu)), 28)

    def test_partial_overlap_sets_flag_and_xors(self):
        cpu = machine()
        cpu.mem[0x300] = 0b11000000
        cpu.mem[0x301] = 0b01100000
        cpu.i = 0x300
        cpu.v[1], cpu.v[2] = 0, 0
        execute(cpu, 0xD121)          # first byte only
        cpu.i = 0x301
        execute(cpu, 0xD121)
        self.assertEqual(cpu.v[0xF], 1)
        self.assertEqual(lit(cpu), {(0, 0), (2, 0)})

    def test_zero_height_draws_nothing(self):
        cpu = run_asm("LD VF, 1\nDRW V0, V0, 0")
        self.assertEqual(lit(cpu), set())
        self.assertEqual(cpu.v[0xF], 0)

    def test_sprite_wraps_at_right_edge(self):
        cpu = machine()
        cpu.mem[0x300] = 0xFF
        cpu.i = 0x300
        cpu.v[0], cpu.v[1] = 62, 5
        execute(cpu, 0xD011)
        self.assertEqual(lit(cpu), {(62, 5), (63, 5)} | {(x, 5) for x in range(6)})

    def test_sprite_wraps_at_bottom_edge(self):
        cpu = machine()
        cpu.mem[0x300:0x303] = bytes([0x80, 0x80, 0x80])
        cpu.i = 0x300
        cpu.v[0], cpu.v[1] = 10, 31
        execute(cpu, 0xD013)
        self.assertEqual(lit(cpu), {(10, 31), (10, 0), (10, 1)})

    def test_origin_wraps(self):
        cpu = machine()
        cpu.mem[0x300] = 0x80
        cpu.i = 0x300
        cpu.v[0], cpu.v[1] = 64 + 3, 32 + 2
        execute(cpu, 0xD011)
        self.assertEqual(lit(cpu), {(3, 2)})

    def test_clip_quirk(self):
        cpu = machine(Quirks(clip_sprites=True))
        cpu.mem[0x300:0x302] = bytes([0xFF, 0xFF])
        cpu.i = 0x300
        cpu.v[0], cpu.v[1] = 62, 31
        execute(cpu, 0xD012)
        self.assertEqual(lit(cpu), {(62, 31), (63, 31)})

    def test_sprite_read_past_memory_faults(self):
        cpu = Chip8()
        cpu.reset(assemble("LD I, 0xFFE\nDRW V0, V0, 4"))
        result = cpu.step(2)
        self.assertIsInstance(result.fault, AddressFault)

    def test_pixel_coordinates_checked(self):
        cpu = machine()
        self.assertEqual(cpu.get_pixel(WIDTH - 1, HEIGHT - 1), 0)
        for x, y in ((WIDTH, 0), (0, HEIGHT), (-1, 0), (0, -1)):
            with self.assertRaises(ValueError):
                cpu.get_pixel(x, y)

    def test_clear_display(self):
        cpu = run_asm("LD I, 0\nDRW V0, V0, 5\nCLS")
        self.assertEqual(lit(cpu), set())
        self.assertEqual(cpu.draw_count, 2)

# =========================================================================
#  Keypad
# =========================================================================

class TestKeypad(unittest.TestCase):
    def test_skip_if_pressed(self):
        cpu = machine()
        cpu.load_image(assemble("LD V3, 0xA\nSKP V3"))
        cpu.keypad[0xA] = True
        cpu.step(2)
        self.assertEqual(cpu.pc, 0x206)

    def test_skip_if_pressed_not_taken(self):
        cpu = run_asm("LD V3, 0xA\nSKP V3")
        self.assertEqual(cpu.pc, 0x204)

    def test_skip_if_not_pressed(self):
        cpu = run_asm("LD V3, 0x2\nSKNP V3")
        self.assertEqual(cpu.pc, 0x206)
        cpu = machine()
        cpu.load_image(assemble("LD V3, 0x2\nSKNP V3"))
        cpu.press_key(2)
        cpu.step(2)
        self.assertEqual(cpu.pc, 0x204)

    def test_wait_for_key_suspends(self):
        cpu = machine()
        cpu.load_image(assemble("LD V1, K\nLD V2, 7"))
        result = cpu.step(5)
        self.assertEqual(result.status, Status.WAITING)
        self.assertEqual(result.executed, 1)
        self.assertEqual(cpu.pc, 0x202)

        again = cpu.step(5)
        self.assertTrue(again.waiting)
        self.assertEqual(again.executed, 0)
        self.assertEqual(cpu.v[2], 0)

        cpu.press_key(0xB)
        self.assertFalse(cpu.waiting)
        self.assertEqual(cpu.v[1], 0xB)
        self.assertTrue(cpu.step().running)
        self.assertEqual(cpu.v[2], 7)

    def test_wait_resolved_by_snapshot_edge(self):
        cpu = machine()
        cpu.load_image(assemble("LD V4, K"))
        held = [False] * 16
        held[3] = True
        cpu.set_keypad(held)
        cpu.step()
        self.assertTrue(cpu.waiting)

        cpu.set_keypad(held)             # still only key 3 held
        self.assertTrue(cpu.waiting)

        both = list(held)
        both[9] = True
        cpu.set_keypad(both)
        self.assertFalse(cpu.waiting)
        self.assertEqual(cpu.v[4], 9)

    def test_snapshot_size_checked(self):
        with self.assertRaises(ValueError):
            machine().set_keypad([True] * 4)

# =========================================================================
#  Timers
# =========================================================================

class TestTimers(unittest.TestCase):
    def test_set_and_read_delay(self):
        cpu = run_asm("LD V0, 3\nLD DT, V0", steps=2)
        self.assertEqual(cpu.delay_timer, 3)
        cpu.tick_timers()
        cpu.load_bytes(0x204, assemble("LD V1, DT"))
        cpu.step()
        self.assertEqual(cpu.v[1], 2)

    def test_sound_timer(self):
        cpu = run_asm("LD V0, 2\nLD ST, V0")
        self.assertTrue(cpu.sound_active)
        cpu.tick_timers()
        cpu.tick_timers()
        self.assertFalse(cpu.sound_active)

    def test_timers_saturate_at_zero(self):
        cpu = machine()
        cpu.delay_timer = 1
        for _ in range(3):
            cpu.tick_timers()
        self.assertEqual(cpu.delay_timer, 0)
        self.assertEqual(cpu.sound_timer, 0)

# =========================================================================
#  Address register and memory blocks
# =========================================================================

class TestMemoryOps(unittest.TestCase):
    def test_add_to_address_register(self):
        cpu = run_asm("LD I, 0xFF0\nLD V0, 0x20\nADD I, V0")
        self.assertEqual(cpu.i, 0x1010)
        self.assertEqual(cpu.v[0xF], 0)

    def test_address_register_wraps_at_16_bits(self):
        cpu = machine()
        cpu.i = 0xFFFF
        cpu.v[0] = 2
        execute(cpu, 0xF01E)
        self.assertEqual(cpu.i, 1)

    def test_digit_sprite_address(self):
        for digit in range(16):
            cpu = machine()
            cpu.v[6] = digit
            execute(cpu, 0xF629)
            self.assertEqual(cpu.i, digit * 5)

    def test_store_bcd(self):
        cpu = run_asm("LD I, 0x300\nLD V0, 205\nLD B, V0")
        self.assertEqual(list(cpu.mem[0x300:0x303]), [2, 0, 5])
        self.assertEqual(cpu.i, 0x300)

    def test_store_bcd_edges(self):
        for val, digits in ((0, [0, 0, 0]), (9, [0, 0, 9]), (255, [2, 5, 5]), (100, [1, 0, 0])):
            cpu = machine()
            cpu.i = 0x400
            cpu.v[2] = val
            execute(cpu, 0xF233)
            self.assertEqual(list(cpu.mem[0x400:0x403]), digits)

    def test_store_registers(self):
        cpu = run_asm("""
            LD V0, 1
            LD V1, 2
            LD V2, 3
            LD V3, 4
            LD I, 0x300
            LD [I], V2
        """)
        self.assertEqual(list(cpu.mem[0x300:0x304]), [1, 2, 3, 0])
        self.assertEqual(cpu.i, 0x303)

    def test_load_registers(self):
        cpu = machine()
        cpu.mem[0x300:0x304] = bytes([9, 8, 7, 6])
        cpu.i = 0x300
        execute(cpu, 0xF265)
        self.assertEqual(cpu.v[:4], [9, 8, 7, 0])
        self.assertEqual(cpu.i, 0x303)

    def test_store_then_load_is_identity(self):
        cpu = machine()
        values = [(17 * r + 3) & 0xFF for r in range(16)]
        cpu.v = list(values)
        cpu.i = 0x500
        execute(cpu, 0xFF55)
        cpu.v = [0] * 16
        cpu.i = 0x500
        execute(cpu, 0xFF65)
        self.assertEqual(cpu.v, values)
        self.assertEqual(cpu.i, 0x510)

    def test_no_increment_quirk(self):
        cpu = machine(Quirks(load_store_increments_i=False))
        cpu.i = 0x300
        execute(cpu, 0xF355)
        self.assertEqual(cpu.i, 0x300)
        execute(cpu, 0xF365)
        self.assertEqual(cpu.i, 0x300)

    def test_store_past_memory_halts(self):
        cpu = Chip8()
        cpu.reset(assemble("LD I, 0xFFE\nLD [I], V3"))
        result = cpu.step(2)
        self.assertTrue(result.halted)
        self.assertIsInstance(result.fault, AddressFault)
        self.assertEqual(result.fault.address, 0x1000)
        self.assertEqual(result.fault.word, 0xF355)
        self.assertIn("address fault", result.fault.describe())


if __name__ == "__main__":
    unittest.main()
