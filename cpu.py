import enum
import logging
import random
from typing import Optional

from fonts import glyph_address, load_fonts, super_glyph_address
from framebuffer import Framebuffer
from opcodes import Opcode

logger = logging.getLogger('Chip8CPU')

MEMORY_SIZE = 4096
NUM_REGISTERS = 16
NUM_KEYS = 16
PROGRAM_OFFSET = 0x200
STACK_OFFSET = 0xEA0
# slot 0 is never written, the pointer is incremented before each push
STACK_CAPACITY = (MEMORY_SIZE - STACK_OFFSET) // 2 - 1
TIMER_PERIOD = 16
SUPER_TIMER_PERIOD = 8
EXTENDED_SPRITE_SIZE = 32


class Chip8Error(Exception):
    """Base for conditions that stop the machine."""
    pass


class ProgramTooLarge(Chip8Error):
    pass


class UnknownOpcode(Chip8Error):
    def __init__(self, opcode: Opcode, address: int):
        self.opcode = opcode
        self.address = address
        super().__init__(f"Unknown opcode {opcode} at {address:#05x}")


class MemoryOutOfBounds(Chip8Error):
    pass


class StackOverflow(Chip8Error):
    pass


class StackUnderflow(Chip8Error):
    pass


class CycleResult(enum.Enum):
    CONTINUE = "continue"
    HALT = "halt"
    EXIT = "exit"


class CPU:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng if rng is not None else random.Random()
        self.opcode = None
        self.memory = bytearray(MEMORY_SIZE)
        self.registers = bytearray(NUM_REGISTERS)
        self.I = 0
        self.pc = PROGRAM_OFFSET
        self.sp = 0
        self.framebuffer = Framebuffer()
        self.delay_timer = 0
        self.sound_timer = 0
        self.timer_counter = 0
        self.increment_index = False
        self.program_length = 0
        self.awaiting_key = None
        self.keys = (False,) * NUM_KEYS
        self.drawFlag = False
        self.error = None
        self.exit_requested = False

        load_fonts(self.memory)

        self.operations_table = {
            0x0: self.execute_zero,
            0x1: self.jump_to_addr,
            0x2: self.call_addr,
            0x3: self.skip_next_instruction_if_registers_and_val_equal,
            0x4: self.skip_next_instruction_if_registers_and_val_not_equal,
            0x5: self.skip_next_instruction_if_registers_equal,
            0x6: self.set_register_value,
            0x7: self.add_register_value,
            0x8: self.execute_logic_operations,
            0x9: self.skip_if_registers_neq,
            0xA: self.load_index_reg_with_value,
            0xB: self.jump_to_addr_plus_v0,
            0xC: self.set_random_register_and_kk,
            0xD: self.draw_sprite,
            0xE: self.execute_key_operations,
            0xF: self.execute_misc,
        }

        self.zero_table = {
            0x00E0: self.clear_display,
            0x00EE: self.return_from_subroutine,
            0x00FA: self.toggle_index_increment,
            0x00FB: self.scroll_right,
            0x00FC: self.scroll_left,
            0x00FD: self.exit_interpreter,
            0x00FE: self.disable_extended_mode,
            0x00FF: self.enable_extended_mode,
        }

        self.logic_operations_table = {
            0x0: self.set_register_to_register,
            0x1: self.or_registers,
            0x2: self.and_registers,
            0x3: self.xor_registers,
            0x4: self.add_registers,
            0x5: self.sub_registers,
            0x6: self.shift_right,
            0x7: self.subn_registers,
            0xE: self.shift_left
        }

        self.key_table = {
            0x9E: self.skip_if_key_pressed,
            0xA1: self.skip_if_key_not_pressed,
        }

        self.misc_table = {
            0x07: self.set_vx_to_delay_timer,
            0x0A: self.wait_for_keypress,
            0x15: self.set_delay_timer_to_register,
            0x18: self.set_sound_timer_to_register,
            0x1E: self.add_register_to_index,
            0x29: self.set_i_to_sprite_address,
            0x30: self.set_i_to_super_sprite_address,
            0x33: self.set_bcd_of_register,
            0x55: self.store_registers,
            0x65: self.load_registers
        }

    @property
    def extended_mode(self) -> bool:
        return self.framebuffer.extended

    @extended_mode.setter
    def extended_mode(self, value: bool):
        self.framebuffer.extended = value

    def load_program(self, program: bytes):
        """
        Copy a program into memory at 0x200 and reset the machine.

        Registers, timers, stack, index register, display and mode flags all
        return to their power-on state, so loading again is a full reset.
        """
        size = len(program)
        if PROGRAM_OFFSET + size >= STACK_OFFSET:
            raise ProgramTooLarge(
                f"Program of {size} bytes does not fit below the stack at {STACK_OFFSET:#05x}")

        self.memory[PROGRAM_OFFSET:STACK_OFFSET] = bytes(STACK_OFFSET - PROGRAM_OFFSET)
        self.memory[PROGRAM_OFFSET:PROGRAM_OFFSET + size] = program
        self.program_length = size
        self.registers = bytearray(NUM_REGISTERS)
        self.I = 0
        self.pc = PROGRAM_OFFSET
        self.sp = 0
        self.delay_timer = 0
        self.sound_timer = 0
        self.timer_counter = 0
        self.increment_index = False
        self.extended_mode = False
        self.framebuffer.clear()
        self.awaiting_key = None
        self.opcode = None
        self.drawFlag = False
        self.error = None
        self.exit_requested = False
        logger.info(f"Loaded program of {size} bytes")

    def cycle(self, keys=None) -> CycleResult:
        """
        Run one fetch/decode/execute step with the given keyboard snapshot.

        Faults are never raised from here: they are stored in self.error and
        reported as CycleResult.HALT. Running past the end of the program also
        halts, with self.error left as None.
        """
        self.keys = self._snapshot(keys)
        self.tick_timers()

        if not self.in_program():
            logger.debug(f"Program counter {self.pc:#05x} is outside the program, halting")
            return CycleResult.HALT

        if self.awaiting_key is not None:
            if any(self.keys):
                self.awaiting_key = None
                self.pc += 2
            return CycleResult.CONTINUE

        address = self.pc
        self.exit_requested = False
        try:
            self.opcode = self.fetch()
            self.execute_instruction()
        except Chip8Error as e:
            self.pc = address
            self.error = e
            logger.error(f"Halting at {address:#05x}: {e}")
            return CycleResult.HALT

        if self.exit_requested:
            return CycleResult.EXIT
        return CycleResult.CONTINUE

    def _snapshot(self, keys):
        if keys is None:
            return (False,) * NUM_KEYS
        if len(keys) != NUM_KEYS:
            raise ValueError(f"Keyboard snapshot must have {NUM_KEYS} entries, got {len(keys)}")
        return tuple(bool(k) for k in keys)

    def tick_timers(self):
        self.timer_counter += 1
        period = SUPER_TIMER_PERIOD if self.extended_mode else TIMER_PERIOD
        if self.timer_counter >= period:
            if self.delay_timer > 0:
                self.delay_timer -= 1
            if self.sound_timer > 0:
                self.sound_timer -= 1
            self.timer_counter = 0

    def in_program(self) -> bool:
        return PROGRAM_OFFSET <= self.pc < PROGRAM_OFFSET + self.program_length - 1

    def fetch(self) -> Opcode:
        return Opcode.decode(self.memory[self.pc], self.memory[self.pc + 1])

    def execute_instruction(self):
        logger.debug("Running opcode: %s at %#05x", self.opcode, self.pc)
        self.pc += 2
        self.operations_table[self.opcode.family]()

    def execute_zero(self):
        """
        Handles 00CN, 00E0, 00EE and 00FA-00FF. Any other 0NNN is a machine
        code call, which is ignored.
        """
        if self.opcode.x == 0x0 and self.opcode.y == 0xC:
            self.scroll_down()
        elif self.opcode.value in self.zero_table:
            self.zero_table[self.opcode.value]()

    def execute_logic_operations(self):
        operation = self.opcode.n
        if operation in self.logic_operations_table:
            self.logic_operations_table[operation]()
        else:
            self.not_implemented()

    def execute_key_operations(self):
        operation = self.opcode.nn
        if operation in self.key_table:
            self.key_table[operation]()
        else:
            self.not_implemented()

    def execute_misc(self):
        operation = self.opcode.nn
        if operation in self.misc_table:
            self.misc_table[operation]()
        else:
            self.not_implemented()

    def push(self, address: int):
        if self.sp >= STACK_CAPACITY:
            raise StackOverflow(f"Call stack full ({STACK_CAPACITY} entries)")
        self.sp += 1
        slot = STACK_OFFSET + self.sp * 2
        self.memory[slot:slot + 2] = address.to_bytes(2, "big")

    def pop(self) -> int:
        if self.sp == 0:
            raise StackUnderflow("Return with an empty call stack")
        slot = STACK_OFFSET + self.sp * 2
        self.sp -= 1
        return int.from_bytes(self.memory[slot:slot + 2], "big")

    def clear_display(self):
        """
        00E0 - CLS
        Clear the display.
        """
        self.framebuffer.clear()
        self.drawFlag = True

    def return_from_subroutine(self):
        """
        00EE - RET
        Return from a subroutine.

        The interpreter sets the program counter to the address at the top of the stack, then subtracts 1 from the stack pointer.
        """
        self.pc = self.pop()

    def scroll_down(self):
        self.framebuffer.scroll_down(self.opcode.n)
        self.drawFlag = True

    def toggle_index_increment(self):
        """
        00FA
        Toggle whether FX55 and FX65 advance the index register past the transferred bytes.
        """
        self.increment_index = not self.increment_index

    def scroll_right(self):
        self.framebuffer.scroll_right()
        self.drawFlag = True

    def scroll_left(self):
        self.framebuffer.scroll_left()
        self.drawFlag = True

    def exit_interpreter(self):
        """
        00FD - EXIT
        Nothing changes in the machine; the host decides what exiting means.
        """
        self.exit_requested = True

    def disable_extended_mode(self):
        self.extended_mode = False
        self.drawFlag = True

    def enable_extended_mode(self):
        self.extended_mode = True
        self.drawFlag = True

    def jump_to_addr(self):
        self.pc = self.opcode.nnn

    def call_addr(self):
        """
        Call subroutine at nnn.

        The interpreter increments the stack pointer, then puts the current PC on the top of the stack. The PC is then set to nnn.
        """
        self.push(self.pc)
        self.pc = self.opcode.nnn

    def skip_next_instruction_if_registers_and_val_equal(self):
        """
        Skip next instruction if Vx = kk.

        The interpreter compares register Vx to kk, and if they are equal, increments the program counter by 2.
        """
        if self.registers[self.opcode.x] == self.opcode.nn:
            self.pc += 2

    def skip_next_instruction_if_registers_and_val_not_equal(self):
        """
        Skip next instruction if Vx != kk.

        The interpreter compares register Vx to kk, and if they are not equal, increments the program counter by 2.
        """
        if self.registers[self.opcode.x] != self.opcode.nn:
            self.pc += 2

    def skip_next_instruction_if_registers_equal(self):
        """
        Skip next instruction if Vx == Vy.

        The interpreter compares register Vx to Vy, and if they are equal, increments the program counter by 2.
        """
        if self.opcode.n != 0x0:
            self.not_implemented()
        if self.registers[self.opcode.x] == self.registers[self.opcode.y]:
            self.pc += 2

    def set_register_value(self):
        self.registers[self.opcode.x] = self.opcode.nn

    def add_register_value(self):
        Vx = self.opcode.x
        self.registers[Vx] = (self.registers[Vx] + self.opcode.nn) & 0xFF

    def set_register_to_register(self):
        self.registers[self.opcode.x] = self.registers[self.opcode.y]

    def or_registers(self):
        self.registers[self.opcode.x] |= self.registers[self.opcode.y]

    def and_registers(self):
        self.registers[self.opcode.x] &= self.registers[self.opcode.y]

    def xor_registers(self):
        self.registers[self.opcode.x] ^= self.registers[self.opcode.y]

    def add_registers(self):
        """
        Set Vx = Vx + Vy, set VF = carry.

        The values of Vx and Vy are added together. If the result is greater than 8 bits (i.e., > 255,) VF is set to 1, otherwise 0. Only the lowest 8 bits of the result are kept, and stored in Vx.
        """
        Vx = self.opcode.x
        result = self.registers[Vx] + self.registers[self.opcode.y]
        self.registers[Vx] = result & 0xFF
        self.registers[0xF] = 1 if result > 0xFF else 0

    def sub_registers(self):
        """
        Set Vx = Vx - Vy, set VF = NOT borrow.
        """
        Vx = self.opcode.x
        Vy = self.opcode.y
        self.registers[0xF] = 1 if self.registers[Vx] >= self.registers[Vy] else 0
        self.registers[Vx] = (self.registers[Vx] - self.registers[Vy]) & 0xFF

    def shift_right(self):
        Vx = self.opcode.x
        self.registers[0xF] = self.registers[Vx] & 0x1
        self.registers[Vx] = self.registers[Vx] >> 1

    def subn_registers(self):
        """
        Set Vx = Vy - Vx, set VF = NOT borrow.
        """
        Vx = self.opcode.x
        Vy = self.opcode.y
        self.registers[0xF] = 1 if self.registers[Vy] >= self.registers[Vx] else 0
        self.registers[Vx] = (self.registers[Vy] - self.registers[Vx]) & 0xFF

    def shift_left(self):
        Vx = self.opcode.x
        self.registers[0xF] = (self.registers[Vx] & 0x80) >> 7
        self.registers[Vx] = (self.registers[Vx] << 1) & 0xFF

    def skip_if_registers_neq(self):
        """
        Skip next instruction if Vx != Vy.

        The interpreter compares register Vx to Vy, and if they are not equal, increments the program counter by 2.
        """
        if self.opcode.n != 0x0:
            self.not_implemented()
        if self.registers[self.opcode.x] != self.registers[self.opcode.y]:
            self.pc += 2

    def load_index_reg_with_value(self):
        """
        Set I = nnn.

        The value of register I is set to nnn.
        """
        self.I = self.opcode.nnn

    def jump_to_addr_plus_v0(self):
        """
        Jump to location nnn + V0.

        The program counter is set to nnn plus the value of V0.
        """
        self.pc = self.opcode.nnn + self.registers[0]

    def set_random_register_and_kk(self):
        """
        Set Vx = random byte AND kk.

        The interpreter generates a random number from 0 to 255, which is then ANDed with the value kk. The results are stored in Vx.
        """
        self.registers[self.opcode.x] = self.rng.randint(0, 255) & self.opcode.nn

    def draw_sprite(self):
        """
        Display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision.

        The interpreter reads n bytes from memory, starting at the address stored in I. These bytes are then displayed as sprites on screen at coordinates (Vx, Vy). Sprites are XORed onto the existing screen. If this causes any pixels to be erased, VF is set to 1, otherwise it is set to 0. If the sprite is positioned so part of it is outside the coordinates of the display, it wraps around to the opposite side of the screen.

        With n = 0 a 16x16 sprite of 32 bytes is drawn instead.
        """
        n = self.opcode.n
        size = EXTENDED_SPRITE_SIZE if n == 0 else n
        if self.I + size > MEMORY_SIZE:
            raise MemoryOutOfBounds(f"Sprite of {size} bytes at {self.I:#05x} runs past the end of memory")
        sprite = self.memory[self.I:self.I + size]
        collision = self.framebuffer.draw_sprite(
            sprite, n, self.registers[self.opcode.x], self.registers[self.opcode.y])
        self.registers[0xF] = 1 if collision else 0
        self.drawFlag = True

    def is_key_pressed(self, key: int) -> bool:
        return key < NUM_KEYS and self.keys[key]

    def skip_if_key_pressed(self):
        if self.is_key_pressed(self.registers[self.opcode.x]):
            self.pc += 2

    def skip_if_key_not_pressed(self):
        if not self.is_key_pressed(self.registers[self.opcode.x]):
            self.pc += 2

    def set_vx_to_delay_timer(self):
        self.registers[self.opcode.x] = self.delay_timer

    def wait_for_keypress(self):
        """
        FX0A - LD Vx, K
        Wait for a key press. Until one arrives the program counter stays on
        this instruction and no register is written.
        """
        if not any(self.keys):
            self.pc -= 2
            self.awaiting_key = self.opcode.x

    def set_delay_timer_to_register(self):
        self.delay_timer = self.registers[self.opcode.x]

    def set_sound_timer_to_register(self):
        self.sound_timer = self.registers[self.opcode.x]

    def add_register_to_index(self):
        self.I = (self.I + self.registers[self.opcode.x]) & 0xFFFF

    def set_i_to_sprite_address(self):
        self.I = glyph_address(self.registers[self.opcode.x])

    def set_i_to_super_sprite_address(self):
        self.I = super_glyph_address(self.registers[self.opcode.x])

    def set_bcd_of_register(self):
        if self.I + 2 >= MEMORY_SIZE:
            raise MemoryOutOfBounds(f"BCD store at {self.I:#05x} runs past the end of memory")
        value = self.registers[self.opcode.x]
        self.memory[self.I] = value // 100
        self.memory[self.I + 1] = (value // 10) % 10
        self.memory[self.I + 2] = value % 10

    def _check_transfer(self, count: int):
        if self.I + count > MEMORY_SIZE:
            raise MemoryOutOfBounds(f"Register transfer of {count} bytes at {self.I:#05x} runs past the end of memory")

    def store_registers(self):
        Vx = self.opcode.x
        self._check_transfer(Vx + 1)
        self.memory[self.I:self.I + Vx + 1] = self.registers[:Vx + 1]
        if self.increment_index:
            self.I += Vx + 1

    def load_registers(self):
        Vx = self.opcode.x
        self._check_transfer(Vx + 1)
        self.registers[:Vx + 1] = self.memory[self.I:self.I + Vx + 1]
        if self.increment_index:
            self.I += Vx + 1

    def not_implemented(self):
        raise UnknownOpcode(self.opcode, self.pc - 2)

    def get_pixel(self, x: int, y: int) -> bool:
        return self.framebuffer.get_pixel(x, y)

    def get_width(self) -> int:
        return self.framebuffer.width

    def get_height(self) -> int:
        return self.framebuffer.height

    def is_extended_mode(self) -> bool:
        return self.extended_mode

    def should_emit_tone(self) -> bool:
        return self.sound_timer > 0
