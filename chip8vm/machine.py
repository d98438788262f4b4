# CHIP-8 Virtual Machine:
# CPU - Cogwoods CHIP8 Technical reference http://devernay.free.fr/hacks/chip8/C8TECH10.HTM#0.0
# Memory - 4096 bytes holding the built-in font, the loaded ROM and the frame buffer.
# Display - 64x32 monochrome, packed 1 bit per pixel (MSB first) at the top of memory.
#----------------------------------------------------------------------------------------------
# The machine never paces itself. The host calls step() at its CPU rate and tick()
# at 60Hz, samples the keyboard into `keys`, and asks needs_redraw()/draw() when to render.

import logging
import random
from dataclasses import dataclass

from chip8vm.rom import Species

logger = logging.getLogger(__name__)

MEMORY_SIZE = 4096
INSTRUCTION_SIZE = 2
STACK_DEPTH = 24
KEY_COUNT = 16
FLAG = 0xF

FONT_START = 0x010
FONT_SIZE = 5

DISPLAY_START = 0xF00
DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32
# 0xF00..0xFFF, all 256 bytes: the last one holds pixels 56..63 of row 31, (63, 31) included
DISPLAY_SIZE = DISPLAY_WIDTH * DISPLAY_HEIGHT // 8

# Standard CHIP-8 fontset (80 bytes)
FONTSET = bytes([
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


class VMFault(RuntimeError):
    """Unrecoverable machine error. `dump` holds the state snapshot taken before raising."""

    def __init__(self, message, dump=""):
        super().__init__(message)
        self.dump = dump


@dataclass(frozen=True)
class Running:
    pass


@dataclass(frozen=True)
class AwaitingKey:
    register: int


RUNNING = Running()


# How each opcode group narrows down to a handler. Groups missing here have one handler.
def _low_nibble(ins):
    return ins & 0x000F


def _low_byte(ins):
    return ins & 0x00FF


SUBCODES = {
    0x0: lambda ins: ins & 0x0FFF,
    0x5: _low_nibble,
    0x8: _low_nibble,
    0x9: _low_nibble,
    0xE: _low_byte,
    0xF: _low_byte,
}


def decode(ins):
    """Return the dispatch key (group, sub-code) of a 16-bit instruction."""
    group = (ins >> 12) & 0xF
    subcode = SUBCODES.get(group)
    return group, (subcode(ins) if subcode else None)


class Chip8:

    def __init__(self, rng=None):
        # ---- CPU state ----
        self.memory = bytearray(MEMORY_SIZE)
        self.V = [0] * 16        # general purpose registers, VF doubles as the flag
        self.I = 0               # address register
        self.pc = 0
        self.stack = []          # return addresses, at most STACK_DEPTH
        self.delay_timer = 0
        self.sound_timer = 0
        self.state = RUNNING
        self.opcode = 0
        self.vx = 0
        self.vy = 0
        self._keys = 0
        self._shadow = bytes(DISPLAY_SIZE)
        self.rng = rng if rng is not None else random

        # Prepare opcode function map
        self.setup_funcmap()

    # ---- Load ROM ----
    def load(self, rom, species=Species.CHIP8):
        """Copy `rom` into memory at the species' offset and point PC at it.

        Returns False, leaving the machine untouched, when the image does not fit.
        """
        data = rom.data
        offset = species.offset
        if len(data) + offset >= MEMORY_SIZE:
            logger.warning("ROM of %d bytes does not fit at 0x%03X", len(data), offset)
            return False

        self.memory[offset:offset + len(data)] = data
        self.memory[FONT_START:FONT_START + len(FONTSET)] = FONTSET
        self.pc = offset
        logger.info("Loaded %d byte %s program at 0x%03X", len(data), species.name, offset)
        return True

    # ---- Keyboard ----
    @property
    def keys(self):
        return self._keys

    @keys.setter
    def keys(self, mask):
        if not 0 <= mask <= 0xFFFF:
            raise ValueError("keyboard mask must fit in 16 bits: %r" % (mask,))
        self._keys = mask

    def press(self, key):
        self.keys = self._keys | self._key_bit(key)

    def release(self, key):
        self.keys = self._keys & ~self._key_bit(key)

    def is_pressed(self, key):
        return bool(self._keys & self._key_bit(key))

    @staticmethod
    def _key_bit(key):
        if not 0 <= key < KEY_COUNT:
            raise ValueError("no such key: %r" % (key,))
        return 1 << key

    def _lowest_pressed_key(self):
        for key in range(KEY_COUNT):
            if self._keys & (1 << key):
                return key
        return None

    # ---- Timers ----
    def tick(self):
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    @property
    def sound_playing(self):
        return self.sound_timer > 0

    # ---- Display ----
    @property
    def frame(self):
        return bytes(self.memory[DISPLAY_START:DISPLAY_START + DISPLAY_SIZE])

    def needs_redraw(self):
        return self.frame != self._shadow

    def draw(self):
        """Commit the live frame buffer as drawn and return it for rendering."""
        self._shadow = self.frame
        return self._shadow

    # ---- Diagnostics ----
    def dump(self):
        lines = ["CHIP-8 state:", "\tRegisters:"]
        for row in range(0, 16, 4):
            lines.append("\t" + "".join(
                "\tV%X: 0x%02X" % (r, self.V[r]) for r in range(row, row + 4)))
        lines.append("\t\tPC: 0x%03X\tI:  0x%03X\tD:  0x%02X\tS:  0x%02X" % (
            self.pc, self.I, self.delay_timer, self.sound_timer))
        lines.append("\tOpcode: 0x%04X\tState: %s" % (self.opcode, self.state))
        lines.append("\tStack (%d frames):" % len(self.stack))
        for depth, address in enumerate(self.stack):
            lines.append("\t\t%d:\t0x%03X" % (depth, address))
        return "\n".join(lines)

    def _fault(self, message):
        # Dump the state before raising so there's a chance at seeing what went wrong
        dump = self.dump()
        logger.error("%s\n%s", message, dump)
        raise VMFault(message, dump)

    # ---- Step ----
    def step(self, instructions=1):
        """Run up to `instructions` steps and return how many were consumed.

        While awaiting a key the batch stops early if nothing is pressed. The step
        that delivers the key into its register fetches no instruction.
        """
        done = 0
        for _ in range(instructions):
            if isinstance(self.state, AwaitingKey):
                key = self._lowest_pressed_key()
                if key is None:
                    break
                self.V[self.state.register] = key
                logger.debug("Key %X delivered to V%X", key, self.state.register)
                self.state = RUNNING
            else:
                self.cycle()
            done += 1
        return done

    # ---- Cycle ----
    def cycle(self):
        self.opcode = self._fetch()

        # Extract registers
        self.vx = (self.opcode & 0x0F00) >> 8
        self.vy = (self.opcode & 0x00F0) >> 4

        handler = self.funcmap.get(decode(self.opcode))
        if handler is None:
            self._fault("Unhandled instruction: 0x%04X" % self.opcode)
        handler()

    def _fetch(self):
        if self.pc < 0 or self.pc + 1 >= MEMORY_SIZE:
            self._fault("Program counter left memory: 0x%X" % self.pc)
        ins = (self.memory[self.pc] << 8) | self.memory[self.pc + 1]
        self.pc += INSTRUCTION_SIZE
        return ins

    def _skip(self):
        if self.pc + INSTRUCTION_SIZE >= MEMORY_SIZE:
            self._fault("Branching outside of memory")
        self.pc += INSTRUCTION_SIZE

    def _check_range(self, start, length, message):
        # Every byte of start..start+length-1 has to be addressable
        if start < 0 or start + length > MEMORY_SIZE:
            self._fault(message)

    def _check_flag_operands(self, *registers):
        # VF is written as a side effect, so it can't also be read or written as an operand
        if FLAG in registers:
            self._fault("Ordering: V%X can't be an operand of 0x%04X" % (FLAG, self.opcode))

    # ---- Opcode function map ----
    def setup_funcmap(self):
        self.funcmap = {
            (0x0, 0x0E0): self._00E0,  # 00E0 - Clear the display
            (0x0, 0x0EE): self._00EE,  # 00EE - Return from a subroutine
            (0x1, None): self._1nnn,   # 1nnn - Jump to address
            (0x2, None): self._2nnn,   # 2nnn - Call subroutine
            (0x3, None): self._3xkk,   # 3xkk - Skip if Vx == kk
            (0x4, None): self._4xkk,   # 4xkk - Skip if Vx != kk
            (0x5, 0x0): self._5xy0,    # 5xy0 - Skip if Vx == Vy
            (0x6, None): self._6xkk,   # 6xkk - Vx = kk
            (0x7, None): self._7xkk,   # 7xkk - Vx += kk
            (0x8, 0x0): self._8xy0,    # 8xy0 - Vx = Vy
            (0x8, 0x1): self._8xy1,    # 8xy1 - Vx |= Vy
            (0x8, 0x2): self._8xy2,    # 8xy2 - Vx &= Vy
            (0x8, 0x3): self._8xy3,    # 8xy3 - Vx ^= Vy
            (0x8, 0x4): self._8xy4,    # 8xy4 - Vx += Vy, VF = carry
            (0x8, 0x5): self._8xy5,    # 8xy5 - Vx -= Vy, VF = NOT borrow
            (0x8, 0x6): self._8xy6,    # 8xy6 - Vx >>= 1, VF = bit shifted out
            (0x8, 0x7): self._8xy7,    # 8xy7 - Vx = Vy - Vx, VF = NOT borrow
            (0x8, 0xE): self._8xyE,    # 8xyE - Vx <<= 1, VF = bit shifted out
            (0x9, 0x0): self._9xy0,    # 9xy0 - Skip if Vx != Vy
            (0xA, None): self._Annn,   # Annn - I = nnn
            (0xB, None): self._Bnnn,   # Bnnn - Jump to nnn + V0
            (0xC, None): self._Cxkk,   # Cxkk - Vx = random byte & kk
            (0xD, None): self._Dxyn,   # Dxyn - Draw sprite
            (0xE, 0x9E): self._Ex9E,   # Ex9E - Skip if key Vx is pressed
            (0xE, 0xA1): self._ExA1,   # ExA1 - Skip if key Vx is not pressed
            (0xF, 0x07): self._Fx07,   # Fx07 - Vx = delay timer
            (0xF, 0x0A): self._Fx0A,   # Fx0A - Wait for a key press into Vx
            (0xF, 0x15): self._Fx15,   # Fx15 - delay timer = Vx
            (0xF, 0x18): self._Fx18,   # Fx18 - sound timer = Vx
            (0xF, 0x1E): self._Fx1E,   # Fx1E - I += Vx
            (0xF, 0x29): self._Fx29,   # Fx29 - I = glyph for Vx
            (0xF, 0x33): self._Fx33,   # Fx33 - BCD of Vx at I..I+2
            (0xF, 0x55): self._Fx55,   # Fx55 - store V0..Vx at I
            (0xF, 0x65): self._Fx65,   # Fx65 - load V0..Vx from I
        }

    # ---- Opcode Handlers ----

    def _00E0(self):
        self.memory[DISPLAY_START:DISPLAY_START + DISPLAY_SIZE] = bytes(DISPLAY_SIZE)
        logger.debug("Clear the display")

    def _00EE(self):
        if not self.stack:
            self._fault("Out of stack frames")
        address = self.stack.pop()
        # Check the address hasn't been corrupted somehow
        if not 0 <= address < MEMORY_SIZE:
            self._fault("Invalid address on stack: 0x%X" % address)
        self.pc = address
        logger.debug("Return to 0x%03X", address)

    def _1nnn(self):
        self.pc = self.opcode & 0x0FFF
        logger.debug("Jump to 0x%03X", self.pc)

    def _2nnn(self):
        if len(self.stack) >= STACK_DEPTH:
            self._fault("Out of stack frames")
        self.stack.append(self.pc)
        self.pc = self.opcode & 0x0FFF
        logger.debug("Call subroutine at 0x%03X", self.pc)

    def _3xkk(self):
        if self.V[self.vx] == self.opcode & 0xFF:
            self._skip()

    def _4xkk(self):
        if self.V[self.vx] != self.opcode & 0xFF:
            self._skip()

    def _5xy0(self):
        if self.V[self.vx] == self.V[self.vy]:
            self._skip()

    def _6xkk(self):
        self.V[self.vx] = self.opcode & 0xFF
        logger.debug("Set V%X = 0x%02X", self.vx, self.V[self.vx])

    def _7xkk(self):
        self.V[self.vx] = (self.V[self.vx] + (self.opcode & 0xFF)) & 0xFF

    def _8xy0(self):
        self.V[self.vx] = self.V[self.vy]

    def _8xy1(self):
        self.V[self.vx] |= self.V[self.vy]

    def _8xy2(self):
        self.V[self.vx] &= self.V[self.vy]

    def _8xy3(self):
        self.V[self.vx] ^= self.V[self.vy]

    def _8xy4(self):
        x, y = self.vx, self.vy
        self._check_flag_operands(x, y)
        total = self.V[x] + self.V[y]
        self.V[x] = total & 0xFF
        self.V[FLAG] = 1 if total > 0xFF else 0
        logger.debug("V%X += V%X -> 0x%02X, carry=%d", x, y, self.V[x], self.V[FLAG])

    def _8xy5(self):
        x, y = self.vx, self.vy
        self._check_flag_operands(x, y)
        no_borrow = self.V[x] >= self.V[y]
        self.V[x] = (self.V[x] - self.V[y]) & 0xFF
        self.V[FLAG] = 1 if no_borrow else 0

    def _8xy6(self):
        x = self.vx
        self._check_flag_operands(x, self.vy)
        shifted_out = self.V[x] & 1
        self.V[x] >>= 1
        self.V[FLAG] = shifted_out

    def _8xy7(self):
        x, y = self.vx, self.vy
        self._check_flag_operands(x, y)
        no_borrow = self.V[y] >= self.V[x]
        self.V[x] = (self.V[y] - self.V[x]) & 0xFF
        self.V[FLAG] = 1 if no_borrow else 0

    def _8xyE(self):
        x = self.vx
        self._check_flag_operands(x, self.vy)
        shifted_out = (self.V[x] >> 7) & 1
        self.V[x] = (self.V[x] << 1) & 0xFF
        self.V[FLAG] = shifted_out

    def _9xy0(self):
        if self.V[self.vx] != self.V[self.vy]:
            self._skip()

    def _Annn(self):
        self.I = self.opcode & 0x0FFF
        logger.debug("Set I = 0x%03X", self.I)

    def _Bnnn(self):
        target = (self.opcode & 0x0FFF) + self.V[0]
        if target >= MEMORY_SIZE:
            self._fault("Trying to jump out of memory: 0x%X" % target)
        self.pc = target

    def _Cxkk(self):
        self.V[self.vx] = self.rng.getrandbits(8) & (self.opcode & 0xFF)

    def _Dxyn(self):
        base_x = self.V[self.vx]
        base_y = self.V[self.vy]
        n = self.opcode & 0xF
        # The sprite may not reach the last byte of memory
        if self.I + n >= MEMORY_SIZE:
            self._fault("Blitting from outside of memory")

        memory = self.memory
        flipped_off = False
        for row in range(n):
            sprite = memory[self.I + row]
            if sprite == 0:
                continue
            # Off-screen pixels wrap around to the opposite edge
            y = (base_y + row) % DISPLAY_HEIGHT
            for column in range(8):
                if not sprite & (0x80 >> column):
                    continue
                x = (base_x + column) % DISPLAY_WIDTH
                pixel = y * DISPLAY_WIDTH + x
                address = DISPLAY_START + pixel // 8
                mask = 0x80 >> (pixel % 8)
                if memory[address] & mask:
                    flipped_off = True
                memory[address] ^= mask

        self.V[FLAG] = 1 if flipped_off else 0
        logger.debug("Drew %d-row sprite at (%d, %d), collision=%d",
                     n, base_x, base_y, self.V[FLAG])

    def _key_operand(self):
        key = self.V[self.vx]
        if key >= KEY_COUNT:
            self._fault("Invalid key code requested: 0x%02X" % key)
        return key

    def _Ex9E(self):
        if self.is_pressed(self._key_operand()):
            self._skip()

    def _ExA1(self):
        if not self.is_pressed(self._key_operand()):
            self._skip()

    def _Fx07(self):
        self.V[self.vx] = self.delay_timer

    def _Fx0A(self):
        # Fulfilled by step() once a key shows up in the snapshot
        self.state = AwaitingKey(self.vx)
        logger.debug("Waiting for a key press into V%X", self.vx)

    def _Fx15(self):
        self.delay_timer = self.V[self.vx]

    def _Fx18(self):
        self.sound_timer = self.V[self.vx]

    def _Fx1E(self):
        address = self.I + self.V[self.vx]
        if address >= MEMORY_SIZE:
            self._fault("Moving I to outside of memory: 0x%X" % address)
        self.I = address

    def _Fx29(self):
        digit = self.V[self.vx]
        if digit >= 16:
            self._fault("No glyph for 0x%02X" % digit)
        self.I = FONT_START + digit * FONT_SIZE

    def _Fx33(self):
        self._check_range(self.I, 3, "Storing to I outside of memory")
        value = self.V[self.vx]
        self.memory[self.I] = value // 100
        self.memory[self.I + 1] = (value // 10) % 10
        self.memory[self.I + 2] = value % 10

    def _Fx55(self):
        count = self.vx + 1
        self._check_range(self.I, count, "Copying to I outside of memory")
        self.memory[self.I:self.I + count] = bytes(self.V[:count])

    def _Fx65(self):
        count = self.vx + 1
        self._check_range(self.I, count, "Copying from I outside of memory")
        self.V[:count] = list(self.memory[self.I:self.I + count])
