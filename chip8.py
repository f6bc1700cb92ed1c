import logging
import random
import time
from array import array

from c8timer import DelayTimer

logger = logging.getLogger(__name__)

MEMORY_SIZE = 4096
PROGRAM_START = 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - PROGRAM_START
STACK_DEPTH = 16
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
# How long Fx0A sleeps between polls of the keypad, in seconds
KEY_POLL_DELAY = 0.01

FONT = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
        0xF0, 0x80, 0xF0, 0x80, 0x80]  # F
GLYPH_SIZE = 5


class InvalidOpCodeException(Exception):
    pass


class ProcessorFault(Exception):
    '''
    The program did something the machine cannot carry out.  Unlike an invalid opcode, this stops the run.
    '''
    pass


class StackOverflowError(ProcessorFault):
    pass


class StackUnderflowError(ProcessorFault):
    pass


class RomLoadError(Exception):
    pass


class RomTooLargeError(RomLoadError):
    pass


class C8Computer:

    def __init__(self, screen, keypad, rng=None, delay_timer=None, sound_timer=None):
        # 4096 Bytes of RAM
        self.RAM = array('B', [0] * MEMORY_SIZE)
        # The 16 registers are named V0..VF
        self.V = array('B', [0] * 16)
        # Special-purpose 16-bit register, used for addressing memory
        self.I = 0
        # Program Counter
        self.PC = PROGRAM_START
        # 16 return addresses; SP is the index of the next free slot
        self.stack = array('H', [0] * STACK_DEPTH)
        self.SP = 0
        # One byte per pixel, 0 or 1, index = x + y * SCREEN_WIDTH
        self.vram = array('B', [0] * (SCREEN_WIDTH * SCREEN_HEIGHT))
        # The delay timer is created once and outlives reset()
        self.delay_timer = delay_timer if delay_timer is not None else DelayTimer()
        # No sound is produced; the value is kept so programs can set it
        self.sound_timer = sound_timer if sound_timer is not None else DelayTimer()
        self.rng = rng if rng is not None else random.Random()
        self.screen = screen
        self.keypad = keypad
        self.diagnostics = []
        self.halted = False

        # Using a list of functions to speed the lookup, vs. doing a big nested
        # if/else.  There is one instruction for each of the high-order nibbles
        # 1, 2, 3, 4, 5, 6, 7, 9, A, B, C and D.  The others (0, 8, E, F) have
        # multiple.
        self.operation_list = [
            self._0_opcodes, self._1nnn, self._2nnn, self._3xnn, self._4xnn, self._5xy0,
            self._6xnn, self._7xnn, self._8_opcodes, self._9xy0, self._Annn, self._Bnnn,
            self._Cxnn, self._Dxyn, self._E_opcodes, self._F_opcodes
        ]

        # opcodes beginning with 8 can be determined based on the least-significant
        # nibble (0..7 and E)
        self._8_operations = [
            self._8xy0, self._8xy1, self._8xy2, self._8xy3, self._8xy4, self._8xy5,
            self._8xy6, self._8xy7, self.invalid_op, self.invalid_op,
            self.invalid_op, self.invalid_op, self.invalid_op, self.invalid_op,
            self._8xyE, self.invalid_op
        ]

        # opcodes beginning with F can be determined based on the least_significant
        # byte (07, 0A, 15, 18, 1E, 29, 33, 55, and 65).  Since this is sparse,
        # will use a dictionary.
        self._F_operations = {
            0x07: self._Fx07,
            0x0A: self._Fx0A,
            0x15: self._Fx15,
            0x18: self._Fx18,
            0x1E: self._Fx1E,
            0x29: self._Fx29,
            0x33: self._Fx33,
            0x55: self._Fx55,
            0x65: self._Fx65
        }

        self.reset()

    def reset(self):
        for i in range(MEMORY_SIZE):
            self.RAM[i] = 0
        for i in range(16):
            self.V[i] = 0
            self.stack[i] = 0
        for i in range(len(self.vram)):
            self.vram[i] = 0
        self.I = 0
        self.SP = 0
        self.PC = PROGRAM_START
        self.delay_timer.set(0)
        self.sound_timer.set(0)
        self.halted = False
        self.load_font_sprites()

    def load_font_sprites(self):
        '''
        Video in the CHIP-8 is sprite-driven.  Each sprite is 8 pixels wide, and from 1-15 pixels high.
        A font representing 0..9 + A..F is required for proper operation.  Example for the character 2:

                   ****....
                   ...*....
                   ****....
                   *.......
                   ****....

        The font lives at 0x000, in the 0x000-0x1FF range reserved for the interpreter.
        '''
        for i in range(len(FONT)):
            self.RAM[i] = FONT[i]

    def load_program(self, data):
        if len(data) > MAX_PROGRAM_SIZE:
            raise RomTooLargeError("program is {} bytes, at most {} fit in memory".format(len(data), MAX_PROGRAM_SIZE))
        for i, byte in enumerate(data):
            self.RAM[PROGRAM_START + i] = byte
        logger.info("Loaded %d bytes at 0x%03X", len(data), PROGRAM_START)

    def load_rom(self, rom_file):
        # OSError from a missing or unreadable file propagates to the caller
        with open(rom_file, "rb") as infile:
            self.load_program(infile.read())

    def read_byte(self, address):
        return self.RAM[address % MEMORY_SIZE]

    def write_byte(self, address, value):
        self.RAM[address % MEMORY_SIZE] = value

    def stack_push(self, address):
        if self.SP >= STACK_DEPTH:
            raise StackOverflowError("call at 0x{:03X} with {} return addresses already on the stack".format(
                self.PC, STACK_DEPTH))
        self.stack[self.SP] = address
        self.SP += 1

    def stack_pop(self):
        if self.SP == 0:
            raise StackUnderflowError("return at 0x{:03X} with an empty stack".format(self.PC))
        self.SP -= 1
        return self.stack[self.SP]

    def diagnostic(self, message):
        self.diagnostics.append(message)
        logger.warning(message)

    def fetch(self):
        return self.read_byte(self.PC) << 8 | self.read_byte(self.PC + 1)

    def render(self):
        self.screen.draw(self.vram)
        if self.screen.exit_requested:
            self.halted = True

    def state_report(self):
        lines = [
            "PC: 0x{:03X}".format(self.PC),
            "Next instr.: 0x{:04X}".format(self.fetch()),
            "I: 0x{:04X}".format(self.I),
        ]
        for row in range(4):
            lines.append("\t".join("V{:X}: 0x{:02X}".format(i, self.V[i]) for i in range(row * 4, row * 4 + 4)))
        lines.append("delay timer: {}".format(self.delay_timer.get()))
        lines.append("sound timer: {}".format(self.sound_timer.get()))
        lines.append("stack: [{}]".format(", ".join("0x{:03X}".format(self.stack[i]) for i in range(self.SP))))
        lines.append("diagnostics:")
        lines.extend(self.diagnostics)
        return "\n".join(lines) + "\n"

    def debug_dump(self, path="debug.txt"):
        with open(path, "w") as outfile:
            outfile.write(self.state_report())
            outfile.write("\n\nRAM:\n")
            for i in range(0, MEMORY_SIZE, 32):
                outfile.write("0x{:03X} - 0x{:03X}:  ".format(i, i + 31))
                outfile.write("".join("{:02X}".format(b) for b in self.RAM[i:i + 32]))
                outfile.write("\n")

    def _0_opcodes(self, opcode, x, y, n, nn, nnn):
        if opcode == 0x00E0:
            # 00E0 - CLS
            # clear the screen
            for i in range(len(self.vram)):
                self.vram[i] = 0
        elif opcode == 0x00EE:
            # 00EE - RET
            # Return from a subroutine.  The address popped is that of the call, so the
            # usual increment moves past it.
            self.PC = self.stack_pop()
        elif opcode == 0x0000:
            pass
        else:
            raise InvalidOpCodeException(opcode)
        return True

    def _1nnn(self, opcode, x, y, n, nn, nnn):
        # 1nnn - JP addr
        # Jump to location nnn
        self.PC = nnn
        return False

    def _2nnn(self, opcode, x, y, n, nn, nnn):
        # 2nnn - CALL addr
        # Call subroutine at nnn
        self.stack_push(self.PC)
        self.PC = nnn
        return False

    def _3xnn(self, opcode, x, y, n, nn, nnn):
        # 3xnn - SE Vx, byte
        # Skip next instruction if Vx == nn
        if self.V[x] == nn:
            self.PC += 2
        return True

    def _4xnn(self, opcode, x, y, n, nn, nnn):
        # 4xnn - SNE Vx, byte
        # Skip next instruction if Vx != nn
        if self.V[x] != nn:
            self.PC += 2
        return True

    def _5xy0(self, opcode, x, y, n, nn, nnn):
        # 5xy0 - SE Vx, Vy
        # Skip next instruction if Vx == Vy
        if n != 0:
            raise InvalidOpCodeException(opcode)
        if self.V[x] == self.V[y]:
            self.PC += 2
        return True

    def _6xnn(self, opcode, x, y, n, nn, nnn):
        # 6xnn - LD Vx, byte
        # Set Vx = nn
        self.V[x] = nn
        return True

    def _7xnn(self, opcode, x, y, n, nn, nnn):
        # 7xnn - ADD Vx, byte
        # Add nn to Vx, does NOT set the carry flag
        self.V[x] = (self.V[x] + nn) & 0xFF
        return True

    def invalid_op(self, opcode, x, y):
        raise InvalidOpCodeException(opcode)

    def _8xy0(self, opcode, x, y):
        # 8xy0 - LD Vx, Vy
        self.V[x] = self.V[y]
        return True

    def _8xy1(self, opcode, x, y):
        # 8xy1 - OR Vx, Vy
        self.V[x] = self.V[x] | self.V[y]
        return True

    def _8xy2(self, opcode, x, y):
        # 8xy2 - AND Vx, Vy
        self.V[x] = self.V[x] & self.V[y]
        return True

    def _8xy3(self, opcode, x, y):
        # 8xy3 - XOR Vx, Vy
        self.V[x] = self.V[x] ^ self.V[y]
        return True

    def _8xy4(self, opcode, x, y):
        # 8xy4 - ADD Vx, Vy
        # Set Vx = Vx + Vy, set VF = carry.  Must be done in this order, x may be F.
        total = self.V[x] + self.V[y]
        self.V[x] = total & 0xFF
        self.V[0xF] = 1 if total > 0xFF else 0
        return True

    def _8xy5(self, opcode, x, y):
        # 8xy5 - SUB Vx, Vy
        # Set Vx = Vx - Vy.  VF is the borrow: 1 if Vy > Vx.  This is the inverse of
        # Cowgod's NOT borrow.
        borrow = 1 if self.V[y] > self.V[x] else 0
        self.V[x] = (self.V[x] - self.V[y]) & 0xFF
        self.V[0xF] = borrow
        return True

    def _8xy6(self, opcode, x, y):
        # 8xy6 - SHR Vx
        # Shift Vx right by 1 in place, VF = the bit shifted out
        lsb = self.V[x] & 0x1
        self.V[x] = self.V[x] >> 1
        self.V[0xF] = lsb
        return True

    def _8xy7(self, opcode, x, y):
        # 8xy7 - SUBN Vx, Vy
        # Set Vx = Vy - Vx.  VF is the borrow: 1 if Vx > Vy.
        borrow = 1 if self.V[x] > self.V[y] else 0
        self.V[x] = (self.V[y] - self.V[x]) & 0xFF
        self.V[0xF] = borrow
        return True

    def _8xyE(self, opcode, x, y):
        # 8xyE - SHL Vx
        # Shift Vx left by 1 in place, VF = the bit shifted out
        msb = (self.V[x] >> 7) & 0x1
        self.V[x] = (self.V[x] << 1) & 0xFF
        self.V[0xF] = msb
        return True

    def _8_opcodes(self, opcode, x, y, n, nn, nnn):
        return self._8_operations[n](opcode, x, y)

    def _9xy0(self, opcode, x, y, n, nn, nnn):
        # 9xy0 - SNE Vx, Vy
        # Skip next instruction if Vx != Vy
        if n != 0:
            raise InvalidOpCodeException(opcode)
        if self.V[x] != self.V[y]:
            self.PC += 2
        return True

    def _Annn(self, opcode, x, y, n, nn, nnn):
        # Annn - LD I, addr
        self.I = nnn
        return True

    def _Bnnn(self, opcode, x, y, n, nn, nnn):
        # Bnnn - JP V0, addr
        # The program counter is set to nnn plus the value of V0
        self.PC = (nnn + self.V[0]) & 0xFFF
        return False

    def _Cxnn(self, opcode, x, y, n, nn, nnn):
        # Cxnn - RND Vx, byte
        # Set Vx = random byte AND nn
        self.V[x] = self.rng.randrange(256) & nn
        return True

    def _Dxyn(self, opcode, x, y, n, nn, nnn):
        # Dxyn - DRW Vx, Vy, nibble
        # XOR an 8 x n sprite from memory at I onto the screen at (Vx, Vy).  Pixels past
        # the right or bottom edge are dropped rather than wrapped.  VF = 1 if any pixel
        # that was on got turned off.
        startx = self.V[x]
        starty = self.V[y]
        collision = 0
        for row in range(n):
            py = starty + row
            if py >= SCREEN_HEIGHT:
                break
            sprite_row = self.read_byte(self.I + row)
            for col in range(8):
                px = startx + col
                if px >= SCREEN_WIDTH:
                    break
                if (sprite_row << col) & 0x80:
                    # 0 means do nothing, so only treat the 1 case
                    cell = px + py * SCREEN_WIDTH
                    if self.vram[cell] == 1:
                        collision = 1
                        self.vram[cell] = 0
                    else:
                        self.vram[cell] = 1
        self.V[0xF] = collision
        return True

    def _E_opcodes(self, opcode, x, y, n, nn, nnn):
        if nn == 0x9E:
            # Ex9E - SKP Vx
            # Skip next instruction if key with value of Vx is pressed
            if self.keypad.is_pressed(self.V[x] & 0xF):
                self.PC += 2
        elif nn == 0xA1:
            # ExA1 - SKNP Vx
            # Skip next instruction if key with value of Vx is NOT pressed
            if not self.keypad.is_pressed(self.V[x] & 0xF):
                self.PC += 2
        else:
            raise InvalidOpCodeException(opcode)
        return True

    def _Fx07(self, x):
        # Fx07 - LD Vx, DT
        # The value of the Delay Timer is placed into Vx.
        self.V[x] = self.delay_timer.get()
        return True

    def _Fx0A(self, x):
        # Fx0A - LD Vx, K
        # Wait for a key press, store the value of the key in Vx.  Nothing else executes
        # while waiting, but the screen keeps being serviced so the host can still quit.
        while True:
            for key in range(16):
                if self.keypad.is_pressed(key):
                    self.V[x] = key
                    return True
            self.render()
            if self.halted:
                return True
            time.sleep(KEY_POLL_DELAY)

    def _Fx15(self, x):
        # Fx15 - LD DT, Vx
        self.delay_timer.set(self.V[x])
        return True

    def _Fx18(self, x):
        # Fx18 - LD ST, Vx
        # The value is kept but no tone is generated
        self.sound_timer.set(self.V[x])
        self.diagnostic("0x{:04X}: Sound not implemented".format(self.I))
        return True

    def _Fx1E(self, x):
        # Fx1E - ADD I, Vx - does not set the carry flag
        self.I = (self.I + self.V[x]) & 0xFFFF
        return True

    def _Fx29(self, x):
        # Fx29 - LD F, Vx
        # Set I = location of sprite for digit Vx ("F" = Font)
        # each character is 5 bytes, with "0" starting at 0x00 in memory
        self.I = self.V[x] * GLYPH_SIZE
        return True

    def _Fx33(self, x):
        # Fx33 - LD B, Vx
        # Store the binary coded decimal value of Vx: hundreds at I, tens at I+1, ones at I+2
        val = self.V[x]
        self.write_byte(self.I, val // 100)
        self.write_byte(self.I + 1, (val // 10) % 10)
        self.write_byte(self.I + 2, val % 10)
        return True

    def _Fx55(self, x):
        # Fx55 - LD [I], Vx
        # Store registers V0 through Vx in memory starting at location I.
        # Afterwards I moves forward by x, one short of the COSMAC VIP's x + 1.
        for i in range(x + 1):
            self.write_byte(self.I + i, self.V[i])
        self.I = (self.I + x) & 0xFFFF
        return True

    def _Fx65(self, x):
        # Fx65 - LD Vx, [I]
        # Read values from memory starting at location I into registers V0 through Vx
        for i in range(x + 1):
            self.V[i] = self.read_byte(self.I + i)
        self.I = (self.I + x) & 0xFFFF
        return True

    def _F_opcodes(self, opcode, x, y, n, nn, nnn):
        if nn in self._F_operations:
            return self._F_operations[nn](x)
        else:
            raise InvalidOpCodeException(opcode)

    def cycle(self):
        '''
        Instructions have one of 6 patterns:
        All 4 nibbles fixed:
            00E0, 00EE
        Operation + nnn (address)
            1nnn, 2nnn, Annn, Bnnn
        Operation + Vx + nn (byte)
            3xnn, 4xnn, 6xnn, 7xnn, Cxnn
        Operation + Vx + Vy + nibble-type
            5xy0, 8xy0, 8xy1, 8xy2, 8xy3,
            8xy4, 8xy5, 8xy6, 8xy7, 8xyE, 9xy0
        Operation + Vx + Vy + n (nibble)
            Dxyn
        Operation + Vx + byte-type
            Ex9E, ExA1, Fx07, Fx0A, Fx15,
            Fx18, Fx1E, Fx29, Fx33, Fx55,
            Fx65

        To minimize redundant code, calculate all the possible ways
        to parse the opcode and then later use only the ones that are needed.

        An opcode that matches none of these is recorded in the diagnostics and
        skipped.
        '''

        opcode = self.fetch()
        operation = opcode >> 12
        x = opcode >> 8 & 0xF
        y = opcode >> 4 & 0xF
        n = opcode & 0xF
        nnn = opcode & 0xFFF
        nn = opcode & 0xFF
        try:
            increment_pc = self.operation_list[operation](opcode, x, y, n, nn, nnn)
        except InvalidOpCodeException:
            self.diagnostic("0x{:04X}: Unknown opcode - 0x{:04X}".format(self.I, opcode))
            increment_pc = True
        if increment_pc:
            self.PC = (self.PC + 2) & 0xFFF
