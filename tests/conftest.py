"""
Headless stand-ins for the host window and keyboard, plus helpers to build a machine
with a small program already in memory.
"""

import datetime
import random

import pytest

from chip8 import C8Computer, PROGRAM_START
from c8timer import DelayTimer


class FakeScreen:
    """Records every frame it is handed; asks to exit after `exit_after` draws."""

    def __init__(self, exit_after=None):
        self.exit_after = exit_after
        self.frames = []
        self.exit_requested = False

    def draw(self, vram):
        self.frames.append(bytes(vram))
        if self.exit_after is not None and len(self.frames) >= self.exit_after:
            self.exit_requested = True


class FakeKeypad:
    """Holds the keys in `held`.  `press_after` polls of any key, `late_key` becomes held too."""

    def __init__(self, held=(), late_key=None, press_after=0):
        self.held = set(held)
        self.late_key = late_key
        self.press_after = press_after
        self.polls = 0

    def is_pressed(self, key):
        self.polls += 1
        if self.late_key is not None and self.polls > self.press_after:
            self.held.add(self.late_key)
        return key in self.held


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self):
        self.now = datetime.datetime(2020, 1, 1)

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += datetime.timedelta(milliseconds=ms)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def screen():
    return FakeScreen()


@pytest.fixture
def keypad():
    return FakeKeypad()


@pytest.fixture
def c8(screen, keypad, clock):
    return C8Computer(screen, keypad, rng=random.Random(1234),
                      delay_timer=DelayTimer(clock), sound_timer=DelayTimer(clock))


def load(c8, *opcodes, at=PROGRAM_START):
    """Write 16-bit opcodes big-endian starting at `at` and point PC there."""
    for i, opcode in enumerate(opcodes):
        c8.RAM[at + 2 * i] = opcode >> 8
        c8.RAM[at + 2 * i + 1] = opcode & 0xFF
    c8.PC = at


def step(c8, *opcodes):
    """Load the opcodes at 0x200 and execute them in order."""
    load(c8, *opcodes)
    for _ in opcodes:
        c8.cycle()
