import datetime

import pygame
from array import array

from chip8 import SCREEN_WIDTH, SCREEN_HEIGHT

SCALE_FACTOR = 8
PIXEL_OFF = (0, 0, 0)
PIXEL_ON = (255, 255, 255)


# The keyboard layout for the CHIP-8 assumes:
#   1 2 3 C
#   4 5 6 D
#   7 8 9 E
#   A 0 B F
#
# We map this to the following keys on our keyboard:
#   1 2 3 4
#   Q W E R
#   A S D F
#   Z X C V

KEYMAPPING = {
    pygame.K_1: 0x01,
    pygame.K_2: 0x02,
    pygame.K_3: 0x03,
    pygame.K_4: 0x0C,
    pygame.K_q: 0x04,
    pygame.K_w: 0x05,
    pygame.K_e: 0x06,
    pygame.K_r: 0x0D,
    pygame.K_a: 0x07,
    pygame.K_s: 0x08,
    pygame.K_d: 0x09,
    pygame.K_f: 0x0E,
    pygame.K_z: 0x0A,
    pygame.K_x: 0x00,
    pygame.K_c: 0x0B,
    pygame.K_v: 0x0F
}

# Reverse of KEYMAPPING: the pygame key for each CHIP-8 key 0..F
KEYS = [None] * 16
for _pgkey, _c8key in KEYMAPPING.items():
    KEYS[_c8key] = _pgkey


class C8Keypad:
    '''
    Reports which of the 16 CHIP-8 keys are held.  Relies on C8Screen.draw() pumping the pygame
    event queue, which is what keeps pygame.key.get_pressed() current.
    '''

    def is_pressed(self, key):
        return bool(pygame.key.get_pressed()[KEYS[key]])


class C8Screen:
    def __init__(self, window, scale=SCALE_FACTOR, xsize=SCREEN_WIDTH, ysize=SCREEN_HEIGHT):
        self.xsize = xsize
        self.ysize = ysize
        self.scale = scale
        self.window = window
        # What is currently on the window, so only changed pixels are repainted
        self.shown = array('B', [0] * (self.xsize * self.ysize))
        self.exit_requested = False
        self.num_renders = 0
        self.render_time_ps = 0
        self.window.fill(PIXEL_OFF)
        pygame.display.flip()

    def pump_events(self):
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.exit_requested = True
            elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                self.exit_requested = True

    def draw(self, vram):
        self.pump_events()
        self.num_renders += 1
        start_time = datetime.datetime.now()
        pygamerects = []
        for cell in range(self.xsize * self.ysize):
            if vram[cell] == self.shown[cell]:
                continue
            self.shown[cell] = vram[cell]
            x = cell % self.xsize
            y = cell // self.xsize
            rect = pygame.Rect(x * self.scale, y * self.scale, self.scale, self.scale)
            self.window.fill(PIXEL_ON if vram[cell] else PIXEL_OFF, rect)
            pygamerects.append(rect)
        if pygamerects:
            pygame.display.update(pygamerects)
        self.render_time_ps += (datetime.datetime.now() - start_time).total_seconds()
