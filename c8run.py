import argparse
import datetime
import logging
import sys
import time

import pygame

from c8screen import C8Keypad, C8Screen, SCALE_FACTOR
from chip8 import C8Computer, ProcessorFault, RomLoadError, SCREEN_WIDTH, SCREEN_HEIGHT

logger = logging.getLogger(__name__)

# How many microseconds to wait after executing an instruction.  Smaller means more frequent
# instruction executions, which makes things faster.
INSTRUCTION_DELAY = 2000
# The CPU runs at roughly 500 Hz and the display at 60 Hz, so draw once every 8 instructions.
CYCLES_PER_BATCH = 8
# With --show-state, how many batches between console reports (about once a second)
BATCHES_PER_REPORT = 60


def run(c8, cycle_delay=INSTRUCTION_DELAY, show_state=False, out=sys.stdout):
    '''
    Execute instructions until the host asks to quit.  Returns the number of instructions executed.

    A ProcessorFault ends the run: the machine state is written to debug.txt and the fault is re-raised.
    '''
    start_time = datetime.datetime.now()
    num_instr = 0
    num_batches = 0
    try:
        while not c8.halted:
            for _ in range(CYCLES_PER_BATCH):
                c8.cycle()
                num_instr += 1
                if c8.halted:
                    break
                if cycle_delay:
                    time.sleep(cycle_delay / 1000000)
            c8.render()
            num_batches += 1
            if show_state and num_batches % BATCHES_PER_REPORT == 0:
                # clear the terminal and home the cursor before each report
                out.write("\x1b[2J\x1b[1;1H")
                out.write(c8.state_report())
                out.flush()
    except ProcessorFault:
        c8.debug_dump()
        raise
    duration = (datetime.datetime.now() - start_time).total_seconds()
    if duration > 0:
        logger.info("Executed %d instructions in %.2f sec. (%.0f per second)", num_instr, duration,
                    num_instr / duration)
    return num_instr


def build_parser():
    parser = argparse.ArgumentParser(description="CHIP-8 emulator")
    parser.add_argument("rom", help="CHIP-8 program to load at 0x200")
    parser.add_argument("--scale", type=int, default=None, help="window pixels per CHIP-8 pixel")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--show-state", action="store_true",
                        help="periodically print registers, stack and diagnostics to the console")
    parser.add_argument("--dump", action="store_true", help="write the machine state to debug.txt on exit")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="[%(levelname)s] %(name)s: %(message)s")

    scale = args.scale or SCALE_FACTOR
    pygame.init()
    window = pygame.display.set_mode((SCREEN_WIDTH * scale, SCREEN_HEIGHT * scale))
    pygame.display.set_caption("CHIP-8")
    logger.debug("Window %d x %d pixels", SCREEN_WIDTH * scale, SCREEN_HEIGHT * scale)

    screen = C8Screen(window, scale)
    c8 = C8Computer(screen, C8Keypad())
    try:
        c8.load_rom(args.rom)
    except (OSError, RomLoadError) as e:
        logger.error("Cannot load %s: %s", args.rom, e)
        pygame.quit()
        return 1

    try:
        run(c8, show_state=args.show_state)
    except ProcessorFault as e:
        logger.error("Processor fault: %s (state written to debug.txt)", e)
        return 2
    finally:
        if args.dump:
            c8.debug_dump()
        if screen.num_renders:
            logger.info("Screen renders: %d, average microseconds per render: %.0f", screen.num_renders,
                        1000000 * screen.render_time_ps / screen.num_renders)
        pygame.quit()
    return 0


if __name__ == "__main__":
    sys.exit(main())
