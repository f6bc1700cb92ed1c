import datetime

# The CHIP-8 timers count down at 60 Hz.  One tick is rounded to 16ms.
TICK = datetime.timedelta(milliseconds=16)


class DelayTimer:
    '''
    An 8-bit counter that decays by one every TICK of wall-clock time until it reaches 0.

    Rather than decrementing on a background thread, the current value is computed from the time
    elapsed since the last set(), so reading it never races with the decay and no lock is needed.
    How often the caller executes instructions has no effect on how fast the value decays.
    '''

    def __init__(self, clock=datetime.datetime.now):
        self.clock = clock
        self.value = 0
        self.origin = self.clock()

    def set(self, value):
        self.value = value & 0xFF
        self.origin = self.clock()

    def get(self):
        if self.value == 0:
            return 0
        # datetime.now() can step backwards when the system clock is adjusted
        ticks = max(0, (self.clock() - self.origin) // TICK)
        return max(0, self.value - ticks)
