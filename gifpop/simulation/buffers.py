"""Input buffers keyed by delivery step.

Inputs to a population arrive ahead of time: an event sent with a
transmission delay of d steps must be added to the population's input
d steps later. A RingBuffer holds these deposits for a window of future
steps, addressed relative to the origin of the current time slice.
After a slice of n steps has been processed the origin moves forward
with advance(n).
"""

import numpy as np


class RingBuffer:
    """Fixed-size accumulator of per-step input, addressed by relative step.

    Parameters
    ----------
    size : int
        Number of future steps the buffer can hold. Must cover the
        longest delay plus one slice.
    """

    def __init__(self, size):
        if size < 1:
            raise ValueError(f"RingBuffer size must be positive, got {size}")
        self._values = np.zeros(int(size), dtype=np.float64)
        self._origin = 0

    @property
    def size(self):
        return len(self._values)

    def _slot(self, offset):
        if not 0 <= offset < self.size:
            raise ValueError(
                f"Offset {offset} outside buffer window [0, {self.size})")
        return (self._origin + offset) % self.size

    def add_value(self, offset, value):
        """Add value to the input of the step `offset` steps after the origin."""
        self._values[self._slot(offset)] += value

    def get_value(self, offset):
        """Read and clear the input of the step `offset` steps after the origin."""
        slot = self._slot(offset)
        value = self._values[slot]
        self._values[slot] = 0.0
        return float(value)

    def peek(self, offset):
        return float(self._values[self._slot(offset)])

    def advance(self, n_steps):
        """Move the origin forward after a slice of n_steps has been read."""
        self._origin = (self._origin + n_steps) % self.size

    def clear(self):
        self._values[:] = 0.0
        self._origin = 0

    def resize(self, size):
        """Grow the window, keeping pending deposits at their offsets."""
        if size <= self.size:
            return
        pending = np.array([self.peek(i) for i in range(self.size)])
        self._values = np.zeros(int(size), dtype=np.float64)
        self._values[:len(pending)] = pending
        self._origin = 0
