"""
Fixed inference buffers reused across every classification.

The input and output tensors are allocated once, when the classifier is
built, and rewritten in place for each frame. Only one classification may
hold them at a time; a second concurrent holder is a bug and is rejected
instead of silently interleaving writes.
"""

import threading
from contextlib import contextmanager
from typing import Iterator

import numpy as np

from .errors import BufferBusyError, ClassifierClosedError


class InferenceBuffers:
    """Owned input/output arena for one classifier.

    Attributes:
        input: float32 tensor of shape (1, height, width, channels)
        output: float32 tensor of shape (1, num_classes)
        input_plane: (height, width) view of input for single-channel writes
    """

    def __init__(self, width: int = 48, height: int = 48, channels: int = 1,
                 num_classes: int = 7):
        if min(width, height, channels, num_classes) < 1:
            raise ValueError(
                f"Buffer dimensions must be >= 1, got "
                f"{width}x{height}x{channels} -> {num_classes}"
            )
        self.width = width
        self.height = height
        self.channels = channels
        self.num_classes = num_classes

        self.input = np.zeros((1, height, width, channels), dtype=np.float32)
        self.output = np.zeros((1, num_classes), dtype=np.float32)
        # First channel of every pixel; contiguous only when channels == 1
        self.input_plane = self.input[0, :, :, 0]

        self._lock = threading.Lock()
        self._released = False
        self.passes = 0

    @property
    def input_nbytes(self) -> int:
        return self.input.nbytes

    @property
    def output_nbytes(self) -> int:
        return self.output.nbytes

    @contextmanager
    def acquire(self) -> Iterator["InferenceBuffers"]:
        """
        Hold the buffers for one write/run/read pass.

        Raises:
            ClassifierClosedError: If the buffers were released
            BufferBusyError: If another pass holds them
        """
        if self._released:
            raise ClassifierClosedError("Inference buffers have been released")
        if not self._lock.acquire(blocking=False):
            raise BufferBusyError("Inference buffers are in use by another classification")
        try:
            yield self
        finally:
            self._lock.release()

    def rewind(self) -> None:
        """Clear both tensors in place before a new pass."""
        self.input.fill(0.0)
        self.output.fill(0.0)
        self.passes += 1

    def release(self) -> None:
        """Invalidate the buffers; any later acquire() fails."""
        self._released = True
        self.output.fill(np.nan)

    @property
    def is_released(self) -> bool:
        return self._released
