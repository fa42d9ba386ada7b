"""Exponential smoothing for orientation angles.

This module provides exponential moving average (EMA) smoothing to keep the
fused tilt from jittering while still following real movement.
"""

import numpy as np
from typing import Optional, Sequence


class ExponentialSmoother:
    """Exponential Moving Average smoother with a per-call blend factor.

    The smoothing formula is:

        smoothed[t] = (1 - alpha) * smoothed[t-1] + alpha * input[t]

    Unlike a classic EMA the state starts at ``initial`` (zeros by default)
    rather than at the first input, so the first update already moves by
    only ``alpha`` of the distance. The blend factor can be overridden per
    call, which lets noisier estimators blend in more conservatively while
    sharing the same state.

    Attributes:
        alpha: Default EMA coefficient in range (0, 1]. Smaller = smoother.
        size: Number of channels smoothed together.
    """

    def __init__(
        self,
        alpha: float = 0.1,
        size: int = 2,
        initial: Optional[Sequence[float]] = None,
    ):
        """Initialize the smoother.

        Args:
            alpha: Default EMA coefficient. Must be in range (0, 1].
            size: Number of channels. Must be >= 1.
            initial: Starting state; zeros if omitted.

        Raises:
            ValueError: If alpha is not in range (0, 1], size < 1, or
                        initial has the wrong length.
        """
        _check_alpha(alpha)
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")

        self.alpha = alpha
        self.size = size
        self._initial = self._as_state(initial) if initial is not None else np.zeros(size)
        self._smoothed = self._initial.copy()

    def _as_state(self, values: Sequence[float]) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (self.size,):
            raise ValueError(f"Expected shape ({self.size},), got {values.shape}")
        return values

    def smooth(self, values: Sequence[float], alpha: Optional[float] = None) -> np.ndarray:
        """Blend new raw values into the smoothed state.

        Args:
            values: Raw values, shape (size,).
            alpha: Blend factor for this call; the default alpha if None.

        Returns:
            Copy of the updated state.
        """
        if alpha is None:
            alpha = self.alpha
        else:
            _check_alpha(alpha)

        values = self._as_state(values)
        self._smoothed = (1 - alpha) * self._smoothed + alpha * values
        return self._smoothed.copy()

    def reset(self) -> None:
        """Return to the initial state."""
        self._smoothed = self._initial.copy()

    @property
    def current_state(self) -> np.ndarray:
        """Copy of the current smoothed values."""
        return self._smoothed.copy()


def _check_alpha(alpha: float) -> None:
    if not (0 < alpha <= 1):
        raise ValueError(f"alpha must be in range (0, 1], got {alpha}")
