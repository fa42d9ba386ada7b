"""
Per-sample motion event detectors.

Each detector looks at a single sensor type and makes a binary decision on
every sample. None of them debounce across samples.
"""

import math
from typing import Optional, Sequence

from .sensors import GRAVITY_EARTH


def magnitude(values: Sequence[float]) -> float:
    x, y, z = values[0], values[1], values[2]
    return math.sqrt(x * x + y * y + z * z)


class ShakeDetector:
    """Shake from instantaneous g-force.

    A sample is "shaking" when |accel| / g exceeds the threshold. The
    decision is stateless; ``current_acceleration`` is a separate smoothed
    magnitude kept for consumers that want a shake intensity.
    """

    def __init__(self, threshold_g: float = 2.8, smoothing: float = 0.9):
        if threshold_g <= 0:
            raise ValueError(f"threshold_g must be > 0, got {threshold_g}")
        if not (0 <= smoothing < 1):
            raise ValueError(f"smoothing must be in range [0, 1), got {smoothing}")
        self.threshold_g = threshold_g
        self.smoothing = smoothing
        self.current_acceleration = GRAVITY_EARTH
        self.last_g_force = 1.0

    def update(self, accel: Sequence[float]) -> bool:
        accel_magnitude = magnitude(accel)
        self.current_acceleration = (
            self.current_acceleration * self.smoothing
            + accel_magnitude * (1 - self.smoothing)
        )
        self.last_g_force = accel_magnitude / GRAVITY_EARTH
        return self.last_g_force > self.threshold_g

    def reset(self) -> None:
        self.current_acceleration = GRAVITY_EARTH
        self.last_g_force = 1.0


class ProximityClassifier:
    """Near/far from a reported distance.

    Near requires the distance to be below both the fixed threshold and the
    sensor's own maximum range, since some sensors only report a binary
    0 / max_range value.
    """

    def __init__(self, near_threshold_cm: float = 5.0):
        self.near_threshold_cm = near_threshold_cm

    def is_near(self, distance: float, max_range: Optional[float] = None) -> bool:
        if max_range is None:
            max_range = math.inf
        return distance < self.near_threshold_cm and distance < max_range


class FaceDownDetector:
    """Screen facing the floor, from the gravity direction.

    With the device at rest the accelerometer measures "up", so a screen
    facing down reads a strongly negative Z component.
    """

    def __init__(self, z_ratio_threshold: float = -0.8):
        if not (-1 <= z_ratio_threshold <= 0):
            raise ValueError(
                f"z_ratio_threshold must be in range [-1, 0], got {z_ratio_threshold}"
            )
        self.z_ratio_threshold = z_ratio_threshold

    def is_face_down(self, accel: Sequence[float]) -> bool:
        g = magnitude(accel)
        if g == 0:
            return False
        return accel[2] / g < self.z_ratio_threshold
