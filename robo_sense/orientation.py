"""
Tilt estimation from accelerometer and magnetometer vectors.

Two estimators feed one smoothed pitch/roll state:

- Two-vector attitude: gravity and the geomagnetic field define an
  orthonormal East/North/Up frame. Near drift-free, but needs both sensors.
- Accelerometer only: small-angle estimate from the gravity direction,
  blended in more conservatively because it is noisier.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from .smoother import ExponentialSmoother

logger = logging.getLogger(__name__)

# Below this horizontal field strength the frame is undefined
# (free fall, or a magnetic field parallel to gravity).
MIN_HORIZONTAL_FIELD = 0.1


def rotation_matrix(
    gravity: Sequence[float], geomagnetic: Sequence[float]
) -> Optional[np.ndarray]:
    """
    Compute the device-to-world rotation matrix.

    Rows are East (H), North (M) and Up (A) expressed in device
    coordinates: H = E x A, M = A x H, each normalized.

    Args:
        gravity: Accelerometer vector (device at rest measures "up")
        geomagnetic: Magnetometer vector

    Returns:
        3x3 rotation matrix, or None if the frame is degenerate
    """
    a = np.asarray(gravity, dtype=np.float64)
    e = np.asarray(geomagnetic, dtype=np.float64)

    h = np.cross(e, a)
    norm_h = np.linalg.norm(h)
    if norm_h < MIN_HORIZONTAL_FIELD:
        return None

    norm_a = np.linalg.norm(a)
    if norm_a == 0:
        return None

    h = h / norm_h
    a = a / norm_a
    m = np.cross(a, h)
    return np.vstack([h, m, a])


def orientation_from_matrix(r: np.ndarray) -> Tuple[float, float, float]:
    """
    Extract (azimuth, pitch, roll) in radians from a rotation matrix.
    """
    azimuth = math.atan2(r[0, 1], r[1, 1])
    pitch = math.asin(float(np.clip(-r[2, 1], -1.0, 1.0)))
    roll = math.atan2(-r[2, 0], r[2, 2])
    return azimuth, pitch, roll


def accelerometer_tilt(accel: Sequence[float]) -> Optional[Tuple[float, float]]:
    """
    Small-angle (pitch, roll) from the gravity direction alone.

    roll = -asin(x / g), pitch = asin(y / g) with g = |accel|.

    Returns:
        (pitch, roll), or None when the vector has zero magnitude
    """
    x, y, z = accel[0], accel[1], accel[2]
    g = math.sqrt(x * x + y * y + z * z)
    if g <= 0:
        return None
    roll = -math.asin(max(-1.0, min(1.0, x / g)))
    pitch = math.asin(max(-1.0, min(1.0, y / g)))
    return pitch, roll


class OrientationFilter:
    """Smoothed pitch/roll from the latest accelerometer and magnetometer.

    Attributes:
        fused_alpha: Blend factor for the two-vector estimate
        fallback_alpha: Blend factor for the accelerometer-only estimate
        magnetometer_stale_after: Seconds after which a magnetometer
            reading is ignored; None keeps it forever
    """

    def __init__(
        self,
        fused_alpha: float = 0.1,
        fallback_alpha: float = 0.08,
        magnetometer_stale_after: Optional[float] = None,
    ):
        self.fused_alpha = fused_alpha
        self.fallback_alpha = fallback_alpha
        self.magnetometer_stale_after = magnetometer_stale_after
        self._smoother = ExponentialSmoother(alpha=fused_alpha, size=2)

        self._accel: Optional[Tuple[float, float, float]] = None
        self._accel_time = 0.0
        self._magnetic: Optional[Tuple[float, float, float]] = None
        self._magnetic_time = 0.0

    def update_accelerometer(
        self, values: Sequence[float], timestamp: float = 0.0
    ) -> Optional[Tuple[float, float]]:
        self._accel = (values[0], values[1], values[2])
        self._accel_time = timestamp
        return self._update()

    def update_magnetometer(
        self, values: Sequence[float], timestamp: float = 0.0
    ) -> Optional[Tuple[float, float]]:
        self._magnetic = (values[0], values[1], values[2])
        self._magnetic_time = timestamp
        return self._update()

    def _magnetometer_usable(self) -> bool:
        if self._magnetic is None:
            return False
        if self.magnetometer_stale_after is None:
            return True
        return self._accel_time - self._magnetic_time <= self.magnetometer_stale_after

    def _update(self) -> Optional[Tuple[float, float]]:
        """
        Recompute the smoothed tilt.

        Returns:
            New (pitch, roll), or None if no estimate was possible
        """
        if self._accel is None:
            return None

        if self._magnetometer_usable():
            r = rotation_matrix(self._accel, self._magnetic)
            if r is None:
                logger.debug("Degenerate rotation matrix, skipping update")
                return None
            _, pitch, roll = orientation_from_matrix(r)
            alpha = self.fused_alpha
        else:
            tilt = accelerometer_tilt(self._accel)
            if tilt is None:
                return None
            pitch, roll = tilt
            alpha = self.fallback_alpha

        smoothed = self._smoother.smooth([pitch, roll], alpha=alpha)
        return float(smoothed[0]), float(smoothed[1])

    @property
    def pitch(self) -> float:
        return float(self._smoother.current_state[0])

    @property
    def roll(self) -> float:
        return float(self._smoother.current_state[1])

    def reset(self) -> None:
        """Forget both readings and return the tilt to zero."""
        self._accel = None
        self._magnetic = None
        self._smoother.reset()
