"""
Sensor fusion engine.

Turns raw accelerometer, magnetometer, proximity and gyroscope samples into
one immutable SensorSnapshot, republished on every update. The engine is an
explicit object with a start/stop lifecycle around an injected SensorSource.
"""

import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from .detectors import FaceDownDetector, ProximityClassifier, ShakeDetector
from .orientation import OrientationFilter
from .sensors import (
    RawSample,
    SensorInfo,
    SensorListener,
    SensorRate,
    SensorSource,
    SensorType,
)
from .snapshot import SensorSnapshot, SnapshotCallback, SnapshotChannel

logger = logging.getLogger(__name__)

# Proximity is a slow signal; the motion sensors drive animation.
REGISTRATION_RATES: Dict[SensorType, SensorRate] = {
    SensorType.ACCELEROMETER: SensorRate.GAME,
    SensorType.MAGNETOMETER: SensorRate.GAME,
    SensorType.PROXIMITY: SensorRate.NORMAL,
    SensorType.GYROSCOPE: SensorRate.GAME,
}


@dataclass
class FusionConfig:
    """Tuning for the fusion engine.

    Attributes:
        fused_alpha: Blend factor for the two-sensor tilt estimate
        fallback_alpha: Blend factor for the accelerometer-only estimate
        shake_threshold_g: g-force above which a sample counts as shaking
        shake_smoothing: Decay of the smoothed acceleration magnitude
        proximity_near_cm: Distance below which proximity is "near"
        face_down_z_ratio: z/|a| below which the device is face down
        magnetometer_stale_after: Seconds before a magnetometer reading is
            ignored (None keeps the last reading forever)
    """
    fused_alpha: float = 0.1
    fallback_alpha: float = 0.08
    shake_threshold_g: float = 2.8
    shake_smoothing: float = 0.9
    proximity_near_cm: float = 5.0
    face_down_z_ratio: float = -0.8
    magnetometer_stale_after: Optional[float] = None


class SensorFusionEngine(SensorListener):
    """Owns filter and detector state and publishes fused snapshots.

    Usage:
        engine = SensorFusionEngine(source)
        unsubscribe = engine.subscribe(print)
        with engine:
            ...  # samples arrive on the source's thread
    """

    def __init__(
        self,
        source: SensorSource,
        config: Optional[FusionConfig] = None,
    ):
        self.source = source
        self.config = config or FusionConfig()

        self._orientation = OrientationFilter(
            fused_alpha=self.config.fused_alpha,
            fallback_alpha=self.config.fallback_alpha,
            magnetometer_stale_after=self.config.magnetometer_stale_after,
        )
        self._shake = ShakeDetector(
            threshold_g=self.config.shake_threshold_g,
            smoothing=self.config.shake_smoothing,
        )
        self._proximity = ProximityClassifier(self.config.proximity_near_cm)
        self._face_down = FaceDownDetector(self.config.face_down_z_ratio)

        self._channel = SnapshotChannel(SensorSnapshot())
        self._lock = threading.RLock()
        self._running = False
        self._registered: List[SensorInfo] = []

        self._handlers: Dict[SensorType, Callable[[SensorSnapshot, RawSample], SensorSnapshot]] = {
            SensorType.ACCELEROMETER: self._on_accelerometer,
            SensorType.MAGNETOMETER: self._on_magnetometer,
            SensorType.PROXIMITY: self._on_proximity,
            SensorType.GYROSCOPE: self._on_gyroscope,
        }

    # Lifecycle

    def start(self) -> None:
        """
        Register for every sensor the device has.

        Missing sensors are skipped for the whole session. If a registration
        fails, everything registered so far is released again. Never raises.
        """
        with self._lock:
            if self._running:
                return
            self._registered = []
            try:
                for sensor_type, rate in REGISTRATION_RATES.items():
                    sensor = self.source.default_sensor(sensor_type)
                    if sensor is None:
                        logger.info(f"No {sensor_type.value} sensor, signal disabled")
                        continue
                    if self.source.register_listener(self, sensor, rate):
                        self._registered.append(sensor)
                    else:
                        logger.warning(f"Registration refused for {sensor.name}")
                self._running = True
            except Exception as e:
                logger.error(f"Sensor registration failed: {e}")
                self._release()
                return

        logger.info(
            "Fusion engine started with "
            f"{[s.sensor_type.value for s in self._registered]}"
        )

    def stop(self) -> None:
        """
        Deregister from the source. No snapshot is published after this
        returns. Never raises.
        """
        with self._lock:
            was_running = self._running
            self._running = False
            self._release()
        if was_running:
            logger.info("Fusion engine stopped")

    def _release(self) -> None:
        try:
            self.source.unregister_listener(self)
        except Exception as e:
            logger.warning(f"Error unregistering sensor listener: {e}")
        finally:
            self._registered = []

    def __enter__(self) -> "SensorFusionEngine":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def available_sensors(self) -> List[SensorType]:
        """Sensor types registered by the last start()."""
        return [s.sensor_type for s in self._registered]

    # State access

    def current_snapshot(self) -> SensorSnapshot:
        return self._channel.current

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        return self._channel.subscribe(callback)

    @property
    def current_acceleration(self) -> float:
        """Smoothed acceleration magnitude (m/s^2)."""
        return self._shake.current_acceleration

    # Event path

    def on_sample(self, sample: RawSample) -> None:
        """Fold one sample into the snapshot and publish the result."""
        handler = self._handlers.get(sample.sensor_type)
        if handler is None:
            return
        if not _well_formed(sample):
            logger.debug(f"Dropping malformed {sample.sensor_type.value} sample")
            return

        with self._lock:
            if not self._running:
                return
            snapshot = handler(self._channel.current, sample)
            self._channel.publish(snapshot)

    def _on_accelerometer(self, current: SensorSnapshot, sample: RawSample) -> SensorSnapshot:
        values = sample.values
        tilt = self._orientation.update_accelerometer(values, sample.timestamp)
        changes = {
            "is_shaking": self._shake.update(values),
            "is_face_down": self._face_down.is_face_down(values),
        }
        if tilt is not None:
            changes["pitch"], changes["roll"] = tilt
        return replace(current, **changes)

    def _on_magnetometer(self, current: SensorSnapshot, sample: RawSample) -> SensorSnapshot:
        tilt = self._orientation.update_magnetometer(sample.values, sample.timestamp)
        if tilt is None:
            return current
        pitch, roll = tilt
        return replace(current, pitch=pitch, roll=roll)

    def _on_proximity(self, current: SensorSnapshot, sample: RawSample) -> SensorSnapshot:
        near = self._proximity.is_near(sample.values[0], sample.max_range)
        return replace(current, is_proximity_near=near)

    def _on_gyroscope(self, current: SensorSnapshot, sample: RawSample) -> SensorSnapshot:
        return replace(current, rotation_rate_z=float(sample.values[2]))


def _well_formed(sample: RawSample) -> bool:
    values = sample.values
    if values is None or len(values) < sample.sensor_type.value_count:
        return False
    try:
        return all(math.isfinite(v) for v in values[:sample.sensor_type.value_count])
    except TypeError:
        return False
