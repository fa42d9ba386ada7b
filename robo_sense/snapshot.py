"""
Fused sensor state and its always-latest publication channel.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensorSnapshot:
    """Immutable aggregate of all fused sensor signals valid at one instant.

    Attributes:
        pitch: Up/down tilt in radians, filtered
        roll: Left/right tilt in radians, filtered
        is_face_down: Screen pointing at the floor
        is_proximity_near: Something within the proximity threshold
        is_shaking: Instantaneous g-force above the shake threshold
        rotation_rate_z: Raw gyroscope rate around Z (rad/s)
    """

    pitch: float = 0.0
    roll: float = 0.0
    is_face_down: bool = False
    is_proximity_near: bool = False
    is_shaking: bool = False
    rotation_rate_z: float = 0.0


SnapshotCallback = Callable[[SensorSnapshot], None]


class SnapshotChannel:
    """Holds the current snapshot and pushes every replacement to subscribers.

    Subscribers are called on the publishing thread. A subscriber raising
    is logged and does not prevent delivery to the others.
    """

    def __init__(self, initial: SensorSnapshot = SensorSnapshot()):
        self._current = initial
        self._subscribers: List[SnapshotCallback] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> SensorSnapshot:
        return self._current

    def publish(self, snapshot: SensorSnapshot) -> None:
        with self._lock:
            self._current = snapshot
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Snapshot subscriber failed: {e}")

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register a callback for every future snapshot.

        Returns:
            A callable that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
