"""
Sensor types, raw samples and the sensor source interface.

The fusion engine never talks to a platform sensor subsystem directly. It is
handed a SensorSource, which exposes default sensors per type and accepts
listener registrations. SensorHub is the in-process implementation used by
the CLI (sensor log replay) and by the tests.
"""

import csv
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

GRAVITY_EARTH = 9.80665  # m/s^2


class SensorType(Enum):
    """Closed set of sensor types consumed by the fusion engine."""

    ACCELEROMETER = "accelerometer"
    MAGNETOMETER = "magnetometer"
    PROXIMITY = "proximity"
    GYROSCOPE = "gyroscope"

    @property
    def value_count(self) -> int:
        """Minimum number of float values a sample of this type carries."""
        return 1 if self is SensorType.PROXIMITY else 3


class SensorRate(Enum):
    """Requested delivery rate, as a nominal sampling period in seconds."""

    FASTEST = 0.0
    GAME = 0.02
    UI = 0.0667
    NORMAL = 0.2


@dataclass(frozen=True)
class SensorInfo:
    """Description of one hardware sensor on the host device."""

    sensor_type: SensorType
    name: str = ""
    max_range: float = float("inf")


@dataclass(frozen=True)
class RawSample:
    """A single timestamped reading from one sensor.

    Attributes:
        sensor_type: Which sensor produced the reading
        values: Raw values (3 for motion sensors, distance in cm for proximity)
        timestamp: Seconds, source-defined epoch
        max_range: Sensor maximum range (proximity only)
    """

    sensor_type: SensorType
    values: Tuple[float, ...]
    timestamp: float = 0.0
    max_range: Optional[float] = None


class SensorListener(ABC):
    """Receiver of raw samples."""

    @abstractmethod
    def on_sample(self, sample: RawSample) -> None:
        pass


class SensorSource(ABC):
    """Platform sensor subsystem seen through a narrow interface."""

    @abstractmethod
    def default_sensor(self, sensor_type: SensorType) -> Optional[SensorInfo]:
        """Return the default sensor for a type, or None if the device has none."""

    @abstractmethod
    def register_listener(
        self,
        listener: SensorListener,
        sensor: SensorInfo,
        rate: SensorRate = SensorRate.NORMAL,
    ) -> bool:
        """Start delivering samples of ``sensor`` to ``listener``."""

    @abstractmethod
    def unregister_listener(self, listener: SensorListener) -> None:
        """Stop delivering samples of every sensor to ``listener``."""


class SensorHub(SensorSource):
    """In-process sensor source.

    Sensors are declared with add_sensor(); samples pushed through
    dispatch() are delivered synchronously to the listeners registered for
    the sample's sensor type, on the caller's thread.
    """

    def __init__(self):
        self._sensors: Dict[SensorType, SensorInfo] = {}
        self._listeners: Dict[SensorType, List[SensorListener]] = {}
        self._lock = threading.Lock()

    def add_sensor(
        self,
        sensor_type: SensorType,
        max_range: float = float("inf"),
        name: str = "",
    ) -> SensorInfo:
        info = SensorInfo(sensor_type, name or sensor_type.value, max_range)
        self._sensors[sensor_type] = info
        return info

    def default_sensor(self, sensor_type: SensorType) -> Optional[SensorInfo]:
        return self._sensors.get(sensor_type)

    def register_listener(
        self,
        listener: SensorListener,
        sensor: SensorInfo,
        rate: SensorRate = SensorRate.NORMAL,
    ) -> bool:
        if sensor.sensor_type not in self._sensors:
            return False
        with self._lock:
            listeners = self._listeners.setdefault(sensor.sensor_type, [])
            if listener not in listeners:
                listeners.append(listener)
        logger.debug(f"Registered {sensor.name} at {rate.name}")
        return True

    def unregister_listener(self, listener: SensorListener) -> None:
        with self._lock:
            for listeners in self._listeners.values():
                if listener in listeners:
                    listeners.remove(listener)

    def listener_count(self, sensor_type: Optional[SensorType] = None) -> int:
        """Number of registrations, for one type or across all types."""
        with self._lock:
            if sensor_type is not None:
                return len(self._listeners.get(sensor_type, []))
            return sum(len(listeners) for listeners in self._listeners.values())

    def dispatch(self, sample: RawSample) -> int:
        """
        Deliver a sample to every listener registered for its type.

        A proximity sample without a max_range is stamped with the declared
        sensor's range before delivery.

        Returns:
            Number of listeners the sample was delivered to
        """
        info = self._sensors.get(sample.sensor_type)
        if info is None:
            return 0
        if sample.sensor_type is SensorType.PROXIMITY and sample.max_range is None:
            sample = RawSample(
                sample.sensor_type, sample.values, sample.timestamp, info.max_range
            )
        with self._lock:
            listeners = list(self._listeners.get(sample.sensor_type, []))
        for listener in listeners:
            listener.on_sample(sample)
        return len(listeners)


def load_sensor_log(path: Union[str, Path]) -> Iterator[RawSample]:
    """
    Read a recorded sensor log.

    Each CSV row is ``timestamp,sensor,v0[,v1,v2][,max_range]`` where
    ``sensor`` is one of accelerometer, magnetometer, proximity, gyroscope.
    Proximity rows carry the distance and, optionally, the max range.
    Blank lines and lines starting with ``#`` are skipped.

    Raises:
        FileNotFoundError: If the log does not exist
        ValueError: If a row cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sensor log not found: {path}")

    with open(path, "r", newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            if not row or row[0].strip().startswith("#"):
                continue
            try:
                timestamp = float(row[0])
                sensor_type = SensorType(row[1].strip().lower())
                numbers = [float(v) for v in row[2:] if v.strip()]
            except (IndexError, ValueError) as e:
                raise ValueError(f"{path}:{line_no}: invalid sensor row: {e}")

            if sensor_type is SensorType.PROXIMITY:
                if not numbers:
                    raise ValueError(f"{path}:{line_no}: proximity row without distance")
                max_range = numbers[1] if len(numbers) > 1 else None
                yield RawSample(sensor_type, (numbers[0],), timestamp, max_range)
            else:
                yield RawSample(sensor_type, tuple(numbers), timestamp)
