"""
Shared fakes for the robo_sense tests.

FakeRunner stands in for the ONNX session: it reads the classifier's input
buffer and writes a score vector into its output buffer, in place.
"""

import threading
import time
from typing import Optional, Sequence

import numpy as np
import pytest

from robo_sense.buffers import InferenceBuffers
from robo_sense.frames import Frame
from robo_sense.inference import ClassifierConfig, EmotionClassifier
from robo_sense.sensors import GRAVITY_EARTH, SensorHub, SensorType


class FakeRunner:
    """Model runner writing fixed or input-derived scores.

    With ``scores`` set, every run writes those scores. Otherwise the class
    is derived from the mean input intensity, so different frames can map
    to different labels while the same frame always maps to the same one.
    """

    def __init__(self, model_path, buffers: InferenceBuffers, num_threads: int = 4,
                 accelerators: Sequence[str] = (), scores: Optional[Sequence[float]] = None,
                 delay: float = 0.0, gate: Optional[threading.Event] = None):
        self.model_path = model_path
        self.buffers = buffers
        self.num_threads = num_threads
        self.accelerators = list(accelerators)
        self.scores = None if scores is None else np.asarray(scores, dtype=np.float32)
        self.delay = delay
        self.gate = gate
        self.accelerator = None
        self.calls = 0
        self.closed = False
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self, buffers: InferenceBuffers) -> None:
        assert buffers is self.buffers, "runner must only ever see its own buffers"
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5.0)
            if self.delay:
                time.sleep(self.delay)
            if self.scores is not None:
                buffers.output[0, :] = self.scores
            else:
                index = min(int(float(buffers.input.mean()) * buffers.num_classes),
                            buffers.num_classes - 1)
                buffers.output[0, index] = 1.0
            self.calls += 1
        finally:
            with self._lock:
                self.active -= 1

    def close(self) -> None:
        self.closed = True


def make_classifier(**runner_kwargs):
    """Build a classifier over a FakeRunner; returns (classifier, runner)."""
    created = {}

    def factory(model_path, buffers, **kwargs):
        kwargs.update(runner_kwargs)
        created["runner"] = FakeRunner(model_path, buffers, **kwargs)
        return created["runner"]

    classifier = EmotionClassifier(ClassifierConfig(model_path="fake.onnx"),
                                   runner_factory=factory)
    return classifier, created["runner"]


def solid_frame(rgb=(128, 128, 128), height=120, width=160, **kwargs) -> Frame:
    image = np.empty((height, width, 3), dtype=np.uint8)
    image[:, :] = rgb
    return Frame(image=image, **kwargs)


@pytest.fixture
def hub():
    """Sensor hub declaring all four sensor types."""
    hub = SensorHub()
    hub.add_sensor(SensorType.ACCELEROMETER, max_range=4 * GRAVITY_EARTH)
    hub.add_sensor(SensorType.MAGNETOMETER)
    hub.add_sensor(SensorType.PROXIMITY, max_range=8.0)
    hub.add_sensor(SensorType.GYROSCOPE)
    return hub
