"""
Displayed-emotion priority rule.

Consumes fused snapshots and classification results and decides which
emotion the face shows. Proximity puts the face to sleep and restores the
previous emotion afterwards; a shake makes it angry; otherwise the latest
real classification label is shown.
"""

import logging
from typing import Callable, List, Optional

from .pipeline import ClassificationResult
from .snapshot import SensorSnapshot

logger = logging.getLogger(__name__)

SLEEP = "Sleep"
ANGRY = "Angry"
DEFAULT_EMOTION = "Happy"


class EmotionStateController:
    """Reactive state holder for the displayed emotion.

    Not thread-safe: feed it from the presentation thread only.
    """

    def __init__(self, initial: str = DEFAULT_EMOTION):
        self.current = initial
        self._pre_sleep = initial
        self._was_near = False
        self._was_shaking = False
        self._listeners: List[Callable[[str], None]] = []

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Call ``callback(emotion)`` whenever the displayed emotion changes."""
        self._listeners.append(callback)

    def _set(self, emotion: str) -> None:
        if emotion == self.current:
            return
        logger.debug(f"Emotion {self.current} -> {emotion}")
        self.current = emotion
        for callback in self._listeners:
            callback(emotion)

    def on_snapshot(self, snapshot: SensorSnapshot) -> str:
        if snapshot.is_proximity_near != self._was_near:
            self._was_near = snapshot.is_proximity_near
            if snapshot.is_proximity_near:
                if self.current != SLEEP:
                    self._pre_sleep = self.current
                    self._set(SLEEP)
            elif self.current == SLEEP:
                self._set(self._pre_sleep)

        if snapshot.is_shaking != self._was_shaking:
            self._was_shaking = snapshot.is_shaking
            if snapshot.is_shaking and self.current != SLEEP:
                self._set(ANGRY)
        return self.current

    def on_result(self, result: ClassificationResult) -> str:
        if result.label.is_sentinel or self.current == SLEEP:
            return self.current
        self._set(result.label.value)
        return self.current

    @property
    def is_sleeping(self) -> bool:
        return self.current == SLEEP

    @property
    def pre_sleep_emotion(self) -> Optional[str]:
        return self._pre_sleep if self.is_sleeping else None
