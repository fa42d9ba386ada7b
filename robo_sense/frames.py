"""
Camera frames and the OpenCV frame source.

A Frame is a scoped resource: whoever receives it must release it, or the
producer stalls waiting for its buffer back.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Frame:
    """One camera image plus its delivery metadata.

    Attributes:
        image: uint8 pixel array
        rotation_degrees: Clockwise rotation needed to make the image upright
        channel_order: Channel layout of ``image`` ("RGB", "BGR", ...)
        timestamp: Capture time (seconds since the epoch)
        on_release: Called once when the consumer is done with the frame
    """
    image: np.ndarray
    rotation_degrees: int = 0
    channel_order: str = "RGB"
    timestamp: float = field(default_factory=time.time)
    on_release: Optional[Callable[["Frame"], None]] = field(default=None, repr=False)
    _released: bool = field(default=False, init=False, repr=False)

    def close(self) -> None:
        """Hand the frame back to its producer. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        if self.on_release is not None:
            self.on_release(self)

    @property
    def is_released(self) -> bool:
        return self._released

    def __enter__(self) -> "Frame":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


FrameSink = Callable[[Frame], object]


class CameraFrameSource:
    """Capture thread delivering OpenCV frames to a sink one at a time.

    The sink decides whether to take or drop each frame; either way it must
    release it. A camera that cannot be opened is logged and simply never
    delivers a frame.
    """

    def __init__(
        self,
        sink: FrameSink,
        camera_id: int = 0,
        frame_width: int = 640,
        frame_height: int = 480,
        target_fps: float = 30.0,
        rotation_degrees: int = 0,
    ):
        self.sink = sink
        self.camera_id = camera_id
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.target_fps = target_fps
        self.rotation_degrees = rotation_degrees

        self._camera: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.frames_captured = 0
        self.frames_released = 0
        self.latest_image: Optional[np.ndarray] = None

    def start(self) -> bool:
        """
        Open the camera and start the capture thread.

        Returns:
            True if the camera opened, False otherwise (no frames will arrive)
        """
        if self._thread is not None:
            return True

        camera = cv2.VideoCapture(self.camera_id)
        if not camera.isOpened():
            logger.error(f"Failed to open camera {self.camera_id}, no frames will be delivered")
            camera.release()
            return False

        camera.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        camera.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        camera.set(cv2.CAP_PROP_FPS, self.target_fps)
        self._camera = camera

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._capture_loop, name="camera-capture", daemon=True
        )
        self._thread.start()
        logger.info(f"Camera {self.camera_id} initialized")
        return True

    def _release(self, frame: Frame) -> None:
        self.frames_released += 1

    def _capture_loop(self) -> None:
        interval = 1.0 / self.target_fps if self.target_fps > 0 else 0.0
        while not self._stop_event.is_set():
            loop_start = time.perf_counter()
            ret, image = self._camera.read()
            if not ret:
                logger.debug("Failed to capture frame")
                self._stop_event.wait(0.01)
                continue

            self.frames_captured += 1
            self.latest_image = image
            frame = Frame(
                image=image,
                rotation_degrees=self.rotation_degrees,
                channel_order="BGR",
                on_release=self._release,
            )
            try:
                self.sink(frame)
            except Exception as e:
                logger.error(f"Frame sink failed: {e}")
                frame.close()

            elapsed = time.perf_counter() - loop_start
            if elapsed < interval:
                self._stop_event.wait(interval - elapsed)

    def stop(self) -> None:
        """Stop capturing and release the camera."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._camera is not None:
            self._camera.release()
            self._camera = None
            logger.info(
                f"Camera stopped after {self.frames_captured} frames "
                f"({self.frames_released} released)"
            )

    def __enter__(self) -> "CameraFrameSource":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
