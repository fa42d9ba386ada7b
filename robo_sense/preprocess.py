"""
Frame preprocessing for the emotion model.

Camera frames of any resolution are rotated upright, resized to the model's
square input with a single bilinear resize, converted to normalized
luminance and written straight into the classifier's input buffer.
All scratch memory is allocated once per channel layout and reused.
"""

import logging
from typing import Dict, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma, the conversion the FER-2013 grayscale images use
LUMA_RGB: Tuple[float, float, float] = (0.299, 0.587, 0.114)

CHANNEL_WEIGHTS: Dict[str, Tuple[float, ...]] = {
    "RGB": LUMA_RGB,
    "BGR": LUMA_RGB[::-1],
    "RGBA": LUMA_RGB + (0.0,),
    "BGRA": LUMA_RGB[::-1] + (0.0,),
}

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def normalize_rotation(image: np.ndarray, rotation_degrees: int) -> np.ndarray:
    """
    Rotate a frame clockwise by the camera-reported rotation so it is upright.

    Args:
        image: Frame as delivered by the camera
        rotation_degrees: 0, 90, 180 or 270 (negative values and multiples
            of 360 are normalized)

    Returns:
        The same array for 0 degrees, otherwise a rotated copy

    Raises:
        ValueError: If the rotation is not a multiple of 90
    """
    degrees = rotation_degrees % 360
    if degrees == 0:
        return image
    if degrees not in _ROTATIONS:
        raise ValueError(f"Rotation must be a multiple of 90, got {rotation_degrees}")
    return cv2.rotate(image, _ROTATIONS[degrees])


class FramePreprocessor:
    """Resize + grayscale + normalize into a caller-owned float32 plane.

    Attributes:
        width: Model input width
        height: Model input height
        interpolation: OpenCV interpolation flag used for the resize
    """

    def __init__(self, width: int = 48, height: int = 48,
                 interpolation: int = cv2.INTER_LINEAR):
        self.width = width
        self.height = height
        self.interpolation = interpolation

        self._weights = {
            order: np.asarray(weights, dtype=np.float32) / np.float32(255.0)
            for order, weights in CHANNEL_WEIGHTS.items()
        }
        self._resized: Dict[int, np.ndarray] = {}
        self._scratch: Dict[int, np.ndarray] = {}

    def _buffers_for(self, channels: int) -> Tuple[np.ndarray, np.ndarray]:
        if channels not in self._resized:
            shape = (self.height, self.width) if channels == 1 else (self.height, self.width, channels)
            self._resized[channels] = np.empty(shape, dtype=np.uint8)
            self._scratch[channels] = np.empty(shape, dtype=np.float32)
            logger.debug(f"Allocated preprocessing scratch for {channels} channel(s)")
        return self._resized[channels], self._scratch[channels]

    def process(self, image: np.ndarray, out: np.ndarray,
                channel_order: str = "RGB") -> np.ndarray:
        """
        Write the normalized luminance of ``image`` into ``out``.

        Args:
            image: uint8 frame, HxW (gray) or HxWxC
            out: float32, C-contiguous array of shape (height, width)
            channel_order: "RGB", "BGR", "RGBA", "BGRA" or "GRAY"

        Returns:
            ``out``, with every value in [0, 1]

        Raises:
            ValueError: If the frame or the output plane is unusable
        """
        if out.shape != (self.height, self.width) or out.dtype != np.float32 \
                or not out.flags.c_contiguous:
            raise ValueError(
                f"Output plane must be C-contiguous float32 of shape "
                f"({self.height}, {self.width}), got {out.dtype} {out.shape}"
            )
        if image.dtype != np.uint8:
            raise ValueError(f"Expected uint8 frame, got {image.dtype}")
        if image.ndim == 3 and image.shape[2] == 1:
            image = image[:, :, 0]
        if image.ndim not in (2, 3) or image.size == 0:
            raise ValueError(f"Unsupported frame shape {image.shape}")

        image = np.ascontiguousarray(image)
        channels = 1 if image.ndim == 2 else image.shape[2]
        resized, scratch = self._buffers_for(channels)
        cv2.resize(image, (self.width, self.height), dst=resized,
                   interpolation=self.interpolation)

        if channels == 1:
            np.multiply(resized, np.float32(1.0 / 255.0), out=out)
            return out

        weights = self._weights.get(channel_order.upper())
        if weights is None or weights.shape[0] != channels:
            raise ValueError(
                f"Channel order {channel_order!r} does not match a "
                f"{channels}-channel frame"
            )
        np.copyto(scratch, resized)
        np.dot(scratch, weights, out=out)
        return out
