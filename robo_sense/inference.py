"""
Emotion classification with a fixed-topology ONNX network.

This module provides the OnnxModelRunner, which executes the network over
the classifier's preallocated buffers (preferring a hardware-accelerated
execution provider and falling back to the CPU), and the EmotionClassifier,
which sequences preprocessing, inference and label decoding.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import onnxruntime as ort

from .buffers import InferenceBuffers
from .errors import ClassifierClosedError, ModelLoadError
from .preprocess import FramePreprocessor

logger = logging.getLogger(__name__)

CPU_PROVIDER = "CPUExecutionProvider"
DEFAULT_ACCELERATORS: Tuple[str, ...] = (
    "CUDAExecutionProvider",
    "CoreMLExecutionProvider",
    "DmlExecutionProvider",
)


class EmotionLabel(str, Enum):
    """Closed set of classifier outputs, plus two sentinels."""

    ANGRY = "Angry"
    DISGUST = "Disgust"
    FEAR = "Fear"
    HAPPY = "Happy"
    NEUTRAL = "Neutral"
    SAD = "Sad"
    SURPRISE = "Surprise"
    ERROR = "Error"
    UNKNOWN = "Unknown"

    @property
    def is_sentinel(self) -> bool:
        return self in (EmotionLabel.ERROR, EmotionLabel.UNKNOWN)


# Model output index -> label (FER-2013 class order)
EMOTION_TABLE: Tuple[EmotionLabel, ...] = (
    EmotionLabel.ANGRY,
    EmotionLabel.DISGUST,
    EmotionLabel.FEAR,
    EmotionLabel.HAPPY,
    EmotionLabel.NEUTRAL,
    EmotionLabel.SAD,
    EmotionLabel.SURPRISE,
)


def decode_scores(scores: Sequence[float]) -> EmotionLabel:
    """
    Map a class-score vector to a label.

    The highest score wins, ties go to the lowest index. An index outside
    the label table, an empty vector or any non-finite score decodes to
    UNKNOWN.
    """
    scores = np.asarray(scores, dtype=np.float64).ravel()
    if scores.size == 0 or not np.isfinite(scores).all():
        return EmotionLabel.UNKNOWN
    index = int(np.argmax(scores))
    if 0 <= index < len(EMOTION_TABLE):
        return EMOTION_TABLE[index]
    return EmotionLabel.UNKNOWN


@dataclass
class ClassifierConfig:
    """Configuration for the emotion classifier.

    Attributes:
        model_path: Path to the ONNX model file
        input_size: Square model input resolution
        input_channels: Channels of the model input
        num_classes: Length of the class-score vector
        num_threads: Intra-op worker threads for the CPU executor
        use_accelerator: Whether to try a hardware execution provider
        accelerators: Execution providers to try, in preference order
    """
    model_path: Optional[str] = None
    input_size: int = 48
    input_channels: int = 1
    num_classes: int = 7
    num_threads: int = 4
    use_accelerator: bool = True
    accelerators: List[str] = field(default_factory=lambda: list(DEFAULT_ACCELERATORS))


class OnnxModelRunner:
    """ONNX Runtime session bound to a fixed pair of buffers.

    The buffers are wrapped as OrtValues once, so every run reads the input
    tensor and writes the score vector in place without allocating.
    """

    def __init__(
        self,
        model_path: Optional[str],
        buffers: InferenceBuffers,
        num_threads: int = 4,
        accelerators: Sequence[str] = DEFAULT_ACCELERATORS,
    ):
        """
        Load the model and bind it to the buffers.

        Args:
            model_path: Path to ONNX model file
            buffers: Buffers owned by the calling classifier
            num_threads: Intra-op worker threads
            accelerators: Execution providers to try before the CPU

        Raises:
            ModelLoadError: If the model is missing, unreadable, or its
                input/output sizes do not match the buffers
        """
        if not model_path:
            raise ModelLoadError("No model path configured")
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise ModelLoadError(f"Model not found: {model_path}")

        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        sess_options.intra_op_num_threads = num_threads

        self.accelerator: Optional[str] = None
        self.session = None

        available = ort.get_available_providers()
        candidates = [p for p in accelerators if p in available]
        if candidates:
            try:
                self.session = ort.InferenceSession(
                    str(self.model_path),
                    sess_options=sess_options,
                    providers=[candidates[0], CPU_PROVIDER],
                )
                if candidates[0] in self.session.get_providers():
                    self.accelerator = candidates[0]
                    logger.info(f"Hardware acceleration enabled: {self.accelerator}")
                else:
                    logger.info(f"{candidates[0]} could not be attached, running on CPU")
            except Exception as e:
                logger.warning(f"Accelerated session failed, falling back to CPU: {e}")
                self.session = None
        elif accelerators:
            logger.info("Hardware acceleration not supported on this device")

        try:
            if self.session is None:
                self.session = ort.InferenceSession(
                    str(self.model_path),
                    sess_options=sess_options,
                    providers=[CPU_PROVIDER],
                )
            self._bind(buffers)
        except ModelLoadError:
            self.session = None
            raise
        except Exception as e:
            self.session = None
            raise ModelLoadError(f"Failed to load {self.model_path}: {e}")

        logger.info(f"Loaded ONNX model from {model_path}")

    def _bind(self, buffers: InferenceBuffers) -> None:
        model_input = self.session.get_inputs()[0]
        model_output = self.session.get_outputs()[0]
        input_shape = _concrete_shape(model_input.shape)
        output_shape = _concrete_shape(model_output.shape)

        if int(np.prod(input_shape)) != buffers.input.size:
            raise ModelLoadError(
                f"Model input {model_input.shape} does not fit buffer {buffers.input.shape}"
            )
        if int(np.prod(output_shape)) != buffers.output.size:
            raise ModelLoadError(
                f"Model output {model_output.shape} does not fit buffer {buffers.output.shape}"
            )

        logger.debug(f"Input {model_input.name}: {model_input.shape}")
        logger.debug(f"Output {model_output.name}: {model_output.shape}")

        # NHWC and NCHW coincide for one channel; both are views of the buffers
        self._buffers = buffers
        self._input_value = ort.OrtValue.ortvalue_from_numpy(buffers.input.reshape(input_shape))
        self._output_value = ort.OrtValue.ortvalue_from_numpy(buffers.output.reshape(output_shape))
        self._binding = self.session.io_binding()
        self._binding.bind_ortvalue_input(model_input.name, self._input_value)
        self._binding.bind_ortvalue_output(model_output.name, self._output_value)

    def run(self, buffers: InferenceBuffers) -> None:
        """Run the network over the bound input, writing into the bound output."""
        if self.session is None:
            raise ClassifierClosedError("Model session has been closed")
        if buffers is not self._buffers:
            raise ValueError("Runner is bound to a different buffer set")
        self.session.run_with_iobinding(self._binding)

    def close(self) -> None:
        """Release the session and its execution providers."""
        if self.session is None:
            return
        self._binding.clear_binding_inputs()
        self._binding.clear_binding_outputs()
        self._binding = None
        self._input_value = None
        self._output_value = None
        self.session = None
        logger.debug("ONNX session released")

    @property
    def is_loaded(self) -> bool:
        return self.session is not None


def _concrete_shape(shape: Sequence) -> Tuple[int, ...]:
    """Replace symbolic/unknown dimensions (batch) with 1."""
    return tuple(d if isinstance(d, int) and d > 0 else 1 for d in shape)


RunnerFactory = Callable[..., "OnnxModelRunner"]


class EmotionClassifier:
    """Frame -> emotion label, over buffers reused for every frame.

    If the model cannot be loaded the classifier stays usable but degraded:
    classify() returns EmotionLabel.ERROR instead of raising on every call.

    Usage:
        classifier = EmotionClassifier(ClassifierConfig(model_path="fer.onnx"))
        label = classifier.classify(rgb_frame)
        classifier.close()
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        runner_factory: Optional[RunnerFactory] = None,
    ):
        """
        Allocate the buffers and load the model.

        Args:
            config: Classifier configuration
            runner_factory: Callable building the model runner, called as
                ``factory(model_path, buffers, num_threads=..., accelerators=...)``;
                OnnxModelRunner by default
        """
        self.config = config or ClassifierConfig()
        size = self.config.input_size
        if self.config.input_channels != 1:
            raise ValueError(
                f"Only single-channel models are supported, got {self.config.input_channels}"
            )
        self.buffers = InferenceBuffers(
            width=size,
            height=size,
            channels=self.config.input_channels,
            num_classes=self.config.num_classes,
        )
        self.preprocessor = FramePreprocessor(width=size, height=size)

        self._runner = None
        self._closed = False
        factory = runner_factory or OnnxModelRunner
        accelerators = self.config.accelerators if self.config.use_accelerator else []

        try:
            self._runner = factory(
                self.config.model_path,
                self.buffers,
                num_threads=self.config.num_threads,
                accelerators=accelerators,
            )
        except Exception as e:
            logger.error(f"Model initialization failed, classifier degraded: {e}")
            self._runner = None

    def classify(self, image: np.ndarray, channel_order: str = "RGB") -> EmotionLabel:
        """
        Classify one upright frame.

        Args:
            image: uint8 frame, HxW or HxWxC
            channel_order: Channel layout of ``image``

        Returns:
            The decoded label; ERROR when degraded or when this frame failed

        Raises:
            ClassifierClosedError: If called after close()
            BufferBusyError: If another classification holds the buffers
        """
        if self._closed:
            raise ClassifierClosedError("classify() called after close()")
        if self._runner is None:
            return EmotionLabel.ERROR

        with self.buffers.acquire():
            self.buffers.rewind()
            try:
                self.preprocessor.process(image, self.buffers.input_plane, channel_order)
                self._runner.run(self.buffers)
            except Exception as e:
                logger.error(f"Classification failed: {e}")
                return EmotionLabel.ERROR
            return decode_scores(self.buffers.output)

    def close(self) -> None:
        """Release the model session and invalidate the buffers. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._runner is not None:
                self._runner.close()
        finally:
            self._runner = None
            self.buffers.release()
        logger.info("Emotion classifier closed")

    def __enter__(self) -> "EmotionClassifier":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def is_degraded(self) -> bool:
        """True when the model failed to load."""
        return self._runner is None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def accelerator(self) -> Optional[str]:
        """Attached hardware execution provider, if any."""
        return getattr(self._runner, "accelerator", None)
