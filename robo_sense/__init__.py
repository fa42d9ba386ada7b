"""
robo_sense Package

Sensor fusion and on-device emotion classification feeding a robot face.
"""

__version__ = "0.1.0"

from robo_sense.sensors import RawSample, SensorHub, SensorSource, SensorType
from robo_sense.snapshot import SensorSnapshot
from robo_sense.fusion import FusionConfig, SensorFusionEngine
from robo_sense.inference import (
    ClassifierConfig,
    EmotionClassifier,
    EmotionLabel,
    decode_scores,
)
from robo_sense.frames import Frame
from robo_sense.pipeline import ClassificationPipeline, ClassificationResult
from robo_sense.config import RuntimeConfig, load_config, save_config

__all__ = [
    "RawSample",
    "SensorHub",
    "SensorSource",
    "SensorType",
    "SensorSnapshot",
    "FusionConfig",
    "SensorFusionEngine",
    "ClassifierConfig",
    "EmotionClassifier",
    "EmotionLabel",
    "decode_scores",
    "Frame",
    "ClassificationPipeline",
    "ClassificationResult",
    "RuntimeConfig",
    "load_config",
    "save_config",
]
