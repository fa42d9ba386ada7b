"""
Configuration management for the robo_sense runtime.

This module provides configuration file loading and saving for the fusion
engine, the classifier and the camera loop, supporting YAML and JSON
formats.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .fusion import FusionConfig
from .inference import ClassifierConfig

logger = logging.getLogger(__name__)

# Default config file locations
DEFAULT_CONFIG_PATHS = [
    Path("robo_sense.yaml"),
    Path("robo_sense.json"),
    Path.home() / ".config" / "robo_sense" / "config.yaml",
    Path.home() / ".config" / "robo_sense" / "config.json",
]

VALID_ROTATIONS = (0, 90, 180, 270)


@dataclass
class RuntimeConfig:
    """Top-level configuration.

    Attributes:
        fusion: Sensor fusion tuning
        classifier: Model and execution settings
        camera_id: Camera device ID
        camera_rotation: Clockwise rotation applied to every camera frame
        target_fps: Capture rate requested from the camera
        log_performance: Whether to keep classification latency statistics
    """
    fusion: FusionConfig = field(default_factory=FusionConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    camera_id: int = 0
    camera_rotation: int = 0
    target_fps: float = 30.0
    log_performance: bool = True


def load_config(
    config_path: Optional[Union[str, Path]] = None
) -> RuntimeConfig:
    """
    Load runtime configuration from file.

    Supports YAML and JSON formats. If no path is specified, searches
    default locations.

    Args:
        config_path: Path to config file, or None to search defaults

    Returns:
        RuntimeConfig instance

    Raises:
        FileNotFoundError: If the given config file does not exist
        ValueError: If config file is invalid
    """
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        path = None
        for default_path in DEFAULT_CONFIG_PATHS:
            if default_path.exists():
                path = default_path
                break

        if path is None:
            logger.info("No config file found, using defaults")
            return RuntimeConfig()

    logger.info(f"Loading config from {path}")

    try:
        with open(path, 'r') as f:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse config file: {e}")

    return _dict_to_config(data or {})


def save_config(
    config: RuntimeConfig,
    config_path: Union[str, Path],
    format: str = "auto"
) -> None:
    """
    Save runtime configuration to file.

    Args:
        config: Configuration to save
        config_path: Output file path
        format: "yaml", "json", or "auto" (detect from extension)
    """
    path = Path(config_path)

    if format == "auto":
        format = "yaml" if path.suffix in ('.yaml', '.yml') else "json"

    data = _config_to_dict(config)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w') as f:
        if format == "yaml":
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(data, f, indent=2)

    logger.info(f"Saved config to {path}")


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    """Build a section dataclass, rejecting unknown keys."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    known = cls.__dataclass_fields__.keys()
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return cls(**data)


def _dict_to_config(data: Dict[str, Any]) -> RuntimeConfig:
    """Convert dictionary to RuntimeConfig."""
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    unknown = set(data) - set(RuntimeConfig.__dataclass_fields__.keys())
    if unknown:
        raise ValueError(f"Unknown top-level config keys: {sorted(unknown)}")

    defaults = RuntimeConfig()
    rotation = data.get('camera_rotation', defaults.camera_rotation)
    if rotation not in VALID_ROTATIONS:
        raise ValueError(
            f"camera_rotation must be one of {VALID_ROTATIONS}, got {rotation!r}"
        )
    return RuntimeConfig(
        fusion=_section(FusionConfig, data.get('fusion'), 'fusion'),
        classifier=_section(ClassifierConfig, data.get('classifier'), 'classifier'),
        camera_id=data.get('camera_id', defaults.camera_id),
        camera_rotation=rotation,
        target_fps=data.get('target_fps', defaults.target_fps),
        log_performance=data.get('log_performance', defaults.log_performance),
    )


def _config_to_dict(config: RuntimeConfig) -> Dict[str, Any]:
    """Convert RuntimeConfig to dictionary."""
    return asdict(config)


def create_default_config(output_path: Union[str, Path]) -> None:
    """
    Create a default configuration file with comments.

    Args:
        output_path: Path to write the config file
    """
    path = Path(output_path)

    if path.suffix in ('.yaml', '.yml'):
        content = """# robo_sense configuration
# ========================

fusion:
  # Blend factor for the accelerometer + magnetometer tilt estimate
  fused_alpha: 0.1
  # Blend factor for the accelerometer-only estimate (noisier, so smaller)
  fallback_alpha: 0.08
  # g-force above which a single sample counts as shaking
  shake_threshold_g: 2.8
  # Decay of the smoothed acceleration magnitude
  shake_smoothing: 0.9
  # Proximity distance (cm) below which something is "near"
  proximity_near_cm: 5.0
  # z / |a| below which the screen faces the floor
  face_down_z_ratio: -0.8
  # Seconds before a magnetometer reading is ignored (null = never)
  magnetometer_stale_after: null

classifier:
  # Path to ONNX model file (null leaves the classifier degraded)
  model_path: null
  input_size: 48
  input_channels: 1
  num_classes: 7
  # Intra-op worker threads
  num_threads: 4
  # Try a hardware execution provider before the CPU
  use_accelerator: true
  accelerators:
    - CUDAExecutionProvider
    - CoreMLExecutionProvider
    - DmlExecutionProvider

# Camera device ID (usually 0 for built-in camera)
camera_id: 0

# Clockwise rotation (0, 90, 180, 270) that makes camera frames upright
camera_rotation: 0

# Capture rate requested from the camera
target_fps: 30.0

# Keep classification latency statistics
log_performance: true
"""
    else:
        content = json.dumps(_config_to_dict(RuntimeConfig()), indent=2)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        f.write(content)

    logger.info(f"Created default config at {path}")
