"""
Exception types raised by the robo_sense package.

Per-sample and per-frame failures never surface as exceptions; they are
absorbed into sentinel labels or dropped samples. The types below signal
lifecycle misuse or load-time failures.
"""


class RoboSenseError(Exception):
    """Base class for all robo_sense errors."""


class ModelLoadError(RoboSenseError):
    """The model file could not be loaded or does not fit the buffers."""


class ClassifierClosedError(RoboSenseError):
    """classify() was called after the classifier was closed."""


class BufferBusyError(RoboSenseError):
    """The inference buffers are already in use by another classification."""
