"""
Frame classification pipeline.

Frames are analyzed on one dedicated worker thread. A frame that arrives
while another is still being classified is released and dropped on the
spot, never queued, so at most one frame is ever in flight and the
inference buffers are never shared. Results are handed to the presentation
context through an executor.
"""

import logging
import queue
import threading
import time
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

import numpy as np

from .frames import Frame
from .inference import EmotionClassifier, EmotionLabel
from .preprocess import normalize_rotation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """One classified frame.

    Attributes:
        label: Decoded emotion (or a sentinel)
        latency_ms: Wall time spent in classify()
        timestamp: Completion time (seconds since the epoch)
    """
    label: EmotionLabel
    latency_ms: int
    timestamp: float = 0.0


ResultCallback = Callable[[ClassificationResult], None]


def _release(frame: Frame) -> None:
    """Hand a frame back to its producer, logging a failing release callback."""
    try:
        frame.close()
    except Exception as e:
        logger.error(f"Frame release failed: {e}")


class MainThreadExecutor(Executor):
    """Executor whose tasks run only when the owning thread drains them.

    The presentation loop calls run_pending() once per iteration; every
    result callback therefore executes on that thread.
    """

    def __init__(self):
        self._tasks: "queue.SimpleQueue" = queue.SimpleQueue()
        self._shutdown = False

    def submit(self, fn, /, *args, **kwargs) -> Future:
        if self._shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future: Future = Future()
        self._tasks.put((future, fn, args, kwargs))
        return future

    def run_pending(self) -> int:
        """Run every queued task on the calling thread. Returns the count."""
        count = 0
        while True:
            try:
                future, fn, args, kwargs = self._tasks.get_nowait()
            except queue.Empty:
                return count
            count += 1
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                logger.error(f"Main-thread task failed: {e}")
                future.set_exception(e)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        self._shutdown = True
        if cancel_futures:
            while True:
                try:
                    future, _, _, _ = self._tasks.get_nowait()
                except queue.Empty:
                    break
                future.cancel()


class ClassificationPipeline:
    """Single-flight frame analyzer.

    Usage:
        ui = MainThreadExecutor()
        pipeline = ClassificationPipeline(classifier, on_result, ui)
        camera = CameraFrameSource(pipeline.submit)
        ...
        ui.run_pending()  # on the presentation thread
    """

    def __init__(
        self,
        classifier: EmotionClassifier,
        on_result: Optional[ResultCallback] = None,
        result_executor: Optional[Executor] = None,
        log_performance: bool = True,
    ):
        """
        Args:
            classifier: Classifier owned by this pipeline (closed with it)
            on_result: Callback receiving every completed result
            result_executor: Context the callback runs in; the worker
                thread itself if None
            log_performance: Whether to keep latency statistics
        """
        self.classifier = classifier
        self.on_result = on_result
        self.result_executor = result_executor
        self.log_performance = log_performance

        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-analyzer")
        self._lock = threading.Lock()
        self._in_flight: Optional[Future] = None
        self._closed = False

        self.frames_delivered = 0
        self.frames_dropped = 0
        self.frames_processed = 0
        self._latencies: Deque[float] = deque(maxlen=1000)

    def submit(self, frame: Frame) -> bool:
        """
        Offer a frame for analysis.

        Returns:
            True if the frame was taken; False if it was dropped (pipeline
            busy or closed), in which case it has already been released
        """
        with self._lock:
            self.frames_delivered += 1
            if self._closed or self._in_flight is not None:
                self.frames_dropped += 1
                _release(frame)
                return False
            self._in_flight = self._worker.submit(self._analyze, frame)
        return True

    def _analyze(self, frame: Frame) -> Optional[ClassificationResult]:
        result = None
        try:
            if self._closed:
                return None
            image = normalize_rotation(frame.image, frame.rotation_degrees)
            start = time.perf_counter()
            label = self.classifier.classify(image, channel_order=frame.channel_order)
            latency_ms = int((time.perf_counter() - start) * 1000)
            result = ClassificationResult(label, latency_ms, time.time())
        except Exception as e:
            logger.error(f"Frame analysis failed: {e}")
            result = ClassificationResult(EmotionLabel.ERROR, 0, time.time())
        finally:
            _release(frame)
            with self._lock:
                self._in_flight = None
                if result is not None:
                    self.frames_processed += 1
                    if self.log_performance:
                        self._latencies.append(result.latency_ms)

        if result is not None:
            self._publish(result)
        return result

    def _publish(self, result: ClassificationResult) -> None:
        if self._closed:
            logger.debug("Discarding result completed after close")
            return
        if self.on_result is None:
            return
        if self.result_executor is None:
            try:
                self.on_result(result)
            except Exception as e:
                logger.error(f"Result callback failed: {e}")
            return
        try:
            self.result_executor.submit(self._deliver, result)
        except RuntimeError as e:
            logger.debug(f"Result executor unavailable: {e}")

    def _deliver(self, result: ClassificationResult) -> None:
        # Runs in the presentation context; teardown may have happened meanwhile
        if not self._closed and self.on_result is not None:
            self.on_result(result)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no frame is in flight. Returns False on timeout."""
        with self._lock:
            future = self._in_flight
        if future is None:
            return True
        try:
            future.result(timeout=timeout)
        except Exception:
            return future.done()
        return True

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_performance_stats(self) -> Dict[str, float]:
        """
        Get classification performance statistics.

        Returns:
            Dictionary with latency statistics and frame counters
        """
        stats = {
            'frames_delivered': self.frames_delivered,
            'frames_processed': self.frames_processed,
            'frames_dropped': self.frames_dropped,
        }
        if not self._latencies:
            stats.update({'mean_ms': 0.0, 'p95_ms': 0.0, 'max_ms': 0.0, 'fps': 0.0})
            return stats

        latencies = np.array(self._latencies, dtype=np.float64)
        mean = float(np.mean(latencies))
        stats.update({
            'mean_ms': mean,
            'p95_ms': float(np.percentile(latencies, 95)),
            'max_ms': float(np.max(latencies)),
            'fps': 1000.0 / mean if mean > 0 else 0.0,
        })
        return stats

    def close(self) -> None:
        """
        Stop accepting frames, let the in-flight one finish, then release
        the worker and the classifier. Idempotent.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._worker.shutdown(wait=True)
        self.classifier.close()
        logger.info(
            f"Classification pipeline closed: {self.frames_processed} processed, "
            f"{self.frames_dropped} dropped"
        )

    def __enter__(self) -> "ClassificationPipeline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
