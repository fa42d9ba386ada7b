"""
Tests for the ClassificationPipeline.

Covers single-flight backpressure (drop, never queue), frame release,
result delivery through the presentation executor and teardown.
"""

import threading
from concurrent.futures import CancelledError
from unittest.mock import MagicMock

import numpy as np
import pytest

from robo_sense.inference import EmotionLabel
from robo_sense.pipeline import ClassificationPipeline, ClassificationResult, MainThreadExecutor

from conftest import make_classifier, solid_frame


class TestBackpressure:
    """
    While one frame is being classified, every other delivered frame is
    released and dropped; at most one frame is ever in flight.
    """

    def test_frames_during_busy_interval_are_dropped(self):
        gate = threading.Event()
        classifier, runner = make_classifier(gate=gate)
        pipeline = ClassificationPipeline(classifier)

        first = solid_frame()
        assert pipeline.submit(first) is True

        dropped = [solid_frame() for _ in range(5)]
        for frame in dropped:
            assert pipeline.submit(frame) is False
            assert frame.is_released

        gate.set()
        assert pipeline.wait_idle(timeout=5.0)

        assert first.is_released
        assert runner.calls == 1
        assert runner.max_active == 1
        pipeline.close()

    def test_counters_add_up(self):
        classifier, runner = make_classifier(delay=0.02)
        pipeline = ClassificationPipeline(classifier)
        frames = [solid_frame() for _ in range(40)]

        for frame in frames:
            pipeline.submit(frame)
        pipeline.wait_idle(timeout=5.0)
        pipeline.close()

        stats = pipeline.get_performance_stats()
        assert stats['frames_delivered'] == 40
        assert stats['frames_processed'] + stats['frames_dropped'] == 40
        assert stats['frames_processed'] < 40
        assert stats['frames_processed'] == runner.calls
        assert runner.max_active == 1
        assert all(frame.is_released for frame in frames)

    def test_idle_pipeline_accepts_the_next_frame(self):
        classifier, runner = make_classifier()
        pipeline = ClassificationPipeline(classifier)

        for _ in range(3):
            assert pipeline.submit(solid_frame()) is True
            assert pipeline.wait_idle(timeout=5.0)
            assert not pipeline.is_busy

        assert runner.calls == 3
        pipeline.close()

    def test_release_callback_runs_once(self):
        released = []
        classifier, _ = make_classifier()
        pipeline = ClassificationPipeline(classifier)
        frame = solid_frame(on_release=released.append)

        pipeline.submit(frame)
        pipeline.wait_idle(timeout=5.0)
        frame.close()

        assert released == [frame]
        pipeline.close()

    def test_failing_release_does_not_stall(self):
        classifier, runner = make_classifier()
        pipeline = ClassificationPipeline(classifier)
        bad = solid_frame(on_release=MagicMock(side_effect=RuntimeError("producer gone")))

        assert pipeline.submit(bad) is True
        assert pipeline.wait_idle(timeout=5.0)
        assert bad.is_released
        assert not pipeline.is_busy

        accepted = []
        for _ in range(3):
            accepted.append(pipeline.submit(solid_frame()))
            pipeline.wait_idle(timeout=5.0)

        assert accepted == [True, True, True]
        assert runner.calls == 4
        pipeline.close()

    def test_failing_release_on_drop(self):
        gate = threading.Event()
        classifier, _ = make_classifier(gate=gate)
        pipeline = ClassificationPipeline(classifier)
        pipeline.submit(solid_frame())

        bad = solid_frame(on_release=MagicMock(side_effect=RuntimeError("producer gone")))
        assert pipeline.submit(bad) is False
        assert bad.is_released

        gate.set()
        assert pipeline.wait_idle(timeout=5.0)
        assert pipeline.submit(solid_frame()) is True
        pipeline.close()


class TestResultDelivery:

    def test_results_run_on_the_draining_thread(self):
        ui = MainThreadExecutor()
        received = []
        threads = []

        def on_result(result):
            received.append(result)
            threads.append(threading.current_thread())

        classifier, _ = make_classifier(scores=[0, 0, 0, 1, 0, 0, 0])
        pipeline = ClassificationPipeline(classifier, on_result, ui)

        pipeline.submit(solid_frame())
        pipeline.wait_idle(timeout=5.0)
        assert received == []

        assert ui.run_pending() == 1
        assert len(received) == 1
        assert received[0].label is EmotionLabel.HAPPY
        assert isinstance(received[0].latency_ms, int)
        assert received[0].latency_ms >= 0
        assert threads == [threading.current_thread()]
        pipeline.close()

    def test_results_arrive_in_completion_order(self):
        ui = MainThreadExecutor()
        received = []
        classifier, _ = make_classifier()
        pipeline = ClassificationPipeline(classifier, received.append, ui)

        for value in (0, 255, 0):
            pipeline.submit(solid_frame((value, value, value)))
            pipeline.wait_idle(timeout=5.0)
        ui.run_pending()

        assert [r.label for r in received] == [
            EmotionLabel.ANGRY, EmotionLabel.SURPRISE, EmotionLabel.ANGRY,
        ]
        pipeline.close()

    def test_without_executor_results_arrive_on_the_worker(self):
        received = []
        classifier, _ = make_classifier()
        pipeline = ClassificationPipeline(classifier, received.append)

        pipeline.submit(solid_frame())
        pipeline.wait_idle(timeout=5.0)

        assert len(received) == 1
        pipeline.close()

    def test_rotation_is_applied_before_classification(self):
        classifier, runner = make_classifier()
        seen_shapes = []
        original = classifier.preprocessor.process

        def spy(image, out, channel_order="RGB"):
            seen_shapes.append(image.shape)
            return original(image, out, channel_order)

        classifier.preprocessor.process = spy
        pipeline = ClassificationPipeline(classifier)

        pipeline.submit(solid_frame(height=40, width=100, rotation_degrees=90))
        pipeline.wait_idle(timeout=5.0)

        assert seen_shapes == [(100, 40, 3)]
        pipeline.close()

    def test_error_sentinel_is_delivered(self):
        received = []
        classifier, runner = make_classifier()
        runner.run = MagicMock(side_effect=RuntimeError("gpu lost"))
        pipeline = ClassificationPipeline(classifier, received.append)

        pipeline.submit(solid_frame())
        pipeline.wait_idle(timeout=5.0)

        assert received[0].label is EmotionLabel.ERROR
        pipeline.close()

    def test_failing_callback_keeps_the_worker_alive(self):
        received = []

        def on_result(result):
            received.append(result)
            raise ValueError("bad consumer")

        classifier, runner = make_classifier()
        pipeline = ClassificationPipeline(classifier, on_result)

        for _ in range(2):
            assert pipeline.submit(solid_frame()) is True
            assert pipeline.wait_idle(timeout=5.0)

        assert len(received) == 2
        assert runner.calls == 2
        pipeline.close()

    def test_performance_stats(self):
        classifier, _ = make_classifier()
        pipeline = ClassificationPipeline(classifier)
        assert pipeline.get_performance_stats()['fps'] == 0.0

        pipeline.submit(solid_frame())
        pipeline.wait_idle(timeout=5.0)
        stats = pipeline.get_performance_stats()

        assert stats['frames_processed'] == 1
        assert stats['max_ms'] >= stats['mean_ms'] >= 0.0
        pipeline.close()


class TestTeardown:

    def test_close_releases_classifier(self):
        classifier, runner = make_classifier()
        with ClassificationPipeline(classifier) as pipeline:
            pipeline.submit(solid_frame())
        assert pipeline.is_closed
        assert classifier.is_closed
        assert runner.closed

    def test_submit_after_close_releases_frame(self):
        classifier, runner = make_classifier()
        pipeline = ClassificationPipeline(classifier)
        pipeline.close()

        frame = solid_frame()
        assert pipeline.submit(frame) is False
        assert frame.is_released
        assert runner.calls == 0

    def test_close_waits_for_in_flight_frame(self):
        gate = threading.Event()
        classifier, runner = make_classifier(gate=gate)
        pipeline = ClassificationPipeline(classifier)
        frame = solid_frame()
        pipeline.submit(frame)

        closer = threading.Thread(target=pipeline.close)
        closer.start()
        gate.set()
        closer.join(timeout=5.0)

        assert frame.is_released
        assert runner.closed

    def test_late_results_are_discarded(self):
        ui = MainThreadExecutor()
        received = []
        classifier, _ = make_classifier()
        pipeline = ClassificationPipeline(classifier, received.append, ui)

        pipeline.submit(solid_frame())
        pipeline.wait_idle(timeout=5.0)
        pipeline.close()
        ui.run_pending()

        assert received == []

    def test_close_is_idempotent(self):
        classifier, _ = make_classifier()
        pipeline = ClassificationPipeline(classifier)
        pipeline.close()
        pipeline.close()


class TestMainThreadExecutor:

    def test_tasks_wait_for_run_pending(self):
        ui = MainThreadExecutor()
        calls = []
        future = ui.submit(calls.append, 1)

        assert calls == []
        assert not future.done()
        assert ui.run_pending() == 1
        assert calls == [1]
        assert future.done()

    def test_failing_task_sets_exception(self):
        ui = MainThreadExecutor()
        future = ui.submit(lambda: 1 / 0)
        ui.run_pending()
        with pytest.raises(ZeroDivisionError):
            future.result()

    def test_shutdown_rejects_and_cancels(self):
        ui = MainThreadExecutor()
        pending = ui.submit(lambda: "never")
        ui.shutdown(cancel_futures=True)

        with pytest.raises(CancelledError):
            pending.result()
        with pytest.raises(RuntimeError):
            ui.submit(lambda: None)

    def test_result_value(self):
        ui = MainThreadExecutor()
        future = ui.submit(np.add, 2, 3)
        ui.run_pending()
        assert future.result() == 5


def test_result_is_immutable():
    result = ClassificationResult(EmotionLabel.SAD, 12)
    with pytest.raises(AttributeError):
        result.latency_ms = 0
