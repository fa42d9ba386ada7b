#!/usr/bin/env python3
"""
Live emotion classification and sensor fusion CLI.

Usage:
    python -m robo_sense.cli.run \
        --model models/Face_Expression.onnx \
        --camera 0 \
        --sensor-log recordings/shake.csv
"""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run live emotion classification with sensor fusion",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Model arguments
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Path to ONNX model file",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Inference worker threads (overrides config)",
    )
    parser.add_argument(
        "--no-accel",
        action="store_true",
        help="Never try a hardware execution provider",
    )

    # Input arguments
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera device ID (overrides config)",
    )
    parser.add_argument(
        "--rotation",
        type=int,
        default=None,
        choices=[0, 90, 180, 270],
        help="Clockwise rotation making camera frames upright (overrides config)",
    )
    parser.add_argument(
        "--sensor-log",
        type=str,
        default=None,
        metavar="CSV",
        help="Replay recorded sensor samples into the fusion engine",
    )

    # Output arguments
    parser.add_argument(
        "--show-video",
        action="store_true",
        help="Display video feed with overlay",
    )
    parser.add_argument(
        "--log-stats",
        action="store_true",
        help="Log performance statistics periodically",
    )
    parser.add_argument(
        "--stats-interval",
        type=float,
        default=5.0,
        help="Interval in seconds for logging stats",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    # Misc arguments
    parser.add_argument(
        "--create-config",
        type=str,
        default=None,
        metavar="PATH",
        help="Create a default config file and exit",
    )

    return parser.parse_args(argv)


def replay_sensor_log(hub, path: str, stop_event: threading.Event) -> None:
    """Push logged samples into the hub, honoring their relative timing."""
    from robo_sense.sensors import load_sensor_log

    start = time.perf_counter()
    first_timestamp: Optional[float] = None
    count = 0
    try:
        for sample in load_sensor_log(path):
            if stop_event.is_set():
                break
            if first_timestamp is None:
                first_timestamp = sample.timestamp
            due = sample.timestamp - first_timestamp
            delay = due - (time.perf_counter() - start)
            if delay > 0 and stop_event.wait(delay):
                break
            hub.dispatch(sample)
            count += 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Sensor replay stopped: {e}")
    logger.info(f"Replayed {count} sensor samples")


class SessionRunner:
    """Wires sensors, camera, pipeline and the displayed emotion together."""

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.running = False
        self.hub = None
        self.engine = None
        self.pipeline = None
        self.camera = None
        self.mood = None
        self.ui = None
        self._replay_stop = threading.Event()
        self._replay_thread: Optional[threading.Thread] = None
        self._last_stats_time = 0.0

    def setup(self) -> bool:
        """Build every component. Returns False if the camera is unusable."""
        from robo_sense.config import load_config
        from robo_sense.frames import CameraFrameSource
        from robo_sense.fusion import SensorFusionEngine
        from robo_sense.inference import EmotionClassifier
        from robo_sense.mood import EmotionStateController
        from robo_sense.pipeline import ClassificationPipeline, MainThreadExecutor
        from robo_sense.sensors import GRAVITY_EARTH, SensorHub, SensorType

        config = load_config(self.args.config)

        # Override with command line args
        if self.args.model:
            config.classifier.model_path = self.args.model
        if self.args.threads is not None:
            config.classifier.num_threads = self.args.threads
        if self.args.no_accel:
            config.classifier.use_accelerator = False
        if self.args.camera is not None:
            config.camera_id = self.args.camera
        if self.args.rotation is not None:
            config.camera_rotation = self.args.rotation

        self.ui = MainThreadExecutor()
        self.mood = EmotionStateController()
        self.mood.add_listener(lambda emotion: logger.info(f"Displayed emotion: {emotion}"))

        # Sensors: only a replayed log feeds the in-process hub
        self.hub = SensorHub()
        if self.args.sensor_log:
            self.hub.add_sensor(SensorType.ACCELEROMETER, max_range=4 * GRAVITY_EARTH)
            self.hub.add_sensor(SensorType.MAGNETOMETER)
            self.hub.add_sensor(SensorType.PROXIMITY, max_range=5.0)
            self.hub.add_sensor(SensorType.GYROSCOPE)
        self.engine = SensorFusionEngine(self.hub, config.fusion)
        self.engine.subscribe(lambda snapshot: self.ui.submit(self.mood.on_snapshot, snapshot))

        classifier = EmotionClassifier(config.classifier)
        if classifier.is_degraded:
            logger.warning("Classifier degraded, every frame will report Error")
        self.pipeline = ClassificationPipeline(
            classifier,
            on_result=self._on_result,
            result_executor=self.ui,
            log_performance=config.log_performance,
        )
        self.camera = CameraFrameSource(
            self.pipeline.submit,
            camera_id=config.camera_id,
            target_fps=config.target_fps,
            rotation_degrees=config.camera_rotation,
        )
        return True

    def _on_result(self, result) -> None:
        self.mood.on_result(result)
        if self.args.debug:
            logger.debug(f"Frame: {result.label.value} in {result.latency_ms}ms")

    def run(self) -> int:
        """Run the presentation loop until stopped."""
        if self.engine is None:
            return 1

        self.engine.start()
        if not self.camera.start():
            logger.warning("Running without camera frames")

        if self.args.sensor_log:
            self._replay_thread = threading.Thread(
                target=replay_sensor_log,
                args=(self.hub, self.args.sensor_log, self._replay_stop),
                name="sensor-replay",
                daemon=True,
            )
            self._replay_thread.start()

        cv2 = None
        if self.args.show_video:
            import cv2 as cv2_module
            cv2 = cv2_module

        logger.info("Starting session loop (Ctrl+C to stop)")
        self.running = True

        try:
            while self.running:
                self.ui.run_pending()

                if self.args.log_stats:
                    now = time.time()
                    if now - self._last_stats_time >= self.args.stats_interval:
                        self._log_stats()
                        self._last_stats_time = now

                if cv2 is not None:
                    image = self.camera.latest_image
                    if image is not None:
                        self._show(cv2, image.copy())
                        if cv2.waitKey(1) & 0xFF == ord('q'):
                            logger.info("Quit requested via keyboard")
                            break
                else:
                    time.sleep(0.01)

        except KeyboardInterrupt:
            logger.info("Interrupted by user")

        finally:
            self.running = False
            if cv2 is not None:
                cv2.destroyAllWindows()

        return 0

    def _show(self, cv2, frame) -> None:
        """Draw the current state onto the frame and display it."""
        snapshot = self.engine.current_snapshot()
        stats = self.pipeline.get_performance_stats()
        lines = [
            f"Emotion: {self.mood.current}",
            f"Latency: {stats['mean_ms']:.1f}ms",
            f"Pitch/Roll: {snapshot.pitch:+.2f}/{snapshot.roll:+.2f}",
        ]
        if snapshot.is_shaking:
            lines.append("SHAKING")
        if snapshot.is_proximity_near:
            lines.append("NEAR")

        y = 30
        for line in lines:
            cv2.putText(frame, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 0), 2)
            y += 25
        cv2.imshow('robo_sense', frame)

    def _log_stats(self):
        """Log performance statistics."""
        stats = self.pipeline.get_performance_stats()
        logger.info(
            f"Performance: mean={stats['mean_ms']:.1f}ms, "
            f"p95={stats['p95_ms']:.1f}ms, "
            f"processed={stats['frames_processed']}, "
            f"dropped={stats['frames_dropped']}"
        )

    def stop(self):
        """Stop the session loop."""
        self.running = False

    def cleanup(self):
        """Tear down in reverse order of data flow."""
        self._replay_stop.set()
        if self._replay_thread is not None:
            self._replay_thread.join(timeout=1.0)
        if self.camera is not None:
            self.camera.stop()
        if self.pipeline is not None:
            self.pipeline.close()
        if self.engine is not None:
            self.engine.stop()
        if self.ui is not None:
            self.ui.shutdown(cancel_futures=True)


def main(argv=None) -> int:
    """Main entry point for the session CLI."""
    args = parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    if args.create_config:
        from robo_sense.config import create_default_config
        create_default_config(args.create_config)
        print(f"Created default config at: {args.create_config}")
        return 0

    if not args.quiet:
        print("=" * 60)
        print("robo_sense - Live Emotion & Motion")
        print("=" * 60)
        print(f"Model: {args.model or 'from config'}")
        print(f"Camera: {args.camera if args.camera is not None else 'from config'}")
        print(f"Sensor log: {args.sensor_log or 'none'}")
        print("=" * 60)
        print()

    runner = SessionRunner(args)

    def signal_handler(signum, frame):
        logger.info("Received shutdown signal")
        runner.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if not runner.setup():
            return 1
        return runner.run()

    finally:
        runner.cleanup()
        if not args.quiet:
            print()
            print("Session stopped")


if __name__ == "__main__":
    sys.exit(main())
