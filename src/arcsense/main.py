"""
Main entry point for arcsense.

Runs one practice session either on a synthetic stream (demo mode) or on a live
camera/video source with ArUco marker detection, then prints the result.

Usage:
    arcsense --technique MIG --demo            # Synthetic session
    arcsense --technique TIG --video 0 --show  # Live camera 0 with preview
    arcsense --demo --output results/          # Save result JSON
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

import cv2

from arcsense.errors import ArcSenseError
from arcsense.marker_detect import MarkerDetector
from arcsense.pipeline import TrainingPipeline
from arcsense.session import SessionState
from arcsense.simulate import SyntheticConfig, SyntheticStream
from arcsense.technique import Technique
from arcsense.utils import format_session_result, get_config, save_session_result, setup_logging, validate_config

LOGGER = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="arcsense - welding technique trainer (marker + motion fusion)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls (with --show):
  P  - Pause/resume
  Q  - Stop session
        """,
    )
    parser.add_argument(
        "--technique", "-t",
        choices=[t.value for t in Technique],
        help="Welding technique (overrides config)",
    )
    parser.add_argument("--config", "-c", help="JSON configuration file")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--demo", action="store_true", help="Run on a synthetic stream (default)")
    source.add_argument("--video", help="Camera index or video file for live tracking")
    parser.add_argument("--duration", type=float, help="Session duration in seconds")
    parser.add_argument("--dropouts", action="store_true", help="Inject marker dropouts in demo mode")
    parser.add_argument("--show", action="store_true", help="Show the video preview")
    parser.add_argument("--output", "-o", help="Write the session result as JSON")
    parser.add_argument("--verbose", "-V", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def run_demo(config, dropouts: bool = False):
    """Run a session on synthetic data, driving the session clock from the stream."""
    clock = {"now": 0.0}
    pipeline = TrainingPipeline(config, clock=lambda: clock["now"])

    synthetic = SyntheticConfig(dropout_every=90 if dropouts else 0, dropout_length=20 if dropouts else 0)
    stream = SyntheticStream(pipeline.params, pipeline.geometry_config, synthetic)

    pipeline.start()
    for tick in stream.generate():
        clock["now"] = tick.timestamp
        pipeline.process(tick.observation, tick.motion, tick.timestamp)
        if pipeline.state is SessionState.COMPLETED:
            break
    return pipeline.result


def run_live(config, source: str, show: bool = False):
    """Run a session on a camera or video file."""
    capture_source = int(source) if source.isdigit() else source
    cap = cv2.VideoCapture(capture_source)
    if not cap.isOpened():
        raise ArcSenseError(f"Could not open video source {source}")

    detector = MarkerDetector(config.get("marker_detection"))
    detector.initialize()
    pipeline = TrainingPipeline(config)
    pipeline.start()

    try:
        while pipeline.state is not SessionState.COMPLETED:
            ok, frame = cap.read()
            if not ok:
                LOGGER.info("Video source exhausted")
                break
            now = time.monotonic()
            observation = detector.detect(frame, now)
            tick = pipeline.process(observation, None, now)

            if show:
                preview = detector.draw(frame, observation)
                label = f"{pipeline.state.value} | {tick.pose.status.value}"
                if tick.quality is not None:
                    label += f" | quality {tick.quality:.0f}"
                cv2.putText(preview, label, (10, 25), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 255), 2)
                cv2.imshow("arcsense", preview)
                key = cv2.waitKey(1) & 0xFF
                if key == ord("q"):
                    break
                if key == ord("p"):
                    if pipeline.state is SessionState.RUNNING:
                        pipeline.pause()
                    elif pipeline.state is SessionState.PAUSED:
                        pipeline.resume()
    finally:
        cap.release()
        if show:
            cv2.destroyAllWindows()

    if pipeline.state is not SessionState.COMPLETED:
        pipeline.stop()
    return pipeline.result


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    config = get_config(args.config)
    if args.technique:
        config["technique"] = args.technique
    if args.duration:
        config["session"]["duration_seconds"] = args.duration
    if not validate_config(config):
        LOGGER.error("Invalid configuration")
        return 2

    try:
        if args.video is not None:
            result = run_live(config, args.video, show=args.show)
        else:
            result = run_demo(config, dropouts=args.dropouts)
    except ArcSenseError as e:
        LOGGER.error("%s", e)
        return 1

    print(format_session_result(result))
    if args.output:
        save_session_result(result, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
