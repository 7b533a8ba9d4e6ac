"""
Training pipeline.

Wires marker geometry, sensor fusion, quality scoring and session aggregation
into one pull-based ``process`` call. The caller's frame/timer loop decides the
tick cadence and passes whatever inputs are newest; either input may be missing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from arcsense.errors import SessionStateError
from arcsense.fusion import FusionConfig, MotionSample, PoseEstimate, SensorFusion
from arcsense.geometry import GeometryConfig, MarkerGeometry, MarkerObservation
from arcsense.scoring import QualityScorer
from arcsense.session import (
    DEFAULT_MAX_SAMPLES,
    DEFAULT_TOLERANCE_THRESHOLD,
    SessionAggregator,
    SessionResult,
    SessionState,
)
from arcsense.technique import Technique

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    """Output of one pipeline tick."""

    pose: PoseEstimate
    quality: Optional[float]
    recorded: bool
    state: SessionState


class TrainingPipeline:
    """
    One practice session from raw observations to a ``SessionResult``.

    Geometry and fusion state is created by ``start`` and dropped by ``reset``,
    so nothing carries over between sessions.
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.config = config or {}
        self.technique = Technique.from_name(self.config.get("technique", "MIG"))
        self.params = self.technique.parameters
        self.geometry_config = GeometryConfig.from_dict(self.config.get("geometry"))
        self.fusion_config = FusionConfig.from_dict(self.config.get("fusion"))

        session_config = self.config.get("session") or {}
        self.scorer = QualityScorer()
        self.session = SessionAggregator(
            self.params,
            scorer=self.scorer,
            max_samples=session_config.get("max_samples", DEFAULT_MAX_SAMPLES),
            tolerance_threshold=session_config.get("tolerance_threshold", DEFAULT_TOLERANCE_THRESHOLD),
            duration_seconds=session_config.get("duration_seconds"),
            clock=clock,
            wall_clock=wall_clock,
        )

        self.geometry: Optional[MarkerGeometry] = None
        self.fusion: Optional[SensorFusion] = None
        self.last_pose: Optional[PoseEstimate] = None

        LOGGER.info(
            "Training pipeline ready: %s, marker %.1fmm, focal %.0fpx",
            self.technique.value,
            self.geometry_config.marker_size_mm,
            self.geometry_config.focal_length_px,
        )

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def result(self) -> Optional[SessionResult]:
        return self.session.result

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def start(self):
        self.session.start()
        self.geometry = MarkerGeometry(self.geometry_config)
        self.fusion = SensorFusion(self.fusion_config, self.params.vibration_tolerance)
        self.last_pose = None

    def pause(self):
        self.session.pause()

    def resume(self):
        self.session.resume()

    def stop(self) -> SessionResult:
        return self.session.stop()

    def reset(self):
        self.session.reset()
        self.geometry = None
        self.fusion = None
        self.last_pose = None

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #
    def process(
        self,
        observation: Optional[MarkerObservation],
        motion: Optional[MotionSample],
        timestamp: float,
    ) -> TickResult:
        """
        Run one tick.

        Args:
            observation: Latest detector output, or None if no new frame
            motion: Latest motion sample, or None
            timestamp: Tick time in seconds

        Returns:
            TickResult with the fused pose and its quality (None without a fix)
        """
        if self.fusion is None or self.geometry is None:
            raise SessionStateError("Pipeline has not been started", state=self.session.state)

        geometry = self.geometry.update(observation) if observation is not None else None
        pose = self.fusion.tick(geometry, motion, timestamp)
        self.last_pose = pose

        quality = self.scorer.score(pose, self.params) if pose.has_fix else None
        recorded = self.session.record(pose, quality)
        return TickResult(pose=pose, quality=quality, recorded=recorded, state=self.session.state)
