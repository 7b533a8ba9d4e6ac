"""
Sensor fusion module.

Combines per-frame marker geometry with device motion samples into one
``PoseEstimate`` per tick:

- pitch, yaw, roll and distance are smoothed by independent scalar Kalman
  filters; ticks without a marker leave the filters untouched so the last
  filtered value is held,
- acceleration is smoothed by a 3-state vector Kalman filter,
- stability is derived from the angle/distance estimate covariance,
- steadiness is derived from a short window of raw motion samples.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, fields
from enum import Enum
from typing import Deque, Dict, Optional, Sequence, Tuple

import numpy as np

from arcsense.errors import ConfigurationError
from arcsense.filters.kalman import ScalarKalmanFilter, VectorKalmanFilter
from arcsense.geometry import MarkerGeometryResult
from arcsense.scoring import vibration_score

LOGGER = logging.getLogger(__name__)

Vector3 = Tuple[float, float, float]


@dataclass(frozen=True)
class MotionSample:
    """One reading from the device motion sensors."""

    timestamp: float
    acceleration: Vector3  # m/s^2, gravity included
    rotation_rate: Vector3  # deg/s (alpha, beta, gamma)
    absolute_orientation: bool = False

    @classmethod
    def from_values(
        cls,
        timestamp: float,
        acceleration: Sequence[Optional[float]],
        rotation_rate: Sequence[Optional[float]],
        absolute_orientation: bool = False,
    ) -> MotionSample:
        """Build a sample, replacing missing axes with 0."""
        accel = tuple(float(v) if v is not None else 0.0 for v in acceleration)
        rotation = tuple(float(v) if v is not None else 0.0 for v in rotation_rate)
        if len(accel) != 3 or len(rotation) != 3:
            raise ValueError("Acceleration and rotation rate need three axes")
        return cls(float(timestamp), accel, rotation, bool(absolute_orientation))


@dataclass(frozen=True)
class Orientation:
    pitch: float
    yaw: float
    roll: float


class TrackingStatus(Enum):
    """Marker tracking state reported with every pose."""
    SEARCHING = "searching"  # No marker seen yet
    TRACKING = "tracking"  # Marker detected this tick
    HOLDING = "holding"  # Marker missing, holding last estimate
    LOST = "lost"  # Marker missing for too many ticks


@dataclass(frozen=True)
class PoseEstimate:
    """Fused pose for one tick."""

    timestamp: float
    angle: Optional[Orientation]
    distance: Optional[float]  # mm
    approach_speed: Optional[float]  # mm/s
    lateral_speed: Optional[float]  # px/s
    stability: float  # 0-100, estimate confidence
    velocity: Optional[Vector3] = None
    steadiness: Optional[float] = None  # 0-100, from motion vibration
    status: TrackingStatus = TrackingStatus.TRACKING
    missed_ticks: int = 0

    @property
    def has_fix(self) -> bool:
        return self.angle is not None and self.distance is not None

    @property
    def marker_lost(self) -> bool:
        return self.status is TrackingStatus.LOST

    @property
    def work_angle(self) -> Optional[float]:
        """Torch work angle in degrees; 90 when the marker is centred in frame."""
        if self.angle is None:
            return None
        return 90.0 - math.hypot(self.angle.pitch, self.angle.yaw)

    @property
    def travel_speed(self) -> Optional[float]:
        if self.approach_speed is None:
            return None
        return abs(self.approach_speed)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "angle": None if self.angle is None else {
                "pitch": self.angle.pitch,
                "yaw": self.angle.yaw,
                "roll": self.angle.roll,
            },
            "work_angle": self.work_angle,
            "distance": self.distance,
            "approach_speed": self.approach_speed,
            "lateral_speed": self.lateral_speed,
            "stability": self.stability,
            "velocity": None if self.velocity is None else list(self.velocity),
            "steadiness": self.steadiness,
            "status": self.status.value,
            "missed_ticks": self.missed_ticks,
        }


@dataclass
class FusionConfig:
    """Filter tuning and tracking-loss policy."""

    angle_process_noise: float = 0.01
    angle_measurement_noise: float = 0.1
    distance_process_noise: float = 0.05
    distance_measurement_noise: float = 0.2
    motion_process_noise: float = 0.01
    motion_measurement_noise: float = 0.1
    rotation_control_gain: float = 0.0  # Rotation rate fed as control input
    lost_after_ticks: int = 15  # Consecutive misses before LOST
    vibration_window: int = 30  # Motion samples used for steadiness

    def __post_init__(self):
        for channel in ("angle", "distance", "motion"):
            process = getattr(self, f"{channel}_process_noise")
            measurement = getattr(self, f"{channel}_measurement_noise")
            if process < 0 or measurement < 0:
                raise ConfigurationError(f"{channel} noise terms must be non-negative")
            if process == 0 and measurement == 0:
                raise ConfigurationError(f"{channel} process and measurement noise cannot both be zero")
        if self.lost_after_ticks < 1:
            raise ConfigurationError("lost_after_ticks must be at least 1")
        if self.vibration_window < 2:
            raise ConfigurationError("vibration_window must be at least 2")

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> FusionConfig:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})


class SensorFusion:
    """
    Per-session fusion state.

    Owns its filters exclusively; create one instance per session and drop it
    (or call ``reset``) when the session ends.
    """

    def __init__(self, config: Optional[FusionConfig] = None, vibration_tolerance: float = 0.3):
        self.config = config or FusionConfig()
        if vibration_tolerance <= 0:
            raise ConfigurationError("vibration_tolerance must be positive")
        self.vibration_tolerance = vibration_tolerance

        cfg = self.config
        self.pitch_filter = ScalarKalmanFilter(cfg.angle_process_noise, cfg.angle_measurement_noise)
        self.yaw_filter = ScalarKalmanFilter(cfg.angle_process_noise, cfg.angle_measurement_noise)
        self.roll_filter = ScalarKalmanFilter(cfg.angle_process_noise, cfg.angle_measurement_noise)
        self.distance_filter = ScalarKalmanFilter(cfg.distance_process_noise, cfg.distance_measurement_noise)
        self.motion_filter = VectorKalmanFilter(
            state_dim=3,
            measurement_dim=3,
            process_noise=cfg.motion_process_noise,
            measurement_noise=cfg.motion_measurement_noise,
        )

        self._missed_ticks = 0
        self._lost_reported = False
        self._last_motion_timestamp: Optional[float] = None
        self._velocity: Optional[Vector3] = None
        self._acceleration_window: Deque[np.ndarray] = deque(maxlen=cfg.vibration_window)
        self._rotation_window: Deque[np.ndarray] = deque(maxlen=cfg.vibration_window)

    @property
    def angle_filters(self) -> Tuple[ScalarKalmanFilter, ScalarKalmanFilter, ScalarKalmanFilter]:
        return (self.pitch_filter, self.yaw_filter, self.roll_filter)

    @property
    def missed_ticks(self) -> int:
        return self._missed_ticks

    def reset(self):
        """Drop all estimates, as at the start of a new session."""
        for kalman in (*self.angle_filters, self.distance_filter):
            kalman.reset()
        self.motion_filter.reset()
        self._missed_ticks = 0
        self._lost_reported = False
        self._last_motion_timestamp = None
        self._velocity = None
        self._acceleration_window.clear()
        self._rotation_window.clear()

    # ------------------------------------------------------------------ #
    # Tick
    # ------------------------------------------------------------------ #
    def tick(
        self,
        marker: Optional[MarkerGeometryResult],
        motion: Optional[MotionSample],
        timestamp: float,
    ) -> PoseEstimate:
        """
        Fuse the latest inputs into a pose.

        Args:
            marker: Geometry for the latest frame, or None when no frame arrived
                (the tracking status is held, not counted as a miss)
            motion: Latest motion sample; a sample already consumed is ignored
            timestamp: Tick time in seconds

        Returns:
            PoseEstimate holding the last filtered values when inputs are missing
        """
        fresh = marker is not None
        detected = fresh and marker.detected
        approach_speed: Optional[float] = None
        lateral_speed: Optional[float] = None

        if detected:
            self._feed_marker(marker)
            approach_speed = marker.approach_speed
            lateral_speed = marker.lateral_speed
            if self._lost_reported:
                LOGGER.info("Marker re-acquired after %d ticks", self._missed_ticks)
            self._missed_ticks = 0
            self._lost_reported = False
        elif fresh:
            self._missed_ticks += 1

        if motion is not None:
            self._feed_motion(motion)

        return PoseEstimate(
            timestamp=float(timestamp),
            angle=self._orientation(),
            distance=self.distance_filter.estimate,
            approach_speed=approach_speed,
            lateral_speed=lateral_speed,
            stability=self.stability(),
            velocity=self._velocity,
            steadiness=self.steadiness(),
            status=self._status(detected, fresh),
            missed_ticks=self._missed_ticks,
        )

    def _feed_marker(self, marker: MarkerGeometryResult):
        for kalman, value in zip(self.angle_filters, (marker.pitch, marker.yaw, marker.roll)):
            if value is not None:
                kalman.filter(value)
        if marker.distance is not None:
            self.distance_filter.filter(marker.distance)

    def _feed_motion(self, motion: MotionSample):
        if motion.timestamp == self._last_motion_timestamp:
            return
        self._last_motion_timestamp = motion.timestamp

        acceleration = np.asarray(motion.acceleration, dtype=np.float64)
        rotation = np.asarray(motion.rotation_rate, dtype=np.float64)
        control = None
        if self.config.rotation_control_gain:
            control = np.radians(rotation) * self.config.rotation_control_gain

        state = self.motion_filter.filter(acceleration, control)
        self._velocity = tuple(float(v) for v in state)
        self._acceleration_window.append(acceleration)
        self._rotation_window.append(np.radians(rotation))

    def _orientation(self) -> Optional[Orientation]:
        pitch, yaw, roll = (kalman.estimate for kalman in self.angle_filters)
        if pitch is None or yaw is None:
            return None
        return Orientation(pitch=pitch, yaw=yaw, roll=roll if roll is not None else 0.0)

    def _status(self, detected: bool, fresh: bool) -> TrackingStatus:
        if detected:
            return TrackingStatus.TRACKING
        if not self.distance_filter.is_initialized and not self.pitch_filter.is_initialized:
            return TrackingStatus.SEARCHING
        if not fresh and self._missed_ticks == 0:
            # No new frame since the last detection
            return TrackingStatus.TRACKING
        if self._missed_ticks >= self.config.lost_after_ticks:
            if not self._lost_reported:
                LOGGER.warning("Marker lost for %d consecutive ticks", self._missed_ticks)
                self._lost_reported = True
            return TrackingStatus.LOST
        return TrackingStatus.HOLDING

    # ------------------------------------------------------------------ #
    # Derived figures
    # ------------------------------------------------------------------ #
    @staticmethod
    def _variance(kalman: ScalarKalmanFilter) -> float:
        if kalman.covariance is not None:
            return kalman.covariance
        c = kalman.measurement_coefficient
        return kalman.measurement_noise / (c * c)

    def stability(self) -> float:
        """Confidence in the fused estimate (0-100); 0 before any marker."""
        if not self.distance_filter.is_initialized and not self.pitch_filter.is_initialized:
            return 0.0
        angle_variance = float(np.mean([abs(self._variance(k)) for k in self.angle_filters]))
        distance_variance = abs(self._variance(self.distance_filter))
        stability = 100.0 - angle_variance * 100.0 - distance_variance * 50.0
        return float(min(100.0, max(0.0, stability)))

    def steadiness(self) -> Optional[float]:
        """Hand steadiness from recent motion (0-100), or None without enough samples."""
        if len(self._acceleration_window) < 2:
            return None
        accelerations = np.array(self._acceleration_window)
        residuals = accelerations - accelerations.mean(axis=0)
        rotations = np.array(self._rotation_window)
        return vibration_score(residuals.ravel(), rotations.ravel(), self.vibration_tolerance)
