"""
Synthetic input streams for demo mode and tests.

Generates marker observations and motion samples for a torch that moves around
a technique's ideal ranges: the work angle follows a slow sinusoid, the tip
distance follows a triangle wave whose slope is the target travel speed, and
the motion sensor sees gravity plus Gaussian tremor. Marker dropouts can be
injected at a fixed period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Dict, Iterator, Optional

import numpy as np

from arcsense.fusion import MotionSample
from arcsense.geometry import GeometryConfig, MarkerObservation
from arcsense.technique import TechniqueParameters

LOGGER = logging.getLogger(__name__)

GRAVITY = 9.81


@dataclass
class SyntheticConfig:
    """Parameters of the synthetic torch motion."""

    fps: float = 30.0
    seed: int = 0
    corner_noise_px: float = 0.0
    tremor: float = 0.02  # Acceleration noise sigma, m/s^2
    rotation_noise_dps: float = 1.0  # Rotation-rate noise sigma, deg/s
    angle_offset: float = 0.0  # Added to the ideal work angle, degrees
    distance_offset: float = 0.0  # Added to the ideal tip distance, mm
    speed_scale: float = 1.0  # Multiplies the ideal travel speed
    dropout_every: int = 0  # Ticks between dropouts, 0 disables
    dropout_length: int = 0  # Ticks per dropout

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> SyntheticConfig:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})


@dataclass(frozen=True)
class SyntheticTick:
    timestamp: float
    observation: MarkerObservation
    motion: MotionSample


class SyntheticStream:
    """Deterministic marker/motion generator for one technique."""

    def __init__(
        self,
        params: TechniqueParameters,
        geometry: Optional[GeometryConfig] = None,
        config: Optional[SyntheticConfig] = None,
    ):
        self.params = params
        self.geometry = geometry or GeometryConfig()
        self.config = config or SyntheticConfig()
        self._rng = np.random.default_rng(self.config.seed)

    @property
    def dt(self) -> float:
        return 1.0 / self.config.fps

    def work_angle(self, t: float) -> float:
        half_width = (self.params.angle_range.max - self.params.angle_range.min) / 2.0
        return self.params.angle_range.midpoint + 0.3 * half_width * np.sin(t) + self.config.angle_offset

    def tip_distance(self, t: float) -> float:
        """Triangle wave around the ideal distance with slope equal to the travel speed."""
        ideal = self.params.distance_range
        amplitude = (ideal.max - ideal.min) / 4.0
        speed = self.params.speed_range.midpoint * self.config.speed_scale
        centre = ideal.midpoint + self.config.distance_offset
        if amplitude <= 0 or speed <= 0:
            return centre
        period = 4.0 * amplitude / speed
        phase = (t % period) / period
        triangle = 4.0 * abs(phase - 0.5) - 1.0  # -1..1
        return centre + amplitude * triangle

    def is_dropout(self, index: int) -> bool:
        every = self.config.dropout_every
        if every <= 0 or self.config.dropout_length <= 0:
            return False
        return index % every >= every - self.config.dropout_length

    def observation(self, index: int, t: float) -> MarkerObservation:
        geo = self.geometry
        frame_size = (geo.frame_width, geo.frame_height)
        if self.is_dropout(index):
            return MarkerObservation.missing(t, frame_size)

        camera_distance = self.tip_distance(t) + geo.tip_offset_mm
        size = geo.marker_size_mm * geo.focal_length_px / camera_distance

        tilt = max(0.0, 90.0 - self.work_angle(t))
        half_height = geo.frame_height / 2.0
        center_x = geo.frame_width / 2.0
        center_y = half_height + tilt / geo.max_angle_deg * half_height

        half = size / 2.0
        corners = np.array([
            [center_x - half, center_y - half],
            [center_x + half, center_y - half],
            [center_x + half, center_y + half],
            [center_x - half, center_y + half],
        ])
        if self.config.corner_noise_px > 0:
            corners = corners + self._rng.normal(0.0, self.config.corner_noise_px, corners.shape)
        return MarkerObservation.from_corners(corners, t, frame_size)

    def motion(self, t: float) -> MotionSample:
        acceleration = np.array([0.0, 0.0, GRAVITY]) + self._rng.normal(0.0, self.config.tremor, 3)
        rotation = self._rng.normal(0.0, self.config.rotation_noise_dps, 3)
        return MotionSample.from_values(t, acceleration, rotation)

    def tick(self, index: int) -> SyntheticTick:
        t = index * self.dt
        return SyntheticTick(timestamp=t, observation=self.observation(index, t), motion=self.motion(t))

    def generate(self, count: Optional[int] = None, start: int = 0) -> Iterator[SyntheticTick]:
        """Yield ``count`` ticks (endless when None)."""
        index = start
        while count is None or index < start + count:
            yield self.tick(index)
            index += 1
