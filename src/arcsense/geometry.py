"""
Marker geometry module.

Converts the four image corners of a detected square marker into a raw
(unfiltered) distance and orientation estimate using a pinhole, single-marker
planar approximation:

- distance from the apparent marker size and the focal length,
- pitch/yaw from the marker centre offset to the frame centre, scaled linearly
  to a fixed angular range,
- roll from the slope of the top edge.

Approach and lateral speeds are differenced against the previous detection.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from arcsense.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

Corners = Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float], Tuple[float, float]]


@dataclass(frozen=True)
class MarkerObservation:
    """Output of the external marker detector for one video frame.

    Corners are ordered top-left, top-right, bottom-right, bottom-left, in
    pixel units.
    """

    detected: bool
    timestamp: float
    corners: Optional[Corners] = None
    frame_size: Optional[Tuple[int, int]] = None  # (width, height)
    marker_id: Optional[int] = None

    @classmethod
    def from_corners(
        cls,
        corners: Sequence[Sequence[float]],
        timestamp: float,
        frame_size: Optional[Tuple[int, int]] = None,
        marker_id: Optional[int] = None,
    ) -> MarkerObservation:
        points = np.asarray(corners, dtype=np.float64).reshape(4, 2)
        return cls(
            detected=True,
            timestamp=float(timestamp),
            corners=tuple((float(x), float(y)) for x, y in points),
            frame_size=frame_size,
            marker_id=marker_id,
        )

    @classmethod
    def missing(cls, timestamp: float, frame_size: Optional[Tuple[int, int]] = None) -> MarkerObservation:
        return cls(detected=False, timestamp=float(timestamp), frame_size=frame_size)


@dataclass
class GeometryConfig:
    """Camera and marker constants for geometry extraction."""

    marker_size_mm: float = 100.0
    focal_length_px: float = 800.0
    max_angle_deg: float = 30.0  # Angle reported at the frame edge
    tip_offset_mm: float = 0.0  # Subtracted from camera-to-marker distance
    frame_width: int = 640
    frame_height: int = 480

    def __post_init__(self):
        if self.marker_size_mm <= 0:
            raise ConfigurationError("marker_size_mm must be positive")
        if self.focal_length_px <= 0:
            raise ConfigurationError("focal_length_px must be positive")
        if self.max_angle_deg <= 0:
            raise ConfigurationError("max_angle_deg must be positive")
        if self.frame_width <= 0 or self.frame_height <= 0:
            raise ConfigurationError("Frame dimensions must be positive")

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> GeometryConfig:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})


@dataclass(frozen=True)
class MarkerGeometryResult:
    """Raw geometry for one frame. Fields are None when indeterminate."""

    detected: bool
    timestamp: float
    distance: Optional[float] = None  # mm
    pitch: Optional[float] = None  # degrees
    yaw: Optional[float] = None
    roll: Optional[float] = None
    center_x: Optional[float] = None  # px
    center_y: Optional[float] = None
    pixel_size: Optional[float] = None
    approach_speed: Optional[float] = None  # mm/s, positive when moving away
    lateral_speed: Optional[float] = None  # px/s

    @classmethod
    def missing(cls, timestamp: float) -> MarkerGeometryResult:
        return cls(detected=False, timestamp=float(timestamp))


def extract_marker_geometry(
    observation: MarkerObservation,
    config: GeometryConfig,
    previous: Optional[MarkerGeometryResult] = None,
    dt: Optional[float] = None,
) -> MarkerGeometryResult:
    """
    Compute raw distance/orientation for one observation.

    Args:
        observation: Detector output for the frame
        config: Camera and marker constants
        previous: Last detected result, or None when there is no valid baseline
        dt: Seconds since ``previous``; derived from timestamps when omitted

    Returns:
        MarkerGeometryResult. Speeds are None without a usable ``previous``.
    """
    if not observation.detected or observation.corners is None:
        return MarkerGeometryResult.missing(observation.timestamp)

    points = np.asarray(observation.corners, dtype=np.float64)
    width_px = float(points[:, 0].max() - points[:, 0].min())
    height_px = float(points[:, 1].max() - points[:, 1].min())
    pixel_size = max(width_px, height_px)

    distance: Optional[float] = None
    if pixel_size > 0:
        distance = config.marker_size_mm * config.focal_length_px / pixel_size - config.tip_offset_mm

    center_x, center_y = (float(v) for v in points.mean(axis=0))
    frame_width, frame_height = observation.frame_size or (config.frame_width, config.frame_height)
    half_width = frame_width / 2.0
    half_height = frame_height / 2.0
    yaw = (center_x - half_width) / half_width * config.max_angle_deg
    pitch = (center_y - half_height) / half_height * config.max_angle_deg

    (x0, y0), (x1, y1) = points[0], points[1]
    roll = math.degrees(math.atan2(y1 - y0, x1 - x0))

    approach_speed: Optional[float] = None
    lateral_speed: Optional[float] = None
    if previous is not None and previous.detected:
        if dt is None:
            dt = observation.timestamp - previous.timestamp
        if dt > 0:
            if distance is not None and previous.distance is not None:
                approach_speed = (distance - previous.distance) / dt
            if previous.center_x is not None:
                lateral_speed = (center_x - previous.center_x) / dt

    return MarkerGeometryResult(
        detected=True,
        timestamp=observation.timestamp,
        distance=distance,
        pitch=pitch,
        yaw=yaw,
        roll=roll,
        center_x=center_x,
        center_y=center_y,
        pixel_size=pixel_size,
        approach_speed=approach_speed,
        lateral_speed=lateral_speed,
    )


class MarkerGeometry:
    """
    Stateful wrapper around ``extract_marker_geometry``.

    Keeps the last detected result as the speed baseline. Frames without a
    marker leave that baseline untouched but mark it stale, so the first frame
    after re-acquisition reports no speed instead of a long-interval one.
    """

    def __init__(self, config: Optional[GeometryConfig] = None):
        self.config = config or GeometryConfig()
        self._previous: Optional[MarkerGeometryResult] = None
        self._stale = False

    @property
    def previous(self) -> Optional[MarkerGeometryResult]:
        return self._previous

    def update(self, observation: MarkerObservation) -> MarkerGeometryResult:
        if not observation.detected or observation.corners is None:
            if self._previous is not None and not self._stale:
                LOGGER.debug("Marker lost at t=%.3f, speed baseline suspended", observation.timestamp)
            self._stale = True
            return MarkerGeometryResult.missing(observation.timestamp)

        baseline = None if self._stale else self._previous
        result = extract_marker_geometry(observation, self.config, baseline)
        self._previous = result
        self._stale = False
        return result

    def reset(self):
        self._previous = None
        self._stale = False
