"""
Quality scoring.

Maps one fused pose to an instantaneous 0-100 quality using the active
technique's ideal ranges and weights. Scoring is pure: the same pose and
parameters always give the same result.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Sequence

import numpy as np

from arcsense.technique import Range, TechniqueParameters

if TYPE_CHECKING:
    from arcsense.fusion import PoseEstimate


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def component_score(value: Optional[float], ideal: Range) -> float:
    """
    Score a single measurement against an inclusive ideal range.

    100 inside the range, ``100 * value / min`` below it and
    ``100 * max / value`` above it, clamped to [0, 100]. Missing values score 0.
    """
    if value is None or not math.isfinite(value):
        return 0.0
    if ideal.contains(value):
        return 100.0
    if value < ideal.min:
        if ideal.min <= 0:
            return 0.0
        return _clamp(100.0 * value / ideal.min)
    if value == 0:
        return 0.0
    return _clamp(100.0 * ideal.max / value)


def vibration_score(
    acceleration: Sequence[float],
    rotation: Sequence[float],
    tolerance: float,
) -> float:
    """
    Steadiness (0-100) from RMS vibration.

    Args:
        acceleration: Acceleration values with gravity removed (m/s^2)
        rotation: Rotation-rate values (rad/s)
        tolerance: Technique vibration tolerance

    Returns:
        100 for a perfectly still tool, 0 once the mean normalised RMS reaches 1
    """
    accel = np.asarray(acceleration, dtype=np.float64)
    rot = np.asarray(rotation, dtype=np.float64)
    accel_rms = float(np.sqrt(np.mean(accel ** 2))) if accel.size else 0.0
    rotation_rms = float(np.sqrt(np.mean(rot ** 2))) if rot.size else 0.0

    combined = (accel_rms / tolerance + rotation_rms / tolerance) / 2.0
    return _clamp(100.0 * (1.0 - min(1.0, combined)))


@dataclass(frozen=True)
class QualityBreakdown:
    """Sub-scores and weighted overall quality for one pose."""

    angle: float
    distance: float
    speed: float
    stability: float
    overall: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "angle": self.angle,
            "distance": self.distance,
            "speed": self.speed,
            "stability": self.stability,
            "overall": self.overall,
        }


class QualityScorer:
    """Technique-aware instantaneous quality function."""

    def breakdown(self, pose: PoseEstimate, params: TechniqueParameters) -> QualityBreakdown:
        angle = component_score(pose.work_angle, params.angle_range)
        distance = component_score(pose.distance, params.distance_range)

        speed_value = pose.travel_speed
        if speed_value is None:
            # No speed baseline yet: score as a neutral in-range value
            speed_value = params.speed_range.midpoint
        speed = component_score(speed_value, params.speed_range)

        stability = _clamp(pose.stability)

        weights = params.weights
        overall = (
            angle * weights.angle
            + distance * weights.distance
            + speed * weights.speed
            + stability * weights.stability
        )
        return QualityBreakdown(
            angle=angle,
            distance=distance,
            speed=speed,
            stability=stability,
            overall=_clamp(overall),
        )

    def score(self, pose: PoseEstimate, params: TechniqueParameters) -> float:
        return self.breakdown(pose, params).overall
