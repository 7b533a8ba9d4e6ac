"""
Welding technique definitions.

Each technique carries a constant parameter record: ideal angle/distance/speed
ranges, scoring weights, vibration tolerance, target session duration and the
coaching tips appended to low-scoring sessions.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from arcsense.errors import ConfigurationError


class Technique(Enum):
    """Supported welding techniques."""
    MIG = "MIG"
    TIG = "TIG"
    ELECTRODE = "ELECTRODE"

    @classmethod
    def from_name(cls, name) -> Technique:
        if isinstance(name, Technique):
            return name
        try:
            return cls(str(name).strip().upper())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ConfigurationError(f"Unknown technique {name!r} (expected one of {valid})") from None

    @property
    def parameters(self) -> TechniqueParameters:
        return TECHNIQUE_PARAMETERS[self]


@dataclass(frozen=True)
class Range:
    """Inclusive ``[min, max]`` interval."""

    min: float
    max: float

    def __post_init__(self):
        if not (math.isfinite(self.min) and math.isfinite(self.max)):
            raise ConfigurationError("Range bounds must be finite")
        if self.min > self.max:
            raise ConfigurationError(f"Range min {self.min} exceeds max {self.max}")

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2.0

    def as_tuple(self) -> Tuple[float, float]:
        return (self.min, self.max)


@dataclass(frozen=True)
class ScoreWeights:
    """Weights of the quality sub-scores. Must sum to 1."""

    angle: float
    distance: float
    speed: float
    stability: float

    def __post_init__(self):
        values = (self.angle, self.distance, self.speed, self.stability)
        if any(w < 0 for w in values):
            raise ConfigurationError("Score weights must be non-negative")
        if abs(sum(values) - 1.0) > 1e-9:
            raise ConfigurationError(f"Score weights must sum to 1.0, got {sum(values)}")

    def as_dict(self) -> Dict[str, float]:
        return {
            "angle": self.angle,
            "distance": self.distance,
            "speed": self.speed,
            "stability": self.stability,
        }


@dataclass(frozen=True)
class TechniqueParameters:
    """Constant scoring parameters for one technique."""

    technique: Technique
    angle_range: Range  # degrees, torch work angle
    distance_range: Range  # mm, tip to work
    speed_range: Range  # mm/s, travel speed
    weights: ScoreWeights
    vibration_tolerance: float
    duration_seconds: float
    movement_pattern: str
    session_tip: str
    tips: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.vibration_tolerance <= 0:
            raise ConfigurationError("vibration_tolerance must be positive")
        if self.duration_seconds <= 0:
            raise ConfigurationError("duration_seconds must be positive")


TECHNIQUE_PARAMETERS: Dict[Technique, TechniqueParameters] = {
    Technique.MIG: TechniqueParameters(
        technique=Technique.MIG,
        angle_range=Range(70.0, 80.0),
        distance_range=Range(10.0, 15.0),
        speed_range=Range(5.0, 10.0),
        weights=ScoreWeights(angle=0.35, distance=0.25, speed=0.20, stability=0.20),
        vibration_tolerance=0.3,
        duration_seconds=60.0,
        movement_pattern="oscillating",
        session_tip="Remember the controlled oscillating motion.",
        tips=(
            "Use smooth, controlled oscillating movements.",
            "Keep the angle constant along the whole run.",
            "Watch the weld bead as it forms.",
        ),
    ),
    Technique.TIG: TechniqueParameters(
        technique=Technique.TIG,
        angle_range=Range(60.0, 75.0),
        distance_range=Range(2.0, 5.0),
        speed_range=Range(2.0, 5.0),
        weights=ScoreWeights(angle=0.30, distance=0.30, speed=0.25, stability=0.15),
        vibration_tolerance=0.1,
        duration_seconds=90.0,
        movement_pattern="linear",
        session_tip="Keep a constant distance and a linear motion.",
        tips=(
            "Control the tungsten electrode precisely.",
            "Hold a constant distance to the work piece.",
            "Pay attention to the weld pool.",
        ),
    ),
    Technique.ELECTRODE: TechniqueParameters(
        technique=Technique.ELECTRODE,
        angle_range=Range(60.0, 80.0),
        distance_range=Range(5.0, 10.0),
        speed_range=Range(3.0, 7.0),
        weights=ScoreWeights(angle=0.25, distance=0.30, speed=0.20, stability=0.25),
        vibration_tolerance=0.2,
        duration_seconds=75.0,
        movement_pattern="dragging",
        session_tip="Adjust the distance as the electrode is consumed.",
        tips=(
            "Adjust the distance as the electrode burns down.",
            "Use a smooth dragging motion.",
            "Match travel speed to the joint type.",
        ),
    ),
}


def technique_parameters(technique) -> TechniqueParameters:
    """Look up the parameter record for a technique or technique name."""
    return Technique.from_name(technique).parameters
