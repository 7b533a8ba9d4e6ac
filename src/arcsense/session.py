"""
Session aggregation.

Collects scored poses over one practice session and turns them into a final
score, letter grade and rule-based feedback.

Lifecycle::

    IDLE -> RUNNING <-> PAUSED
    RUNNING/PAUSED -> COMPLETED    (stop, or duration reached while running)
    any -> IDLE                    (reset)
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from arcsense.errors import SessionStateError
from arcsense.fusion import PoseEstimate
from arcsense.scoring import QualityBreakdown, QualityScorer
from arcsense.technique import Technique, TechniqueParameters

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_SAMPLES = 1000
DEFAULT_TOLERANCE_THRESHOLD = 80.0
FEEDBACK_THRESHOLD = 70.0


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class Grade(Enum):
    """Letter grades, best first."""
    A_PLUS = "A+"
    A = "A"
    A_MINUS = "A-"
    B_PLUS = "B+"
    B = "B"
    B_MINUS = "B-"
    C_PLUS = "C+"
    C = "C"
    C_MINUS = "C-"
    D = "D"
    F = "F"

    @property
    def rank(self) -> int:
        """0 for A+, increasing for worse grades."""
        return list(Grade).index(self)

    def at_least(self, other: Grade) -> bool:
        return self.rank <= other.rank


# Eleven letter bands, A+ down to D, each with its minimum score; anything below 40 is F.
GRADE_THRESHOLDS: Tuple[Tuple[float, Grade], ...] = (
    (90.0, Grade.A_PLUS),
    (85.0, Grade.A),
    (80.0, Grade.A_MINUS),
    (75.0, Grade.B_PLUS),
    (70.0, Grade.B),
    (65.0, Grade.B_MINUS),
    (60.0, Grade.C_PLUS),
    (55.0, Grade.C),
    (50.0, Grade.C_MINUS),
    (40.0, Grade.D),
)


def grade_for_score(score: float) -> Grade:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return Grade.F


@dataclass(frozen=True)
class QualitySample:
    pose: PoseEstimate
    quality: float
    timestamp: float


@dataclass(frozen=True)
class ComponentAverages:
    """Mean raw values over the retained samples."""

    angle: float  # work angle, degrees
    distance: float  # mm
    speed: Optional[float]  # mm/s, None when no speed was ever measured
    stability: float
    steadiness: Optional[float] = None

    def as_dict(self) -> Dict[str, Optional[float]]:
        return {
            "angle": self.angle,
            "distance": self.distance,
            "speed": self.speed,
            "stability": self.stability,
            "steadiness": self.steadiness,
        }


@dataclass(frozen=True)
class SessionResult:
    """Immutable summary of one completed session.

    ``score`` is the mean quality rounded half up; ``grade`` and ``feedback`` are
    derived from that score, ``mean_quality`` keeps the unrounded value.
    """

    technique: Technique
    duration_seconds: float
    score: int
    grade: Grade
    mean_quality: float
    time_in_tolerance_ratio: float
    component_averages: Optional[ComponentAverages]
    component_scores: Optional[QualityBreakdown]
    consistency: float
    feedback: Tuple[str, ...]
    sample_count: int
    started_at: float
    completed_at: float

    def to_dict(self) -> Dict:
        return {
            "technique": self.technique.value,
            "duration_seconds": self.duration_seconds,
            "score": self.score,
            "grade": self.grade.value,
            "mean_quality": self.mean_quality,
            "time_in_tolerance_ratio": self.time_in_tolerance_ratio,
            "component_averages": (
                self.component_averages.as_dict() if self.component_averages else None
            ),
            "component_scores": self.component_scores.as_dict() if self.component_scores else None,
            "consistency": self.consistency,
            "feedback": list(self.feedback),
            "sample_count": self.sample_count,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


def _mean(values: Sequence[float]) -> Optional[float]:
    return float(np.mean(values)) if len(values) else None


def generate_feedback(
    score: float,
    averages: Optional[ComponentAverages],
    params: TechniqueParameters,
) -> List[str]:
    """Rule-based coaching lines for a finished session."""
    if averages is None:
        return ["No metrics were recorded."]

    feedback: List[str] = []
    if score >= 80:
        feedback.append("Excellent work! Technique very well executed.")
    elif score >= 60:
        feedback.append("Good effort. You will keep improving with practice.")
    else:
        feedback.append("Keep practicing. Focus on the points below.")

    if averages.angle < params.angle_range.min:
        feedback.append("Angle too closed. Tilt the torch more.")
    elif averages.angle > params.angle_range.max:
        feedback.append("Angle too open. Reduce the tilt.")

    if averages.distance < params.distance_range.min:
        feedback.append("Too close to the work piece. Back off slightly.")
    elif averages.distance > params.distance_range.max:
        feedback.append("Too far from the work piece. Bring the torch closer.")

    if averages.speed is not None:
        if averages.speed < params.speed_range.min:
            feedback.append("Travel speed too slow. Move faster.")
        elif averages.speed > params.speed_range.max:
            feedback.append("Travel speed too fast. Slow down.")

    if averages.steadiness is not None and averages.steadiness < FEEDBACK_THRESHOLD:
        feedback.append("Keep your hand steadier while welding.")
    if averages.stability < FEEDBACK_THRESHOLD:
        feedback.append("Marker tracking was unreliable. Keep the marker fully in view.")

    if score < 80:
        feedback.append(params.session_tip)
        feedback.extend(params.tips)
    return feedback


class SessionAggregator:
    """
    Accumulates quality samples for one session.

    Samples are kept in a sliding window of ``max_samples`` entries. Elapsed
    time excludes paused intervals. The duration bound is checked whenever a
    sample is recorded or ``tick`` is called.
    """

    def __init__(
        self,
        params: TechniqueParameters,
        scorer: Optional[QualityScorer] = None,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        tolerance_threshold: float = DEFAULT_TOLERANCE_THRESHOLD,
        duration_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        if max_samples < 1:
            raise ValueError("max_samples must be at least 1")
        self.params = params
        self.scorer = scorer or QualityScorer()
        self.max_samples = max_samples
        self.tolerance_threshold = tolerance_threshold
        self.duration_seconds = duration_seconds if duration_seconds is not None else params.duration_seconds
        self._clock = clock
        self._wall_clock = wall_clock

        self._state = SessionState.IDLE
        self._samples: Deque[QualitySample] = deque(maxlen=max_samples)
        self._accumulated = 0.0
        self._resumed_at: Optional[float] = None
        self._started_at: Optional[float] = None
        self._result: Optional[SessionResult] = None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def samples(self) -> Tuple[QualitySample, ...]:
        return tuple(self._samples)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    @property
    def elapsed_time(self) -> float:
        """Seconds spent running, excluding pauses."""
        if self._state is SessionState.RUNNING and self._resumed_at is not None:
            return self._accumulated + (self._clock() - self._resumed_at)
        return self._accumulated

    @property
    def remaining_time(self) -> float:
        return max(0.0, self.duration_seconds - self.elapsed_time)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def _require(self, action: str, *states: SessionState):
        if self._state not in states:
            raise SessionStateError(
                f"Cannot {action} a session that is {self._state.value}", state=self._state
            )

    def start(self):
        self._require("start", SessionState.IDLE)
        self._samples.clear()
        self._accumulated = 0.0
        self._resumed_at = self._clock()
        self._started_at = self._wall_clock()
        self._result = None
        self._state = SessionState.RUNNING
        LOGGER.info(
            "%s session started (duration %.0fs)", self.params.technique.value, self.duration_seconds
        )

    def pause(self):
        self._require("pause", SessionState.RUNNING)
        self._accumulated += self._clock() - self._resumed_at
        self._resumed_at = None
        self._state = SessionState.PAUSED
        LOGGER.info("Session paused at %.1fs", self._accumulated)

    def resume(self):
        self._require("resume", SessionState.PAUSED)
        self._resumed_at = self._clock()
        self._state = SessionState.RUNNING
        LOGGER.info("Session resumed at %.1fs", self._accumulated)

    def stop(self) -> SessionResult:
        """Complete the session and return its result."""
        self._require("stop", SessionState.RUNNING, SessionState.PAUSED)
        return self._complete()

    def reset(self):
        """Discard everything and return to IDLE, from any state."""
        self._samples.clear()
        self._accumulated = 0.0
        self._resumed_at = None
        self._started_at = None
        self._result = None
        self._state = SessionState.IDLE
        LOGGER.info("Session reset")

    def tick(self) -> SessionState:
        """Check the duration bound; completes the session once it is reached."""
        if self._state is SessionState.RUNNING and self.elapsed_time >= self.duration_seconds:
            LOGGER.info("Session duration of %.0fs reached", self.duration_seconds)
            self._complete()
        return self._state

    def record(self, pose: PoseEstimate, quality: Optional[float] = None) -> bool:
        """
        Append one scored pose.

        Args:
            pose: Fused pose for the tick
            quality: Precomputed quality; scored with the session's scorer if omitted

        Returns:
            True if the sample was kept, False if the session is not running or
            the pose has no marker fix yet
        """
        if self._state is not SessionState.RUNNING:
            LOGGER.debug("Sample rejected: session is %s", self._state.value)
            return False
        if not pose.has_fix:
            LOGGER.debug("Sample rejected: no marker fix yet")
            self.tick()
            return False

        if quality is None:
            quality = self.scorer.score(pose, self.params)
        quality = max(0.0, min(100.0, float(quality)))
        self._samples.append(QualitySample(pose=pose, quality=quality, timestamp=pose.timestamp))
        self.tick()
        return True

    # ------------------------------------------------------------------ #
    # Results
    # ------------------------------------------------------------------ #
    def _complete(self) -> SessionResult:
        if self._state is SessionState.RUNNING:
            self._accumulated += self._clock() - self._resumed_at
            self._resumed_at = None
        self._result = self._build_result()
        self._state = SessionState.COMPLETED
        LOGGER.info(
            "Session completed: score %d (%s) from %d samples",
            self._result.score, self._result.grade.value, self._result.sample_count,
        )
        return self._result

    def _build_result(self) -> SessionResult:
        samples = list(self._samples)
        completed_at = self._wall_clock()
        started_at = self._started_at if self._started_at is not None else completed_at

        if not samples:
            return SessionResult(
                technique=self.params.technique,
                duration_seconds=self._accumulated,
                score=0,
                grade=Grade.F,
                mean_quality=0.0,
                time_in_tolerance_ratio=0.0,
                component_averages=None,
                component_scores=None,
                consistency=0.0,
                feedback=tuple(generate_feedback(0.0, None, self.params)),
                sample_count=0,
                started_at=started_at,
                completed_at=completed_at,
            )

        qualities = np.array([s.quality for s in samples], dtype=np.float64)
        mean_quality = float(qualities.mean())
        in_tolerance = float(np.count_nonzero(qualities > self.tolerance_threshold)) / len(samples)

        poses = [s.pose for s in samples]
        averages = ComponentAverages(
            angle=_mean([p.work_angle for p in poses]),
            distance=_mean([p.distance for p in poses]),
            speed=_mean([p.travel_speed for p in poses if p.travel_speed is not None]),
            stability=_mean([p.stability for p in poses]),
            steadiness=_mean([p.steadiness for p in poses if p.steadiness is not None]),
        )

        breakdowns = [self.scorer.breakdown(p, self.params) for p in poses]
        component_scores = QualityBreakdown(
            angle=_mean([b.angle for b in breakdowns]),
            distance=_mean([b.distance for b in breakdowns]),
            speed=_mean([b.speed for b in breakdowns]),
            stability=_mean([b.stability for b in breakdowns]),
            overall=_mean([b.overall for b in breakdowns]),
        )
        consistency = (component_scores.angle + component_scores.speed) / 2.0

        score = int(math.floor(mean_quality + 0.5))
        return SessionResult(
            technique=self.params.technique,
            duration_seconds=self._accumulated,
            score=score,
            grade=grade_for_score(score),
            mean_quality=mean_quality,
            time_in_tolerance_ratio=in_tolerance,
            component_averages=averages,
            component_scores=component_scores,
            consistency=consistency,
            feedback=tuple(generate_feedback(score, averages, self.params)),
            sample_count=len(samples),
            started_at=started_at,
            completed_at=completed_at,
        )
