"""
Tests for session aggregation, grading and feedback.
"""

import os
import sys
import unittest

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from arcsense.errors import SessionStateError  # type: ignore
from arcsense.fusion import Orientation, PoseEstimate  # type: ignore
from arcsense.session import (  # type: ignore
    ComponentAverages,
    Grade,
    SessionAggregator,
    SessionState,
    generate_feedback,
    grade_for_score,
)
from arcsense.technique import Technique  # type: ignore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def good_pose(params, timestamp=0.0, steadiness=None):
    return PoseEstimate(
        timestamp=timestamp,
        angle=Orientation(pitch=90.0 - params.angle_range.midpoint, yaw=0.0, roll=0.0),
        distance=params.distance_range.midpoint,
        approach_speed=params.speed_range.midpoint,
        lateral_speed=None,
        stability=100.0,
        steadiness=steadiness,
    )


class TestGrades(unittest.TestCase):
    """Score to grade mapping."""

    def test_band_boundaries(self):
        expected = [
            (100.0, Grade.A_PLUS), (90.0, Grade.A_PLUS), (89.9, Grade.A),
            (85.0, Grade.A), (80.0, Grade.A_MINUS), (75.0, Grade.B_PLUS),
            (70.0, Grade.B), (65.0, Grade.B_MINUS), (60.0, Grade.C_PLUS),
            (55.0, Grade.C), (50.0, Grade.C_MINUS), (40.0, Grade.D),
            (39.9, Grade.F), (0.0, Grade.F),
        ]
        for score, grade in expected:
            self.assertIs(grade_for_score(score), grade, score)

    def test_ordering(self):
        self.assertTrue(Grade.A_PLUS.at_least(Grade.A_MINUS))
        self.assertTrue(Grade.B.at_least(Grade.B))
        self.assertFalse(Grade.F.at_least(Grade.D))
        self.assertEqual(Grade.A_PLUS.value, "A+")


class TestSessionLifecycle(unittest.TestCase):
    """State machine and timing."""

    def setUp(self):
        self.params = Technique.MIG.parameters
        self.clock = FakeClock()
        self.session = SessionAggregator(self.params, clock=self.clock, wall_clock=self.clock)

    def test_starts_idle(self):
        self.assertIs(self.session.state, SessionState.IDLE)
        self.assertEqual(self.session.duration_seconds, self.params.duration_seconds)
        self.assertIsNone(self.session.result)

    def test_invalid_transitions_raise(self):
        with self.assertRaises(SessionStateError):
            self.session.stop()
        with self.assertRaises(SessionStateError):
            self.session.pause()
        with self.assertRaises(SessionStateError):
            self.session.resume()

        self.session.start()
        with self.assertRaises(SessionStateError) as context:
            self.session.start()
        self.assertIs(context.exception.state, SessionState.RUNNING)
        with self.assertRaises(SessionStateError):
            self.session.resume()

    def test_record_ignored_when_not_running(self):
        self.assertFalse(self.session.record(good_pose(self.params)))
        self.session.start()
        self.session.pause()
        self.assertFalse(self.session.record(good_pose(self.params)))
        self.assertEqual(self.session.sample_count, 0)

    def test_pose_without_fix_not_recorded(self):
        self.session.start()
        pose = PoseEstimate(0.0, None, None, None, None, 0.0)
        self.assertFalse(self.session.record(pose))
        self.assertEqual(self.session.sample_count, 0)

    def test_pause_excludes_elapsed_time(self):
        self.session.start()
        self.clock.advance(3.0)
        self.session.pause()
        before = self.session.elapsed_time
        self.clock.advance(5.0)
        self.session.resume()
        self.assertAlmostEqual(self.session.elapsed_time - before, 0.0)
        self.assertAlmostEqual(before, 3.0)

        self.clock.advance(2.0)
        self.assertAlmostEqual(self.session.elapsed_time, 5.0)
        self.assertAlmostEqual(self.session.remaining_time, self.params.duration_seconds - 5.0)

    def test_paused_session_does_not_time_out(self):
        session = SessionAggregator(self.params, duration_seconds=10.0, clock=self.clock)
        session.start()
        session.pause()
        self.clock.advance(100.0)
        self.assertIs(session.tick(), SessionState.PAUSED)

    def test_tick_completes_at_duration(self):
        session = SessionAggregator(self.params, duration_seconds=10.0, clock=self.clock)
        session.start()
        self.clock.advance(9.9)
        self.assertIs(session.tick(), SessionState.RUNNING)
        self.clock.advance(0.1)
        self.assertIs(session.tick(), SessionState.COMPLETED)
        self.assertIsNotNone(session.result)

    def test_reset_from_every_state(self):
        for final in ("running", "paused", "completed"):
            session = SessionAggregator(self.params, clock=self.clock)
            session.start()
            session.record(good_pose(self.params))
            if final == "paused":
                session.pause()
            elif final == "completed":
                session.stop()
            session.reset()
            self.assertIs(session.state, SessionState.IDLE)
            self.assertEqual(session.sample_count, 0)
            self.assertIsNone(session.result)
            self.assertEqual(session.elapsed_time, 0.0)

    def test_result_survives_reset(self):
        self.session.start()
        self.session.record(good_pose(self.params))
        result = self.session.stop()
        self.session.reset()
        self.assertEqual(result.sample_count, 1)
        self.assertEqual(result.score, 100)

    def test_window_is_bounded(self):
        session = SessionAggregator(self.params, max_samples=1000, clock=self.clock)
        session.start()
        for i in range(1200):
            session.record(good_pose(self.params, timestamp=i * 0.01), quality=float(i % 100))
        self.assertEqual(session.sample_count, 1000)
        self.assertEqual(session.samples[0].timestamp, 200 * 0.01)

    def test_quality_clamped(self):
        self.session.start()
        self.session.record(good_pose(self.params), quality=150.0)
        self.session.record(good_pose(self.params), quality=-5.0)
        self.assertEqual([s.quality for s in self.session.samples], [100.0, 0.0])


class TestSessionResult(unittest.TestCase):
    """Final score, ratio and grade."""

    def setUp(self):
        self.params = Technique.MIG.parameters
        self.clock = FakeClock(1000.0)

    def test_full_session(self):
        session = SessionAggregator(self.params, clock=self.clock, wall_clock=self.clock)
        session.start()
        for i in range(600):
            quality = 80.0 if i % 12 == 0 else 100.0
            self.assertTrue(session.record(good_pose(self.params, timestamp=i * 0.1), quality=quality))
            self.clock.now = 1000.0 + (i + 1) / 10.0
        self.clock.now = 1060.0
        session.tick()

        self.assertIs(session.state, SessionState.COMPLETED)
        result = session.result
        self.assertEqual(result.sample_count, 600)
        self.assertAlmostEqual(result.time_in_tolerance_ratio, 550 / 600)
        self.assertAlmostEqual(result.duration_seconds, 60.0)
        self.assertTrue(result.grade.at_least(Grade.A_MINUS))
        self.assertEqual(result.score, 98)
        self.assertEqual(result.started_at, 1000.0)
        self.assertEqual(result.feedback[0], "Excellent work! Technique very well executed.")
        self.assertNotIn(self.params.session_tip, result.feedback)

    def test_record_past_duration_completes(self):
        session = SessionAggregator(self.params, duration_seconds=1.0, clock=self.clock)
        session.start()
        self.clock.advance(1.5)
        self.assertTrue(session.record(good_pose(self.params)))
        self.assertIs(session.state, SessionState.COMPLETED)
        self.assertEqual(session.result.sample_count, 1)

    def test_score_rounds_half_up(self):
        session = SessionAggregator(self.params, clock=self.clock)
        session.start()
        session.record(good_pose(self.params), quality=84.0)
        session.record(good_pose(self.params), quality=85.0)
        result = session.stop()
        self.assertEqual(result.score, 85)
        self.assertIs(result.grade, Grade.A)

    def test_grade_and_feedback_follow_rounded_score(self):
        session = SessionAggregator(self.params, clock=self.clock)
        session.start()
        session.record(good_pose(self.params), quality=79.6)
        result = session.stop()
        self.assertAlmostEqual(result.mean_quality, 79.6)
        self.assertEqual(result.score, 80)
        self.assertIs(result.grade, Grade.A_MINUS)
        self.assertEqual(result.feedback[0], "Excellent work! Technique very well executed.")
        self.assertNotIn(self.params.session_tip, result.feedback)

    def test_empty_session(self):
        session = SessionAggregator(self.params, clock=self.clock)
        session.start()
        result = session.stop()
        self.assertEqual(result.score, 0)
        self.assertIs(result.grade, Grade.F)
        self.assertEqual(result.feedback, ("No metrics were recorded.",))
        self.assertIsNone(result.component_averages)

    def test_component_averages(self):
        session = SessionAggregator(self.params, clock=self.clock)
        session.start()
        for i in range(10):
            session.record(good_pose(self.params, timestamp=i * 0.1, steadiness=90.0))
        result = session.stop()
        averages = result.component_averages
        self.assertAlmostEqual(averages.angle, self.params.angle_range.midpoint)
        self.assertAlmostEqual(averages.distance, self.params.distance_range.midpoint)
        self.assertAlmostEqual(averages.speed, self.params.speed_range.midpoint)
        self.assertAlmostEqual(averages.steadiness, 90.0)
        self.assertAlmostEqual(result.consistency, 100.0)
        self.assertEqual(result.to_dict()["grade"], "A+")


class TestFeedback(unittest.TestCase):
    """Rule-based coaching lines."""

    def setUp(self):
        self.params = Technique.TIG.parameters

    def averages(self, **overrides):
        values = dict(
            angle=self.params.angle_range.midpoint,
            distance=self.params.distance_range.midpoint,
            speed=self.params.speed_range.midpoint,
            stability=95.0,
            steadiness=95.0,
        )
        values.update(overrides)
        return ComponentAverages(**values)

    def test_good_session_has_only_opener(self):
        feedback = generate_feedback(92.0, self.averages(), self.params)
        self.assertEqual(feedback, ["Excellent work! Technique very well executed."])

    def test_out_of_range_components(self):
        feedback = generate_feedback(
            65.0, self.averages(angle=40.0, distance=9.0, speed=20.0), self.params
        )
        self.assertEqual(feedback[0], "Good effort. You will keep improving with practice.")
        self.assertIn("Angle too closed. Tilt the torch more.", feedback)
        self.assertIn("Too far from the work piece. Bring the torch closer.", feedback)
        self.assertIn("Travel speed too fast. Slow down.", feedback)
        self.assertIn(self.params.session_tip, feedback)
        for tip in self.params.tips:
            self.assertIn(tip, feedback)

    def test_low_steadiness_and_stability(self):
        feedback = generate_feedback(40.0, self.averages(steadiness=50.0, stability=40.0), self.params)
        self.assertEqual(feedback[0], "Keep practicing. Focus on the points below.")
        self.assertIn("Keep your hand steadier while welding.", feedback)
        self.assertIn("Marker tracking was unreliable. Keep the marker fully in view.", feedback)

    def test_unknown_speed_skips_speed_rule(self):
        feedback = generate_feedback(90.0, self.averages(speed=None), self.params)
        self.assertFalse(any("speed" in line for line in feedback))


if __name__ == "__main__":
    unittest.main()
