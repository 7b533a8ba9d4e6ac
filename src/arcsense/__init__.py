"""
arcsense - welding technique training engine.

This package provides functionality for:
- Marker geometry (distance and orientation from four marker corners)
- Kalman filtering of marker geometry and device motion
- Technique-aware pose quality scoring
- Session aggregation with grade and feedback
- ArUco marker detection and synthetic demo streams
"""

from .errors import ArcSenseError, ConfigurationError, SessionStateError
from .filters import ScalarKalmanFilter, VectorKalmanFilter
from .geometry import (
    GeometryConfig,
    MarkerGeometry,
    MarkerGeometryResult,
    MarkerObservation,
    extract_marker_geometry,
)
from .fusion import (
    FusionConfig,
    MotionSample,
    Orientation,
    PoseEstimate,
    SensorFusion,
    TrackingStatus,
)
from .technique import Range, ScoreWeights, Technique, TechniqueParameters, technique_parameters
from .scoring import QualityBreakdown, QualityScorer, component_score, vibration_score
from .session import (
    ComponentAverages,
    Grade,
    QualitySample,
    SessionAggregator,
    SessionResult,
    SessionState,
    grade_for_score,
)
from .pipeline import TickResult, TrainingPipeline

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ArcSenseError",
    "ConfigurationError",
    "SessionStateError",
    # Filters
    "ScalarKalmanFilter",
    "VectorKalmanFilter",
    # Geometry
    "GeometryConfig",
    "MarkerGeometry",
    "MarkerGeometryResult",
    "MarkerObservation",
    "extract_marker_geometry",
    # Fusion
    "FusionConfig",
    "MotionSample",
    "Orientation",
    "PoseEstimate",
    "SensorFusion",
    "TrackingStatus",
    # Technique & scoring
    "Range",
    "ScoreWeights",
    "Technique",
    "TechniqueParameters",
    "technique_parameters",
    "QualityBreakdown",
    "QualityScorer",
    "component_score",
    "vibration_score",
    # Session
    "ComponentAverages",
    "Grade",
    "QualitySample",
    "SessionAggregator",
    "SessionResult",
    "SessionState",
    "grade_for_score",
    # Pipeline
    "TickResult",
    "TrainingPipeline",
]
