"""
Marker detection module.

Thin adapter around OpenCV's ArUco detector that turns a video frame into a
``MarkerObservation``. Any other detector can be used instead as long as it
produces the same observation type.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from arcsense.errors import ConfigurationError
from arcsense.geometry import MarkerObservation

LOGGER = logging.getLogger(__name__)


class MarkerDetector:
    """Detects a single ArUco marker per frame."""

    def __init__(self, config: Optional[Dict] = None):
        """Initialize marker detector.

        Args:
            config: ``marker_detection`` configuration section
        """
        self.config = config or {}
        self.dictionary_name = self.config.get("dictionary", "DICT_4X4_50")
        self.marker_id: Optional[int] = self.config.get("marker_id")
        self.dictionary = None
        self.detector = None
        self.initialized = False

    def initialize(self) -> bool:
        """Set up the ArUco dictionary and detector parameters."""
        dictionary_id = getattr(cv2.aruco, self.dictionary_name, None)
        if dictionary_id is None:
            raise ConfigurationError(f"Unknown ArUco dictionary: {self.dictionary_name}")

        self.dictionary = cv2.aruco.getPredefinedDictionary(dictionary_id)
        parameters = cv2.aruco.DetectorParameters()
        self.detector = cv2.aruco.ArucoDetector(self.dictionary, parameters)
        self.initialized = True
        LOGGER.info("Marker detector initialized (%s, marker id %s)",
                    self.dictionary_name, self.marker_id if self.marker_id is not None else "any")
        return True

    def detect_all(self, frame: np.ndarray) -> List[Tuple[int, np.ndarray]]:
        """Return ``(marker_id, corners)`` for every marker in the frame."""
        if not self.initialized:
            self.initialize()
        if frame is None or frame.size == 0:
            return []

        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        corners, ids, _ = self.detector.detectMarkers(gray)
        if ids is None or len(ids) == 0:
            return []
        return [(int(marker_id), quad.reshape(4, 2)) for marker_id, quad in zip(ids.flatten(), corners)]

    def detect(self, frame: np.ndarray, timestamp: float) -> MarkerObservation:
        """Detect the tracked marker and return its observation.

        When no marker id is configured the largest visible marker is used.
        """
        frame_size = None
        if frame is not None and frame.size:
            frame_size = (int(frame.shape[1]), int(frame.shape[0]))

        markers = self.detect_all(frame)
        if self.marker_id is not None:
            markers = [m for m in markers if m[0] == self.marker_id]
        if not markers:
            LOGGER.debug("No marker detected at t=%.3f", timestamp)
            return MarkerObservation.missing(timestamp, frame_size)

        marker_id, corners = max(markers, key=lambda m: cv2.contourArea(m[1].astype(np.float32)))
        return MarkerObservation.from_corners(corners, timestamp, frame_size, marker_id)

    def draw(self, frame: np.ndarray, observation: MarkerObservation) -> np.ndarray:
        """Outline the detected marker on a copy of the frame."""
        output = frame.copy()
        if observation.detected and observation.corners is not None:
            quad = np.array(observation.corners, dtype=np.int32).reshape(-1, 1, 2)
            cv2.polylines(output, [quad], True, (0, 255, 0), 2)
        return output
