"""
Kalman filters used by the sensor-fusion stage.

Two estimators are provided:
- ``ScalarKalmanFilter``: single-variable recursive estimator, one instance per
  smoothed channel (pitch, yaw, roll, distance).
- ``VectorKalmanFilter``: small fixed-dimension linear filter used to smooth the
  device acceleration vector. Matrix inversion is closed form for 1x1 and 2x2
  innovation covariances; larger systems must be diagonal, which is checked when
  the filter is built.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Union

import numpy as np

from arcsense.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

MAX_DENSE_DIMENSION = 2

MatrixLike = Union[float, Sequence[Sequence[float]], np.ndarray]


class ScalarKalmanFilter:
    """
    One-dimensional Kalman filter.

    Model::

        x_k = A * x_{k-1} + B * u_k     (process noise R)
        z_k = C * x_k                   (measurement noise Q)

    The first measurement initialises the estimate directly instead of starting
    from an arbitrary prior.
    """

    def __init__(
        self,
        process_noise: float = 1.0,
        measurement_noise: float = 1.0,
        state_coefficient: float = 1.0,
        control_coefficient: float = 0.0,
        measurement_coefficient: float = 1.0,
    ):
        for name, value in (
            ("process_noise", process_noise),
            ("measurement_noise", measurement_noise),
            ("state_coefficient", state_coefficient),
            ("control_coefficient", control_coefficient),
            ("measurement_coefficient", measurement_coefficient),
        ):
            if not math.isfinite(value):
                raise ConfigurationError(f"{name} must be finite, got {value!r}")
        if process_noise < 0 or measurement_noise < 0:
            raise ConfigurationError("Noise terms must be non-negative")
        if process_noise == 0 and measurement_noise == 0:
            raise ConfigurationError("process_noise and measurement_noise cannot both be zero")
        if measurement_coefficient == 0:
            raise ConfigurationError("measurement_coefficient (C) must be non-zero")

        self.process_noise = float(process_noise)
        self.measurement_noise = float(measurement_noise)
        self.state_coefficient = float(state_coefficient)
        self.control_coefficient = float(control_coefficient)
        self.measurement_coefficient = float(measurement_coefficient)

        self._estimate: Optional[float] = None
        self._covariance: Optional[float] = None

    @property
    def is_initialized(self) -> bool:
        return self._estimate is not None

    @property
    def estimate(self) -> Optional[float]:
        """Last filtered value, or None before the first measurement."""
        return self._estimate

    @property
    def covariance(self) -> Optional[float]:
        """Variance of the current estimate, or None before the first measurement."""
        return self._covariance

    def filter(self, measurement: float, control: float = 0.0) -> float:
        """Fold one measurement into the estimate and return the new estimate."""
        a = self.state_coefficient
        b = self.control_coefficient
        c = self.measurement_coefficient

        if self._estimate is None:
            self._estimate = measurement / c
            self._covariance = self.measurement_noise / (c * c)
            return self._estimate

        predicted = a * self._estimate + b * control
        predicted_cov = a * self._covariance * a + self.process_noise

        gain = predicted_cov * c / (c * predicted_cov * c + self.measurement_noise)

        self._estimate = predicted + gain * (measurement - c * predicted)
        self._covariance = predicted_cov - gain * c * predicted_cov
        return self._estimate

    def reset(self):
        """Forget the estimate; the next measurement re-initialises the filter."""
        self._estimate = None
        self._covariance = None


def small_inverse(matrix: np.ndarray) -> np.ndarray:
    """
    Invert an innovation covariance.

    1x1 and 2x2 matrices are inverted in closed form. Larger matrices must be
    diagonal and are inverted element-wise.

    Raises:
        np.linalg.LinAlgError: If the matrix is singular or is a dense matrix
            larger than 2x2.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    n = matrix.shape[0]

    if n == 1:
        value = matrix[0, 0]
        if value == 0:
            raise np.linalg.LinAlgError("Singular 1x1 matrix")
        return np.array([[1.0 / value]])

    if n == 2:
        (a, b), (c, d) = matrix
        det = a * d - b * c
        if det == 0:
            raise np.linalg.LinAlgError("Singular 2x2 matrix")
        return np.array([[d, -b], [-c, a]], dtype=np.float64) / det

    diagonal = np.diagonal(matrix)
    if np.any(matrix - np.diag(diagonal)):
        raise np.linalg.LinAlgError(f"Dense {n}x{n} inverse is not supported")
    if np.any(diagonal == 0):
        raise np.linalg.LinAlgError(f"Singular {n}x{n} diagonal matrix")
    return np.diag(1.0 / diagonal)


def _is_diagonal(matrix: np.ndarray) -> bool:
    rows, cols = matrix.shape
    mask = ~np.eye(rows, cols, dtype=bool)
    return not np.any(matrix[mask])


class VectorKalmanFilter:
    """
    Linear Kalman filter over a small state vector.

    Predict::

        x = F x (+ B u)
        P = F P F^T + Q

    Update (Joseph form)::

        S = H P H^T + R
        K = P H^T S^-1
        x = x + K (z - H x)
        P = (I - K H) P (I - K H)^T + K R K^T

    Transition, observation, control and noise matrices are fixed at
    construction. Scalars are expanded to ``value * I``.
    """

    def __init__(
        self,
        state_dim: int = 3,
        measurement_dim: int = 3,
        transition: Optional[MatrixLike] = None,
        observation: Optional[MatrixLike] = None,
        control: Optional[MatrixLike] = None,
        process_noise: MatrixLike = 0.01,
        measurement_noise: MatrixLike = 0.1,
        initial_covariance: MatrixLike = 1.0,
    ):
        if int(state_dim) < 1 or int(measurement_dim) < 1:
            raise ConfigurationError("Filter dimensions must be positive")
        self.state_dim = n = int(state_dim)
        self.measurement_dim = m = int(measurement_dim)

        if observation is None:
            observation = np.eye(m, n)

        self.F = self._as_matrix(transition if transition is not None else 1.0, (n, n), "transition")
        self.H = self._as_matrix(observation, (m, n), "observation")
        self.B = self._as_matrix(control if control is not None else 1.0, (n, n), "control")
        self.Q = self._as_matrix(process_noise, (n, n), "process_noise")
        self.R = self._as_matrix(measurement_noise, (m, m), "measurement_noise")
        self.P0 = self._as_matrix(initial_covariance, (n, n), "initial_covariance")

        self._validate()

        self.x = np.zeros(n, dtype=np.float64)
        self.P = self.P0.copy()

    @staticmethod
    def _as_matrix(value: MatrixLike, shape, name: str) -> np.ndarray:
        if np.isscalar(value):
            return float(value) * np.eye(*shape)
        matrix = np.array(value, dtype=np.float64)
        if matrix.shape != tuple(shape):
            raise ConfigurationError(f"{name} must have shape {tuple(shape)}, got {matrix.shape}")
        return matrix

    def _validate(self):
        for name, matrix in (("transition", self.F), ("observation", self.H), ("control", self.B),
                             ("process_noise", self.Q), ("measurement_noise", self.R),
                             ("initial_covariance", self.P0)):
            if not np.all(np.isfinite(matrix)):
                raise ConfigurationError(f"{name} contains non-finite values")

        for name, matrix in (("process_noise", self.Q), ("measurement_noise", self.R),
                             ("initial_covariance", self.P0)):
            if not np.allclose(matrix, matrix.T):
                raise ConfigurationError(f"{name} must be symmetric")
            if np.any(np.diagonal(matrix) < 0):
                raise ConfigurationError(f"{name} must have a non-negative diagonal")

        if np.any(np.diagonal(self.R) <= 0):
            raise ConfigurationError("measurement_noise must be positive definite")
        if self.measurement_dim == 2 and np.linalg.det(self.R) <= 0:
            raise ConfigurationError("measurement_noise must be positive definite")

        if self.measurement_dim > MAX_DENSE_DIMENSION:
            dense = [name for name, matrix in (("transition", self.F), ("observation", self.H),
                                               ("process_noise", self.Q), ("measurement_noise", self.R),
                                               ("initial_covariance", self.P0))
                     if not _is_diagonal(matrix)]
            if dense:
                raise ConfigurationError(
                    "Measurement dimension %d requires diagonal matrices; dense: %s"
                    % (self.measurement_dim, ", ".join(dense))
                )

    @property
    def state(self) -> np.ndarray:
        return self.x.copy()

    @property
    def covariance(self) -> np.ndarray:
        return self.P.copy()

    def predict(self, control: Optional[Sequence[float]] = None) -> np.ndarray:
        """Propagate the state one step and return a copy of it."""
        self.x = self.F @ self.x
        if control is not None and len(control) > 0:
            u = np.asarray(control, dtype=np.float64)
            if u.shape != (self.state_dim,):
                raise ValueError(f"Control vector must have length {self.state_dim}")
            self.x = self.x + self.B @ u

        self.P = self.F @ self.P @ self.F.T + self.Q
        return self.x.copy()

    def update(self, measurement: Sequence[float]) -> np.ndarray:
        """Correct the state with one measurement and return a copy of it."""
        z = np.asarray(measurement, dtype=np.float64)
        if z.shape != (self.measurement_dim,):
            raise ValueError(f"Measurement vector must have length {self.measurement_dim}")

        H = self.H
        S = H @ self.P @ H.T + self.R
        K = self.P @ H.T @ small_inverse(S)

        innovation = z - H @ self.x
        self.x = self.x + K @ innovation

        I_KH = np.eye(self.state_dim) - K @ H
        P = I_KH @ self.P @ I_KH.T + K @ self.R @ K.T
        self.P = 0.5 * (P + P.T)
        return self.x.copy()

    def filter(self, measurement: Sequence[float], control: Optional[Sequence[float]] = None) -> np.ndarray:
        """Predict then update."""
        self.predict(control)
        return self.update(measurement)

    def reset(self):
        self.x = np.zeros(self.state_dim, dtype=np.float64)
        self.P = self.P0.copy()
        LOGGER.debug("Vector Kalman filter reset (state_dim=%d)", self.state_dim)
