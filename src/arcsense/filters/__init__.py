"""
Filters subpackage.

Recursive estimators used to smooth marker geometry and device motion.
"""

from .kalman import MAX_DENSE_DIMENSION, ScalarKalmanFilter, VectorKalmanFilter, small_inverse

__all__ = [
    "MAX_DENSE_DIMENSION",
    "ScalarKalmanFilter",
    "VectorKalmanFilter",
    "small_inverse",
]
