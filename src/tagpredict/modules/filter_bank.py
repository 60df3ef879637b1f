# src/tagpredict/modules/filter_bank.py
from __future__ import annotations

from typing import Iterator

import cv2
import numpy as np


def build_control_matrix(position, dt: float) -> np.ndarray:
    """
    Linearized position propagation under a camera-frame twist:

        x' = x - dt*v - dt*(w × x)

    Returns the (3,6) matrix B such that x' = x + B @ [v; w].
    """
    x, y, z = (float(c) for c in np.asarray(position).reshape(3))
    return np.array([
        [-dt, 0.0, 0.0,   0.0, -dt*z,  dt*y],
        [0.0, -dt, 0.0,  dt*z,   0.0, -dt*x],
        [0.0, 0.0, -dt, -dt*y,  dt*x,   0.0],
    ])


def _col32(v) -> np.ndarray:
    return np.asarray(v, dtype=np.float32).reshape(-1, 1)


class MarkerFilter:
    """
    Recursive position filter of one marker, expressed in the camera frame.

    `current_estimate` is None until the first measurement (Uninitialized), then a
    (3,) vector (Tracking). It is written by exactly one of initialize, predict or
    correct at a time.
    """

    def __init__(self, marker_id: int):
        self.id = int(marker_id)
        self.current_estimate: np.ndarray | None = None
        self.idle = 0  # predictions since the last measurement

        self.kf = cv2.KalmanFilter(3, 3, 6, cv2.CV_32F)
        self.kf.transitionMatrix = np.eye(3, dtype=np.float32)
        self.kf.measurementMatrix = np.eye(3, dtype=np.float32)
        self.kf.controlMatrix = np.zeros((3, 6), dtype=np.float32)

    @property
    def tracking(self) -> bool:
        return self.current_estimate is not None

    def initialize(self, measured, covariance: np.ndarray) -> np.ndarray:
        z = _col32(measured)
        self.kf.statePre = z.copy()
        self.kf.statePost = z.copy()
        self.kf.errorCovPost = np.asarray(covariance, dtype=np.float32).reshape(3, 3)
        self.current_estimate = z.reshape(3).astype(np.float64)
        self.idle = 0
        return self.current_estimate

    def predict(self, control, process_cov: np.ndarray, control_matrix: np.ndarray | None = None) -> np.ndarray:
        if not self.tracking:
            raise ValueError(f"marker {self.id}: predict before initialization")
        if control_matrix is not None:
            self.kf.controlMatrix = np.asarray(control_matrix, dtype=np.float32).reshape(3, 6)
        self.kf.processNoiseCov = np.asarray(process_cov, dtype=np.float32).reshape(3, 3)
        self.current_estimate = self.kf.predict(_col32(control)).reshape(3).astype(np.float64)
        self.idle += 1
        return self.current_estimate

    def correct(self, measured, measurement_cov: np.ndarray) -> np.ndarray:
        if not self.tracking:
            raise ValueError(f"marker {self.id}: correct before initialization")
        self.kf.measurementNoiseCov = np.asarray(measurement_cov, dtype=np.float32).reshape(3, 3)
        self.current_estimate = self.kf.correct(_col32(measured)).reshape(3).astype(np.float64)
        self.idle = 0
        return self.current_estimate

    @property
    def covariance(self) -> np.ndarray:
        return np.asarray(self.kf.errorCovPost, dtype=np.float64)


class FilterBank:
    """One MarkerFilter per marker id ever seen, iterated in ascending id order."""

    def __init__(self):
        self._filters: dict[int, MarkerFilter] = {}

    def __len__(self) -> int:
        return len(self._filters)

    def __contains__(self, marker_id) -> bool:
        return int(marker_id) in self._filters

    def __iter__(self) -> Iterator[MarkerFilter]:
        for marker_id in sorted(self._filters):
            yield self._filters[marker_id]

    def get(self, marker_id: int) -> MarkerFilter | None:
        return self._filters.get(int(marker_id))

    def ensure(self, marker_id: int) -> MarkerFilter:
        f = self._filters.get(int(marker_id))
        if f is None:
            f = MarkerFilter(marker_id)
            self._filters[f.id] = f
        return f

    def active(self) -> list[MarkerFilter]:
        return [f for f in self if f.tracking]

    def initialize(self, marker_id: int, measured, covariance: np.ndarray) -> np.ndarray:
        return self.ensure(marker_id).initialize(measured, covariance)

    def predict(self, control, process_cov: np.ndarray, dt: float | None = None) -> None:
        """
        Predict every tracking filter. With dt (odometry present) the control matrix
        is rebuilt from each filter's current position; otherwise the previous one is kept.
        """
        for f in self.active():
            B = None if dt is None else build_control_matrix(f.current_estimate, dt)
            f.predict(control, process_cov, B)

    def correct(self, marker_id: int, measured, measurement_cov: np.ndarray) -> np.ndarray:
        f = self._filters.get(int(marker_id))
        if f is None:
            raise KeyError(marker_id)
        return f.correct(measured, measurement_cov)

    def retire(self, marker_id: int) -> bool:
        return self._filters.pop(int(marker_id), None) is not None

    def retire_stale(self, max_idle: int) -> list[int]:
        stale = [f.id for f in self if f.tracking and f.idle > max_idle]
        for marker_id in stale:
            del self._filters[marker_id]
        return stale

    def clear_all(self) -> None:
        self._filters.clear()
