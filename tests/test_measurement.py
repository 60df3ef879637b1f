"""Tests for the corner-projection measurement model."""

import numpy as np
import pytest

from tagpredict.geom.se3 import rodrigues_to_R
from tagpredict.modules.measurement import (
    DegenerateMeasurement,
    marker_corners,
    measurement_covariance,
    measurement_jacobian,
)

LENGTH = 0.16


def _pixels(t, rvec, K):
    """Stacked (8,) pixel coordinates of the four corners."""
    R = rodrigues_to_R(rvec)
    out = []
    for c in marker_corners(LENGTH).T:
        h = K @ (R @ c + t)
        out.extend([h[0] / h[2], h[1] / h[2]])
    return np.array(out)


class TestMarkerCorners:
    def test_square_centered_in_plane(self):
        c = marker_corners(LENGTH)
        assert c.shape == (3, 4)
        assert np.allclose(c.mean(axis=1), 0.0)
        assert np.allclose(c[2], 0.0)
        assert np.isclose(np.linalg.norm(c[:, 1] - c[:, 0]), LENGTH)
        assert np.isclose(np.linalg.norm(c[:, 2] - c[:, 1]), LENGTH)


class TestMeasurementJacobian:
    @pytest.mark.parametrize("rvec", [(0.0, 0.0, 0.0), (0.3, -0.2, 0.5)])
    def test_matches_finite_differences(self, K, rvec):
        t = np.array([0.2, -0.1, 1.8])
        rvec = np.array(rvec)
        J = measurement_jacobian(t, rvec, LENGTH, K)
        assert J.shape == (8, 3)

        eps = 1e-6
        J_num = np.zeros((8, 3))
        for k in range(3):
            d = np.zeros(3)
            d[k] = eps
            J_num[:, k] = (_pixels(t + d, rvec, K) - _pixels(t - d, rvec, K)) / (2 * eps)
        assert np.allclose(J, J_num, rtol=1e-5, atol=1e-4)

    def test_corner_behind_camera_is_degenerate(self, K):
        with pytest.raises(DegenerateMeasurement):
            measurement_jacobian(np.array([0.0, 0.0, -1.0]), np.zeros(3), LENGTH, K)


class TestMeasurementCovariance:
    def test_symmetric_positive_definite(self, K):
        cov = measurement_covariance(np.array([0.1, 0.05, 1.5]), np.array([0.1, 0.2, 0.0]), LENGTH, K)
        assert cov.shape == (3, 3)
        assert np.allclose(cov, cov.T)
        assert np.all(np.linalg.eigvalsh(cov) > 0.0)

    def test_scales_with_pixel_noise(self, K):
        t = np.array([0.0, 0.0, 1.5])
        r = np.zeros(3)
        cov1 = measurement_covariance(t, r, LENGTH, K, sigma_px=1.0)
        cov3 = measurement_covariance(t, r, LENGTH, K, sigma_px=3.0)
        assert np.allclose(cov3, 9.0 * cov1)
        assert np.trace(cov1) < np.trace(cov3)

    def test_default_pixel_noise_is_three(self, K):
        t = np.array([0.0, 0.0, 1.5])
        r = np.zeros(3)
        assert np.allclose(
            measurement_covariance(t, r, LENGTH, K),
            measurement_covariance(t, r, LENGTH, K, sigma_px=3.0),
        )

    def test_depth_is_least_certain(self, K):
        cov = measurement_covariance(np.array([0.0, 0.0, 2.0]), np.zeros(3), LENGTH, K)
        assert cov[2, 2] > cov[0, 0]
        assert cov[2, 2] > cov[1, 1]

    def test_grows_with_distance(self, K):
        near = measurement_covariance(np.array([0.0, 0.0, 1.0]), np.zeros(3), LENGTH, K)
        far = measurement_covariance(np.array([0.0, 0.0, 4.0]), np.zeros(3), LENGTH, K)
        assert np.trace(far) > np.trace(near)

    def test_zero_size_marker_is_degenerate(self, K):
        with pytest.raises(DegenerateMeasurement):
            measurement_covariance(np.array([0.0, 0.0, 1.5]), np.zeros(3), 0.0, K)

    def test_degenerate_is_a_value_error(self):
        assert issubclass(DegenerateMeasurement, ValueError)
