# src/tagpredict/modules/measurement.py
from __future__ import annotations

import numpy as np

from ..geom.se3 import skew, rodrigues_to_R

SIGMA_PX = 3.0
MAX_COND = 1e12


class DegenerateMeasurement(ValueError):
    """The marker geometry does not constrain the position (JᵀJ not invertible)."""


def marker_corners(length: float) -> np.ndarray:
    """(3,4) corners of a square marker centred at its origin, in the marker plane z=0."""
    c = np.array([
        [-1.0,  1.0, 1.0, -1.0],
        [-1.0, -1.0, 1.0,  1.0],
        [ 0.0,  0.0, 0.0,  0.0],
    ])
    return c * (float(length) / 2.0)


def measurement_jacobian(
    t_cm: np.ndarray,
    rvec_cm: np.ndarray,
    length: float,
    K: np.ndarray,
) -> np.ndarray:
    """
    Jacobian of the pixel coordinates of the four marker corners with respect to
    the camera <- marker translation.

    Args:
        t_cm: (3,) marker position in the camera frame.
        rvec_cm: (3,) axis-angle marker orientation in the camera frame.
        length: marker side length (m).
        K: (3,3) camera intrinsics.

    Returns:
        J: (8,3), two rows per corner.
    """
    t = np.asarray(t_cm, dtype=np.float64).reshape(3)
    R = rodrigues_to_R(rvec_cm)
    K64 = np.asarray(K, dtype=np.float64)

    J = np.zeros((8, 3), dtype=np.float64)
    corners = marker_corners(length)
    for i in range(4):
        ci = corners[:, i]
        h = K64 @ (R @ ci + t)
        if h[2] <= 0.0:
            raise DegenerateMeasurement(f"corner {i} behind the camera (depth {h[2]:.3g})")

        # d(pixel)/d(homogeneous point)
        J_pix = np.array([
            [1.0 / h[2], 0.0, -h[0] / (h[2] * h[2])],
            [0.0, 1.0 / h[2], -h[1] / (h[2] * h[2])],
        ])
        # d(homogeneous point)/d(translation, rotation)
        J_proj = np.zeros((3, 6), dtype=np.float64)
        J_proj[:, :3] = K64
        J_proj[:, 3:] = -K64 @ R @ skew(ci)

        J[2*i:2*i + 2, :] = (J_pix @ J_proj)[:, :3]
    return J


def measurement_covariance(
    t_cm: np.ndarray,
    rvec_cm: np.ndarray,
    length: float,
    K: np.ndarray,
    sigma_px: float = SIGMA_PX,
) -> np.ndarray:
    """σ² (JᵀJ)⁻¹: isotropic pixel noise propagated to the marker position (3,3)."""
    J = measurement_jacobian(t_cm, rvec_cm, length, K)
    if not np.all(np.isfinite(J)):
        raise DegenerateMeasurement("non-finite projection jacobian")

    JtJ = J.T @ J
    if np.linalg.cond(JtJ) > MAX_COND:
        raise DegenerateMeasurement("ill-conditioned JᵀJ")
    try:
        cov = float(sigma_px) ** 2 * np.linalg.inv(JtJ)
    except np.linalg.LinAlgError as ex:
        raise DegenerateMeasurement("singular JᵀJ") from ex
    # remove round-off asymmetry
    return 0.5 * (cov + cov.T)
