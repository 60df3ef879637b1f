# src/tagpredict/modules/frames.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..geom.se3 import skew, rpy_to_R, quat_to_R
from ..system.state import Extrinsics, OdometrySample

DEFAULT_PROCESS_NOISE = 1e-3


@dataclass
class FrameSet:
    """Transforms valid for one period. Convention: A_R_B maps B coordinates to A."""
    B_R_C: np.ndarray  # 3x3
    B_t_C: np.ndarray  # (3,)
    W_R_B: np.ndarray  # 3x3
    W_t_B: np.ndarray  # (3,)


def body_to_camera_twist(extrinsics: Extrinsics) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Static velocity-twist transform from the vehicle body to the camera.

        [ C_R_B   skew(t) ]  [ v ]
        [   0      C_R_B  ]  [ w ]

    with C_R_B = B_R_Cᵀ and t the camera position in the body frame.

    Returns:
        C_T_B: (6,6)
        B_R_C: (3,3)
        B_t_C: (3,)
    """
    B_t_C = np.array([extrinsics.tx, extrinsics.ty, extrinsics.tz], dtype=np.float64)
    B_R_C = rpy_to_R(extrinsics.roll, extrinsics.pitch, extrinsics.yaw)
    C_R_B = B_R_C.T

    C_T_B = np.zeros((6, 6), dtype=np.float64)
    C_T_B[:3, :3] = C_R_B
    C_T_B[3:, 3:] = C_R_B
    C_T_B[:3, 3:] = skew(B_t_C)
    return C_T_B, B_R_C, B_t_C


def world_from_body(odometry: OdometrySample | None) -> tuple[np.ndarray, np.ndarray]:
    """(W_R_B, W_t_B) from odometry, identity and zero when there is none."""
    if odometry is None:
        return np.eye(3), np.zeros(3)
    qw, qx, qy, qz = (float(q) for q in np.asarray(odometry.attitude).reshape(4))
    W_R_B = quat_to_R(qw, qx, qy, qz)
    W_t_B = np.asarray(odometry.position, dtype=np.float64).reshape(3)
    return W_R_B, W_t_B


def unpack_cov(packed) -> np.ndarray:
    # xx, yx, yy, zx, zy, zz
    c = np.asarray(packed, dtype=np.float64).reshape(6)
    return np.array([[c[0], c[1], c[3]],
                     [c[1], c[2], c[4]],
                     [c[3], c[4], c[5]]])


def control_input(
    odometry: OdometrySample | None,
    C_T_B: np.ndarray,
    *,
    default_process_noise: float = DEFAULT_PROCESS_NOISE,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Velocity twist expressed in the camera frame and the matching process covariance.

    Without odometry the control is the zero twist and the process covariance the
    fixed default diagonal, meaning no informative control is available.

    Returns:
        u: (6,) camera-frame twist [v; w]
        Q: (3,3) process covariance
    """
    if odometry is None:
        return np.zeros(6), np.eye(3) * default_process_noise

    twist = np.concatenate([
        np.asarray(odometry.velocity, dtype=np.float64).reshape(3),
        np.asarray(odometry.angular_velocity, dtype=np.float64).reshape(3),
    ])
    W_R_B, _ = world_from_body(odometry)
    B_R_W = W_R_B.T
    B_T_W = np.eye(6)
    B_T_W[:3, :3] = B_R_W
    B_T_W[3:, 3:] = B_R_W

    u = C_T_B @ B_T_W @ twist
    Q = unpack_cov(odometry.velocity_cov) + unpack_cov(odometry.angular_velocity_cov)
    return u, Q


def build_frames(
    B_R_C: np.ndarray,
    B_t_C: np.ndarray,
    odometry: OdometrySample | None,
) -> FrameSet:
    W_R_B, W_t_B = world_from_body(odometry)
    return FrameSet(B_R_C=B_R_C, B_t_C=B_t_C, W_R_B=W_R_B, W_t_B=W_t_B)
