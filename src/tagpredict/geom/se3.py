import math

import cv2
import numpy as np

def skew(v) -> np.ndarray:
    """skew(a) @ b == cross(a, b)"""
    x, y, z = (float(c) for c in np.asarray(v, dtype=np.float64).reshape(3))
    return np.array([[0.0,  -z,   y],
                     [  z, 0.0,  -x],
                     [ -y,   x, 0.0]])

def rpy_to_R(roll: float, pitch: float, yaw: float) -> np.ndarray:
    # R = Rz(yaw) @ Ry(pitch) @ Rx(roll)
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array([
        [cp*cy, sr*sp*cy - cr*sy, cr*sp*cy + sr*sy],
        [cp*sy, sr*sp*sy + cr*cy, cr*sp*sy - sr*cy],
        [  -sp,            sr*cp,            cr*cp],
    ])

def quat_to_R(qw: float, qx: float, qy: float, qz: float) -> np.ndarray:
    # assumes a unit quaternion
    return np.array([
        [1 - 2*qy*qy - 2*qz*qz,     2*qx*qy - 2*qz*qw,     2*qx*qz + 2*qy*qw],
        [    2*qx*qy + 2*qz*qw, 1 - 2*qx*qx - 2*qz*qz,     2*qy*qz - 2*qx*qw],
        [    2*qx*qz - 2*qy*qw,     2*qy*qz + 2*qx*qw, 1 - 2*qx*qx - 2*qy*qy],
    ])

def rodrigues_to_R(rvec) -> np.ndarray:
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return R
