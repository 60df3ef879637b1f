"""Shared fixtures for tagpredict tests."""

import numpy as np
import pytest

from tagpredict.system.state import Detection, Extrinsics, OdometrySample


@pytest.fixture
def K():
    return np.array([[600.0, 0.0, 320.0], [0.0, 600.0, 240.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def cfg():
    return {
        "predict": {"period_ms": 10, "sigma_px": 3.0, "default_process_noise": 1e-3, "stale_after": 0},
        "log": {"decimation": 5},
    }


@pytest.fixture
def identity_extrinsics():
    """Camera frame coincides with the body frame."""
    return Extrinsics()


@pytest.fixture
def fixed_clock():
    return lambda: 1_700_000_000_250_000_000


def make_odometry(pos=(0.0, 0.0, 0.0), att=(1.0, 0.0, 0.0, 0.0), vel=(0.0, 0.0, 0.0), avel=(0.0, 0.0, 0.0)):
    return OdometrySample(
        position=np.array(pos, dtype=float),
        attitude=np.array(att, dtype=float),
        velocity=np.array(vel, dtype=float),
        angular_velocity=np.array(avel, dtype=float),
    )


def make_detection(marker_id, t, r=(0.0, 0.0, 0.0)):
    return Detection(marker_id=marker_id, translation=np.array(t, dtype=float), rotation=np.array(r, dtype=float))
