"""Tests for world-frame publishing."""

import math

import numpy as np

from tagpredict.geom.se3 import rpy_to_R
from tagpredict.modules.filter_bank import FilterBank
from tagpredict.modules.frames import FrameSet
from tagpredict.modules.publisher import publish, split_ns, world_position
from tagpredict.system.state import MarkerPose, PoseTable


def synthetic_frames():
    return FrameSet(
        B_R_C=rpy_to_R(-math.pi / 2, 0.0, -math.pi / 2),
        B_t_C=np.array([0.1, 0.0, -0.05]),
        W_R_B=rpy_to_R(0.05, -0.02, 1.1),
        W_t_B=np.array([3.0, -1.0, 1.2]),
    )


class TestWorldPosition:
    def test_affine_map(self):
        fr = synthetic_frames()
        s = np.array([0.2, -0.1, 1.7])
        expected = fr.W_R_B @ (fr.B_R_C @ s + fr.B_t_C) + fr.W_t_B
        assert np.allclose(world_position(s, fr.B_R_C, fr.B_t_C, fr.W_R_B, fr.W_t_B), expected)

    def test_round_trip(self):
        fr = synthetic_frames()
        s = np.array([0.2, -0.1, 1.7])
        w = world_position(s, fr.B_R_C, fr.B_t_C, fr.W_R_B, fr.W_t_B)
        back = fr.B_R_C.T @ (fr.W_R_B.T @ (w - fr.W_t_B) - fr.B_t_C)
        assert np.allclose(back, s, atol=1e-12)

    def test_forward_camera_sees_ahead(self):
        # a point on the optical axis is in front of the vehicle
        fr = FrameSet(
            B_R_C=rpy_to_R(-math.pi / 2, 0.0, -math.pi / 2),
            B_t_C=np.zeros(3),
            W_R_B=np.eye(3),
            W_t_B=np.zeros(3),
        )
        w = world_position([0.0, 0.0, 2.0], fr.B_R_C, fr.B_t_C, fr.W_R_B, fr.W_t_B)
        assert np.allclose(w, [2.0, 0.0, 0.0], atol=1e-7)


class TestPublish:
    def test_skips_uninitialized_filters(self, fixed_clock):
        bank = FilterBank()
        bank.ensure(1)
        bank.initialize(2, [0.0, 0.0, 1.0], np.eye(3))
        table = PoseTable()

        out = publish(bank, synthetic_frames(), table, fixed_clock)

        assert list(out) == ["2"]
        assert table.keys() == ["2"]
        assert table.read("1") is None

    def test_pose_fields(self, fixed_clock):
        bank = FilterBank()
        bank.initialize(5, [0.2, -0.1, 1.7], np.eye(3))
        fr = synthetic_frames()
        table = PoseTable()

        pose = publish(bank, fr, table, fixed_clock)["5"]

        expected = world_position(bank.get(5).current_estimate, fr.B_R_C, fr.B_t_C, fr.W_R_B, fr.W_t_B)
        assert pose.id == "5"
        assert np.allclose([pose.x, pose.y, pose.z], expected)
        assert (pose.sec, pose.nsec) == (1_700_000_000, 250_000_000)

    def test_last_write_wins(self):
        table = PoseTable()
        table.write("3", MarkerPose("3", 0.0, 0.0, 0.0, 1, 0))
        table.write("3", MarkerPose("3", 1.0, 0.0, 0.0, 2, 0))
        assert table.read("3").x == 1.0
        assert table.keys() == ["3"]
        assert table.writes == 2

    def test_empty_bank_publishes_nothing(self, fixed_clock):
        table = PoseTable()
        assert publish(FilterBank(), synthetic_frames(), table, fixed_clock) == {}
        assert table.writes == 0


def test_split_ns():
    assert split_ns(3_000_000_007) == (3, 7)
