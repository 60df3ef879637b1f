# src/tagpredict/modules/publisher.py
from __future__ import annotations

import time
from typing import Callable

import numpy as np

from .filter_bank import FilterBank
from .frames import FrameSet
from ..system.state import MarkerPose, PoseTable


def world_position(
    state: np.ndarray,
    B_R_C: np.ndarray,
    B_t_C: np.ndarray,
    W_R_B: np.ndarray,
    W_t_B: np.ndarray,
) -> np.ndarray:
    """W_R_B (B_R_C s + B_t_C) + W_t_B"""
    s = np.asarray(state, dtype=np.float64).reshape(3)
    return W_R_B @ (B_R_C @ s + np.asarray(B_t_C).reshape(3)) + np.asarray(W_t_B).reshape(3)


def split_ns(ns: int) -> tuple[int, int]:
    return int(ns // 1_000_000_000), int(ns % 1_000_000_000)


def publish(
    bank: FilterBank,
    frames: FrameSet,
    channel: PoseTable,
    clock: Callable[[], int] = time.time_ns,
) -> dict[str, MarkerPose]:
    """Write the world-frame position of every initialized filter, keyed by str(marker id)."""
    out: dict[str, MarkerPose] = {}
    for f in bank.active():
        p = world_position(f.current_estimate, frames.B_R_C, frames.B_t_C, frames.W_R_B, frames.W_t_B)
        sec, nsec = split_ns(clock())
        key = str(f.id)
        pose = MarkerPose(key, float(p[0]), float(p[1]), float(p[2]), sec, nsec)
        channel.write(key, pose)
        out[key] = pose
    return out
