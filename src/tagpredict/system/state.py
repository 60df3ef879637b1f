from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..modules.filter_bank import FilterBank


@dataclass
class Extrinsics:
    # camera pose in the vehicle-body frame (m, rad)
    tx: float = 0.0
    ty: float = 0.0
    tz: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0


@dataclass
class OdometrySample:
    position: np.ndarray                # (3,) world frame
    attitude: np.ndarray                # (4,) qw, qx, qy, qz  world <- body
    velocity: np.ndarray                # (3,)
    angular_velocity: np.ndarray        # (3,)
    # packed lower triangle: xx, yx, yy, zx, zy, zz
    velocity_cov: np.ndarray = field(default_factory=lambda: np.zeros(6))
    angular_velocity_cov: np.ndarray = field(default_factory=lambda: np.zeros(6))


@dataclass
class Detection:
    marker_id: int
    translation: np.ndarray  # (3,) camera <- marker
    rotation: np.ndarray     # (3,) axis-angle, camera <- marker


@dataclass
class DetectionBatch:
    detections: list[Detection] = field(default_factory=list)
    new_ids: list[int] = field(default_factory=list)


@dataclass
class PeriodInput:
    extrinsics: Extrinsics | None = None
    odometry: OdometrySample | None = None
    batch: DetectionBatch = field(default_factory=DetectionBatch)
    reset: bool = False


@dataclass
class MarkerPose:
    id: str
    x: float
    y: float
    z: float
    sec: int
    nsec: int


class PoseTable:
    """Single-writer output channel, one slot per marker id (last write wins)."""

    def __init__(self):
        self.slots: dict[str, MarkerPose] = {}
        self.writes = 0

    def write(self, key: str, pose: MarkerPose) -> None:
        self.slots[key] = pose
        self.writes += 1

    def read(self, key: str) -> MarkerPose | None:
        return self.slots.get(key)

    def keys(self) -> list[str]:
        return list(self.slots)


class Phase(Enum):
    WAIT = "wait"
    MAIN = "main"


@dataclass
class PredictorState:
    K: np.ndarray  # 3x3
    marker_length: float
    phase: Phase = Phase.WAIT

    # static camera <- body transforms, rebuilt together when leaving WAIT
    C_T_B: np.ndarray | None = None  # 6x6
    B_R_C: np.ndarray | None = None  # 3x3
    B_t_C: np.ndarray | None = None  # (3,)
    extrinsics: Extrinsics | None = None

    bank: FilterBank = field(default_factory=FilterBank)
    # new measurements not yet consumed by a MAIN period, keyed by marker id
    pending: dict[int, Detection] = field(default_factory=dict)
    period: int = 0
