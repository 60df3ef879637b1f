from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import numpy as np

from ..system.state import (
    Detection,
    DetectionBatch,
    Extrinsics,
    OdometrySample,
    PeriodInput,
)


@dataclass
class ReplayEntry:
    ts: float
    record: dict


def _vec(rec: dict, key: str, n: int, default=None) -> np.ndarray:
    v = rec.get(key, default)
    if v is None:
        raise ValueError(f"missing field '{key}'")
    arr = np.asarray(v, dtype=np.float64).reshape(-1)
    if arr.shape[0] != n:
        raise ValueError(f"field '{key}' expects {n} values, got {arr.shape[0]}")
    return arr


def parse_extrinsics(rec: dict | None) -> Extrinsics | None:
    if rec is None:
        return None
    return Extrinsics(**{k: float(rec.get(k, 0.0)) for k in ("tx", "ty", "tz", "roll", "pitch", "yaw")})


def parse_odometry(rec: dict | None) -> OdometrySample | None:
    if rec is None:
        return None
    return OdometrySample(
        position=_vec(rec, "pos", 3),
        attitude=_vec(rec, "att", 4),
        velocity=_vec(rec, "vel", 3),
        angular_velocity=_vec(rec, "avel", 3),
        velocity_cov=_vec(rec, "vel_cov", 6, [0.0] * 6),
        angular_velocity_cov=_vec(rec, "avel_cov", 6, [0.0] * 6),
    )


def parse_period(rec: dict) -> PeriodInput:
    detections = [
        Detection(marker_id=int(d["id"]), translation=_vec(d, "t", 3), rotation=_vec(d, "r", 3))
        for d in rec.get("detections", [])
    ]
    return PeriodInput(
        extrinsics=parse_extrinsics(rec.get("extrinsics")),
        odometry=parse_odometry(rec.get("odometry")),
        batch=DetectionBatch(detections=detections, new_ids=[int(i) for i in rec.get("new", [])]),
        reset=bool(rec.get("reset", False)),
    )


def _read_session(path: str) -> List[ReplayEntry]:
    entries: List[ReplayEntry] = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            try:
                rec = json.loads(line)
            except json.JSONDecodeError as ex:
                raise ValueError(f"{path}:{lineno}: {ex}") from ex
            entries.append(ReplayEntry(ts=float(rec.get("t", 0.0)), record=rec))
    return entries


class ReplaySession:
    """Recorded inputs, one JSON object per control period."""

    def __init__(self, path: str):
        self.path = path
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Missing session file: {path}")
        self.entries = _read_session(path)

    def __len__(self) -> int:
        return len(self.entries)

    def iter_periods(
        self,
        *,
        start: int = 0,
        step: int = 1,
        max_periods: int | None = None,
    ) -> Iterator[Tuple[int, float, PeriodInput]]:
        end = len(self.entries) if max_periods is None else min(len(self.entries), start + max_periods * step)
        idx = 0
        for i in range(start, end, step):
            e = self.entries[i]
            yield idx, e.ts, parse_period(e.record)
            idx += 1
