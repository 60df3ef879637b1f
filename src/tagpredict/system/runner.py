# src/tagpredict/system/runner.py
from __future__ import annotations

import logging
import time
from typing import Callable

import numpy as np

from .state import PredictorState, PeriodInput, PoseTable, MarkerPose, Phase
from .telemetry import LogState, log_filters
from ..modules.frames import (
    DEFAULT_PROCESS_NOISE,
    body_to_camera_twist,
    build_frames,
    control_input,
)
from ..modules.measurement import SIGMA_PX, DegenerateMeasurement, measurement_covariance
from ..modules.publisher import publish

logger = logging.getLogger(__name__)


def _merge_batch(state: PredictorState, inputs: PeriodInput, create: bool = True) -> None:
    batch = inputs.batch
    by_id = {}
    for det in batch.detections:
        if create:
            state.bank.ensure(det.marker_id)
        by_id[int(det.marker_id)] = det
    for marker_id in batch.new_ids:
        det = by_id.get(int(marker_id))
        if det is None:
            logger.debug(f"new id {marker_id} without a detection, ignored")
            continue
        state.pending[int(marker_id)] = det


def _leave_wait(state: PredictorState) -> bool:
    if state.extrinsics is None or not state.pending:
        return False
    # extrinsics and twist are always rebuilt together
    state.C_T_B, state.B_R_C, state.B_t_C = body_to_camera_twist(state.extrinsics)
    state.phase = Phase.MAIN
    logger.info(f"predicting {len(state.bank)} marker filter(s)")
    return True


def step(
    state: PredictorState,
    inputs: PeriodInput,
    cfg: dict,
    channel: PoseTable,
    log: LogState | None = None,
    clock: Callable[[], int] = time.time_ns,
) -> dict[str, MarkerPose]:
    """
    One control period.

    Order within a period:
      1) reset check, before any filter mutation: back to WAIT
      2) merge the detection batch (lazy filter creation, pending new measurements)
      3) WAIT -> MAIN once extrinsics and a pending new detection are available
      4) predict every tracking filter with the camera-frame twist
      5) initialize or correct filters that have a new measurement
      6) publish every initialized filter in the world frame
      7) decimated log

    Returns the poses published this period (empty when nothing was published).
    """
    pcfg = cfg.get("predict", {})
    state.period += 1

    if inputs.extrinsics is not None:
        state.extrinsics = inputs.extrinsics

    # --- 1) Reset
    if inputs.reset:
        # filters and log untouched; new measurements stay buffered
        _merge_batch(state, inputs, create=False)
        if state.phase is Phase.MAIN:
            logger.info("reset requested, back to wait")
        state.phase = Phase.WAIT
        return {}

    # --- 2) Merge
    _merge_batch(state, inputs)

    # --- 3) WAIT -> MAIN
    if state.phase is Phase.WAIT and not _leave_wait(state):
        return {}

    # --- 4) Predict with the camera-frame twist
    u, Q = control_input(
        inputs.odometry,
        state.C_T_B,
        default_process_noise=float(pcfg.get("default_process_noise", DEFAULT_PROCESS_NOISE)),
    )
    dt = float(pcfg.get("period_ms", 10)) / 1000.0 if inputs.odometry is not None else None

    state.bank.predict(u.astype(np.float32), Q, dt)

    # --- 5) Initialize / correct
    sigma_px = float(pcfg.get("sigma_px", SIGMA_PX))
    for marker_id in sorted(state.pending):
        det = state.pending[marker_id]
        f = state.bank.ensure(marker_id)
        try:
            R = measurement_covariance(det.translation, det.rotation, state.marker_length, state.K, sigma_px)
        except DegenerateMeasurement as ex:
            if f.tracking:
                logger.debug(f"marker {marker_id}: correction skipped ({ex})")
                continue
            R = np.eye(3) * float(pcfg.get("default_process_noise", DEFAULT_PROCESS_NOISE))

        if f.tracking:
            state.bank.correct(marker_id, det.translation, R)
        else:
            state.bank.initialize(marker_id, det.translation, R)
            logger.info(f"marker {marker_id}: tracking")
    state.pending.clear()

    stale_after = int(pcfg.get("stale_after", 0))
    if stale_after > 0:
        for marker_id in state.bank.retire_stale(stale_after):
            logger.info(f"marker {marker_id}: retired after {stale_after} periods without detection")

    # --- 6) Publish
    frames = build_frames(state.B_R_C, state.B_t_C, inputs.odometry)
    published = publish(state.bank, frames, channel, clock)

    # --- 7) Log
    if published:
        log_filters(log, state.bank, clock)
    return published
