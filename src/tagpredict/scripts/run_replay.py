from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt

try:
    import yaml
except ImportError as ex:
    raise ImportError("PyYAML is required. Install with: pip install pyyaml") from ex

from tagpredict.dataset.replay import ReplaySession, parse_extrinsics
from tagpredict.system.state import PredictorState, PoseTable
from tagpredict.system.telemetry import open_log
from tagpredict.system.runner import step


def camera_matrix(cam: dict) -> np.ndarray:
    fx = float(cam["fx"])
    fy = float(cam["fy"])
    cx = float(cam["cx"])
    cy = float(cam["cy"])
    return np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


class MarkerVisualizer:
    def __init__(self):
        plt.ion()
        self.fig = plt.figure(figsize=(12, 5))
        self.ax1 = self.fig.add_subplot(121, projection='3d')
        self.ax2 = self.fig.add_subplot(122)
        self.tracks: dict[str, list[tuple[float, float, float]]] = {}

    def update(self, table: PoseTable):
        for key in table.keys():
            p = table.read(key)
            self.tracks.setdefault(key, []).append((p.x, p.y, p.z))
        if not self.tracks:
            return

        self.ax1.clear()
        self.ax1.set_xlabel('X (m)')
        self.ax1.set_ylabel('Y (m)')
        self.ax1.set_zlabel('Z (m)')
        self.ax1.set_title(f'Markers in world frame ({len(self.tracks)})')

        self.ax2.clear()
        self.ax2.set_xlabel('X (m)')
        self.ax2.set_ylabel('Y (m)')
        self.ax2.set_title('Top-Down View (X-Y)')
        self.ax2.grid(True)

        for key, pts in sorted(self.tracks.items()):
            P = np.asarray(pts)
            self.ax1.plot(P[:, 0], P[:, 1], P[:, 2], '-', linewidth=1.0, alpha=0.7)
            self.ax1.scatter(P[-1, 0], P[-1, 1], P[-1, 2], s=60, label=key)
            self.ax2.plot(P[:, 0], P[:, 1], '-', linewidth=1.0, alpha=0.7)
            self.ax2.scatter(P[-1, 0], P[-1, 1], s=60, label=key)
        self.ax1.legend()
        self.ax2.legend()
        self.ax2.axis('equal')

        plt.pause(0.001)

    def close(self):
        plt.ioff()
        plt.show()


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay recorded odometry/detections through the marker predictor")
    ap.add_argument("--config", type=str, default="configs/default.yaml")
    ap.add_argument("--session", type=str, required=True, help="JSON-lines session, one control period per line")
    ap.add_argument("--out_dir", type=str, default="outputs")
    ap.add_argument("--log", type=str, default=None, help="Marker log file (default: <out_dir>/markers.log)")
    ap.add_argument("--no_log", action="store_true", help="Disable the marker log")
    ap.add_argument("--visualize", action="store_true", help="Enable live marker visualization")
    ap.add_argument("--viz_update_every", type=int, default=10, help="Update visualization every N periods")
    ap.add_argument("--log_every", type=int, default=100, help="Print progress every N periods")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    print(f"[INFO] Loading config: {args.config}")
    with open(args.config, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)

    out_dir = Path(args.out_dir) / Path(args.session).stem
    out_dir.mkdir(parents=True, exist_ok=True)
    print(f"[INFO] Output dir: {out_dir}")

    K = camera_matrix(cfg["camera"])
    state = PredictorState(K=K, marker_length=float(cfg["marker"]["length"]))
    # static extrinsics from the config; the session may still override them
    state.extrinsics = parse_extrinsics(cfg.get("extrinsics"))
    table = PoseTable()

    log = None
    if not args.no_log:
        log_path = args.log or str(out_dir / "markers.log")
        log = open_log(log_path, int(cfg.get("log", {}).get("decimation", 5)))

    print(f"[INFO] Loading session: {args.session}")
    session = ReplaySession(args.session)
    print(f"[INFO] Session periods: {len(session)}")

    visualizer = MarkerVisualizer() if args.visualize else None

    count = 0
    try:
        for idx, ts, inputs in session.iter_periods():
            step(state, inputs, cfg, table, log)
            count += 1

            if args.log_every > 0 and (count % args.log_every == 0):
                print(f"[INFO] Period {count} / {len(session)}  markers: {len(table.keys())}  poses: {table.writes}")

            if visualizer is not None and count % args.viz_update_every == 0:
                visualizer.update(table)
    finally:
        if log is not None:
            log.close()
            print(f"[INFO] Log: {log.writes} write(s), {log.missed} missed")

    poses_path = out_dir / "poses.json"
    cfg_path = out_dir / "config_used.yaml"

    poses = {}
    for k in sorted(table.keys(), key=int):
        poses[k] = asdict(table.read(k))
        # camera-frame covariance of the filter, None once retired
        flt = state.bank.get(int(k))
        poses[k]["cov"] = None if flt is None else flt.covariance.tolist()

    with open(poses_path, "w", encoding="utf-8") as f:
        json.dump(poses, f, indent=2)
    print(f"[INFO] Published {table.writes} pose(s) for {len(poses)} marker(s)")

    with open(cfg_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, sort_keys=False)

    print(f"[OK] wrote: {poses_path}")
    print(f"[OK] wrote: {cfg_path}")

    if visualizer is not None:
        print("[INFO] Showing final marker positions. Close the window to exit.")
        visualizer.update(table)
        visualizer.close()


if __name__ == "__main__":
    main()
