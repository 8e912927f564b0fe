"""
Example: pocket PDR session end to end.

Runs a PdrSession over a synthetic pocket walk (default) or a recorded
NDJSON session log, then prints a summary and plots the trajectory, the
step signal and the pose confidence.

Can run with:
    - Synthetic walk (default): python demos/example_pdr_session.py
    - Replay a log: python demos/example_pdr_session.py --log walk.ndjson
    - Record a log: python demos/example_pdr_session.py --save-log out/walk.ndjson
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import matplotlib.pyplot as plt
import numpy as np

from pocket_pdr import PdrSession, SessionConfig, UserProfile
from pocket_pdr.coords.rotations import rotation_about_z
from pocket_pdr.eval import (
    compute_error_stats,
    compute_position_errors,
    detect_steps_in_samples,
    plot_confidence,
    plot_step_signal,
    plot_trajectory,
    sample_truth_at,
    save_figure,
    trajectory_to_arrays,
)
from pocket_pdr.io import SessionLogWriter, read_session_log, samples_from_log
from pocket_pdr.sensors.types import NS_PER_S, SensorSample
from pocket_pdr.session import RecordingListener
from pocket_pdr.sim import (
    StationarySegment,
    SyntheticSession,
    TurnSegment,
    WalkSegment,
    synthesize_session,
)

logger = logging.getLogger("example_pdr_session")


def build_synthetic_walk(seed: int = 7) -> SyntheticSession:
    """An L-shaped walk with the phone rotated 20° in the pocket."""
    segments = [
        StationarySegment(2.0),
        WalkSegment(steps=30),
        TurnSegment(angle_deg=-90.0, duration_s=1.5),
        WalkSegment(steps=20),
        StationarySegment(2.0),
    ]
    return synthesize_session(
        segments,
        R_body_to_phone=rotation_about_z(np.deg2rad(20.0)),
        gyro_bias=np.array([0.004, -0.003, 0.002]),
        accel_noise_std=0.05,
        gyro_noise_std=0.002,
        mag_noise_std=0.3,
        seed=seed,
    )


def run_session(
    samples: List[SensorSample],
    height_m: float,
    session_log: Optional[SessionLogWriter] = None,
):
    """Push every sample through a fresh session and stop it."""
    listener = RecordingListener()
    session = PdrSession(
        UserProfile(height_m=height_m),
        config=SessionConfig(),
        listener=listener,
        session_log=session_log,
    )
    session.start(now_ns=samples[0].t_ns)
    for sample in samples:
        session.push_sample(sample)
    trajectory = session.stop()
    return session, listener, trajectory


def print_summary(session: PdrSession, listener: RecordingListener, truth: Optional[SyntheticSession]):
    snapshot = session.snapshot()
    print("\n" + "=" * 60)
    print("POCKET PDR SESSION SUMMARY")
    print("=" * 60)
    print(f"  Calibration:  {type(snapshot.calibration).__name__}")
    print(f"  Steps:        {snapshot.step_count}")
    print(f"  Distance:     {snapshot.distance_m:.2f} m")
    if snapshot.pose is not None:
        pose = snapshot.pose
        print(f"  Final pose:   x={pose.x:.2f} m, y={pose.y:.2f} m, "
              f"θ={np.rad2deg(pose.theta):.1f}°, confidence={pose.confidence:.2f}")
    if session.estimator is not None:
        _, P = session.estimator.get_state()
        print(f"  Position σ:   {np.sqrt(P[0, 0]):.2f} m (x), {np.sqrt(P[1, 1]):.2f} m (y), "
              f"heading σ={np.rad2deg(np.sqrt(P[2, 2])):.1f}°")
    print(f"  Mode changes: {[mode.value for mode in listener.modes]}")
    print(f"  Warnings:     {[event.kind for event in listener.warnings]}")
    nonzero = {name: value for name, value in snapshot.counters.counters.items() if value}
    print(f"  Counters:     {nonzero}")

    if truth is not None and listener.poses:
        # Truth at pose times (relative to the first sample)
        t0 = truth.samples[0].t_ns / NS_PER_S
        t_pose = np.array([pose.t for pose in listener.poses]) - t0
        est = np.array([[pose.x, pose.y] for pose in listener.poses])
        truth_xy = sample_truth_at(t_pose, truth.t, truth.position)
        # Tracking starts after calibration; compare displacements from that origin
        errors = compute_position_errors(truth_xy - truth_xy[0], est)
        stats = compute_error_stats(errors)
        print(f"  True steps:   {len(truth.step_times)}")
        print(f"  Error RMSE:   {stats['rmse']:.2f} m, max {stats['max']:.2f} m")
    print("=" * 60)


def plot_results(samples, listener, trajectory, truth, output_dir: Path, show: bool):
    t0 = samples[0].t_ns / NS_PER_S
    offline = detect_steps_in_samples(samples)
    online_times = [step.t - t0 for step in listener.steps]
    t = np.array([s.t_ns / NS_PER_S - t0 for s in samples if s.accel is not None])

    truth_xy = None
    if truth is not None and trajectory:
        start = sample_truth_at(np.array([trajectory[0].t - t0]), truth.t, truth.position)[0]
        truth_xy = truth.position - start

    figs = {
        "pdr_trajectory": plot_trajectory(trajectory, truth_xy),
        "pdr_step_signal": plot_step_signal(
            t, offline.signal, online_times, offline.times, thresholds=(1.2, 0.4, -0.5),
            title="Dynamic Accel Magnitude",
        ),
    }
    if listener.poses:
        pose_t = np.array([pose.t for pose in listener.poses]) - t0
        pose_c = np.array([pose.confidence for pose in listener.poses])
        traj_t, _, traj_c = trajectory_to_arrays(trajectory)
        figs["pdr_confidence"] = plot_confidence(
            {"pose": (pose_t, pose_c), "trajectory": (traj_t - t0, traj_c)}
        )

    for name, fig in figs.items():
        paths = save_figure(fig, output_dir, name)
        logger.info(f"Saved {paths[0]}")
    if show:
        plt.show()


def main():
    """Run the pocket PDR demo."""
    parser = argparse.ArgumentParser(
        description="Pocket PDR session demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python demos/example_pdr_session.py
  python demos/example_pdr_session.py --height 1.62 --save-log out/walk.ndjson
  python demos/example_pdr_session.py --log out/walk.ndjson --no-show
""",
    )
    parser.add_argument("--log", type=str, default=None, help="Replay an NDJSON session log")
    parser.add_argument("--height", type=float, default=1.75, help="Walker height in meters")
    parser.add_argument("--save-log", type=str, default=None, help="Write a session log here")
    parser.add_argument("--output", type=str, default="demos/figs", help="Figure directory")
    parser.add_argument("--seed", type=int, default=7, help="Noise seed for the synthetic walk")
    parser.add_argument("--no-show", action="store_true", help="Save figures without showing")
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    truth = None
    if args.log:
        samples = samples_from_log(read_session_log(args.log))
        logger.info(f"Replaying {len(samples)} samples from {args.log}")
    else:
        truth = build_synthetic_walk(args.seed)
        samples = truth.samples
        logger.info(f"Synthesized {len(samples)} samples ({len(truth.step_times)} steps)")

    if args.save_log:
        with SessionLogWriter(args.save_log) as log:
            session, listener, trajectory = run_session(samples, args.height, log)
    else:
        session, listener, trajectory = run_session(samples, args.height)

    print_summary(session, listener, truth)
    plot_results(samples, listener, trajectory, truth, Path(args.output), show=not args.no_show)


if __name__ == "__main__":
    main()
