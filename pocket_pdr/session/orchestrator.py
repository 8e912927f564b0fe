"""
PDR session orchestrator.

PdrSession owns every mutable pipeline stage for the lifetime of a
session and sequences them:

    UNINIT --start()--> IDLE --> CALIBRATING --> TRACKING <--> PAUSED
                                                  |
                                          stop() / stale sensor --> STOPPED

Per unified sample:
    1. Remove biases and rotate into the body frame with the published
       calibration (identity while calibrating).
    2. Attitude tracker update.
    3. Step detector update.
    4. CALIBRATING: feed the calibrator, count steps, finish the window.
       TRACKING: stride model -> EKF predict + displacement update ->
       trajectory filter for each released step; EKF heading update when
       the attitude is stable; mode classification.

Calibration snapshots are immutable and published by replacing the
reference, so readers never see a half-built calibration. Structural
errors (SensorUnavailable, ConfigInvalid) propagate; numerical and
transient ones are counted and surface as lowered confidence.
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from pocket_pdr.errors import (
    CalibrationInsufficientMotion,
    LateSample,
    NumericalInstability,
    PlatformStepDuplicate,
    SensorUnavailable,
)
from pocket_pdr.estimators.pose_ekf import PoseEKF
from pocket_pdr.fusion.trajectory import TrajectoryFilter
from pocket_pdr.io.session_log import SessionLogWriter
from pocket_pdr.sensors.activity import Mode, ModeClassifier
from pocket_pdr.sensors.attitude import AttitudeTracker
from pocket_pdr.sensors.calibration import PocketCalibrator, apply_calibration
from pocket_pdr.sensors.intake import SensorIntake
from pocket_pdr.sensors.step_detector import StepDetector
from pocket_pdr.sensors.stride import StrideModel
from pocket_pdr.sensors.types import (
    NS_PER_S,
    AttitudeState,
    CalibrationState,
    DegradedCalibration,
    PlatformStepEvent,
    Pose,
    SensorSample,
    StepEvent,
    TrajectoryPoint,
    UnifiedSample,
    UserProfile,
)
from pocket_pdr.session.config import SessionConfig
from pocket_pdr.session.counters import CounterSnapshot, SessionCounters
from pocket_pdr.session.events import SessionListener, WarningEvent

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNINIT = "uninit"
    IDLE = "idle"
    CALIBRATING = "calibrating"
    TRACKING = "tracking"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable summary of a session at one instant."""

    state: SessionState
    pose: Optional[Pose]
    step_count: int
    distance_m: float
    mode: Optional[Mode]
    calibration: Optional[CalibrationState]
    counters: CounterSnapshot


class PdrSession:
    """
    Single-threaded PDR session.

    Args:
        profile: Walker profile for the stride model.
        config: Session configuration; validated by start().
        listener: Receives poses, steps, mode changes, calibration
            progress, warnings and the final trajectory.
        calibration: Previously stored calibration. Used when still valid
            at start(); otherwise the session calibrates.
        session_log: Optional NDJSON writer for offline analysis.

    Example:
        >>> session = PdrSession(UserProfile(height_m=1.75), listener=my_listener)
        >>> session.start(now_ns=0)
        >>> for sample in samples:
        ...     session.push_sample(sample)
        >>> trajectory = session.stop()
    """

    def __init__(
        self,
        profile: UserProfile,
        config: Optional[SessionConfig] = None,
        listener: Optional[SessionListener] = None,
        calibration: Optional[CalibrationState] = None,
        session_log: Optional[SessionLogWriter] = None,
    ):
        self.profile = profile
        self.config = config or SessionConfig()
        self.listener = listener or SessionListener()
        self.session_log = session_log
        self.state = SessionState.UNINIT
        self.counters = SessionCounters()
        self.step_count = 0
        self.distance_m = 0.0
        self._calibration = calibration
        self._bootstrap = DegradedCalibration.coarse(valid_until_ns=0, reason="bootstrap")
        self._calibrator: Optional[PocketCalibrator] = None
        self._ekf: Optional[PoseEKF] = None
        self._last_pose: Optional[Pose] = None
        self._last_step_t: Optional[float] = None
        self._last_t: Optional[float] = None
        self._first_t: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._resume_state: Optional[SessionState] = None
        self._gap_pending = False
        self._drift_flagged = False
        self._trajectory_emitted = False

    @property
    def calibration(self) -> Optional[CalibrationState]:
        """The published calibration snapshot."""
        return self._calibration

    @property
    def pose(self) -> Optional[Pose]:
        return self._last_pose

    @property
    def mode(self) -> Optional[Mode]:
        return self._modes.mode if self.state is not SessionState.UNINIT else None

    @property
    def trajectory(self) -> Tuple[TrajectoryPoint, ...]:
        if self.state is SessionState.UNINIT:
            return ()
        return self._trajectory.points

    @property
    def estimator(self) -> Optional[PoseEKF]:
        """The pose EKF, created on the first tracking sample."""
        return self._ekf

    def start(self, now_ns: Optional[int] = None) -> SessionState:
        """
        Validate the configuration and begin calibrating or tracking.

        Args:
            now_ns: Current monotonic time in ns, on the same clock as the
                sample timestamps. Defaults to time.monotonic_ns().

        Returns:
            The state entered (CALIBRATING or TRACKING).

        Raises:
            ConfigInvalid: If the configuration is invalid.
            RuntimeError: If the session was already started.
        """
        if self.state is not SessionState.UNINIT:
            raise RuntimeError(f"start() called in state {self.state.value}")
        self.config.validate()

        cfg = self.config
        self._intake = SensorIntake(cfg.sample_rate_hz, stale_periods=cfg.stale_periods)
        self._attitude = AttitudeTracker(cfg.attitude)
        self._detector = StepDetector(cfg.detector_config())
        self._stride = StrideModel(self.profile, cfg.stride)
        self._trajectory = TrajectoryFilter(
            min_point_distance_m=cfg.min_point_distance_m,
            outlier_threshold_m=cfg.outlier_threshold_m,
            max_length=cfg.trajectory_max_length,
        )
        self._modes = ModeClassifier(cfg.walking_timeout_s)
        self._set_state(SessionState.IDLE)

        now_ns = time.monotonic_ns() if now_ns is None else now_ns
        if self._calibration is not None and self._calibration.is_valid_at(now_ns):
            logger.info("Stored calibration still valid; skipping pocket calibration")
            self._set_state(SessionState.TRACKING)
        else:
            self._begin_calibration()
        return self.state

    def push_sample(self, sample: SensorSample) -> None:
        """
        Feed one raw sample and process every unified sample it releases.

        Raises:
            SensorUnavailable: When a channel went stale; the session stops.
            RuntimeError: Before start().
        """
        if self.state in (SessionState.UNINIT, SessionState.IDLE):
            raise RuntimeError("push_sample() called before start()")
        if self.state is SessionState.STOPPED:
            return
        if self.state is SessionState.PAUSED:
            self.counters.increment("paused_dropped")
            return

        self.counters.increment("samples_in")
        try:
            self._intake.push(sample)
        except LateSample as exc:
            self.counters.increment("late_sample")
            logger.debug(str(exc))
            return

        while self.state in (SessionState.CALIBRATING, SessionState.TRACKING):
            try:
                unified = self._intake.tick()
            except SensorUnavailable:
                logger.error("Sensor unavailable; halting session")
                self._shutdown()
                raise
            if unified is None:
                break
            self._process(unified)

    def push_native_step(self, event: PlatformStepEvent) -> None:
        """Feed a platform step event; duplicates are counted and dropped."""
        if self.state not in (SessionState.CALIBRATING, SessionState.TRACKING):
            return
        try:
            self._detector.push_native(event)
        except PlatformStepDuplicate as exc:
            self.counters.increment("native_duplicate")
            logger.debug(str(exc))
            return
        if self._last_t is None:
            return
        released = self._detector.flush(self._last_t)
        if self.state is SessionState.CALIBRATING:
            for _ in released:
                self._calibrator.note_step()
        else:
            for step in released:
                self._consume_step(step, self._last_t)

    def pause(self) -> None:
        """Freeze the session; samples are discarded until resume()."""
        if self.state not in (SessionState.CALIBRATING, SessionState.TRACKING):
            raise RuntimeError(f"pause() called in state {self.state.value}")
        self._resume_state = self.state
        self._paused_at = self._last_t
        self._intake.reset()
        self._set_state(SessionState.PAUSED)

    def resume(self) -> None:
        """Continue from the next sample; nothing received while paused is replayed."""
        if self.state is not SessionState.PAUSED:
            raise RuntimeError(f"resume() called in state {self.state.value}")
        self._intake.reset()
        self._attitude.reset_clock()
        self._detector.reset_state()
        self._gap_pending = self._paused_at is not None
        self._set_state(self._resume_state)

    def stop(self) -> Tuple[TrajectoryPoint, ...]:
        """
        End the session and deliver the final trajectory. Idempotent.

        Returns:
            The retained trajectory.
        """
        if self.state is SessionState.UNINIT:
            self._set_state(SessionState.STOPPED)
            return ()
        if self.state is not SessionState.STOPPED:
            self._release_held_steps()
            self._shutdown()
        return self._trajectory.points

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            pose=self._last_pose,
            step_count=self.step_count,
            distance_m=self.distance_m,
            mode=self.mode,
            calibration=self._calibration,
            counters=self.counter_snapshot(),
        )

    def counter_snapshot(self) -> CounterSnapshot:
        """Counters including those kept by the pipeline stages."""
        if self.state is not SessionState.UNINIT:
            self._sync_counters()
        return self.counters.snapshot(self._last_t if self._last_t is not None else 0.0)

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            logger.info(f"Session state {self.state.value} -> {state.value}")
            self.state = state

    def _begin_calibration(self) -> None:
        self._calibrator = PocketCalibrator(
            self.config.calibration, on_progress=self.listener.on_calibration_progress
        )
        self._set_state(SessionState.CALIBRATING)

    def _finish_calibration(self, t_ns: int, t: float) -> None:
        self.counters.increment("calibration_attempts")
        try:
            calibration = self._calibrator.finalize(t_ns)
        except CalibrationInsufficientMotion as exc:
            self.counters.increment("calibration_degraded")
            logger.warning(f"Calibration degraded: {exc}")
            calibration = DegradedCalibration.coarse(valid_until_ns=t_ns, reason=str(exc))
            self.listener.on_warning(WarningEvent("calibration_degraded", str(exc), t))

        # Publish, then restart the frame-dependent stages in the new body frame
        self._calibration = calibration
        self._calibrator = None
        self._attitude.reset()
        self._detector.reset_state()
        self._set_state(SessionState.TRACKING)

    def _process(self, unified: UnifiedSample) -> None:
        t = unified.t
        if self._first_t is None:
            self._first_t = t
        if self._gap_pending:
            if self._ekf is not None:
                self._ekf.shift_time(t - self._paused_at)
            self._gap_pending = False
        self._last_t = t
        self.counters.increment("unified_samples")
        if unified.filled_flags:
            self.counters.increment("filled_samples")

        tracking = self.state is SessionState.TRACKING
        calibration = self._calibration if tracking else self._bootstrap
        accel_b, gyro_b, mag_b = apply_calibration(unified, calibration)
        attitude = self._attitude.update(t, accel_b, gyro_b, mag_b)
        steps = self._detector.update(t, accel_b, gyro_b, attitude)

        if not tracking:
            self._calibrator.add_sample(unified)
            for _ in steps:
                self._calibrator.note_step()
            if self._calibrator.is_complete(unified.t_ns):
                self._finish_calibration(unified.t_ns, t)
            self._log(unified, attitude, steps)
            return

        ekf = self._ensure_ekf(t)
        ekf.time_update(t)
        for step in steps:
            self._consume_step(step, t)
        if attitude is not None and attitude.is_stable:
            self._heading_update(attitude, t)
        if attitude is not None:
            self._check_gravity_drift(attitude, accel_b, unified.t_ns)

        mode = self._modes.update(
            t, self._last_step_t, calibration.is_degraded, self._detector.in_fallback
        )
        if mode is not None:
            logger.info(f"Mode changed to {mode.value}")
            self.listener.on_mode_change(mode)
        self._log(unified, attitude, steps)

    def _ensure_ekf(self, t: float) -> PoseEKF:
        if self._ekf is None:
            self._ekf = PoseEKF(self.config.ekf, t0=t)
        return self._ekf

    def _health(self) -> float:
        return 1.0 - 0.5 * self._intake.max_drop_rate()

    def _consume_step(self, step: StepEvent, t: float) -> None:
        if self._last_step_t is not None and step.t < self._last_step_t:
            self.counters.increment("late_step")
            return
        self._last_step_t = step.t

        heading = self._attitude.heading_at(step.t)
        stride = self._stride.make_stride(step, heading)
        ekf = self._ensure_ekf(t)
        try:
            ekf.predict(stride.displacement, t)
            ekf.update_displacement(stride.displacement, step.confidence, t)
        except NumericalInstability as exc:
            self._recover(exc, t)

        pose = ekf.pose(t, self._health())
        point, action = self._trajectory.add(pose.x, pose.y, t, pose.confidence)
        if action == "corrected":
            correction = np.hypot(point.x - pose.x, point.y - pose.y)
            inflation = (self.config.outlier_inflation_scale * correction) ** 2
            try:
                ekf.reset_position(np.array([point.x, point.y]), inflation)
            except NumericalInstability as exc:
                self._recover(exc, t)
            pose = ekf.pose(t, self._health())
        elif action == "rejected":
            self.listener.on_warning(
                WarningEvent("outlier_rejected", "trajectory point rejected after outlier run", t)
            )

        self.step_count += 1
        self.distance_m += stride.delta_s
        self.counters.increment("steps_emitted")
        self._last_pose = pose
        logger.debug(
            f"Step {self.step_count} at t={step.t:.3f} s: {stride.delta_s:.2f} m "
            f"heading {np.rad2deg(stride.heading):.1f} deg ({step.source.value})"
        )
        self.listener.on_step(step)
        self.listener.on_pose(pose)

    def _heading_update(self, attitude: AttitudeState, t: float) -> None:
        try:
            accepted = self._ekf.update_heading(attitude.heading, attitude.mag_confidence, t)
        except NumericalInstability as exc:
            self._recover(exc, t)
            accepted = False
        if accepted:
            self._last_pose = self._ekf.pose(t, self._health())
            self.listener.on_pose(self._last_pose)

    def _recover(self, exc: NumericalInstability, t: float) -> None:
        self._ekf.soft_reset()
        self.listener.on_warning(WarningEvent("numerical_reset", str(exc), t))

    def _check_gravity_drift(self, attitude: AttitudeState, accel_b: np.ndarray, t_ns: int) -> None:
        cfg = self.config
        calibration = self._calibration
        if (
            self._drift_flagged
            or calibration.is_degraded
            or attitude.stability_ms < cfg.gravity_drift_stable_ms
        ):
            return
        reference = calibration.avg_gravity_body
        cos_angle = np.dot(accel_b, reference) / (np.linalg.norm(accel_b) * np.linalg.norm(reference))
        drift_deg = float(np.rad2deg(np.arccos(np.clip(cos_angle, -1.0, 1.0))))
        if drift_deg <= cfg.gravity_drift_deg:
            return
        self._drift_flagged = True
        # Expire the snapshot so the next session start recalibrates
        self._calibration = replace(calibration, valid_until_ns=min(calibration.valid_until_ns, t_ns))
        message = f"body-frame gravity drifted {drift_deg:.1f} deg from calibration"
        logger.warning(message)
        self.listener.on_warning(WarningEvent("calibration_drift", message, t_ns / NS_PER_S))

    def _sync_counters(self) -> None:
        detector = self._detector
        for name in ("rejected_cadence", "rejected_gyro", "native_matched", "native_unmatched"):
            self.counters.set(name, getattr(detector, name))
        for name in ("distance_gated", "outlier_corrected", "outlier_rejected"):
            self.counters.set(name, getattr(self._trajectory, name))
        if self._ekf is not None:
            for name in ("heading_updates", "heading_gated", "heading_reacquired", "numerical_resets"):
                self.counters.set(name, getattr(self._ekf, name))

    def _log(self, unified: UnifiedSample, attitude: Optional[AttitudeState], steps: List[StepEvent]) -> None:
        if self.session_log is None:
            return
        self.session_log.write_record(
            relative_time=unified.t - self._first_t,
            sample=unified,
            attitude=attitude,
            steps=steps,
            pose=self._last_pose,
            state=self.state.value,
        )

    def _release_held_steps(self) -> None:
        """Emit steps still waiting for a platform match; queued raw samples are dropped."""
        tracking = self.state is SessionState.TRACKING or (
            self.state is SessionState.PAUSED and self._resume_state is SessionState.TRACKING
        )
        if not tracking or self._last_t is None:
            return
        for step in self._detector.flush():
            self._consume_step(step, self._last_t)

    def _shutdown(self) -> None:
        self._intake.reset()
        self._set_state(SessionState.STOPPED)
        if self.session_log is not None:
            self.session_log.flush()
        if not self._trajectory_emitted:
            self._trajectory_emitted = True
            self.listener.on_trajectory(self._trajectory.points)
