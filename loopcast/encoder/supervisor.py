"""
Stream supervisor.

Owns the whole life of a stream run: validates the request, prepares tracks,
probes durations and filter capability, builds the filter graph, launches the
encoder and decides what happens when it exits.

State machine:

    IDLE --start()--> RUNNING --stop()--> STOPPING --> IDLE
                      RUNNING --encoder exits--> (restart timer) --> RUNNING
                      RUNNING --circuit breaker--> IDLE

Exit handling:

- clean exit (code 0): the playlist ran out; failures reset, same settings
  restarted after 200ms.
- non-clean exit (non-zero code or signal): failure counted (the counter
  restarts from zero if the previous failure is older than the reset window).
  At max_failures the breaker trips: IDLE, request dropped, on_fatal called.
  Otherwise one transition filter is dropped per failure (video xfade first,
  then audio acrossfade) with a 300ms restart, or a plain 500ms restart once
  nothing is left to drop.

Exit notifications and restart timers run on the scheduler's event thread;
public calls and events are serialized by one re-entrant lock. Every spawn
gets a new generation number and stop() bumps it too, so an exit event or
timer from a superseded process is ignored.
"""

from __future__ import annotations

import enum
import json
import logging
import subprocess
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit

from loopcast.config import LoopcastConfig
from loopcast.encoder.command import build_encoder_command
from loopcast.encoder.scheduler import ScheduledCall, Scheduler, SerialScheduler
from loopcast.encoder.watcher import ProcessWatcher
from loopcast.errors import (
    DurationUnavailable,
    GraphConstructionError,
    InvalidRequest,
    LoopcastError,
    PreparationError,
    SubprocessExitFailure,
    SubprocessSpawnError,
)
from loopcast.graph.builder import build_graph
from loopcast.models import GraphPlan, PreparedTrack, StartResult, StreamRequest, TransitionSettings
from loopcast.prepare.preparer import TrackPreparer
from loopcast.probe.capabilities import CapabilityProber
from loopcast.probe.duration import DurationProber

logger = logging.getLogger(__name__)


class SupervisorState(enum.Enum):
    """Supervisor state enumeration."""
    IDLE = 1
    RUNNING = 2
    STOPPING = 3


# Fixed restart delays (no exponential backoff; only the failure count escalates)
COMPLETION_RESTART_DELAY_SEC = 0.2
DEGRADE_RESTART_DELAY_SEC = 0.3
FAILURE_RESTART_DELAY_SEC = 0.5

# How long a terminated encoder gets before SIGKILL
STOP_GRACE_SEC = 5.0

XFADE_FILTER = "xfade"
ACROSSFADE_FILTER = "acrossfade"

FatalCallback = Callable[[LoopcastError], None]


@dataclass
class _RunContext:
    """Everything needed to (re)launch the encoder for the current request."""
    request: StreamRequest
    tracks: List[PreparedTrack]
    track_durations: List[float]
    settings: TransitionSettings


def degrade(settings: TransitionSettings) -> Tuple[TransitionSettings, bool]:
    """
    Next, simpler transition settings after a failure.

    Video xfade goes first, then audio acrossfade.

    Returns:
        (new settings, whether anything was dropped)
    """
    if settings.video:
        return replace(settings, video=False), True
    if settings.audio:
        return replace(settings, audio=False), True
    return settings, False


def redact_destination(url: str) -> str:
    """Hide the stream key (last path segment) of an ingest URL for logging."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "<destination>"
    path = parts.path.rsplit("/", 1)[0] if "/" in parts.path.strip("/") else ""
    return f"{parts.scheme}://{parts.netloc}{path}/****"


class StreamSupervisor:
    """
    Supervises the encoder for one stream at a time.

    Only start(), stop(), is_running() and get_state() are meant for callers;
    at most one encoder subprocess exists at any time.

    Example:
        ```python
        supervisor = StreamSupervisor(load_config())
        result = supervisor.start(StreamRequest.build(
            tracks=["/media/a.mp3", "/media/b.mp3"],
            backgrounds=[("/media/bg.png", 30.0)],
            destination="rtmp://live.twitch.tv/app/KEY",
        ))
        if result.accepted:
            ...
        supervisor.stop()
        ```
    """

    def __init__(
        self,
        config: Optional[LoopcastConfig] = None,
        preparer: Optional[TrackPreparer] = None,
        duration_prober: Optional[DurationProber] = None,
        capability_prober: Optional[CapabilityProber] = None,
        scheduler: Optional[Scheduler] = None,
        popen: Optional[Callable[..., subprocess.Popen]] = None,
        on_fatal: Optional[FatalCallback] = None,
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            config: Runtime configuration (default: LoopcastConfig())
            preparer: Track sanitize/remux stage (default: built from config)
            duration_prober: ffprobe wrapper (default: built from config)
            capability_prober: ffmpeg filter prober (default: built from config)
            scheduler: Event thread + timers (default: a private SerialScheduler)
            popen: Process factory, subprocess.Popen signature (default: subprocess.Popen)
            on_fatal: Called when the stream halts for good (breaker tripped or
                a restart could not spawn)
        """
        self._config = config or LoopcastConfig()
        self._preparer = preparer or TrackPreparer.from_config(self._config)
        self._duration_prober = duration_prober or DurationProber(
            self._config.ffprobe_path, self._config.probe_timeout_sec
        )
        self._capability_prober = capability_prober or CapabilityProber(
            self._config.ffmpeg_path, self._config.probe_timeout_sec
        )
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or SerialScheduler()
        self._popen = popen or subprocess.Popen
        self._on_fatal = on_fatal

        self._lock = threading.RLock()
        self._state = SupervisorState.IDLE
        self._run: Optional[_RunContext] = None
        self._process: Optional[subprocess.Popen] = None
        self._watcher: Optional[ProcessWatcher] = None
        self._generation = 0
        self._pending_restart: Optional[ScheduledCall] = None
        self._consecutive_failures = 0
        self._last_failure_at: Optional[float] = None
        self._terminating: List[subprocess.Popen] = []

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def start(self, request: StreamRequest) -> StartResult:
        """
        Start streaming a request, replacing any current run.

        Returns as soon as the encoder is launched; encoding continues in the
        background until stop() or the circuit breaker.

        Returns:
            StartResult; accepted=False carries the InvalidRequest,
            PreparationError, DurationUnavailable, GraphConstructionError or
            SubprocessSpawnError that prevented the launch
        """
        try:
            request.validate()
        except InvalidRequest as e:
            logger.warning(f"Stream request rejected: {e}")
            return StartResult(False, str(e), e)

        with self._lock:
            if self._state != SupervisorState.IDLE or self._process is not None:
                logger.info("Stopping current stream before starting a new one")
            self._stop_locked()

            try:
                run = self._prepare_run(request)
                plan = self._build_plan(run)
            except (PreparationError, DurationUnavailable, GraphConstructionError) as e:
                logger.error(f"Stream start aborted: {e}")
                return StartResult(False, str(e), e)

            try:
                self._spawn(run, plan)
            except SubprocessSpawnError as e:
                logger.error(f"Stream start aborted: {e}")
                self._stop_locked()
                return StartResult(False, str(e), e)

            logger.info(
                "Stream started "
                + json.dumps({
                    "tracks": len(request.tracks),
                    "backgrounds": len(request.backgrounds),
                    "video_crossfade": plan.video_crossfade,
                    "audio_crossfade": plan.audio_crossfade,
                    "duration": round(plan.total_duration, 2),
                })
            )
            mode = "looping with crossfade" if run.settings.any else "looping"
            return StartResult(True, f"Stream started ({mode})")

    def stop(self) -> None:
        """
        Stop the current run. Idempotent; never raises and never waits for
        the encoder to exit.
        """
        with self._lock:
            if self._state == SupervisorState.IDLE and self._process is None and self._run is None:
                self._consecutive_failures = 0
                self._last_failure_at = None
                logger.debug("stop() while idle: nothing to do")
                return
            self._stop_locked()
            logger.info("Stream stopped")

    def is_running(self) -> bool:
        # Plain attribute read: must not wait behind a start() that is preparing tracks
        return self._state == SupervisorState.RUNNING

    def get_state(self) -> SupervisorState:
        return self._state

    def close(self, timeout: float = STOP_GRACE_SEC) -> None:
        """
        Stop, then wait for terminated encoders to exit (SIGKILL after timeout)
        and release the private scheduler. For process shutdown only.
        """
        self.stop()
        with self._lock:
            terminating, self._terminating = self._terminating, []
        for process in terminating:
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Encoder PID={process.pid} did not terminate, killing")
                try:
                    process.kill()
                    process.wait(timeout=1.0)
                except (OSError, subprocess.TimeoutExpired) as e:
                    logger.warning(f"Error killing encoder process: {e}")
        if self._owns_scheduler:
            self._scheduler.close()

    # ------------------------------------------------------------------ #
    # Launch
    # ------------------------------------------------------------------ #

    def _prepare_run(self, request: StreamRequest) -> _RunContext:
        tracks = self._preparer.prepare_all([track.path for track in request.tracks])
        durations = [self._duration_prober.duration(track.path) for track in tracks]
        settings = self._initial_settings(request)
        return _RunContext(request=request, tracks=tracks, track_durations=durations, settings=settings)

    def _initial_settings(self, request: StreamRequest) -> TransitionSettings:
        if not self._config.transitions_enabled:
            return TransitionSettings()
        video = len(request.backgrounds) > 1 and (
            self._config.force_xfade or self._capability_prober.supports(XFADE_FILTER)
        )
        audio = len(request.tracks) > 1 and (
            self._config.force_acrossfade or self._capability_prober.supports(ACROSSFADE_FILTER)
        )
        return TransitionSettings(video=video, audio=audio)

    def _build_plan(self, run: _RunContext) -> GraphPlan:
        width, height = self._config.frame_size
        return build_graph(
            [background.duration for background in run.request.backgrounds],
            run.track_durations,
            self._config.crossfade_sec,
            video_transitions=run.settings.video,
            audio_transitions=run.settings.audio,
            fps=self._config.fps,
            width=width,
            height=height,
        )

    def _spawn(self, run: _RunContext, plan: GraphPlan) -> None:
        """Launch the encoder for run; caller holds the lock."""
        request = run.request
        cmd = build_encoder_command(self._config, request.backgrounds, run.tracks, plan, request.destination)
        logger.info(f"FFmpeg command: {' '.join(cmd[:-1] + [redact_destination(cmd[-1])])}")

        try:
            process = self._popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise SubprocessSpawnError(f"Could not launch {cmd[0]}: {e}") from e

        self._generation += 1
        self._process = process
        self._run = run
        self._state = SupervisorState.RUNNING

        watcher = ProcessWatcher(process, self._generation, self._on_process_exit)
        self._watcher = watcher
        watcher.start()
        logger.info(
            f"Started ffmpeg PID={process.pid} (generation {self._generation}, "
            f"video_xfade={run.settings.video}, audio_xfade={run.settings.audio})"
        )

    # ------------------------------------------------------------------ #
    # Exit handling
    # ------------------------------------------------------------------ #

    def _on_process_exit(self, generation: int, returncode: int, stderr_tail: str) -> None:
        # Watcher thread: hand over to the event thread
        self._scheduler.submit(lambda: self._handle_exit(generation, returncode, stderr_tail))

    def _handle_exit(self, generation: int, returncode: int, stderr_tail: str = "") -> None:
        fatal: Optional[LoopcastError] = None
        with self._lock:
            if generation != self._generation or self._state != SupervisorState.RUNNING:
                logger.debug(f"Ignoring exit of superseded encoder (generation {generation}, code {returncode})")
                return

            self._process = None
            self._watcher = None
            run = self._run
            assert run is not None

            if returncode == 0:
                self._consecutive_failures = 0
                self._last_failure_at = None
                logger.info(
                    f"Encoder finished the program; restarting in {COMPLETION_RESTART_DELAY_SEC * 1000:.0f}ms"
                )
                self._schedule_restart(COMPLETION_RESTART_DELAY_SEC)
                return

            signal_num = -returncode if returncode < 0 else None
            exit_code = returncode if returncode > 0 else None
            failures = self._record_failure()
            detail = f"signal {signal_num}" if signal_num is not None else f"exit code {exit_code}"
            logger.error(
                f"🔥 FFmpeg exited abnormally ({detail}), failure {failures}/{self._config.max_failures}"
            )
            if stderr_tail:
                logger.error(f"FFmpeg stderr at exit:\n{stderr_tail}")

            if failures >= self._config.max_failures:
                fatal = SubprocessExitFailure(exit_code, signal_num, failures)
                logger.critical(f"Circuit breaker tripped: {fatal}")
                self._halt_locked()
            else:
                settings, degraded = degrade(run.settings)
                if degraded:
                    logger.warning(
                        f"Retrying with fewer transitions (video_xfade={settings.video}, "
                        f"audio_xfade={settings.audio})"
                    )
                    run.settings = settings
                    self._schedule_restart(DEGRADE_RESTART_DELAY_SEC)
                else:
                    self._schedule_restart(FAILURE_RESTART_DELAY_SEC)

        if fatal is not None:
            self._notify_fatal(fatal)

    def _record_failure(self) -> int:
        now = self._scheduler.monotonic()
        if (
            self._last_failure_at is not None
            and now - self._last_failure_at > self._config.failure_reset_sec
        ):
            logger.info("Previous encoder failure is outside the reset window; counting from zero")
            self._consecutive_failures = 0
        self._consecutive_failures += 1
        self._last_failure_at = now
        return self._consecutive_failures

    def _schedule_restart(self, delay: float) -> None:
        generation = self._generation
        if self._pending_restart is not None:
            self._pending_restart.cancel()
        self._pending_restart = self._scheduler.call_later(delay, lambda: self._restart(generation))

    def _restart(self, generation: int) -> None:
        fatal: Optional[LoopcastError] = None
        with self._lock:
            self._pending_restart = None
            if (
                generation != self._generation
                or self._state != SupervisorState.RUNNING
                or self._run is None
                or self._process is not None
            ):
                logger.debug(f"Dropping stale restart (generation {generation})")
                return

            run = self._run
            logger.info(f"Restarting encoder (consecutive failures: {self._consecutive_failures})")
            try:
                self._spawn(run, self._build_plan(run))
            except (GraphConstructionError, SubprocessSpawnError) as e:
                logger.error(f"Encoder restart failed, halting stream: {e}")
                fatal = e
                self._halt_locked()

        if fatal is not None:
            self._notify_fatal(fatal)

    def _notify_fatal(self, error: LoopcastError) -> None:
        if self._on_fatal is None:
            return
        try:
            self._on_fatal(error)
        except Exception as e:
            logger.error(f"on_fatal callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    def _halt_locked(self) -> None:
        """Go IDLE for good and forget the request; no further restarts."""
        if self._pending_restart is not None:
            self._pending_restart.cancel()
            self._pending_restart = None
        self._generation += 1
        self._run = None
        self._state = SupervisorState.IDLE

    def _stop_locked(self) -> None:
        self._state = SupervisorState.STOPPING
        if self._pending_restart is not None:
            self._pending_restart.cancel()
            self._pending_restart = None

        # Invalidate in-flight exit events and timers of the old process
        self._generation += 1
        process, self._process = self._process, None
        self._watcher = None
        if process is not None:
            self._terminate(process)

        self._run = None
        self._consecutive_failures = 0
        self._last_failure_at = None
        self._state = SupervisorState.IDLE

    def _terminate(self, process: subprocess.Popen) -> None:
        try:
            if process.poll() is None:
                process.terminate()
                logger.info(f"Sent SIGTERM to ffmpeg PID={process.pid}")
                self._terminating = [p for p in self._terminating if p.poll() is None] + [process]
                self._scheduler.call_later(STOP_GRACE_SEC, lambda: self._kill_if_alive(process))
        except OSError as e:
            logger.warning(f"Error stopping encoder process: {e}")

    @staticmethod
    def _kill_if_alive(process: subprocess.Popen) -> None:
        try:
            if process.poll() is None:
                logger.warning(f"Encoder PID={process.pid} did not terminate, killing")
                process.kill()
        except OSError as e:
            logger.warning(f"Error killing encoder process: {e}")
