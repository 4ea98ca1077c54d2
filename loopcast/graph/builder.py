"""
ffmpeg filter graph builder.

Produces two independent fragments joined into one -filter_complex string:

- video: every background is scaled/padded to the output frame, frame-rate
  normalized and trimmed to its declared duration; items are joined (xfade or
  concat) and the result is looped without bound with `loop`.
- audio: every prepared track is trimmed to its probed duration and
  normalized to the canonical rate/layout; tracks are joined (acrossfade or
  concat) and the result is looped without bound with `aloop`.

Input numbering follows the encoder command: backgrounds are inputs
0..B-1, audio tracks B..B+T-1.

The builder is a pure function: identical arguments give byte-identical text.
"""

import math
from typing import List, Sequence, Tuple

from loopcast.config import SAMPLE_RATE
from loopcast.errors import GraphConstructionError, NoContent
from loopcast.models import GraphPlan

VIDEO_OUTPUT_LABEL = "vout"
AUDIO_OUTPUT_LABEL = "aout"

# Floor for the crossfade window, whatever the shortest item
MIN_CROSSFADE_SEC = 0.2

XFADE_TRANSITION = "fade"
ACROSSFADE_CURVE = "tri"

# Largest window ffmpeg accepts for loop:size (frames) and aloop:size (samples)
MAX_LOOP_FRAMES = 32767
MAX_LOOP_SAMPLES = 2**31 - 1


def _fmt(seconds: float) -> str:
    return f"{seconds:.3f}"


def clamp_crossfade(default: float, durations: Sequence[float]) -> float:
    """
    Effective crossfade window for a playlist.

    min(default, max(0.2, shortest / 2)), so a very short item cannot make
    the window exceed half its own length (beyond the 0.2s floor).
    """
    if default <= 0 or not durations:
        return 0.0
    return min(default, max(MIN_CROSSFADE_SEC, min(durations) / 2))


def _check_durations(kind: str, durations: Sequence[float]) -> None:
    if not durations:
        raise NoContent(f"No {kind} to build the filter graph from")
    for index, value in enumerate(durations):
        if not math.isfinite(value) or value <= 0:
            raise GraphConstructionError(f"{kind} item {index} has invalid duration {value!r}")


def _joined_total(durations: Sequence[float], crossfade: float) -> float:
    """Length of the joined timeline; each join overlaps by the crossfade window."""
    offset = 0.0
    for duration in durations[:-1]:
        offset += duration - crossfade
    return offset + durations[-1]


def _video_fragment(
    durations: Sequence[float],
    crossfade: float,
    fps: int,
    width: int,
    height: int,
) -> Tuple[List[str], float]:
    parts = []
    for i, duration in enumerate(durations):
        parts.append(
            f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps},format=yuv420p,"
            f"trim=duration={_fmt(duration)},setpts=PTS-STARTPTS[v{i}]"
        )

    count = len(durations)
    if count == 1:
        joined = "v0"
    elif crossfade > 0:
        previous = "v0"
        offset = durations[0] - crossfade
        for i in range(1, count):
            out = f"vxf{i}"
            parts.append(
                f"[{previous}][v{i}]xfade=transition={XFADE_TRANSITION}:"
                f"duration={_fmt(crossfade)}:offset={_fmt(offset)}[{out}]"
            )
            previous = out
            offset += durations[i] - crossfade
        joined = previous
    else:
        inputs = "".join(f"[v{i}]" for i in range(count))
        parts.append(f"{inputs}concat=n={count}:v=1:a=0[vcat]")
        joined = "vcat"

    total = _joined_total(durations, crossfade if count > 1 else 0.0)
    frames = max(1, math.ceil(total * fps))
    if frames > MAX_LOOP_FRAMES:
        raise GraphConstructionError(
            f"Background program is too long to loop: {frames} frames at {fps} fps (max {MAX_LOOP_FRAMES})"
        )
    parts.append(
        f"[{joined}]loop=loop=-1:size={frames}:start=0,setpts=N/FRAME_RATE/TB[{VIDEO_OUTPUT_LABEL}]"
    )
    return parts, total


def _audio_fragment(
    durations: Sequence[float],
    crossfade: float,
    first_input: int,
    sample_rate: int,
) -> Tuple[List[str], float]:
    parts = []
    for j, duration in enumerate(durations):
        parts.append(
            f"[{first_input + j}:a]atrim=duration={_fmt(duration)},asetpts=PTS-STARTPTS,"
            f"aresample={sample_rate},"
            f"aformat=sample_fmts=fltp:sample_rates={sample_rate}:channel_layouts=stereo[a{j}]"
        )

    count = len(durations)
    if count == 1:
        joined = "a0"
    elif crossfade > 0:
        previous = "a0"
        for j in range(1, count):
            out = f"axf{j}"
            parts.append(
                f"[{previous}][a{j}]acrossfade=d={_fmt(crossfade)}:"
                f"c1={ACROSSFADE_CURVE}:c2={ACROSSFADE_CURVE}[{out}]"
            )
            previous = out
        joined = previous
    else:
        inputs = "".join(f"[a{j}]" for j in range(count))
        parts.append(f"{inputs}concat=n={count}:v=0:a=1[acat]")
        joined = "acat"

    total = _joined_total(durations, crossfade if count > 1 else 0.0)
    samples = max(1, math.ceil(total * sample_rate))
    if samples > MAX_LOOP_SAMPLES:
        raise GraphConstructionError(
            f"Playlist is too long to loop: {samples} samples at {sample_rate} Hz (max {MAX_LOOP_SAMPLES})"
        )
    parts.append(
        f"[{joined}]aloop=loop=-1:size={samples}:start=0,"
        f"asetpts=N/{sample_rate}/TB[{AUDIO_OUTPUT_LABEL}]"
    )
    return parts, total


def _usable_crossfade(enabled: bool, default: float, durations: Sequence[float]) -> float:
    if not enabled or len(durations) < 2:
        return 0.0
    window = clamp_crossfade(default, durations)
    # A window as long as the shortest item would leave nothing to join
    if window >= min(durations):
        return 0.0
    return window


def build_graph(
    background_durations: Sequence[float],
    track_durations: Sequence[float],
    crossfade: float,
    *,
    video_transitions: bool = False,
    audio_transitions: bool = False,
    fps: int = 30,
    width: int = 1280,
    height: int = 720,
    sample_rate: int = SAMPLE_RATE,
) -> GraphPlan:
    """
    Build the looping filter graph for one attempt.

    Args:
        background_durations: Declared seconds per background, in order
        track_durations: Probed seconds per prepared track, in order
        crossfade: Configured crossfade window (seconds)
        video_transitions: Join backgrounds with xfade instead of concat
        audio_transitions: Join tracks with acrossfade instead of concat
        fps: Output frame rate
        width: Output frame width
        height: Output frame height
        sample_rate: Output sample rate

    Returns:
        GraphPlan with graph text, output labels and durations

    Raises:
        NoContent: No backgrounds or no tracks
        GraphConstructionError: A non-positive or non-finite duration, or a program
            longer than the loop filters can hold
    """
    _check_durations("background", background_durations)
    _check_durations("track", track_durations)

    video_crossfade = _usable_crossfade(video_transitions, crossfade, background_durations)
    audio_crossfade = _usable_crossfade(audio_transitions, crossfade, track_durations)

    video_parts, video_total = _video_fragment(background_durations, video_crossfade, fps, width, height)
    audio_parts, audio_total = _audio_fragment(
        track_durations, audio_crossfade, len(background_durations), sample_rate
    )

    return GraphPlan(
        filter_graph=";".join(video_parts + audio_parts),
        video_label=VIDEO_OUTPUT_LABEL,
        audio_label=AUDIO_OUTPUT_LABEL,
        total_duration=min(video_total, audio_total),
        video_duration=video_total,
        audio_duration=audio_total,
        video_crossfade=video_crossfade,
        audio_crossfade=audio_crossfade,
    )
