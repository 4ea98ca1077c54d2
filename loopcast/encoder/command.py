"""
Encoder command construction.

Input order must match the filter graph builder: backgrounds first, then the
prepared audio tracks.
"""

from typing import List, Sequence

from loopcast.config import CHANNELS, SAMPLE_RATE, LoopcastConfig
from loopcast.models import Background, GraphPlan, PreparedTrack

# Demuxer flags that keep a damaged track from killing the whole stream
ERROR_TOLERANT_INPUT_FLAGS = ["-fflags", "+genpts+discardcorrupt", "-err_detect", "ignore_err"]


def background_input_args(background: Background, fps: int) -> List[str]:
    """Stills are image-looped; video clips are stream-looped."""
    if background.is_image:
        return ["-re", "-loop", "1", "-framerate", str(fps), "-i", background.path]
    return ["-re", "-stream_loop", "-1", "-i", background.path]


def build_encoder_command(
    config: LoopcastConfig,
    backgrounds: Sequence[Background],
    tracks: Sequence[PreparedTrack],
    plan: GraphPlan,
    destination: str,
) -> List[str]:
    """Full argv for the long-running encoder process."""
    cmd = [
        config.ffmpeg_path,
        "-hide_banner",
        "-nostdin",
        "-loglevel", "warning",
    ]

    for background in backgrounds:
        cmd.extend(background_input_args(background, config.fps))

    for track in tracks:
        cmd.extend(["-re"] + ERROR_TOLERANT_INPUT_FLAGS + ["-i", track.path])

    video_kbps = int(config.video_bitrate[:-1])
    cmd.extend([
        "-filter_complex", plan.filter_graph,
        "-map", f"[{plan.video_label}]",
        "-map", f"[{plan.audio_label}]",
        # Video encoding
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-tune", "stillimage",
        "-pix_fmt", "yuv420p",
        "-r", str(config.fps),
        "-g", str(config.fps * 2),  # keyframe every 2 seconds
        "-b:v", config.video_bitrate,
        "-maxrate", config.video_bitrate,
        "-bufsize", f"{video_kbps * 2}k",
        # Audio encoding
        "-c:a", "aac",
        "-b:a", config.audio_bitrate,
        "-ar", str(SAMPLE_RATE),
        "-ac", str(CHANNELS),
        # Output
        "-f", "flv",
        "-flvflags", "no_duration_filesize",
        destination,
    ])
    return cmd
