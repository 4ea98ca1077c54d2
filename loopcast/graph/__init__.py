"""Filter graph construction for the looping program."""

from loopcast.graph.builder import (
    AUDIO_OUTPUT_LABEL,
    MIN_CROSSFADE_SEC,
    VIDEO_OUTPUT_LABEL,
    build_graph,
    clamp_crossfade,
)

__all__ = [
    "AUDIO_OUTPUT_LABEL",
    "MIN_CROSSFADE_SEC",
    "VIDEO_OUTPUT_LABEL",
    "build_graph",
    "clamp_crossfade",
]
