"""
Value types shared across the orchestrator.

StreamRequest is what collaborators hand to StreamSupervisor.start(); the rest
are produced internally while preparing and launching a run.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from loopcast.errors import InvalidRequest, LoopcastError

# Backgrounds with these extensions are fed to ffmpeg as looped stills;
# everything else is treated as a video clip and stream-looped.
IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".bmp", ".webp", ".tif", ".tiff"})


@dataclass(frozen=True)
class Track:
    """One audio item of the playlist."""
    path: str


@dataclass(frozen=True)
class Background:
    """
    One visual item of the background loop.

    Attributes:
        path: Image or video file
        duration: Seconds this item stays on screen per loop (must be > 0)
    """
    path: str
    duration: float

    @property
    def is_image(self) -> bool:
        return Path(self.path).suffix.lower() in IMAGE_EXTENSIONS


@dataclass(frozen=True)
class StreamRequest:
    """
    Immutable description of one stream run.

    Attributes:
        tracks: Audio playlist, in play order
        backgrounds: Visual playlist, in play order
        destination: Sink URL handed verbatim to the encoder (e.g. rtmp://...)
    """
    tracks: Tuple[Track, ...]
    backgrounds: Tuple[Background, ...]
    destination: str

    @classmethod
    def build(
        cls,
        tracks: Iterable[Union[str, Track]],
        backgrounds: Iterable[Union[Tuple[str, float], Background]],
        destination: str,
    ) -> "StreamRequest":
        """Build a request from plain paths and (path, duration) pairs."""
        track_items = tuple(t if isinstance(t, Track) else Track(str(t)) for t in tracks)
        background_items = tuple(
            b if isinstance(b, Background) else Background(str(b[0]), float(b[1]))
            for b in backgrounds
        )
        return cls(tracks=track_items, backgrounds=background_items, destination=destination)

    def validate(self) -> None:
        """
        Check the request can be attempted at all.

        Raises:
            InvalidRequest: Empty track or background list, non-positive
                background duration, or missing destination
        """
        if not self.tracks:
            raise InvalidRequest("No tracks provided")
        if not self.backgrounds:
            raise InvalidRequest("No backgrounds provided")
        for background in self.backgrounds:
            if not background.duration > 0:
                raise InvalidRequest(
                    f"Background {background.path} has invalid duration {background.duration}"
                )
        if not self.destination:
            raise InvalidRequest("No destination URL provided")


@dataclass(frozen=True)
class PreparedTrack:
    """
    A track after sanitize/remux.

    Attributes:
        path: File handed to the encoder
        source_path: Original file from the request
        was_sanitized: Metadata containers were stripped into a temp file
        was_remuxed: Track was transcoded to the PCM intermediate
    """
    path: str
    source_path: str
    was_sanitized: bool = False
    was_remuxed: bool = False


@dataclass(frozen=True)
class TransitionSettings:
    """Which optional transition filters the current attempt uses."""
    video: bool = False
    audio: bool = False

    @property
    def any(self) -> bool:
        return self.video or self.audio


@dataclass(frozen=True)
class GraphPlan:
    """
    Output of the filter graph builder.

    Attributes:
        filter_graph: Text for ffmpeg -filter_complex
        video_label: Output pad carrying the looped video
        audio_label: Output pad carrying the looped audio
        total_duration: min(video_duration, audio_duration)
        video_duration: Length of one pass of the background program
        audio_duration: Length of one pass of the audio program
        video_crossfade: Effective xfade window (0.0 when not used)
        audio_crossfade: Effective acrossfade window (0.0 when not used)
    """
    filter_graph: str
    video_label: str
    audio_label: str
    total_duration: float
    video_duration: float
    audio_duration: float
    video_crossfade: float = 0.0
    audio_crossfade: float = 0.0


@dataclass(frozen=True)
class StartResult:
    """Synchronous answer of StreamSupervisor.start()."""
    accepted: bool
    message: str
    error: Optional[LoopcastError] = field(default=None, compare=False)
