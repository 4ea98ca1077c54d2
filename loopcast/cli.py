"""
Command line entry point.

    python -m loopcast run --track a.mp3 --track b.mp3 --background bg.png:30 --stream-key KEY
    python -m loopcast run --playlist playlist.json
    python -m loopcast serve
    python -m loopcast start --playlist playlist.json
    python -m loopcast stop | status

run and serve own a StreamSupervisor in this process; start, stop and status
talk to a running `serve` over the control API.

Playlist files use the /stream/start body:
    {"tracks": ["a.mp3"], "backgrounds": [{"path": "bg.png", "duration": 30}], "stream_key": "KEY"}
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Any, Dict, List, Optional, Sequence

from loopcast import __version__
from loopcast.config import LoopcastConfig, load_config
from loopcast.control.client import ControlClient
from loopcast.control.server import BadRequest, ControlServer, parse_start_body
from loopcast.encoder.supervisor import StreamSupervisor, redact_destination
from loopcast.errors import LoopcastError
from loopcast.logging_setup import setup_logging
from loopcast.prepare.preparer import TrackPreparer

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_FATAL = 2

DEFAULT_BACKGROUND_SEC = 30.0


def parse_background(value: str) -> Dict[str, Any]:
    """PATH[:SECONDS] -> {"path", "duration"}; a suffix that is not a number stays part of the path."""
    path, sep, seconds = value.rpartition(":")
    if sep and path:
        try:
            return {"path": path, "duration": float(seconds)}
        except ValueError:
            pass
    return {"path": value, "duration": DEFAULT_BACKGROUND_SEC}


def load_playlist(path: str) -> Dict[str, Any]:
    """Read a playlist JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Playlist {path} must contain a JSON object")
    return data


def build_body(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge --playlist with --track/--background/--stream-key/--url (flags win)."""
    body: Dict[str, Any] = load_playlist(args.playlist) if args.playlist else {}
    if args.track:
        body["tracks"] = list(args.track)
    if args.background:
        body["backgrounds"] = [parse_background(b) for b in args.background]
    if args.url or args.stream_key:
        body["stream_key"] = args.url or args.stream_key
    return body


def _add_playlist_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--playlist", help="JSON playlist file")
    parser.add_argument("--track", action="append", metavar="PATH", help="Audio track (repeatable, in play order)")
    parser.add_argument(
        "--background",
        action="append",
        metavar="PATH[:SECONDS]",
        help=f"Background image or video (repeatable; default {DEFAULT_BACKGROUND_SEC:.0f}s each)",
    )
    destination = parser.add_mutually_exclusive_group()
    destination.add_argument("--stream-key", help="Stream key appended to LOOPCAST_INGEST_URL")
    destination.add_argument("--url", help="Full rtmp:// or rtmps:// destination URL")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="loopcast", description="Looping playlist live streamer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--env-file", help="Environment file (default: LOOPCAST_ENV_FILE or /etc/loopcast/loopcast.env)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Stream a playlist until interrupted")
    _add_playlist_arguments(run_parser)

    subparsers.add_parser("serve", help="Run the HTTP control API")

    start_parser = subparsers.add_parser("start", help="Start streaming on a running server")
    _add_playlist_arguments(start_parser)

    subparsers.add_parser("stop", help="Stop streaming on a running server")
    subparsers.add_parser("status", help="Show whether a running server is streaming")
    return parser


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, handler)


def _banner(config: LoopcastConfig, mode: str) -> None:
    logger.info("=" * 60)
    logger.info(f"loopcast {__version__} - {mode}")
    logger.info(f"ffmpeg: {config.ffmpeg_path} | ffprobe: {config.ffprobe_path}")
    logger.info(
        f"Output: {config.video_size}@{config.fps}fps, video {config.video_bitrate}, "
        f"audio {config.audio_bitrate}, crossfade {config.crossfade_sec}s"
    )
    if config.log_file:
        logger.info(f"Log file: {config.log_file}")
    logger.info("=" * 60)


def cmd_run(args: argparse.Namespace, config: LoopcastConfig) -> int:
    try:
        request, stream_url = parse_start_body(build_body(args), config.ingest_url)
    except (BadRequest, OSError, ValueError) as e:
        logger.error(f"Cannot build stream request: {e}")
        return EXIT_REJECTED

    stop_event = threading.Event()
    fatal: List[LoopcastError] = []

    def on_fatal(error: LoopcastError) -> None:
        fatal.append(error)
        stop_event.set()

    preparer = TrackPreparer.from_config(config)
    supervisor = StreamSupervisor(config, preparer=preparer, on_fatal=on_fatal)
    _install_signal_handlers(stop_event)

    try:
        result = supervisor.start(request)
        if not result.accepted:
            logger.error(f"Stream rejected: {result.message}")
            return EXIT_REJECTED
        logger.info(f"{result.message} -> {redact_destination(stream_url)}")

        stop_event.wait()
        if fatal:
            logger.critical(f"Streaming halted: {fatal[0]}")
            return EXIT_FATAL
        return EXIT_OK
    finally:
        supervisor.close()
        preparer.cleanup()


def cmd_serve(args: argparse.Namespace, config: LoopcastConfig) -> int:
    stop_event = threading.Event()
    preparer = TrackPreparer.from_config(config)
    supervisor = StreamSupervisor(
        config,
        preparer=preparer,
        on_fatal=lambda error: logger.critical(f"Streaming halted: {error}"),
    )
    server = ControlServer(supervisor, config)
    _install_signal_handlers(stop_event)

    try:
        server.start()
    except OSError as e:
        logger.error(f"Cannot bind control API on {config.control_host}:{config.control_port}: {e}")
        supervisor.close()
        return EXIT_REJECTED

    try:
        stop_event.wait()
        return EXIT_OK
    finally:
        server.stop()
        supervisor.close()
        preparer.cleanup()


def _print_response(response: Optional[Dict[str, Any]]) -> None:
    print(json.dumps(response, indent=2))


def cmd_client(args: argparse.Namespace, config: LoopcastConfig) -> int:
    client = ControlClient(config.control_host, config.control_port)

    if args.command == "start":
        try:
            body = build_body(args)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read playlist: {e}")
            return EXIT_REJECTED
        backgrounds = [(b.get("path"), b.get("duration")) for b in body.get("backgrounds") or []]
        response = client.start(body.get("tracks") or [], backgrounds, body.get("stream_key") or "")
        _print_response(response)
        return EXIT_OK if response is not None and "stream_url" in response else EXIT_REJECTED

    response = client.stop() if args.command == "stop" else client.status()
    _print_response(response)
    return EXIT_OK if response is not None else EXIT_REJECTED


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.env_file)
    except (ValueError, FileNotFoundError) as e:
        print(f"loopcast: configuration error: {e}", file=sys.stderr)
        return EXIT_REJECTED

    setup_logging(config.log_level, config.log_file)

    if args.command == "run":
        _banner(config, "run")
        return cmd_run(args, config)
    if args.command == "serve":
        _banner(config, "serve")
        return cmd_serve(args, config)
    return cmd_client(args, config)
