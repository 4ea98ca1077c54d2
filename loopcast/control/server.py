"""
HTTP control API for loopcast.

Routes:
    POST /stream/start   start (or restart) the stream from a JSON playlist
    POST /stream/stop    stop the stream
    GET  /stream/status  {"running": bool}

Every response body is JSON.
"""

import json
import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer, ThreadingHTTPServer
from typing import Any, Dict, List, Optional, Tuple

from loopcast.config import LoopcastConfig
from loopcast.destination import resolve_stream_url
from loopcast.encoder.supervisor import StreamSupervisor
from loopcast.errors import InvalidRequest
from loopcast.models import Background, StreamRequest

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024 * 1024


class BadRequest(Exception):
    """Request body cannot be turned into a stream request (HTTP 400)."""


def parse_start_body(data: Any, ingest_url: str) -> Tuple[StreamRequest, str]:
    """
    Turn a /stream/start body into a StreamRequest.

    Track and background paths that do not exist on disk are dropped (and
    logged); the stream key goes through resolve_stream_url().

    Returns:
        (request, resolved stream URL)

    Raises:
        BadRequest: Wrong shape, bad duration, nothing left after dropping
            missing files, or no stream key
    """
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")

    raw_tracks = data.get("tracks") or []
    raw_backgrounds = data.get("backgrounds") or []
    if not isinstance(raw_tracks, list) or not isinstance(raw_backgrounds, list):
        raise BadRequest("'tracks' and 'backgrounds' must be lists")

    backgrounds: List[Background] = []
    for item in raw_backgrounds:
        if not isinstance(item, dict) or not isinstance(item.get("path"), str):
            raise BadRequest("Each background must be an object with 'path' and 'duration'")
        try:
            duration = float(item.get("duration"))
        except (TypeError, ValueError):
            raise BadRequest(f"Invalid duration for background {item['path']}: {item.get('duration')!r}")
        if not os.path.isfile(item["path"]):
            logger.warning(f"Background not found on disk, skipping: {item['path']}")
            continue
        backgrounds.append(Background(item["path"], duration))

    tracks: List[str] = []
    for path in raw_tracks:
        if not isinstance(path, str):
            raise BadRequest("Each track must be a file path string")
        if not os.path.isfile(path):
            logger.warning(f"Track not found on disk, skipping: {path}")
            continue
        tracks.append(path)

    if not backgrounds:
        raise BadRequest("No background files found on disk")
    if not tracks:
        raise BadRequest("No audio tracks found on disk")

    try:
        stream_url = resolve_stream_url(data.get("stream_key") or "", ingest_url)
    except InvalidRequest as e:
        raise BadRequest(str(e))

    return StreamRequest.build(tracks, backgrounds, stream_url), stream_url


def make_control_handler(supervisor: StreamSupervisor, config: LoopcastConfig):
    """Create a ControlHandler class bound to one supervisor."""

    class ControlHandler(BaseHTTPRequestHandler):
        """HTTP request handler for the stream control routes."""

        def do_GET(self):
            if self.path == "/stream/status":
                self._send_json(200, {"running": supervisor.is_running()})
            else:
                self._send_json(404, {"message": "Not Found"})

        def do_POST(self):
            if self.path == "/stream/start":
                self._guarded(self._handle_start)
            elif self.path == "/stream/stop":
                self._guarded(self._handle_stop)
            else:
                self._send_json(404, {"message": "Not Found"})

        def _guarded(self, handler) -> None:
            try:
                handler()
            except Exception as e:
                logger.error(f"Error handling {self.path}: {e}", exc_info=True)
                self._send_json(500, {"message": "Internal server error"})

        def _handle_start(self) -> None:
            try:
                data = self._read_json()
                request, stream_url = parse_start_body(data, config.ingest_url)
            except BadRequest as e:
                logger.warning(f"Rejected /stream/start: {e}")
                self._send_json(400, {"message": str(e)})
                return

            result = supervisor.start(request)
            if not result.accepted:
                self._send_json(400, {"message": result.message})
                return

            self._send_json(200, {
                "message": result.message,
                "stream_url": stream_url,
                "tracks": len(request.tracks),
                "backgrounds": len(request.backgrounds),
            })

        def _handle_stop(self) -> None:
            if not supervisor.is_running():
                # Still clears a halted or half-started run
                supervisor.stop()
                self._send_json(200, {"message": "Stream is not running"})
                return
            supervisor.stop()
            self._send_json(200, {"message": "Stream stopped"})

        def _read_json(self) -> Any:
            try:
                length = int(self.headers.get("Content-Length", 0))
            except ValueError:
                raise BadRequest("Invalid Content-Length")
            if length <= 0:
                raise BadRequest("Request body is required")
            if length > MAX_BODY_BYTES:
                raise BadRequest("Request body too large")
            body = self.rfile.read(length)
            try:
                return json.loads(body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise BadRequest(f"Invalid JSON: {e}")

        def _send_json(self, status_code: int, payload: Dict[str, Any]) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.send_header("Cache-Control", "no-cache")
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            """Override to use our logger."""
            logger.debug(f"{self.address_string()} - {format % args}")

    return ControlHandler


class ControlServer:
    """Control API server running in a background thread."""

    def __init__(
        self,
        supervisor: StreamSupervisor,
        config: LoopcastConfig,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        """
        Initialize the control server.

        Args:
            supervisor: Supervisor the routes drive
            config: Runtime configuration (ingest URL, default bind address)
            host: Bind host (default: config.control_host)
            port: Bind port, 0 for any free port (default: config.control_port)
        """
        self.supervisor = supervisor
        self.config = config
        self.host = host if host is not None else config.control_host
        self.port = port if port is not None else config.control_port
        self.server: Optional[HTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self._shutdown = False

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Bind and serve in a background thread."""
        if self.server is not None:
            raise RuntimeError("Server already started")

        handler_class = make_control_handler(self.supervisor, self.config)
        self.server = ThreadingHTTPServer((self.host, self.port), handler_class)
        self.server.daemon_threads = True
        # Pick up the real port when bound to 0
        self.port = self.server.server_address[1]

        self.server_thread = threading.Thread(target=self._run_server, daemon=True, name="ControlServer")
        self.server_thread.start()
        logger.info(f"Control API listening on {self.base_url}")

    def _run_server(self):
        try:
            self.server.serve_forever()
        except Exception as e:
            if not self._shutdown:
                logger.error(f"Control server error: {e}")

    def stop(self) -> None:
        if self.server is None:
            return

        self._shutdown = True
        self.server.shutdown()
        self.server.server_close()
        if self.server_thread:
            self.server_thread.join(timeout=2.0)

        self.server = None
        self.server_thread = None
        logger.info("Control API stopped")
