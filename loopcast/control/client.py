"""
Client for the loopcast control API.

Transport only: returns the server's JSON (including 400 bodies, which carry
the rejection message) or None when the server cannot be reached.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import httpx

logger = logging.getLogger(__name__)


class ControlClient:
    """HTTP client for a running `loopcast serve`."""

    def __init__(self, host: str = "127.0.0.1", port: int = 8095, timeout: float = 60.0):
        """
        Initialize the control client.

        Args:
            host: Control API host (default: 127.0.0.1)
            port: Control API port (default: 8095)
            timeout: Per-request timeout; start waits for track preparation,
                so this is generous
        """
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout
        logging.getLogger("httpx").setLevel(logging.WARNING)

    def start(
        self,
        tracks: Sequence[str],
        backgrounds: Sequence[Tuple[str, float]],
        stream_key: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Ask the server to start streaming.

        Returns:
            Response dict ("message" always present), or None if the request failed
        """
        payload: Dict[str, Any] = {
            "tracks": list(tracks),
            "backgrounds": [{"path": path, "duration": duration} for path, duration in backgrounds],
            "stream_key": stream_key,
        }
        return self._call("POST", "/stream/start", payload, accept=(200, 400))

    def stop(self) -> Optional[Dict[str, Any]]:
        return self._call("POST", "/stream/stop")

    def status(self) -> Optional[Dict[str, Any]]:
        return self._call("GET", "/stream/status")

    def _call(
        self,
        method: str,
        route: str,
        payload: Optional[Dict[str, Any]] = None,
        accept: Sequence[int] = (200,),
    ) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{route}"
        try:
            if method == "POST":
                response = httpx.post(url, json=payload or {}, timeout=self.timeout)
            else:
                response = httpx.get(url, timeout=self.timeout)
            if response.status_code not in accept:
                response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning(f"[CONTROL] {method} {route} failed: {e}")
            return None
        except ValueError as e:
            logger.error(f"[CONTROL] {method} {route} returned invalid JSON: {e}")
            return None
