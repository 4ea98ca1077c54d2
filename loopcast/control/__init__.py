"""HTTP control API: server and client."""

from loopcast.control.client import ControlClient
from loopcast.control.server import ControlServer, parse_start_body

__all__ = ["ControlClient", "ControlServer", "parse_start_body"]
