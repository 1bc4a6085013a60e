"""Web package exposing the MJPEG stream server."""

from .errors import StreamServerError
from .mjpeg import MJPEGStreamServer

__all__ = ["MJPEGStreamServer", "StreamServerError"]
