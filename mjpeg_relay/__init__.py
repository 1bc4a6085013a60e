"""Serve a live video feed to browsers as an MJPEG stream."""

from .web import MJPEGStreamServer, StreamServerError

__version__ = "0.1.0"

__all__ = ["MJPEGStreamServer", "StreamServerError", "__version__"]
