"""Exceptions raised by the stream server."""

from __future__ import annotations


class StreamServerError(RuntimeError):
    """Raised when the server cannot be started."""


__all__ = ["StreamServerError"]
