"""Request-line parsing and the canned HTTP responses served to browsers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from mjpeg_relay.web.streaming import DEFAULT_BOUNDARY

STREAM_PATHS = frozenset({"/stream.mjpeg", "/stream"})

INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Live View</title>
    <style>
        body {
            font-family: Arial, sans-serif;
            margin: 0;
            padding: 20px;
            background-color: #f0f0f0;
            text-align: center;
        }
        h1 {
            color: #333;
            margin-bottom: 10px;
        }
        .info {
            color: #666;
            margin-bottom: 20px;
            font-size: 14px;
        }
        #stream-container {
            max-width: 100%;
            margin: 0 auto;
            background-color: #000;
            border-radius: 8px;
            overflow: hidden;
            box-shadow: 0 4px 6px rgba(0,0,0,0.1);
        }
        #stream {
            width: 100%;
            height: auto;
            display: block;
        }
        .status {
            margin-top: 15px;
            padding: 10px;
            background-color: #4CAF50;
            color: white;
            border-radius: 4px;
            display: inline-block;
        }
    </style>
</head>
<body>
    <h1>Live View</h1>
    <div class="info">Watch the camera feed from any phone, tablet or desktop browser</div>
    <div id="stream-container">
        <img id="stream" src="/stream.mjpeg" alt="Loading stream...">
    </div>
    <div class="status">&#9679; Streaming live</div>
</body>
</html>
"""


class Route(Enum):
    INDEX = auto()
    STREAM = auto()
    NOT_FOUND = auto()


@dataclass(frozen=True)
class RequestLine:
    method: str
    path: str


def parse_request_line(data: bytes) -> Optional[RequestLine]:
    """Return method and path from the first request line, or None if malformed."""
    if not data:
        return None
    first_line = data.decode("utf-8", errors="replace").split("\r\n", 1)[0]
    tokens = first_line.split(" ")
    if len(tokens) < 2:
        return None
    return RequestLine(method=tokens[0], path=tokens[1])


def resolve_route(path: str) -> Route:
    if path == "/" or path.startswith("/index"):
        return Route.INDEX
    if path in STREAM_PATHS:
        return Route.STREAM
    return Route.NOT_FOUND


def index_response(html: str = INDEX_HTML) -> bytes:
    body = html.encode("utf-8")
    header = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n\r\n"
    ).encode("ascii")
    return header + body


def stream_response_header(boundary: bytes = DEFAULT_BOUNDARY) -> bytes:
    return (
        b"HTTP/1.1 200 OK\r\n"
        b"Content-Type: multipart/x-mixed-replace; boundary=" + boundary + b"\r\n"
        b"Cache-Control: no-cache\r\n"
        b"Connection: keep-alive\r\n\r\n"
    )


NOT_FOUND_RESPONSE = (
    b"HTTP/1.1 404 Not Found\r\n"
    b"Content-Type: text/plain\r\n"
    b"Connection: close\r\n\r\n"
    b"404 Not Found"
)


__all__ = [
    "INDEX_HTML",
    "NOT_FOUND_RESPONSE",
    "RequestLine",
    "Route",
    "STREAM_PATHS",
    "index_response",
    "parse_request_line",
    "resolve_route",
    "stream_response_header",
]
