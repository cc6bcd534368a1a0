"""
Stream - MJPEG Fan-out and HTTP Control
=======================================

Latest-frame publisher, route table, control endpoint and HTTP server.
"""

from cupertino_tld.stream.publisher import LatestFramePublisher, PublishedFrame
from cupertino_tld.stream.routes import Request, Route, RouteTable
from cupertino_tld.stream.control import ControlEndpoint, ControlResponse
from cupertino_tld.stream.server import ConnectionState, StreamServer, build_frame_chunk

__all__ = [
    "ConnectionState",
    "ControlEndpoint",
    "ControlResponse",
    "LatestFramePublisher",
    "PublishedFrame",
    "Request",
    "Route",
    "RouteTable",
    "StreamServer",
    "build_frame_chunk",
]
