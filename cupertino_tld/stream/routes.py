"""
Route Table
===========

Explicit (method, path) -> Route resolution for the HTTP surface.

Request parsing produces a tagged Request before any handler runs, so
handlers never look at raw request lines.

Routes (prefix default "/local/tld/api"):
    POST    {prefix}/save_config   upload a configuration document
    OPTIONS {prefix}/save_config   CORS pre-flight, empty acknowledgment
    GET     {prefix}/config        current configuration document
    GET     {prefix}/stream        MJPEG stream of annotated frames
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple
from urllib.parse import urlsplit


class Route(Enum):
    """Request variants the server dispatches on"""

    UPLOAD_CONFIG = "upload_config"
    PREFLIGHT = "preflight"
    GET_CONFIG = "get_config"
    STREAM = "stream"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    NOT_FOUND = "not_found"

    @property
    def is_control(self) -> bool:
        return self in (Route.UPLOAD_CONFIG, Route.PREFLIGHT, Route.GET_CONFIG)


@dataclass(frozen=True)
class Request:
    """Parsed request, tagged with its route"""

    route: Route
    method: str
    path: str
    body: bytes = b""


def normalize_prefix(prefix: str) -> str:
    """
    Examples:
        >>> normalize_prefix("local/tld/api/")
        '/local/tld/api'
        >>> normalize_prefix("/")
        ''
    """
    stripped = prefix.strip().strip("/")
    return f"/{stripped}" if stripped else ""


class RouteTable:
    """
    Resolves request method and target to a Route.

    Query strings and a trailing slash are ignored; method matching is
    exact (upper-case, as sent on the request line).

    Example:
        >>> table = RouteTable("/local/tld/api")
        >>> table.resolve("GET", "/local/tld/api/stream?t=123")
        <Route.STREAM: 'stream'>
        >>> table.resolve("DELETE", "/local/tld/api/stream")
        <Route.METHOD_NOT_ALLOWED: 'method_not_allowed'>
    """

    def __init__(self, prefix: str = "/local/tld/api"):
        self.prefix = normalize_prefix(prefix)
        self._routes: Dict[Tuple[str, str], Route] = {
            ("POST", self.path_for("save_config")): Route.UPLOAD_CONFIG,
            ("OPTIONS", self.path_for("save_config")): Route.PREFLIGHT,
            ("GET", self.path_for("config")): Route.GET_CONFIG,
            ("GET", self.path_for("stream")): Route.STREAM,
        }
        self._paths = {path for _, path in self._routes}

    def path_for(self, name: str) -> str:
        return f"{self.prefix}/{name}"

    def resolve(self, method: str, target: str) -> Route:
        path = urlsplit(target).path
        if len(path) > 1:
            path = path.rstrip("/")

        route = self._routes.get((method, path))
        if route is not None:
            return route
        if path in self._paths:
            return Route.METHOD_NOT_ALLOWED
        return Route.NOT_FOUND

    def allowed_methods(self, target: str) -> Tuple[str, ...]:
        """Methods registered for a path (used for the Allow header)."""
        path = urlsplit(target).path.rstrip("/")
        return tuple(sorted(method for method, p in self._routes if p == path))
