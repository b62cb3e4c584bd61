"""
Route table for the flat REST surface.

Routes are (method, pattern) pairs. A pattern is a literal path whose
segments may be "{name}" placeholders:

    /user/{id}/friend   matches   /user/3f2c.../friend

Matching strips the query string and one trailing slash, splits on "/",
and requires the same number of segments; placeholders match any single
segment and are returned as params. There are no wildcards and no regex.

Invariants:
    - Routes are tried in registration order; the first match wins
    - A path with a different segment count never matches
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class Route:
    method: str
    pattern: str
    handler: Handler

    @property
    def segments(self) -> list[str]:
        return self.pattern.split("/")


@dataclass(frozen=True)
class RouteMatch:
    route: Route
    params: dict[str, str]

    @property
    def handler(self) -> Handler:
        return self.route.handler


def normalize_path(path: str) -> str:
    """Strip the query string and a trailing slash."""
    path = path.split("?", 1)[0]
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


def match_path(pattern: str, path: str) -> dict[str, str] | None:
    """Positionally match a path against a pattern.

    Returns:
        Placeholder values by name, or None if the path does not match
    """
    pattern_parts = pattern.split("/")
    path_parts = normalize_path(path).split("/")
    if len(pattern_parts) != len(path_parts):
        return None

    params: dict[str, str] = {}
    for expected, actual in zip(pattern_parts, path_parts):
        if expected.startswith("{") and expected.endswith("}"):
            params[expected[1:-1]] = actual
        elif expected != actual:
            return None
    return params


class RouteTable:
    """Ordered (method, pattern) -> handler table.

    Example:
        >>> table = RouteTable()
        >>> table.add("GET", "/user/{id}", handle_get_user)
        >>> table.match("GET", "/user/42?x=1").params
        {'id': '42'}
    """

    def __init__(self) -> None:
        self._routes: list[Route] = []

    def add(self, method: str, pattern: str, handler: Handler) -> None:
        self._routes.append(Route(method.upper(), pattern, handler))

    def match(self, method: str, path: str) -> RouteMatch | None:
        method = method.upper()
        for route in self._routes:
            if route.method != method:
                continue
            params = match_path(route.pattern, path)
            if params is not None:
                return RouteMatch(route, params)
        return None

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self):
        return iter(self._routes)
