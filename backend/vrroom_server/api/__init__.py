"""
API module for VRroom Server.

This module provides the flat REST surface used by game clients. The
versioned /v1 resource surface lives in the vrroom_gateway package.

Both surfaces share the same Services instance.

Invariants:
    - Every authenticated route validates a bearer token
    - Errors render as {"success": false, "error": "..."}

How to change safely:
    - Add new flat routes in http_server.build_route_table()
    - Keep path patterns to literal segments and {name} placeholders
"""

from .http_server import build_route_table, create_http_app, run_http_server
from .routing import Route, RouteMatch, RouteTable, match_path, normalize_path

__all__ = [
    "Route",
    "RouteMatch",
    "RouteTable",
    "build_route_table",
    "create_http_app",
    "match_path",
    "normalize_path",
    "run_http_server",
]
