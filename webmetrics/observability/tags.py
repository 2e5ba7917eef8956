from __future__ import annotations

from typing import Any, Final, Mapping

URI_ROOT: Final = "root"
URI_NOT_FOUND: Final = "NOT_FOUND"
URI_REDIRECTION: Final = "REDIRECTION"
URI_UNKNOWN: Final = "UNKNOWN"

STATUS_CLIENT_ERROR: Final = "CLIENT_ERROR"
EXCEPTION_NONE: Final = "none"


def uri_tag(template: str | None, status: int | None) -> str:
    """
    Bound the cardinality of the `uri` tag.
    - 404s collapse to NOT_FOUND and template-less 3xx to REDIRECTION.
    - "/" becomes "root".
    - Otherwise the route template is used as-is, never the interpolated path.
    - No template at all falls back to UNKNOWN.
    """

    if status == 404:
        return URI_NOT_FOUND
    if not template:
        if status is not None and 300 <= status < 400:
            return URI_REDIRECTION
        return URI_UNKNOWN
    if template == "/":
        return URI_ROOT
    return template


def route_template(scope: Mapping[str, Any]) -> str | None:
    # FastAPI/Starlette put the matched route on the scope during routing.
    route = scope.get("route")
    path = getattr(route, "path_format", None) or getattr(route, "path", None)
    return path if isinstance(path, str) else None


def host_tag(scope: Mapping[str, Any]) -> str:
    for key, value in scope.get("headers") or ():
        if key.lower() == b"host":
            host = value.decode("latin-1")
            if host.startswith("["):
                return host.split("]", 1)[0] + "]"
            return host.rsplit(":", 1)[0] if ":" in host else host
    server = scope.get("server")
    if server and server[0]:
        return str(server[0])
    return "unknown"


def exception_tag(exc: BaseException | None) -> str:
    return type(exc).__name__ if exc is not None else EXCEPTION_NONE

