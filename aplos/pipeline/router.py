"""Request routing between the health check and the static file tree."""

import enum
import urllib.parse


class Route(enum.Enum):
    """Logical routes exposed by the server."""

    HEALTHCHECK = "healthcheck"
    FILES = "files"


def resolve_route(path: str, healthcheck_endpoint: str) -> Route:
    """Route the request path to the health check or to the file server.

    The query string is ignored. An endpoint ending in ``/`` matches its whole
    subtree, any other endpoint only matches exactly. Every path that is not
    the health check falls through to the file server.
    """
    if not healthcheck_endpoint:
        return Route.FILES

    request_path = urllib.parse.urlsplit(path).path
    if healthcheck_endpoint.endswith("/"):
        if request_path.startswith(healthcheck_endpoint):
            return Route.HEALTHCHECK
    elif request_path == healthcheck_endpoint:
        return Route.HEALTHCHECK
    return Route.FILES
