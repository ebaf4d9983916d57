"""Health check handler."""

from http import HTTPStatus
from http.server import BaseHTTPRequestHandler

HEALTHCHECK_BODY = b"OK"


def handle_healthcheck(handler: BaseHTTPRequestHandler) -> None:
    """Answer any method on the health check endpoint with 200 OK."""
    handler.send_response(HTTPStatus.OK)
    handler.send_header("Content-Type", "text/plain; charset=utf-8")
    handler.send_header("Content-Length", str(len(HEALTHCHECK_BODY)))
    if handler.close_connection:
        handler.send_header("Connection", "close")
    handler.end_headers()
    if handler.command != "HEAD":
        handler.wfile.write(HEALTHCHECK_BODY)
