"""WSGI adapter for the request handler."""

from http import HTTPStatus
from typing import Callable, Iterable

from .handler import RequestHandler


def make_wsgi_app(handler: RequestHandler) -> Callable:
    """Wrap handler as a WSGI application serving a single endpoint."""

    def app(environ, start_response) -> Iterable[bytes]:
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        raw = environ["wsgi.input"].read(length) if length > 0 else b""

        response = handler.handle(environ.get("REQUEST_METHOD", "GET"), raw)
        payload = response.json().encode("utf-8")

        try:
            reason = HTTPStatus(response.status_code).phrase
        except ValueError:
            reason = "Unknown"
        headers = list(response.headers.items())
        headers.append(("Content-Length", str(len(payload))))
        start_response(f"{response.status_code} {reason}", headers)
        return [payload]

    return app
