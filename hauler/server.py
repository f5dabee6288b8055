"""HTTP servers for store content and retry helpers for starting them."""

from __future__ import annotations

import http.server
import functools
import os
import ssl
import sys
import time
from typing import Callable, TypeVar

from hauler.flags import ServeFilesOpts

T = TypeVar("T")


class _LoggingHandler(http.server.SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: object) -> None:
        sys.stdout.write(
            "%s - - [%s] %s\n" % (self.address_string(), self.log_date_time_string(), format % args)
        )
        sys.stdout.flush()


class _FileServer:
    """Serves a directory over HTTP, optionally with TLS."""

    def __init__(self, root: str, port: int, timeout: int) -> None:
        self.root = root
        self.port = port
        self.timeout = timeout
        self.addr = f":{port}"
        self._httpd: http.server.ThreadingHTTPServer | None = None

    def _handler(self) -> Callable[..., http.server.BaseHTTPRequestHandler]:
        handler_cls = type("_TimedHandler", (_LoggingHandler,), {"timeout": self.timeout})
        return functools.partial(handler_cls, directory=os.path.abspath(self.root))

    def _bind(self) -> http.server.ThreadingHTTPServer:
        self._httpd = http.server.ThreadingHTTPServer(("", self.port), self._handler())
        return self._httpd

    def listen_and_serve(self) -> None:
        """Serve plain HTTP until shut down."""
        httpd = self._bind()
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def listen_and_serve_tls(self, cert_file: str, key_file: str) -> None:
        """Serve HTTPS with the given certificate and key until shut down."""
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(cert_file, key_file)
        httpd = self._bind()
        httpd.socket = context.wrap_socket(httpd.socket, server_side=True)
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def shutdown(self) -> None:
        """Stop a server started by one of the listen methods."""
        if self._httpd is not None:
            self._httpd.shutdown()


def new_file_server(opts: ServeFilesOpts) -> _FileServer:
    """Build a file server from options, filling in defaults for unset values."""
    return _FileServer(
        root=opts.root_dir or ".",
        port=opts.port or 8080,
        timeout=opts.timeout or 60,
    )


def retry(attempts: int, sleep: float, fn: Callable[[], T]) -> T:
    """Call fn until it succeeds, doubling the pause between attempts."""
    last: BaseException | None = None
    for attempt in range(attempts):
        if attempt > 0:
            time.sleep(sleep)
            sleep *= 2
        try:
            return fn()
        except Exception as exc:
            last = exc
    raise RuntimeError(f"after {attempts} attempts, last error: {last}") from last