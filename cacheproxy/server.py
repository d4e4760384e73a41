"""A threaded HTTP GET proxy that caches upstream responses."""

from __future__ import annotations

import contextlib
import logging
import re
import socket
import sys
import threading
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import NamedTuple

from cacheproxy.cache import LRUCache
from cacheproxy.parsing import ParsedRequest, ParseError

MAX_BYTES = 4096
MAX_CLIENTS = 400
DEFAULT_REMOTE_PORT = 80
SERVER_NAME = "cacheproxy"

log = logging.getLogger(__name__)


class _ErrorPage(NamedTuple):
    reason: str
    title: str
    heading: str
    extra: str = ""
    type_before_connection: bool = False


_ERROR_PAGES = {
    400: _ErrorPage("Bad Request", "400 Bad Request", "400 Bad Rqeuest"),
    403: _ErrorPage(
        "Forbidden", "403 Forbidden", "403 Forbidden", "<br>Permission Denied", True
    ),
    404: _ErrorPage("Not Found", "404 Not Found", "404 Not Found", "", True),
    500: _ErrorPage(
        "Internal Server Error", "500 Internal Server Error", "500 Internal Server Error"
    ),
    501: _ErrorPage("Not Implemented", "404 Not Implemented", "501 Not Implemented"),
    505: _ErrorPage(
        "HTTP Version Not Supported",
        "505 HTTP Version Not Supported",
        "505 HTTP Version Not Supported",
    ),
}


def error_response(status_code: int, now: datetime | None = None) -> bytes:
    """Build the complete error response for ``status_code``.

    Raises ``ValueError`` for a status code with no error page.
    """
    try:
        page = _ERROR_PAGES[status_code]
    except KeyError:
        raise ValueError(f"no error page for status {status_code}") from None
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    body = (
        f"<HTML><HEAD><TITLE>{page.title}</TITLE></HEAD>\n"
        f"<BODY><H1>{page.heading}</H1>{page.extra}\n</BODY></HTML>"
    )
    content_type = "Content-Type: text/html\r\n"
    connection = "Connection: keep-alive\r\n"
    middle = content_type + connection if page.type_before_connection else connection + content_type
    head = (
        f"HTTP/1.1 {status_code} {page.reason}\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"{middle}"
        f"Date: {format_datetime(moment, usegmt=True)}\r\n"
        f"Server: {SERVER_NAME}\r\n\r\n"
    )
    return (head + body).encode("latin-1")


def send_error_message(sock: socket.socket, status_code: int) -> None:
    """Send the error response for ``status_code`` over ``sock``."""
    response = error_response(status_code)
    log.info("%d %s", status_code, _ERROR_PAGES[status_code].reason)
    sock.sendall(response)


def check_http_version(version: str) -> bool:
    """Return whether the proxy supports this HTTP version (1.0 or 1.1)."""
    return version.startswith(("HTTP/1.1", "HTTP/1.0"))


def connect_remote_server(host: str, port: int) -> socket.socket:
    """Open a TCP connection to ``host``:``port``; raise ``OSError`` on failure."""
    try:
        address = socket.gethostbyname(host)
    except OSError:
        log.error("No such host exists: %s", host)
        raise
    try:
        return socket.create_connection((address, port))
    except OSError:
        log.error("Error in connecting to %s:%d", host, port)
        raise


def build_upstream_request(request: ParsedRequest) -> bytes:
    """Rewrite ``request`` into the origin-form request sent upstream.

    ``Connection: close`` is forced and ``Host`` is added when missing. If the
    headers do not fit in one buffer, only the request line is sent.
    """
    line = f"GET {request.path} {request.version}\r\n".encode("latin-1")
    request.set_header("Connection", "close")
    if request.get_header("Host") is None:
        request.set_header("Host", request.host)
    if len(line) + request.headers_len() > MAX_BYTES:
        log.warning("headers too long, sending request line only")
        return line
    return line + request.unparse_headers()


def _port_number(port: str | None) -> int:
    if port is None:
        return DEFAULT_REMOTE_PORT
    match = re.match(r"\s*[+-]?\d+", port)
    return int(match.group()) if match else 0


def handle_request(
    client: socket.socket,
    request: ParsedRequest,
    raw_request: bytes,
    cache: LRUCache,
) -> bytes:
    """Fetch ``request`` upstream, relay it to ``client`` and cache it.

    Returns the response bytes relayed. Raises ``OSError`` when the remote
    server cannot be reached.
    """
    upstream_request = build_upstream_request(request)
    response = bytearray()
    with connect_remote_server(request.host, _port_number(request.port)) as remote:
        try:
            remote.sendall(upstream_request)
            while chunk := remote.recv(MAX_BYTES - 1):
                client.sendall(chunk)
                response += chunk
        except OSError as exc:
            log.error("Error relaying response: %s", exc)
    cache.add(bytes(response), raw_request)
    log.info("Done")
    return bytes(response)


def read_request(client: socket.socket) -> bytes:
    """Read from ``client`` until the header block ends, the peer closes,
    or the request buffer is full."""
    buffer = bytearray()
    while len(buffer) < MAX_BYTES:
        chunk = client.recv(MAX_BYTES - len(buffer))
        if not chunk:
            break
        buffer += chunk
        if b"\r\n\r\n" in buffer:
            break
    return bytes(buffer)


def _serve_client(client: socket.socket, cache: LRUCache) -> None:
    data = read_request(client)
    raw_request = data.split(b"\0", 1)[0]

    cached = cache.find(raw_request) if data else None
    if cached is not None:
        client.sendall(cached.data)
        log.info("Data retrieved from the cache")
        return

    if b"\r\n\r\n" not in data:
        log.info("Client disconnected")
        return

    try:
        request = ParsedRequest.parse(raw_request)
    except ParseError as exc:
        log.info("Parsing failed: %s", exc)
        return

    if request.host and request.path and check_http_version(request.version):
        try:
            handle_request(client, request, raw_request, cache)
        except OSError:
            send_error_message(client, 500)
    else:
        send_error_message(client, 500)


def handle_client(
    client: socket.socket, cache: LRUCache, slots: threading.Semaphore
) -> None:
    """Serve one client connection, holding one of ``slots`` meanwhile.

    The client socket is always shut down and closed afterwards.
    """
    with slots:
        try:
            _serve_client(client, cache)
        except OSError as exc:
            log.error("Error serving client: %s", exc)
        finally:
            with contextlib.suppress(OSError):
                client.shutdown(socket.SHUT_RDWR)
            client.close()


def serve(port: int, cache: LRUCache | None = None) -> None:
    """Accept connections on ``port`` forever, one thread per client."""
    cache = cache if cache is not None else LRUCache()
    slots = threading.Semaphore(MAX_CLIENTS)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(("", port))
        log.info("Binding on port: %d", port)
        server.listen(MAX_CLIENTS)
        while True:
            client, (address, client_port) = server.accept()
            log.info(
                "Client is connected with port number: %d and ip address: %s",
                client_port,
                address,
            )
            threading.Thread(
                target=handle_client, args=(client, cache, slots), daemon=True
            ).start()


def main(argv: list[str] | None = None) -> int:
    """Run the proxy on the port given as the single argument."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("Too few arguments", file=sys.stderr)
        return 1
    try:
        port = int(args[0])
    except ValueError:
        print(f"Invalid port: {args[0]}", file=sys.stderr)
        return 1

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    print(f"Setting Proxy Server Port : {port}")
    try:
        serve(port)
    except KeyboardInterrupt:
        return 0
    except OSError as exc:
        print(f"Port is not free: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())