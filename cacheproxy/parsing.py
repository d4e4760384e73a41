"""Parsing and re-serialising of proxied HTTP GET requests."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache

MIN_REQUEST_LEN = 4
MAX_REQUEST_LEN = 65535
ROOT_PATH = "/"
ENCODING = "latin-1"


class ParseError(ValueError):
    """Raised when a request buffer cannot be parsed."""


@dataclass(frozen=True)
class ParsedHeader:
    """A single ``key: value`` header line."""

    key: str
    value: str

    @property
    def line_len(self) -> int:
        """Length of the header once written as ``key: value\\r\\n``."""
        return len(self.key) + len(self.value) + 4


@lru_cache(maxsize=None)
def _token_pattern(delims: str) -> re.Pattern[str]:
    d = re.escape(delims)
    return re.compile(rf"[{d}]*([^{d}]+)[{d}]?")


def _next_token(text: str, pos: int, delims: str) -> tuple[str | None, int]:
    """Take the next token made of characters not in ``delims``.

    Leading delimiters are skipped and one trailing delimiter is consumed.
    Returns the token (or ``None`` when only delimiters remain) and the
    position at which scanning continues.
    """
    match = _token_pattern(delims).match(text, pos)
    if match is None:
        return None, len(text)
    return match.group(1), match.end()


def _to_text(data: bytes | bytearray | str) -> tuple[str, int]:
    if isinstance(data, str):
        try:
            raw = data.encode(ENCODING)
        except UnicodeEncodeError as exc:
            raise ParseError("request is not representable as bytes") from exc
    else:
        raw = bytes(data)
    return raw.decode(ENCODING), len(raw)


@dataclass
class ParsedRequest:
    """An HTTP GET request with an absolute URI, split into its parts."""

    method: str
    protocol: str
    host: str
    path: str
    version: str
    port: str | None = None
    headers: list[ParsedHeader] = field(default_factory=list)

    @classmethod
    def parse(cls, data: bytes | bytearray | str) -> ParsedRequest:
        """Parse a request buffer ending with the blank line ``\\r\\n\\r\\n``."""
        text, length = _to_text(data)
        if length < MIN_REQUEST_LEN or length > MAX_REQUEST_LEN:
            raise ParseError(f"invalid buffer length {length}")
        # Only the part up to the first NUL byte takes part in parsing.
        text = text.split("\0", 1)[0]

        if "\r\n\r\n" not in text:
            raise ParseError("invalid request line, no end of header")

        line_end = text.find("\r\n")
        line = text[:line_end]

        method, pos = _next_token(line, 0, " ")
        if method is None:
            raise ParseError("invalid request line, no whitespace")
        if method != "GET":
            raise ParseError(f"invalid request line, method not 'GET': {method}")

        full_addr, pos = _next_token(line, pos, " ")
        if full_addr is None:
            raise ParseError("invalid request line, no full address")

        version = line[pos:]
        if not version.startswith("HTTP/"):
            raise ParseError(f"invalid request line, unsupported version {version}")

        protocol, addr_pos = _next_token(full_addr, 0, ":/")
        if protocol is None:
            raise ParseError("invalid request line, missing host")
        remainder = full_addr[len(protocol) + len("://"):]

        host_part, addr_pos = _next_token(full_addr, addr_pos, "/")
        if host_part is None:
            raise ParseError("invalid request line, missing host")
        if len(host_part) == len(remainder):
            raise ParseError("invalid request line, missing absolute path")

        path_token, _ = _next_token(full_addr, addr_pos, " ")
        if path_token is None:
            path = ROOT_PATH
        elif path_token.startswith(ROOT_PATH):
            raise ParseError(
                "invalid request line, path cannot begin with two slash characters"
            )
        else:
            path = ROOT_PATH + path_token

        host, host_pos = _next_token(host_part, 0, ":")
        if host is None:
            raise ParseError("invalid request line, missing host")
        port, _ = _next_token(host_part, host_pos, "/")

        request = cls(
            method=method,
            protocol=protocol,
            host=host,
            path=path,
            version=version,
            port=port,
        )
        request._parse_headers(text, line_end + 2)
        return request

    def _parse_headers(self, text: str, pos: int) -> None:
        while pos < len(text) and not text.startswith("\r\n", pos):
            colon = text.find(":", pos)
            if colon == -1:
                raise ParseError("no colon found in header")
            value_start = colon + 2
            value_end = text.find("\r\n", value_start)
            if value_end == -1:
                raise ParseError("header value is not terminated")
            self.set_header(text[pos:colon], text[value_start:value_end])

            next_line = text.find("\r\n", pos)
            if next_line == -1:
                break
            pos = next_line + 2

    def get_header(self, key: str) -> ParsedHeader | None:
        """Return the header named ``key``, or ``None`` when absent."""
        return next((h for h in self.headers if h.key == key), None)

    def remove_header(self, key: str) -> None:
        """Remove the header named ``key``; raise ``KeyError`` when absent."""
        header = self.get_header(key)
        if header is None:
            raise KeyError(key)
        self.headers.remove(header)

    def set_header(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``, replacing any header with that key.

        The header is placed after all the others.
        """
        header = self.get_header(key)
        if header is not None:
            self.headers.remove(header)
        self.headers.append(ParsedHeader(key, value))

    def _request_line(self) -> str:
        port = f":{self.port}" if self.port is not None else ""
        return (
            f"{self.method} {self.protocol}://{self.host}{port}"
            f"{self.path} {self.version}\r\n"
        )

    def _headers_text(self) -> str:
        lines = "".join(f"{h.key}: {h.value}\r\n" for h in self.headers)
        return lines + "\r\n"

    def headers_len(self) -> int:
        """Length of the headers and the trailing blank line."""
        return sum(h.line_len for h in self.headers) + 2

    def total_len(self) -> int:
        """Length of the request line, the headers and the blank line."""
        return len(self._request_line()) + self.headers_len()

    def unparse(self) -> bytes:
        """Serialise the whole request: request line, headers, blank line."""
        return (self._request_line() + self._headers_text()).encode(ENCODING)

    def unparse_headers(self) -> bytes:
        """Serialise the headers and the trailing blank line only."""
        return self._headers_text().encode(ENCODING)