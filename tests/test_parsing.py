import pytest

from cacheproxy.parsing import (
    MAX_REQUEST_LEN,
    ParsedHeader,
    ParsedRequest,
    ParseError,
)

EXAMPLE = (
    b"GET http://www.google.com:80/index.html/ HTTP/1.0\r\n"
    b"Content-Length: 80\r\n"
    b"If-Modified-Since: Sat, 29 Oct 1994 19:43:31 GMT\r\n\r\n"
)


@pytest.fixture
def example():
    return ParsedRequest.parse(EXAMPLE)


def test_example_request_line(example):
    assert example.method == "GET"
    assert example.protocol == "http"
    assert example.host == "www.google.com"
    assert example.port == "80"
    assert example.path == "/index.html/"
    assert example.version == "HTTP/1.0"


def test_example_headers(example):
    assert example.get_header("Content-Length") == ParsedHeader("Content-Length", "80")
    header = example.get_header("If-Modified-Since")
    assert header.value == "Sat, 29 Oct 1994 19:43:31 GMT"
    assert [h.key for h in example.headers] == ["Content-Length", "If-Modified-Since"]


def test_unparse_round_trip(example):
    assert example.unparse() == EXAMPLE
    assert example.total_len() == len(EXAMPLE)


def test_unparse_headers_matches_tail(example):
    headers = example.unparse_headers()
    assert EXAMPLE.endswith(headers)
    assert len(headers) == example.headers_len()
    assert headers.endswith(b"\r\n\r\n")


def test_parse_accepts_str():
    request = ParsedRequest.parse(EXAMPLE.decode("latin-1"))
    assert request.unparse() == EXAMPLE


def test_no_port_and_root_path():
    data = b"GET http://example.com/ HTTP/1.1\r\n\r\n"
    request = ParsedRequest.parse(data)
    assert request.port is None
    assert request.path == "/"
    assert request.headers == []
    assert request.unparse_headers() == b"\r\n"
    assert request.headers_len() == 2
    assert request.unparse() == data


def test_get_missing_header_returns_none(example):
    assert example.get_header("Host") is None
    assert example.get_header("content-length") is None


def test_remove_header(example):
    example.remove_header("If-Modified-Since")
    assert example.get_header("If-Modified-Since") is None
    assert [h.key for h in example.headers] == ["Content-Length"]


def test_remove_missing_header_raises(example):
    with pytest.raises(KeyError):
        example.remove_header("Last-Modified")


def test_set_header_adds_and_reports_value(example):
    example.set_header("Last-Modified", " Wed, 12 Feb 2014 12:43:31 GMT")
    assert example.get_header("Last-Modified").value == " Wed, 12 Feb 2014 12:43:31 GMT"
    assert example.headers[-1].key == "Last-Modified"


def test_set_header_replaces_and_moves_to_end(example):
    example.set_header("Content-Length", "0")
    assert [h.key for h in example.headers] == ["If-Modified-Since", "Content-Length"]
    assert example.get_header("Content-Length").value == "0"
    assert len(example.headers) == 2


def test_lengths_follow_modifications(example):
    example.set_header("Connection", "close")
    assert example.total_len() == len(example.unparse())
    assert example.headers_len() == len(example.unparse_headers())
    assert b"Connection: close\r\n\r\n" in example.unparse()


@pytest.mark.parametrize(
    "data",
    [
        b"POST http://example.com/ HTTP/1.1\r\n\r\n",
        b"GET http://example.com/ HTTP/1.1\r\n",
        b"GET http://example.com HTTP/1.1\r\n\r\n",
        b"GET http://example.com//x HTTP/1.1\r\n\r\n",
        b"GET http://example.com/ FTP/1.1\r\n\r\n",
        b"GET http://example.com/\r\n\r\n",
        b"GET\r\n\r\n",
        b"\r\n\r\n",
        b"GET",
        b"GET http://example.com/ HTTP/1.1\r\nNoColonHere\r\n\r\n",
    ],
)
def test_invalid_requests_raise(data):
    with pytest.raises(ParseError):
        ParsedRequest.parse(data)


def _request_of_length(length):
    head = b"GET http://example.com/ HTTP/1.1\r\nX: "
    tail = b"\r\n\r\n"
    return head + b"a" * (length - len(head) - len(tail)) + tail


def test_maximum_length_accepted():
    data = _request_of_length(MAX_REQUEST_LEN)
    request = ParsedRequest.parse(data)
    assert request.unparse() == data


def test_over_maximum_length_rejected():
    with pytest.raises(ParseError):
        ParsedRequest.parse(_request_of_length(MAX_REQUEST_LEN + 1))


def test_parse_error_is_value_error():
    with pytest.raises(ValueError):
        ParsedRequest.parse(b"PUT http://example.com/ HTTP/1.1\r\n\r\n")


def test_header_value_may_contain_colon():
    data = b"GET http://example.com:8080/a/b HTTP/1.1\r\nHost: example.com:8080\r\n\r\n"
    request = ParsedRequest.parse(data)
    assert request.get_header("Host").value == "example.com:8080"
    assert request.port == "8080"
    assert request.path == "/a/b"
    assert request.unparse() == data