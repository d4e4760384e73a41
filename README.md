# cacheproxy

A small threaded HTTP forward proxy that keeps fetched responses in an
in-memory, least-recently-used cache.

The proxy accepts absolute-form `GET` requests such as

    GET http://www.example.com/index.html HTTP/1.1

rewrites them into origin form (`GET /index.html HTTP/1.1`), forces
`Connection: close`, adds a `Host` header when the client sent none,
forwards the request to the origin server, relays the response back to the
client and stores it. A later request whose head is byte for byte the same
is answered straight from the cache.

If the origin server cannot be reached, or the request uses an HTTP version
other than 1.0 or 1.1, the client receives a `500 Internal Server Error`
page.

## Running

    pip install .
    cacheproxy 8080

The single argument is the port to listen on. Without exactly one argument
the command prints `Too few arguments` and exits with status 1; a port that
is not a number is reported as invalid, also with status 1. Up to 400
clients are served at the same time, each on its own thread. Progress is
logged to standard error.

Point a client at the proxy, for example:

    curl -x http://localhost:8080 http://www.example.com/

The same server can be started from Python with
`cacheproxy.server.serve(port)`, optionally passing your own
`LRUCache` as the second argument.

## Cache limits

- the whole cache holds at most 200 MiB;
- one entry may be at most 10 MiB; larger responses are passed through
  but not stored;
- when space runs out, the least recently used entries are evicted.

## Using the parts as a library

`cacheproxy.parsing.ParsedRequest` parses a request head:

```python
from cacheproxy.parsing import ParsedRequest, ParseError

raw = (
    b"GET http://www.example.com:80/index.html/ HTTP/1.0\r\n"
    b"Content-Length: 80\r\n"
    b"If-Modified-Since: Sat, 29 Oct 1994 19:43:31 GMT\r\n\r\n"
)
request = ParsedRequest.parse(raw)
request.method                       # "GET"
request.host                         # "www.example.com"
request.port                         # "80"
request.path                         # "/index.html/"
request.get_header("Content-Length").value   # "80"

request.remove_header("If-Modified-Since")   # KeyError if absent
request.set_header("Connection", "close")
request.unparse()                    # the rebuilt request head as bytes
request.unparse_headers()            # only the headers and the blank line
```

Malformed requests, and methods other than `GET`, raise `ParseError`.

`cacheproxy.cache.LRUCache` is the thread-safe cache the server uses. Keys
and data are bytes:

```python
from cacheproxy.cache import LRUCache

cache = LRUCache()
key = b"GET http://www.example.com/ HTTP/1.1\r\n\r\n"
cache.add(b"HTTP/1.1 200 OK\r\n\r\nhello", key)   # False if too large
element = cache.find(key)            # None when not cached
element.data                         # b"HTTP/1.1 200 OK\r\n\r\nhello"
key in cache                         # True
len(cache)                           # 1
cache.remove_oldest()                # evicts the least recently used entry
```

`LRUCache` takes `max_size`, `max_element_size` and a `clock` function as
keyword arguments.

## What it does not do

- Only `GET` is handled. Other methods, including `CONNECT`, are not
  proxied; such connections are closed without a response, so HTTPS
  through the proxy does not work.
- The cache lives in memory only and is lost when the process stops.
- Cached entries never expire, and `Cache-Control` and similar headers are
  not honoured.

## Tests

    pip install .[test]
    pytest