import http
import typing as t
import wsgiref.headers
import wsgiref.types

from .errors import HijackNotSupported

Headers = wsgiref.headers.Headers

HIJACK_KEY = "tinyweb.hijack"
HIJACKED_KEY = "tinyweb.hijacked"
DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"


class BodyWriter(t.Protocol):
    def write(self, data: bytes, /) -> t.Any: ...


class Sink(t.Protocol):
    """The transport side of a response."""
    headers: Headers

    def write_header(self, status: int) -> None: ...
    def write(self, data: bytes) -> int: ...


def http_success(status: int) -> bool:
    return 100 <= status <= 399


def status_line(code: int) -> str:
    try:
        return f"{code} {http.HTTPStatus(code).phrase}"
    except ValueError:
        return f"{code} StatusPhraseUnknown"


class ResponseWriter:
    """Response wrapper with after-header hooks and stackable body writers.

    Hooks run exactly once, in registration order, right before the first
    status or body byte reaches the sink. Body writers installed through
    `wrap_body_writer` are closed in reverse order, since closing an outer
    writer may flush data into an inner one.
    """

    def __init__(self, sink: Sink):
        self.sink = sink
        self.status = 0
        self.body_writer: BodyWriter = sink
        self._after_headers: list[t.Callable[["ResponseWriter"], None]] = []
        self._closers: list[t.Any] = []
        self._triggered = False

    @property
    def header(self) -> Headers:
        return self.sink.headers

    @property
    def headers_sent(self) -> bool:
        return self._triggered

    def add_after_header_hook(self, f: t.Callable[["ResponseWriter"], None]):
        self._after_headers.append(f)

    def wrap_body_writer(self, wrap: t.Callable[[BodyWriter], BodyWriter]):
        self.body_writer = wrap(self.body_writer)
        if callable(getattr(self.body_writer, 'close', None)):
            self._closers.append(self.body_writer)

    def _trigger_after_headers(self):
        if self._triggered:
            return
        self._triggered = True  # set first: a hook may write
        for f in self._after_headers:
            f(self)

    def write_header(self, status: int):
        if not self._triggered:
            self.status = status
        self._trigger_after_headers()
        self.sink.write_header(status)

    def write(self, data: bytes) -> int:
        if not self._triggered:
            self.write_header(200)
        n = self.body_writer.write(data)
        return len(data) if n is None else n

    def close(self):
        first_err = None
        for closer in reversed(self._closers):
            try:
                closer.close()
            except Exception as ex:  # pylint: disable=broad-exception-caught
                first_err = first_err or ex
        self._closers.clear()
        if first_err is not None:
            raise first_err

    def success(self) -> bool:
        return http_success(self.status)

    def hijack(self) -> tuple[t.BinaryIO, t.BinaryIO]:
        """Take over the connection; returns its (reader, writer) streams."""
        hijack = getattr(self.sink, 'hijack', None)
        if hijack is None:
            raise HijackNotSupported()
        return hijack()


class WsgiSink:
    """Sink that turns writes into a WSGI start_response call and a body list."""

    def __init__(self, environ: wsgiref.types.WSGIEnvironment,
                 start_response: wsgiref.types.StartResponse):
        self.environ = environ
        self.start_response = start_response
        self.headers = Headers([])
        self.status: int | None = None
        self.chunks: list[bytes] = []
        self.discard_body = environ.get('REQUEST_METHOD') == 'HEAD'

    def _apply_default_headers(self):
        self.headers.setdefault('Content-Type', DEFAULT_CONTENT_TYPE)

    def write_header(self, status: int):
        if self.status is not None or self.hijacked:
            return  # first status wins
        self.status = status
        self._apply_default_headers()
        self.start_response(status_line(status), self.headers.items())

    def write(self, data: bytes) -> int:
        if self.status is None:
            self.write_header(200)
        if data and not self.discard_body and not self.hijacked:
            self.chunks.append(bytes(data))
        return len(data)

    @property
    def hijacked(self) -> bool:
        return bool(self.environ.get(HIJACKED_KEY))

    def hijack(self):
        hijack = self.environ.get(HIJACK_KEY)
        if hijack is None:
            raise HijackNotSupported()
        self.environ[HIJACKED_KEY] = True
        return hijack()

    def body(self) -> t.Iterable[bytes]:
        if self.hijacked:
            return []
        if self.status is None:
            self.write_header(200)
        return self.chunks
