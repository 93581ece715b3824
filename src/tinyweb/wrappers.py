"""Wrappers: functions that sit between the dispatcher and a handler.

A wrapper is called as ``wrapper(inner, ctx)`` and is responsible for calling
``inner(ctx)`` itself (or not). It returns the error result just like a
handler does.
"""
import gzip
import os.path
import typing as t
import zlib

from . import util
from .context import Context
from .response import DEFAULT_CONTENT_TYPE, BodyWriter, ResponseWriter

SimpleHandler = t.Callable[[Context], BaseException | None]
Wrapper = t.Callable[[SimpleHandler, Context], BaseException | None]
PreModule = t.Callable[[Context], BaseException | None]

# a mime type sharing a prefix with any of these is compressed
COMPRESSIBLE_PREFIXES = (
    "text/",
    "application/json",
    "application/xml",
    "application/javascript",
)


def wrap_handler(wrapper: Wrapper, inner: SimpleHandler) -> SimpleHandler:
    def wrapped(ctx: Context) -> BaseException | None:
        return wrapper(inner, ctx)
    return wrapped


def chain(wrappers: t.Sequence[Wrapper], handler: SimpleHandler) -> SimpleHandler:
    """Apply wrappers so that the first one is outermost."""
    for wrapper in reversed(wrappers):
        handler = wrap_handler(wrapper, handler)
    return handler


def pre_module(f: PreModule) -> Wrapper:
    """Wrapper that runs `f` first and stops at the first error it returns."""
    def wrapper(inner: SimpleHandler, ctx: Context):
        if (err := f(ctx)) is not None:
            return err
        return inner(ctx)
    wrapper.__wrapped__ = f  # type: ignore[attr-defined]
    return wrapper


def compressible(ctype: str) -> bool:
    return ctype.startswith(COMPRESSIBLE_PREFIXES)


class DeflateWriter:
    """zlib stream writer in front of another body writer."""

    def __init__(self, out: BodyWriter, level: int = zlib.Z_DEFAULT_COMPRESSION):
        self.out = out
        self._z = zlib.compressobj(level)

    def write(self, data: bytes) -> int:
        if chunk := self._z.compress(data):
            self.out.write(chunk)
        return len(data)

    def close(self):
        self.out.write(self._z.flush())


class GzipWriter:
    """gzip writer that emits nothing until the first write or close."""

    def __init__(self, out: BodyWriter):
        self.out = out
        self._gz: gzip.GzipFile | None = None

    def _file(self) -> gzip.GzipFile:
        if self._gz is None:
            self._gz = gzip.GzipFile(fileobj=self.out, mode="wb")  # type: ignore[arg-type]
        return self._gz

    def write(self, data: bytes) -> int:
        return self._file().write(data)

    def close(self):
        self._file().close()


def accepted_encodings(header: str) -> set[str]:
    """Content codings named in an Accept-Encoding header, minus those with q=0."""
    names = set()
    for item in util.parse_header_list(header):
        name, opts = util.parse_header_options(item)
        try:
            if float(opts.get('q', 1)) <= 0:
                continue
        except ValueError:
            pass
        names.add(name.lower())
    return names


def compress_response(w: ResponseWriter, ctx: Context):
    """Switch to a compressing body writer if the client and content allow.

    Must run after the handler has set its headers but before they go out,
    which is what after-header hooks are for.
    """
    if not compressible(w.header.get('Content-Type') or DEFAULT_CONTENT_TYPE):
        return
    if w.header.get('Content-Encoding'):
        return  # do not re-encode
    accept = accepted_encodings(ctx.request.headers.get('Accept-Encoding', ''))
    if 'gzip' in accept:
        w.wrap_body_writer(GzipWriter)
        w.header['Content-Encoding'] = 'gzip'
    elif 'deflate' in accept:
        w.wrap_body_writer(DeflateWriter)
        w.header['Content-Encoding'] = 'deflate'
    else:
        return
    del w.header['Content-Length']


def compress_wrapper(inner: SimpleHandler, ctx: Context):
    """Compress response data when the client wants it and the type suits."""
    ctx.response.add_after_header_hook(lambda w: compress_response(w, ctx))
    return inner(ctx)


def guess_mimetype_wrapper(inner: SimpleHandler, ctx: Context):
    """Set Content-Type from the request path when the handler did not."""
    def guess(w: ResponseWriter):
        if not w.success() or w.header.get('Content-Type'):
            return
        if ext := os.path.splitext(ctx.request.path)[1]:
            ctx.content_type(ext)
    ctx.response.add_after_header_hook(guess)
    return inner(ctx)
