import hashlib
import mimetypes
import os
import sys

from . import util
from .context import Context

CHUNK_SIZE = 64 * 1024
INDEX_FILES = ("index.html", "index.htm")


def default_static_dir() -> str:
    root = os.path.dirname(os.path.abspath(sys.argv[0] if sys.argv[0] else "."))
    return os.path.join(root, "static")


def resolve(root: str, path: str) -> str | None:
    """Filesystem path of `path` under `root`, or None if it escapes."""
    root = os.path.realpath(root)
    full = os.path.realpath(os.path.join(root, path.lstrip('/')))
    if full != root and not full.startswith(root + os.sep):
        return None
    return full


def find_file(root: str, path: str) -> str | None:
    full = resolve(root, path)
    if full is None or not os.path.isfile(full):
        return None
    return full


def find_index(root: str, path: str) -> str | None:
    base = resolve(root, path)
    if base is None:
        return None
    for name in INDEX_FILES:
        if os.path.isfile(candidate := os.path.join(base, name)):
            return candidate
    return None


def _is_text(chunk: bytes) -> bool:
    try:
        text = chunk.decode('utf-8')
    except UnicodeDecodeError as ex:
        # a multi-byte rune cut off at the end of the chunk is fine
        if ex.start < len(chunk) - 3:
            return False
        text = chunk[:ex.start].decode('utf-8')
    return all(c in '\n\r\t' or (c >= ' ' and not 0x7f <= ord(c) <= 0x9f)
               for c in text)


def _etag(name: str, st: os.stat_result) -> str:
    key = f"{name}|{st.st_size}|{st.st_mtime_ns}".encode('utf-8')
    return '"%s"' % hashlib.md5(key, usedforsecurity=False).hexdigest()


def serve_file(ctx: Context, name: str):
    """Send the file at `name` with caching headers."""
    try:
        f = open(name, 'rb')
    except OSError:
        ctx.abort(404, "Invalid file")
        return
    with f:
        st = os.fstat(f.fileno())
        etag = _etag(name, st)
        ctx.header['Last-Modified'] = util.web_time(st.st_mtime)
        ctx.header['ETag'] = etag

        first = b''
        if mimetypes.guess_type(name)[0]:
            ctx.content_type(os.path.splitext(name)[1])
        else:
            first = f.read(1024)
            ctx.header['Content-Type'] = ('text/plain; charset=utf-8' if _is_text(first)
                                          else 'application/octet-stream')

        headers = ctx.request.headers
        if (inm := headers.get('If-None-Match')) and inm == etag:
            ctx.not_modified()
            return
        if ims := headers.get('If-Modified-Since'):
            since = util.parse_web_time(ims)
            if since is not None and since >= int(st.st_mtime):
                ctx.not_modified()
                return

        ctx.header['Content-Length'] = str(st.st_size)
        if first:
            ctx.write(first)
        while chunk := f.read(CHUNK_SIZE):
            ctx.write(chunk)
