"""tinyweb is a small regex-routed web framework for Python WSGI.

Handlers are plain functions. They may take the request Context as their
first argument and one argument per capture group of their route, and they
may return nothing, an error, a body (str, bytes, a readable or anything with
``write_to``) or a ``(body, error)`` pair. The framework adapts each shape to
one calling convention, runs it inside a chain of wrappers, and renders
`HttpError` results as responses.

The module-level functions operate on `default_server`, so a complete
application can be::

    import tinyweb

    @tinyweb.get(r"/hello/(\\w+)")
    def hello(name):
        return "hello " + name

    tinyweb.run("0.0.0.0:9999")
"""

from .context import CANNOT_SERIALIZE, Context, Params, Request
from .core import WEBSOCKET, Route, Server, ServerConfig
from .errors import (CookieError, FormError, HijackNotSupported, HttpError,
                     InvalidKey, MissingSecret)
from .handler import HttpHandler
from .logger import AccessLogger, default_access_logger
from .response import ResponseWriter, WsgiSink
from .session import Flash, MemorySessionStore, SessionStore
from .util import Cookie, new_cookie
from .ws import WebSocket
from .wrappers import compress_wrapper, guess_mimetype_wrapper

default_server = Server()
config = default_server.config

get = default_server.get
post = default_server.post
put = default_server.put
delete = default_server.delete
match = default_server.match
handle = default_server.handle
websocket = default_server.websocket
add_wrapper = default_server.add_wrapper
add_pre_module = default_server.add_pre_module
set_logger = default_server.set_logger
set_xsrf_option = default_server.set_xsrf_option
run = default_server.run
run_tls = default_server.run_tls
run_secure = default_server.run_secure
run_scgi = default_server.run_scgi
run_fcgi = default_server.run_fcgi
close = default_server.close
