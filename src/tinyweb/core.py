import logging
import re
import ssl
import threading
import typing as t
import wsgiref.types
from dataclasses import dataclass

from . import cookie, handler as handlers, serve, static, util, wrappers, ws, xsrf
from .context import Context, Params, Request
from .errors import HttpError
from .logger import AccessLogger, AccessLoggerFactory, default_access_logger
from .response import ResponseWriter, Sink, WsgiSink
from .session import MemorySessionStore, SessionStore

WSGIApplication = wsgiref.types.WSGIApplication

SERVER_NAME = "tinyweb"
WEBSOCKET = "WEBSOCKET"


@dataclass(kw_only=True)
class ServerConfig:
    static_dir: str | None = None  # None: "static" beside the main script
    cookie_secret: str = ""
    recover_panic: bool = True
    profiler: bool = False
    color_output: bool = True


@dataclass
class Route:
    method: str
    pattern: re.Pattern[str]
    handler: handlers.AdaptedHandler | None = None
    wsgi_app: WSGIApplication | None = None

    def matches_method(self, request: Request) -> bool:
        if request.method == self.method:
            return True
        if request.method == "HEAD" and self.method == "GET":
            return True
        return (self.method == WEBSOCKET
                and request.headers.get("Upgrade", "").lower() == "websocket")

    def match(self, request: Request) -> tuple[str, ...] | None:
        """Captured groups if this route serves the request, else None."""
        if not self.matches_method(request):
            return None
        if m := self.pattern.fullmatch(request.path):
            return tuple(g or "" for g in m.groups())
        return None


class Server:
    """Route table, wrapper chain and configuration of one web server.

    A Server is a WSGI application; the ``run*`` methods host it on one of
    the bundled transports.
    """

    def __init__(self, config: ServerConfig | None = None,
                 logger: logging.Logger | None = None):
        self.config = config or ServerConfig()
        self.logger = logger or logging.getLogger("tinyweb")
        self.routes: list[Route] = []
        self.wrappers: list[wrappers.Wrapper] = []
        self.access_logger: AccessLoggerFactory = default_access_logger
        self.session_store: SessionStore = MemorySessionStore()
        self.user: t.Any = None
        self.env: dict[str, t.Any] = {}
        self.xsrf_secret = ""
        self.xsrf_get_uid: t.Callable[[Context], str] | None = None
        self.enc_key = b''
        self.sign_key = b''
        self.listener: t.Any = None
        self._keys_secret: str | None = None
        self._keys_lock = threading.Lock()

    # Setup ---------------------------------------------------------------

    def init_keys(self):
        """Derive the secure cookie keys from config.cookie_secret."""
        with self._keys_lock:
            secret = self.config.cookie_secret
            if secret != self._keys_secret:
                self.enc_key, self.sign_key = cookie.derive_keys(secret)
                self._keys_secret = secret

    def set_logger(self, logger: logging.Logger):
        self.logger = logger

    def set_xsrf_option(self, secret: str, get_uid: t.Callable[[Context], str]):
        """Enable XSRF tokens; `get_uid` names the user of a request."""
        self.xsrf_secret = secret
        self.xsrf_get_uid = get_uid
        if xsrf.xsrf_wrapper not in self.wrappers:
            self.add_wrapper(xsrf.xsrf_wrapper)

    def add_wrapper(self, wrapper: wrappers.Wrapper):
        self.wrappers.append(wrapper)

    def add_pre_module(self, f: wrappers.PreModule):
        self.add_wrapper(wrappers.pre_module(f))

    def static_dir(self) -> str:
        return self.config.static_dir or static.default_static_dir()

    # Routes --------------------------------------------------------------

    def _compile(self, pattern: str) -> re.Pattern[str]:
        try:
            return re.compile(pattern)
        except re.error as ex:
            self.logger.error("Error in route regex %r: %s", pattern, ex)
            raise ValueError(f"invalid route pattern {pattern!r}: {ex}") from ex

    def add_route(self, method: str, pattern: str, handler: t.Any) -> Route:
        rex = self._compile(pattern)
        route = Route(method.upper(), rex, handlers.adapt(handler, rex.groups))
        self.routes.append(route)
        return route

    def _register(self, method: str, pattern: str, handler: t.Any):
        if handler is None:
            def decorator(f):
                self.add_route(method, pattern, f)
                return f
            return decorator
        self.add_route(method, pattern, handler)
        return handler

    def get(self, pattern: str, handler: t.Any = None) -> t.Any:
        return self._register("GET", pattern, handler)

    def post(self, pattern: str, handler: t.Any = None) -> t.Any:
        return self._register("POST", pattern, handler)

    def put(self, pattern: str, handler: t.Any = None) -> t.Any:
        return self._register("PUT", pattern, handler)

    def delete(self, pattern: str, handler: t.Any = None) -> t.Any:
        return self._register("DELETE", pattern, handler)

    def match(self, method: str, pattern: str, handler: t.Any = None) -> t.Any:
        return self._register(method, pattern, handler)

    def websocket(self, pattern: str, handler: t.Any = None) -> t.Any:
        """Route for websocket upgrades; the handler finds the open socket
        in ``ctx.websocket``."""
        return self._register(WEBSOCKET, pattern, handler)

    def handle(self, pattern: str, method: str, app: WSGIApplication):
        """Route straight to a WSGI application, bypassing wrappers."""
        self.routes.append(Route(method.upper(), self._compile(pattern), wsgi_app=app))

    # Request Handling ----------------------------------------------------

    def __call__(self, environ: wsgiref.types.WSGIEnvironment,
                 start_response: wsgiref.types.StartResponse):
        """WSGI entrypoint."""
        self.init_keys()
        sink = WsgiSink(environ, start_response)
        if (app := self.serve(sink, Request.from_wsgi(environ))) is not None:
            return app(environ, start_response)
        return sink.body()

    def serve(self, sink: Sink, request: Request) -> WSGIApplication | None:
        """Answer `request` through `sink`.

        Returns the WSGI application of a raw route, which the transport must
        invoke itself; otherwise the response is complete on return.
        """
        response = ResponseWriter(sink)
        ctx = Context(request, response, self, self.user)
        access = self.access_logger(self)
        response.add_after_header_hook(lambda w: access.log_header(w.status, w.header))
        access.log_request(request)

        ctx.header['Server'] = SERVER_NAME
        ctx.header['Date'] = util.web_time()
        self._parse_params(ctx, access)

        handler, app = self._find_handler(ctx)
        if app is not None:
            access.log_done(None)
            return app
        err = self.apply_handler(wrappers.chain(self.wrappers, handler), ctx)
        access.log_done(err)
        return None

    def _parse_params(self, ctx: Context, access: AccessLogger):
        try:
            form = ctx.request.parse_form()
        except (HttpError, ValueError, LookupError) as ex:
            self.logger.debug("ignoring unparsable request body: %s", ex)
            form = util.parse_query(ctx.request.query_string)
        ctx.full_params = form
        ctx.params = Params({k: v[0] for k, v in form.items() if v})
        if ctx.params:
            access.log_params(ctx.params)

    def _find_handler(self, ctx: Context) -> tuple[wrappers.SimpleHandler, WSGIApplication | None]:
        request = ctx.request
        get_like = request.method in ("GET", "HEAD")
        if get_like and (path := static.find_file(self.static_dir(), request.path)):
            return (lambda c: static.serve_file(c, path)), None

        for route in self.routes:
            if (args := route.match(request)) is None:
                continue
            if route.handler is None:
                return _not_found, route.wsgi_app
            ctx.args = args
            if route.method == WEBSOCKET:
                return _websocket_handler(route.handler, args), None
            return _bind(route.handler, args), None

        if get_like and (path := static.find_index(self.static_dir(), request.path)):
            return (lambda c: static.serve_file(c, path)), None
        return _not_found, None

    def apply_handler(self, handler: wrappers.SimpleHandler,
                      ctx: Context) -> BaseException | None:
        """Run a handler and turn its outcome into a response."""
        crashed = False
        try:
            err = handler(ctx)
        except HttpError as ex:  # raising is the same as returning
            err = ex
        except Exception as ex:  # pylint: disable=broad-exception-caught
            if not self.config.recover_panic:
                self.logger.exception("Panic: %s", ex)
                raise
            self.logger.exception("Handler crashed with error: %s", ex)
            err, crashed = ex, True

        if crashed:
            ctx.abort(500, "Server Error")
        elif isinstance(err, HttpError):
            if err.has_cause():
                self.logger.debug("HTTP %d caused by: %r", err.code, list(err.causes()))
            for k, v in err.all_headers().items():
                ctx.header[k] = v
            ctx.abort(err.code, err.message)
        elif err is not None:
            # non-HTTP errors are not leaked to the client
            self.logger.error("Handler returned error: %s", err)
            ctx.abort(500, "Server Error")
        ctx.write(b'')
        ctx.response.close()
        return err

    # Server Running ------------------------------------------------------

    def run(self, addr: str):
        serve.run(self, addr)

    def run_secure(self, addr: str, context: ssl.SSLContext):
        serve.run_secure(self, addr, context)

    def run_tls(self, addr: str, cert_file: str, key_file: str):
        serve.run_tls(self, addr, cert_file, key_file)

    def run_scgi(self, addr: str):
        serve.run_scgi(self, addr)

    def run_fcgi(self, addr: str):
        serve.run_fcgi(self, addr)

    def close(self):
        serve.close(self)


def _not_found(ctx: Context) -> HttpError:
    del ctx  # unused
    return HttpError(404, "Page not found")


def _bind(handler: handlers.AdaptedHandler, args: tuple[str, ...]) -> wrappers.SimpleHandler:
    return lambda ctx: handler(ctx, *args)


def _websocket_handler(handler: handlers.AdaptedHandler,
                       args: tuple[str, ...]) -> wrappers.SimpleHandler:
    def open_handler(ctx: Context):
        ctx.websocket = ws.handshake(ctx)
        try:
            return handler(ctx, *args)
        finally:
            ctx.websocket.close()
    return open_handler
