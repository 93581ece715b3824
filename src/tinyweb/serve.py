"""Transports: plain and TLS HTTP via wsgiref, SCGI, and FastCGI via flup.

All of them drive the server as a WSGI application. Every ``run*`` call
blocks until `close` is called from another thread or the process is
interrupted.
"""
import os
import socketserver
import ssl
import stat
import sys
import typing as t
import urllib.parse
import wsgiref.handlers
import wsgiref.simple_server
import wsgiref.types

from . import profiler, util
from .response import HIJACK_KEY, HIJACKED_KEY

if t.TYPE_CHECKING:
    from .core import Server

_SCGI_MAX_HEADER = 1 << 20


# HTTP ---------------------------------------------------------------------

class _ServerHandler(wsgiref.simple_server.ServerHandler):
    def finish_response(self):
        if self.environ.get(HIJACKED_KEY):
            # the application owns the socket now; only log and clean up
            self.status = self.status or "101 Switching Protocols"
            self.close()
            return
        super().finish_response()


class RequestHandler(wsgiref.simple_server.WSGIRequestHandler):
    """WSGI request handler that lets the application take over the socket."""

    def handle(self):
        self.raw_requestline = self.rfile.readline(65537)
        if len(self.raw_requestline) > 65536:
            self.requestline = ''
            self.request_version = ''
            self.command = ''
            self.send_error(414)
            return
        if not self.parse_request():
            return
        environ = self.get_environ()
        environ[HIJACK_KEY] = lambda: (self.rfile, self.wfile)
        handler = _ServerHandler(self.rfile, self.wfile, self.get_stderr(),
                                 environ, multithread=True)
        handler.request_handler = self
        handler.run(self.server.get_app())

    def log_message(self, format, *args):  # pylint: disable=redefined-builtin
        self.server.get_app().logger.debug(
            "%s - %s", self.address_string(), format % args)


def make_server(server: "Server", addr: str, threaded=True):
    host, port = util.split_addr(addr)
    svr = wsgiref.simple_server.WSGIServer
    if threaded:  # Add threading mix-in
        svr = type('ThreadedServer', (socketserver.ThreadingMixIn, svr),
                   {'daemon_threads': True})
    return wsgiref.simple_server.make_server(
        host, port, server, server_class=svr, handler_class=RequestHandler)


def _prepare(server: "Server"):
    server.init_keys()
    if server.config.profiler:
        profiler.mount(server)


def _serve(server: "Server", listener, desc: str):
    server.listener = listener
    server.logger.info("serving %s", desc)
    try:
        listener.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.listener = None
        listener.server_close()


def run(server: "Server", addr: str):
    _prepare(server)
    _serve(server, make_server(server, addr), addr)


def run_secure(server: "Server", addr: str, context: ssl.SSLContext):
    _prepare(server)
    listener = make_server(server, addr)
    listener.socket = context.wrap_socket(listener.socket, server_side=True)
    _serve(server, listener, f"{addr} (tls)")


def run_tls(server: "Server", addr: str, cert_file: str, key_file: str):
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_file, key_file)
    run_secure(server, addr, context)


# SCGI ---------------------------------------------------------------------

def read_netstring(rfile: t.BinaryIO) -> bytes:
    size = b''
    while (c := rfile.read(1)) != b':':
        if not c.isdigit() or len(size) > 8:
            raise ValueError("malformed SCGI netstring length")
        size += c
    if not size or int(size) > _SCGI_MAX_HEADER:
        raise ValueError("bad SCGI header size")
    data = rfile.read(int(size))
    if len(data) != int(size) or rfile.read(1) != b',':
        raise ValueError("truncated SCGI header")
    return data


def parse_scgi_headers(data: bytes) -> dict[str, str]:
    items = data.split(b'\0')
    if items and items[-1] == b'':
        items.pop()
    if len(items) % 2:
        raise ValueError("odd number of SCGI header fields")
    env = {k.decode('latin1'): v.decode('latin1')
           for k, v in zip(items[::2], items[1::2])}
    if 'CONTENT_LENGTH' not in env:
        raise ValueError("SCGI request without CONTENT_LENGTH")
    return env


def scgi_environ(headers: dict[str, str]) -> dict[str, t.Any]:
    """Fill in the CGI variables a WSGI app needs but SCGI may leave out."""
    env: dict[str, t.Any] = dict(headers)
    uri = urllib.parse.urlsplit(env.get('REQUEST_URI', ''))
    if 'PATH_INFO' not in env:
        path = urllib.parse.unquote(uri.path or '/', 'latin1')
        script = env.get('SCRIPT_NAME', '')
        env['PATH_INFO'] = path[len(script):] if script and path.startswith(script) else path
    env.setdefault('QUERY_STRING', uri.query)
    env.setdefault('REQUEST_METHOD', 'GET')
    env.setdefault('SERVER_PROTOCOL', 'HTTP/1.1')
    env.setdefault('SCRIPT_NAME', '')
    if env.get('HTTPS', '').lower() in ('on', '1'):
        env['wsgi.url_scheme'] = 'https'
    return env


class ScgiHandler(wsgiref.handlers.SimpleHandler):
    """Answers CGI style, with a Status: line instead of a status line."""
    origin_server = False
    os_environ: dict[str, str] = {}


def handle_scgi(app: wsgiref.types.WSGIApplication,
                rfile: t.BinaryIO, wfile: t.BinaryIO, errors: t.TextIO | None = None):
    """Serve one SCGI request read from `rfile`, answering on `wfile`."""
    env = scgi_environ(parse_scgi_headers(read_netstring(rfile)))
    handler = ScgiHandler(rfile, wfile, errors or sys.stderr, env,
                          multithread=True, multiprocess=False)
    handler.run(app)


class ScgiRequestHandler(socketserver.StreamRequestHandler):
    def handle(self):
        app = self.server.app  # type: ignore[attr-defined]
        try:
            handle_scgi(app, self.rfile, self.wfile)
        except ValueError as ex:
            app.logger.warning("bad SCGI request from %s: %s", self.client_address, ex)


class ScgiServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class UnixScgiServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True


def make_scgi_server(server: "Server", addr: str) -> socketserver.BaseServer:
    if addr.startswith('/'):
        try:
            if stat.S_ISSOCK(os.stat(addr).st_mode):
                os.remove(addr)  # stale socket from an earlier run
        except FileNotFoundError:
            pass
        listener: socketserver.BaseServer = UnixScgiServer(addr, ScgiRequestHandler)
    else:
        listener = ScgiServer(util.split_addr(addr), ScgiRequestHandler)
    listener.app = server  # type: ignore[attr-defined]
    return listener


def run_scgi(server: "Server", addr: str):
    _prepare(server)
    _serve(server, make_scgi_server(server, addr), f"{addr} (scgi)")


# FastCGI ------------------------------------------------------------------

def fcgi_bind_address(addr: str) -> str | tuple[str, int]:
    if addr.startswith('/'):
        return addr
    return util.split_addr(addr)


class _FlupListener:
    """Adapts a flup server to the serve_forever/shutdown interface."""

    def __init__(self, server: "Server", addr: str):
        from flup.server.fcgi import WSGIServer  # optional dependency
        self.flup = WSGIServer(server, bindAddress=fcgi_bind_address(addr))

    def serve_forever(self):
        self.flup.run()

    def shutdown(self):
        self.flup._keepGoing = False  # pylint: disable=protected-access

    def server_close(self):
        pass


def run_fcgi(server: "Server", addr: str):
    _prepare(server)
    _serve(server, _FlupListener(server, addr), f"{addr} (fcgi)")


def close(server: "Server"):
    """Stop the running listener. Must not be called from its serving thread."""
    if server.listener is None:
        raise RuntimeError("closing non-listening server")
    server.listener.shutdown()
