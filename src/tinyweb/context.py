import base64
import mimetypes
import typing as t
import wsgiref.headers
import wsgiref.types
from dataclasses import dataclass, field

from . import cookie, session, util
from .errors import FormError, HttpError, InvalidKey, MissingSecret
from .response import ResponseWriter

if t.TYPE_CHECKING:
    from .core import Server
    from .ws import WebSocket

Headers = wsgiref.headers.Headers

# headers CGI/WSGI passes without the HTTP_ prefix
_CGI_HEADERS = {'CONTENT_TYPE': 'Content-Type', 'CONTENT_LENGTH': 'Content-Length'}

CANNOT_SERIALIZE = "cannot serialize data for writing to client"


class Params(dict[str, str]):
    """First value of every request parameter."""

    def get_string(self, key: str) -> str:
        try:
            return self[key]
        except KeyError:
            raise HttpError(400, f"Required parameter {key} missing") from None

    def get_int(self, key: str) -> int:
        val = self.get_string(key)
        with HttpError.wrap_exceptions(400, f"Illegal integer parameter {key}"):
            return int(val)


@dataclass
class Request:
    environ: wsgiref.types.WSGIEnvironment
    path: str
    method: str
    headers: Headers
    files: dict[str, tuple[str, bytes]] = field(default_factory=dict)

    @classmethod
    def from_wsgi(cls, environ: wsgiref.types.WSGIEnvironment):
        hlist = [(k[5:].replace("_", "-").title(), v)
                 for k, v in environ.items() if k.startswith("HTTP_")]
        hlist += [(name, environ[k]) for k, name in _CGI_HEADERS.items()
                  if environ.get(k)]
        return cls(environ, environ.get('PATH_INFO') or '/',
                   environ.get('REQUEST_METHOD', 'GET').upper(), Headers(hlist))

    @property
    def query_string(self) -> str:
        return self.environ.get("QUERY_STRING", "")

    @property
    def content_type(self) -> tuple[str, dict[str, str]]:
        return util.parse_header_options(self.headers.get('Content-Type', ''))

    @property
    def cookies(self) -> dict[str, str]:
        return util.parse_cookie_header(self.headers.get('Cookie', ''))

    def body(self) -> bytes:
        if (cached := self.environ.get('tinyweb.body')) is not None:
            return cached
        try:
            length = int(self.environ.get('CONTENT_LENGTH') or 0)
        except ValueError:
            length = 0
        stream = self.environ.get('wsgi.input')
        data = stream.read(length) if stream is not None and length > 0 else b''
        self.environ['tinyweb.body'] = data
        return data

    def parse_form(self) -> util.MultiDict:
        """Query string plus, for POST and PUT, the decoded body."""
        query = util.parse_query(self.query_string)
        if self.method not in ('POST', 'PUT'):
            return query
        ct, opts = self.content_type
        ct = ct.lower()
        if ct == 'application/x-www-form-urlencoded':
            return util.merge_multi(query, util.parse_query(
                self.body(), opts.get('charset', 'utf-8')))
        if ct == 'multipart/form-data':
            boundary = opts.get('boundary')
            if not boundary:
                raise FormError(message="missing multipart boundary")
            fields, self.files = util.parse_multipart(self.body(), boundary)
            return util.merge_multi(query, fields)
        return query

    def form_value(self, key: str) -> str:
        return self.parse_form().get(key, [''])[0]


class Context:
    """Everything a handler gets to know about one request."""

    def __init__(self, request: Request, response: ResponseWriter,
                 server: "Server", user: t.Any = None):
        self.request = request
        self.response = response
        self.server = server
        self.user = user
        self.params = Params()
        self.full_params: util.MultiDict = {}
        self.args: tuple[str, ...] = ()
        self.websocket: "WebSocket | None" = None
        self.xsrf_token = ""

    # Writing ------------------------------------------------------------

    @property
    def header(self) -> Headers:
        return self.response.header

    def write(self, data: bytes) -> int:
        return self.response.write(data)

    def write_string(self, content: str) -> int:
        return self.write(content.encode('utf-8'))

    def write_anything(self, value: t.Any) -> None:
        """Best-effort serialization of a handler's return value."""
        if not serializable(value):
            raise TypeError(CANNOT_SERIALIZE)
        if isinstance(value, str):
            value = value.encode('utf-8')
        if isinstance(value, (bytes, bytearray, memoryview)):
            if not self.response.headers_sent:
                self.header['Content-Length'] = str(len(value))
            self.write(bytes(value))
        elif callable(getattr(value, 'write_to', None)):
            value.write_to(self)
        elif callable(getattr(value, 'read', None)):
            while chunk := value.read(8192):
                self.write(chunk.encode('utf-8') if isinstance(chunk, str) else chunk)

    def abort(self, status: int, body: str):
        self.response.write_header(status)
        self.write_string(body)

    def redirect(self, status: int, url: str):
        self.header['Location'] = url
        self.abort(status, "Redirecting to: " + url)

    def not_modified(self):
        self.response.write_header(304)

    def not_found(self, message: str):
        self.abort(404, message)

    def not_acceptable(self, message: str):
        self.abort(406, message)

    def unauthorized(self, message: str):
        self.abort(401, message)

    def forbidden(self, message: str):
        self.abort(403, message)

    def content_type(self, ext: str) -> str:
        """Set Content-Type by file extension ("json", ".css") or verbatim.

        Returns the type that was set, or "" if the extension is unknown.
        """
        ctype = ext if '/' in ext else mime_type(ext)
        if ctype:
            self.header['Content-Type'] = ctype
        return ctype

    def set_header(self, hdr: str, val: str, unique: bool):
        if unique:
            self.header[hdr] = val
        else:
            self.header.add_header(hdr, val)

    # Cookies ------------------------------------------------------------

    def set_cookie(self, c: util.Cookie):
        self.header.add_header('Set-Cookie', c.header_value())

    def get_cookie(self, name: str) -> str | None:
        return self.request.cookies.get(name)

    def remove_cookie(self, name: str):
        self.set_cookie(util.Cookie(name, "", expires=0, max_age=0))

    def set_secure_cookie(self, name: str, val: str, age: int = 0):
        server = self.server
        if not server.config.cookie_secret:
            raise MissingSecret()
        if not server.enc_key or not server.sign_key:
            raise InvalidKey()
        data = cookie.encode_value(val, server.enc_key, server.sign_key)
        self.set_cookie(util.new_cookie(name, data, age))

    def get_secure_cookie(self, name: str) -> str | None:
        """Decrypted cookie value, or None if absent or not authentic."""
        raw = self.get_cookie(name)
        if raw is None:
            return None
        return cookie.decode_value(raw, self.server.enc_key, self.server.sign_key)

    def get_basic_auth(self) -> tuple[str, str]:
        """User and password from the Authorization header."""
        scheme, _, encoded = self.request.headers.get('Authorization', '').partition(' ')
        if scheme != 'Basic':
            raise HttpError(401, "Not Basic Authentication")
        with HttpError.wrap_exceptions(400, "Malformed basic authentication"):
            decoded = base64.b64decode(encoded, validate=True).decode('utf-8')
        user, sep, password = decoded.partition(':')
        if not sep:
            raise HttpError(400, "Error delimiting credentials into username/password")
        return user, password

    # Sessions -----------------------------------------------------------

    def session_id(self) -> str:
        """The client's session id, issuing a fresh one if it has none."""
        sid = self.get_cookie(session.SESSION_KEY)
        if sid is None or len(sid) != session.SESSION_ID_LEN:
            return self.set_new_session_id()
        return sid

    def set_new_session_id(self) -> str:
        sid = session.new_session_id()
        self.set_cookie(util.Cookie(session.SESSION_KEY, sid, http_only=True))
        return sid

    def set_flash_alert(self, msg: str):
        self.set_secure_cookie(session.FLASH_ALERT_KEY, msg, session.FLASH_AGE)

    def set_flash_notice(self, msg: str):
        self.set_secure_cookie(session.FLASH_NOTICE_KEY, msg, session.FLASH_AGE)

    def get_flash(self) -> session.Flash:
        """Pending flash messages; reading them removes their cookies."""
        flash = session.Flash()
        if (alert := self.get_secure_cookie(session.FLASH_ALERT_KEY)) is not None:
            flash.alert = alert
            self.remove_cookie(session.FLASH_ALERT_KEY)
        if (notice := self.get_secure_cookie(session.FLASH_NOTICE_KEY)) is not None:
            flash.notice = notice
            self.remove_cookie(session.FLASH_NOTICE_KEY)
        return flash


def serializable(value: t.Any) -> bool:
    return (isinstance(value, (str, bytes, bytearray, memoryview))
            or callable(getattr(value, 'write_to', None))
            or callable(getattr(value, 'read', None)))


def mime_type(ext: str) -> str:
    if not ext.startswith('.'):
        ext = '.' + ext
    ctype = mimetypes.guess_type("file" + ext.lower())[0] or ""
    if ctype.startswith('text/'):
        ctype += '; charset=utf-8'
    return ctype
