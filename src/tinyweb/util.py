import dataclasses
import email.parser
import email.policy
import email.utils
import re
import inspect
import time
import typing as t
import urllib.parse

from urllib.request import parse_http_list as _parse_list_header


# pylint: disable=missing-class-docstring, disable=missing-function-docstring

# 2^31 - 1 seconds, the "permanent" cookie expiry
FOREVER = 2147483647


def type_from_callable(func, index):
    try:
        try:
            params = inspect.signature(func, eval_str=True).parameters
        except (NameError, AttributeError, SyntaxError):  # unresolvable string annotation
            params = inspect.signature(func).parameters
        param_type = list(params.values())[index].annotation
        if param_type != inspect.Parameter.empty:
            return param_type
    except (TypeError, ValueError, IndexError):
        pass
    return None


def web_time(ts: float | None = None) -> str:
    """RFC 1123 date in GMT, as used by Date, Expires and Last-Modified."""
    return email.utils.formatdate(time.time() if ts is None else ts, usegmt=True)


def parse_web_time(val: str) -> float | None:
    try:
        return email.utils.parsedate_to_datetime(val).timestamp()
    except (TypeError, ValueError, IndexError):
        return None


def split_addr(addr: str) -> tuple[str, int]:
    """Split "host:port" (host may be empty) into a socket address."""
    host, sep, port = addr.rpartition(':')
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address {addr!r}, expected host:port")
    return host.strip('[]'), int(port)


# Header parsing -----------------------------------------------------------

_KVP_RE = re.compile(
    r"""\s*;\s*(?:                        # prefix by delim
        ([^"=\s;]+) =                     # key (group 1)
        ([^"=\s;]+ | "(?:\\\\|\\"|.)*?" ) # val (group 2)
    )?""", re.VERBOSE)

def _unquote(val:str, unescape=False):
    if len(val)>=2 and '"' == val[0] == val[-1]:
        if unescape:
            return val[1:-1].replace("\\\\", "\\").replace('\\"', '"').replace("%22", '"')
    return val

def _header_kvp(val:str):
    for k,v in _KVP_RE.findall(f";{val}"):
        k, v = k.strip(), _unquote(v.strip(), True)
        if k:
            yield k,v

def parse_header_list(val:str):
    items = (_unquote(x.strip(), False) for x in _parse_list_header(val))
    return [x for x in items if x]

def parse_header_dict(val:str):
    return dict(_header_kvp(val))

def parse_header_options(val:str):
    first, _, rest = val.partition(';')
    return first.strip(), parse_header_dict(rest)


# Cookies ------------------------------------------------------------------

@dataclasses.dataclass
class Cookie:
    name: str
    value: str
    path: str = "/"
    domain: str | None = None
    expires: float | None = None
    max_age: int | None = None
    http_only: bool = False
    secure: bool = False

    def header_value(self) -> str:
        """Wire form for a Set-Cookie header."""
        parts = [f"{self.name}={self.value}"]
        if self.path:
            parts.append(f"Path={self.path}")
        if self.domain:
            parts.append(f"Domain={self.domain}")
        if self.expires is not None:
            parts.append(f"Expires={web_time(self.expires)}")
        if self.max_age is not None:
            parts.append(f"Max-Age={self.max_age}")
        if self.http_only:
            parts.append("HttpOnly")
        if self.secure:
            parts.append("Secure")
        return "; ".join(parts)


def new_cookie(name: str, value: str, age: int = 0) -> Cookie:
    """Cookie living `age` seconds; an age of zero makes it permanent."""
    if age == 0:
        return Cookie(name, value, expires=FOREVER)
    return Cookie(name, value, expires=time.time() + age, max_age=age)


def parse_cookie_header(val: str) -> dict[str, str]:
    """Parse a request Cookie header; the first occurrence of a name wins."""
    cookies: dict[str, str] = {}
    for part in val.split(';'):
        name, sep, value = part.strip().partition('=')
        if not sep or not name:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        cookies.setdefault(name.strip(), value)
    return cookies


# Forms --------------------------------------------------------------------

MultiDict: t.TypeAlias = dict[str, list[str]]


def parse_query(query: str | bytes, encoding='utf-8') -> MultiDict:
    if isinstance(query, bytes):
        query = query.decode(encoding, 'replace')
    return urllib.parse.parse_qs(query, keep_blank_values=True, encoding=encoding)


def parse_multipart(body: bytes, boundary: str) -> tuple[MultiDict, dict[str, tuple[str, bytes]]]:
    """Split a multipart/form-data body into fields and files."""
    head = f"Content-Type: multipart/form-data; boundary=\"{boundary}\"\r\n\r\n"
    msg = email.parser.BytesParser(policy=email.policy.HTTP).parsebytes(
        head.encode('latin1') + body)
    fields: MultiDict = {}
    files: dict[str, tuple[str, bytes]] = {}
    for part in msg.iter_parts():
        name = part.get_param('name', header='content-disposition')
        if not name:
            continue
        payload = part.get_payload(decode=True) or b''
        filename = part.get_param('filename', header='content-disposition')
        if filename is not None:
            files[name] = (filename, payload)
        else:
            charset = part.get_content_charset() or 'utf-8'
            fields.setdefault(name, []).append(payload.decode(charset, 'replace'))
    return fields, files


def merge_multi(*dicts: MultiDict) -> MultiDict:
    merged: MultiDict = {}
    for d in dicts:
        for k, vals in d.items():
            merged.setdefault(k, []).extend(vals)
    return merged
