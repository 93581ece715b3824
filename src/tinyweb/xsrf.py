"""XSRF protection.

Call `Server.set_xsrf_option(secret, get_uid)`, which also installs
`xsrf_wrapper`. Put `form_field(ctx)` in every form and check
`validate(ctx)` before acting on a POST.
"""
import base64
import hashlib
import hmac
import time
import typing as t

from .context import Context
from .errors import CookieError

if t.TYPE_CHECKING:
    from .wrappers import SimpleHandler

COOKIE_NAME = "_xsrf"
FIELD_NAME = "_xsrf"
ACTION = "POST"
TIMEOUT = 24 * 60 * 60  # seconds


def _clean(s: str) -> str:
    return s.replace(":", "_")


def _millis(now: float | None) -> int:
    return int((time.time() if now is None else now) * 1000)


def _mac(key: str, user_id: str, action_id: str, millis: int) -> str:
    msg = f"{_clean(user_id)}:{_clean(action_id)}:{millis}"
    digest = hmac.new(key.encode('utf-8'), msg.encode('utf-8'), hashlib.sha1).digest()
    return base64.urlsafe_b64encode(digest).decode('ascii')


def generate_token(key: str, user_id: str, action_id: str,
                   now: float | None = None) -> str:
    millis = _millis(now)
    return f"{_mac(key, user_id, action_id, millis)}:{millis}"


def valid_token(token: str, key: str, user_id: str, action_id: str,
                now: float | None = None) -> bool:
    """True if `token` was issued for this user and action less than
    TIMEOUT seconds ago."""
    mac, sep, stamp = token.rpartition(':')
    if not sep or not stamp.isdigit():
        return False
    issued = int(stamp)
    if _millis(now) - issued >= TIMEOUT * 1000:
        return False
    expected = _mac(key, user_id, action_id, issued)
    return hmac.compare_digest(expected.encode('ascii'), mac.encode('ascii', 'replace'))


def load_token(ctx: Context):
    """Pick up the client's token, or issue one if a user id is known."""
    if token := ctx.get_secure_cookie(COOKIE_NAME):
        ctx.xsrf_token = token
        return
    server = ctx.server
    if server.xsrf_get_uid is None:
        return
    if not (uid := server.xsrf_get_uid(ctx)):
        return
    ctx.xsrf_token = generate_token(server.xsrf_secret, uid, ACTION)
    try:
        ctx.set_secure_cookie(COOKIE_NAME, ctx.xsrf_token, TIMEOUT)
    except CookieError as ex:
        server.logger.warning("xsrf cookie not set: %s", ex)


def xsrf_wrapper(inner: "SimpleHandler", ctx: Context):
    load_token(ctx)
    return inner(ctx)


def form_field(ctx: Context) -> str:
    return f'<input type="hidden" name="{FIELD_NAME}" value="{ctx.xsrf_token}"/>'


def form_token(ctx: Context) -> str:
    return ctx.request.form_value(FIELD_NAME)


def validate(ctx: Context) -> bool:
    if not ctx.xsrf_token:
        return False
    return hmac.compare_digest(ctx.xsrf_token.encode('utf-8'),
                               form_token(ctx).encode('utf-8'))
