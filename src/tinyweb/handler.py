"""Turn user handlers of many shapes into one calling convention.

Every registered handler is adapted to ``handler(ctx, *captures) -> error``
where the result is an exception instance or None. The user function may
take the Context first or not, may take one argument per regex capture, and
may return nothing, an error, a body value or a ``(value, error)`` pair.
"""
import inspect
import typing as t

from . import util
from .context import CANNOT_SERIALIZE, Context, Request, serializable
from .errors import HttpError
from .response import ResponseWriter

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY,
               inspect.Parameter.POSITIONAL_OR_KEYWORD)
_CONTEXT_NAMES = ('ctx', 'context')
_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off', '')


class AdaptedHandler(t.Protocol):
    def __call__(self, ctx: Context, /, *args: str) -> BaseException | None: ...


@t.runtime_checkable
class HttpHandler(t.Protocol):
    """Objects that answer requests on their own."""
    def serve_http(self, writer: ResponseWriter, request: Request) -> t.Any: ...


def _positional_params(func) -> tuple[list[inspect.Parameter], bool]:
    try:
        params = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):  # builtins without a signature
        return [], True
    positional = [p for p in params if p.kind in _POSITIONAL]
    varargs = any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params)
    return positional, varargs


def _is_context_type(ann) -> bool:
    if isinstance(ann, str):  # postponed annotations
        return ann.rsplit('.', 1)[-1] == Context.__name__
    return isinstance(ann, type) and issubclass(ann, Context)


def requires_context(func, arity: int) -> bool:
    """Should the Context be passed as the first argument?"""
    positional, varargs = _positional_params(func)
    if not positional:
        return False
    ann = util.type_from_callable(func, 0)
    if ann is not None:
        return _is_context_type(ann)
    if positional[0].name in _CONTEXT_NAMES:
        return True
    return not varargs and len(positional) == arity + 1


def _check_arity(func, takes_ctx: bool, arity: int):
    positional, varargs = _positional_params(func)
    if not positional and varargs:
        return
    wanted = arity + int(takes_ctx)
    required = sum(1 for p in positional if p.default is inspect.Parameter.empty)
    if wanted < required or (wanted > len(positional) and not varargs):
        name = getattr(func, '__qualname__', repr(func))
        raise TypeError(f"handler {name} cannot take {arity} captured argument(s)")


def _convert(name: str, ann, val: str):
    if ann in (int, float):
        with HttpError.wrap_exceptions(400, f"Illegal value for parameter {name}"):
            return ann(val)
    if ann is bool:
        if val.lower() in _TRUE:
            return True
        if val.lower() in _FALSE:
            return False
        raise HttpError(400, f"Illegal value for parameter {name}")
    return val


def _converters(func, takes_ctx: bool, arity: int):
    positional, _ = _positional_params(func)
    params = positional[int(takes_ctx):]
    conv = []
    for i in range(arity):
        if i < len(params):
            ann = util.type_from_callable(func, i + int(takes_ctx))
            conv.append((params[i].name, ann))
        else:  # swallowed by *args
            conv.append((f"#{i}", None))
    return conv


def write_result(ctx: Context, ret: t.Any) -> BaseException | None:
    """Funnel a handler's return value into a single error result."""
    if ret is None or isinstance(ret, BaseException):
        return ret
    if (isinstance(ret, tuple) and len(ret) == 2
            and (ret[1] is None or isinstance(ret[1], BaseException))):
        ret, err = ret
        if err is not None:
            return err
        if ret is None:
            return None
    if not serializable(ret):
        return TypeError(CANNOT_SERIALIZE)
    try:
        ctx.write_anything(ret)
    except OSError as ex:
        return ex
    return None


def adapt(target: t.Any, arity: int = 0) -> AdaptedHandler:
    """Wrap `target` so it can be called as ``handler(ctx, *captures)``."""
    if isinstance(target, HttpHandler):
        def serve(ctx: Context, *args: str):
            del args  # unused
            target.serve_http(ctx.response, ctx.request)
            return None
        return serve

    if not callable(target):
        raise TypeError(f"handler must be callable, got {type(target).__name__}")

    takes_ctx = requires_context(target, arity)
    _check_arity(target, takes_ctx, arity)
    converters = _converters(target, takes_ctx, arity)

    def handler(ctx: Context, *args: str) -> BaseException | None:
        values = [_convert(name, ann, arg)
                  for (name, ann), arg in zip(converters, args)]
        if takes_ctx:
            values.insert(0, ctx)
        return write_result(ctx, target(*values))

    handler.__wrapped__ = target  # type: ignore[attr-defined]
    return handler
