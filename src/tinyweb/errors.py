import contextlib
from dataclasses import MISSING, dataclass, field


class DataclassDefaultOverridable:  # subclass can override field defaults
    def __init_subclass__(cls, **kwargs) -> None:
        if dc_fields := getattr(cls, "__dataclass_fields__", None):
            # Field objects are shared with the base class, so every plain
            # default is set again from what this class resolves
            for k, f in dc_fields.items():
                if k in kwargs:
                    setattr(cls, k, kwargs[k])
                if f.default is not MISSING:
                    f.default = getattr(cls, k, f.default)


@dataclass(kw_only=True)
class HttpError(Exception, DataclassDefaultOverridable):
    """Status-bearing error.

    Returned or raised from a handler, the status and message are sent to the
    client verbatim. Any other error becomes a 500.
    """
    code: int = field(kw_only=False, default=500)
    message: str = field(kw_only=False, default="")
    headers: dict[str, str] = field(default_factory=dict)  # type:ignore

    def __post_init__(self):
        Exception.__init__(self, self.code, self.message)

    def __str__(self):
        return self.message

    def default_headers(self) -> dict[str, str]: return {}
    def all_headers(self): return self.default_headers() | self.headers
    def has_cause(self): return self.__cause__ is not None

    def causes(self):
        cause = self.__cause__
        seen = []  # circular reference prevention
        while cause:
            if cause in seen:
                break
            yield cause
            seen.append(cause)
            cause = cause.__cause__

    @classmethod
    @contextlib.contextmanager
    def wrap_exceptions(cls, *args, **kwargs):
        try:
            yield
        except HttpError as ex:
            raise ex
        except Exception as ex:
            raise cls(*args, **kwargs) from ex


@dataclass(kw_only=True)
class FormError(HttpError):
    """The request body could not be parsed."""
    code = 400


@dataclass(kw_only=True)
class HijackNotSupported(HttpError):
    code = 501
    message = "connection hijacking not supported by transport"


class CookieError(Exception):
    """Base for secure cookie configuration faults."""


class MissingSecret(CookieError):
    def __init__(self):
        super().__init__("Secret key for secure cookies has not been set. "
                         "Assign one to config.cookie_secret.")


class InvalidKey(CookieError):
    def __init__(self):
        super().__init__("The keys for secure cookies have not been initialized. "
                         "Ensure that a run method is being called.")
