"""Per-request access logging.

The server asks its access-logger factory for a fresh `AccessLogger` on every
request and calls its methods in this order: `log_request`, `log_params`
(only when there are parameters), `log_header`, `log_done`. Arguments must
not be modified.
"""
import logging
import typing as t
from dataclasses import dataclass

from .context import Params, Request

if t.TYPE_CHECKING:
    from .core import Server

_GREEN = "\033[32;1m"
_WHITE = "\033[37;1m"
_RESET = "\033[0m"


class AccessLogger(t.Protocol):
    def log_request(self, request: Request) -> None: ...
    def log_params(self, params: Params) -> None: ...
    def log_header(self, status: int, headers: t.Any) -> None: ...
    def log_done(self, err: BaseException | None) -> None: ...


AccessLoggerFactory = t.Callable[["Server"], AccessLogger]


@dataclass
class PlainAccessLogger:
    logger: logging.Logger

    def log_request(self, request: Request):
        self.logger.info("%s %s", request.method, request.path)

    def log_params(self, params: Params):
        self.logger.info("Params: %s", dict(params))

    def log_header(self, status: int, headers: t.Any):
        pass

    def log_done(self, err: BaseException | None):
        pass


@dataclass
class ColoredAccessLogger(PlainAccessLogger):
    def log_request(self, request: Request):
        self.logger.info("%s%s %s%s", _GREEN, request.method, request.path, _RESET)

    def log_params(self, params: Params):
        self.logger.info("%sParams: %s%s", _WHITE, dict(params), _RESET)


def default_access_logger(server: "Server") -> AccessLogger:
    """Stateless logger writing every request to the server's logger."""
    if server.config.color_output:
        return ColoredAccessLogger(server.logger)
    return PlainAccessLogger(server.logger)
