"""Runtime introspection pages under /debug/pprof/."""
import gc
import sys
import threading
import traceback
import typing as t

from .context import Context

if t.TYPE_CHECKING:
    from .core import Server

PREFIX = "/debug/pprof"
_PAGES = ("threads", "gc", "cmdline")


def index(ctx: Context) -> str:
    ctx.content_type("html")
    links = "".join(f'<li><a href="{PREFIX}/{p}">{p}</a></li>' for p in _PAGES)
    return f"<html><body><h1>{PREFIX}/</h1><ul>{links}</ul></body></html>"


def threads(ctx: Context) -> str:
    """Current stack of every thread."""
    ctx.content_type("txt")
    names = {th.ident: th.name for th in threading.enumerate()}
    out = []
    for ident, frame in sys._current_frames().items():  # pylint: disable=protected-access
        out.append(f"thread {ident} ({names.get(ident, '?')}):\n")
        out.extend(traceback.format_stack(frame))
        out.append("\n")
    return "".join(out)


def gc_stats(ctx: Context) -> str:
    ctx.content_type("txt")
    lines = [f"counts: {gc.get_count()}", f"thresholds: {gc.get_threshold()}",
             f"objects: {len(gc.get_objects())}"]
    for gen, stats in enumerate(gc.get_stats()):
        lines.append(f"generation {gen}: " +
                     " ".join(f"{k}={v}" for k, v in sorted(stats.items())))
    return "\n".join(lines) + "\n"


def cmdline(ctx: Context) -> str:
    ctx.content_type("txt")
    return "\0".join(sys.argv)


def mount(server: "Server"):
    if any(r.pattern.pattern == PREFIX + "/?" for r in server.routes):
        return  # already mounted by an earlier run
    server.get(PREFIX + "/?", index)
    server.get(PREFIX + "/threads", threads)
    server.get(PREFIX + "/gc", gc_stats)
    server.get(PREFIX + "/cmdline", cmdline)
