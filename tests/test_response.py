import tinyweb
import pytest

from tinyweb.response import ResponseWriter, WsgiSink


class FakeSink:
    """Sink that records everything in arrival order."""

    def __init__(self):
        self.headers = tinyweb.response.Headers([])
        self.events = []

    def write_header(self, status):
        self.events.append(("status", status, dict(self.headers.items())))

    def write(self, data):
        self.events.append(("data", bytes(data)))
        return len(data)


class Recorder:
    def __init__(self, out, name, log, fail=False):
        self.out, self.name, self.log, self.fail = out, name, log, fail

    def write(self, data):
        return self.out.write(data)

    def close(self):
        self.log.append(self.name)
        if self.fail:
            raise OSError(self.name)


def test_hooks_run_once_in_order_before_bytes():
    sink = FakeSink()
    w = ResponseWriter(sink)
    calls = []
    w.add_after_header_hook(lambda rw: calls.append(("a", rw.status)))
    w.add_after_header_hook(lambda rw: rw.header.add_header("X-Hook", "b"))
    w.add_after_header_hook(lambda rw: calls.append(("c", len(sink.events))))

    w.write(b"one")
    w.write(b"two")
    w.write_header(500)

    assert calls == [("a", 200), ("c", 0)]
    assert sink.events[0] == ("status", 200, {"X-Hook": "b"})
    assert sink.events[1:3] == [("data", b"one"), ("data", b"two")]


def test_explicit_status_before_write():
    sink = FakeSink()
    w = ResponseWriter(sink)
    seen = []
    w.add_after_header_hook(lambda rw: seen.append(rw.success()))
    w.write_header(404)
    w.write(b"x")
    assert seen == [False]
    assert w.status == 404
    assert not w.success()


def test_hook_may_write_without_recursion():
    sink = FakeSink()
    w = ResponseWriter(sink)
    w.add_after_header_hook(lambda rw: rw.write(b"prefix:"))
    w.write(b"body")
    data = [e[1] for e in sink.events if e[0] == "data"]
    assert data == [b"prefix:", b"body"]


def test_wrapped_writers_close_lifo_and_keep_first_error():
    sink = FakeSink()
    w = ResponseWriter(sink)
    log = []
    w.wrap_body_writer(lambda out: Recorder(out, "inner", log, fail=True))
    w.wrap_body_writer(lambda out: Recorder(out, "outer", log, fail=True))
    w.write(b"x")
    with pytest.raises(OSError, match="outer"):
        w.close()
    assert log == ["outer", "inner"]
    assert ("data", b"x") in sink.events


def test_writer_without_close_is_not_recorded():
    class Upper:
        def __init__(self, out):
            self.out = out

        def write(self, data):
            return self.out.write(data.upper())

    sink = FakeSink()
    w = ResponseWriter(sink)
    w.wrap_body_writer(Upper)
    assert w.write(b"abc") == 3
    w.close()
    assert ("data", b"ABC") in sink.events


def test_hijack_unsupported():
    w = ResponseWriter(FakeSink())
    with pytest.raises(tinyweb.HijackNotSupported) as info:
        w.hijack()
    assert info.value.code == 501


def test_wsgi_sink_first_status_wins():
    calls = []
    sink = WsgiSink({"REQUEST_METHOD": "GET"}, lambda s, h: calls.append((s, h)))
    sink.headers["Content-Type"] = "text/plain"
    sink.write_header(201)
    sink.write_header(500)
    sink.write(b"ok")
    assert calls == [("201 Created", [("Content-Type", "text/plain")])]
    assert list(sink.body()) == [b"ok"]


def test_wsgi_sink_defaults_and_head():
    calls = []
    sink = WsgiSink({"REQUEST_METHOD": "HEAD"}, lambda s, h: calls.append((s, h)))
    sink.headers["Content-Length"] = "4"
    sink.write(b"body")
    assert calls == [("200 OK", [("Content-Length", "4"),
                                 ("Content-Type", "text/html; charset=utf-8")])]
    assert list(sink.body()) == []


def test_wsgi_sink_hijack():
    streams = (object(), object())
    environ = {"REQUEST_METHOD": "GET", "tinyweb.hijack": lambda: streams}
    calls = []
    sink = WsgiSink(environ, lambda s, h: calls.append(s))
    assert sink.hijack() == streams
    assert sink.hijacked
    sink.write_header(101)
    sink.write(b"ignored")
    assert calls == []
    assert list(sink.body()) == []


def test_unknown_status_phrase():
    assert tinyweb.response.status_line(123) == "123 StatusPhraseUnknown"
    assert tinyweb.response.status_line(404) == "404 Not Found"
