from tests import helper
import tinyweb
import io
import pytest

from tinyweb import handler as handlers

expect_response = helper.assert_produces_response


# Handler names end with three Y/N flags:
# 1. does the handler accept a Context arg
# 2. does the handler return a body as its first value
# 3. does the handler return an error as its last value

def handle_nnn():
    return


def handle_nny():
    return None


def handle_nyn():
    return "NYN"


def handle_nyy():
    return "NYY", None


def handle_ynn(ctx):
    ctx.write_string("YNN")


def handle_yny(ctx: tinyweb.Context):
    ctx.write_string("YNY")
    return None


def handle_yyn(ctx):
    ctx.write_string("YY")
    return "N"


def handle_yyy(ctx: tinyweb.Context):
    ctx.write_string("YY")
    return "Y", None


@pytest.mark.parametrize(("path", "fn", "body"), [
    ("/NNN", handle_nnn, ""),
    ("/NNY", handle_nny, ""),
    ("/NYN", handle_nyn, "NYN"),
    ("/NYY", handle_nyy, "NYY"),
    ("/YNN", handle_ynn, "YNN"),
    ("/YNY", handle_yny, "YNY"),
    ("/YYN", handle_yyn, "YYN"),
    ("/YYY", handle_yyy, "YYY"),
])
def test_handler_shapes(path, fn, body):
    app = helper.make_server()
    app.get(path, fn)
    expect_response(app, path, 200, body)


def test_body_types():
    app = helper.make_server()
    app.get("/str", lambda: "text")
    app.get("/bytes", lambda: b"\x00\x01")
    app.get("/bytearray", lambda: bytearray(b"ba"))
    app.get("/reader", lambda: io.BytesIO(b"read me"))
    app.get("/strreader", lambda: io.StringIO("read text"))

    class Report:
        def write_to(self, w):
            w.write(b"written")

    app.get("/writer", lambda: Report())

    expect_response(app, "/str", 200, "text", {"Content-Length": "4"})
    expect_response(app, "/bytes", 200, b"\x00\x01", {"Content-Length": "2"})
    expect_response(app, "/bytearray", 200, "ba")
    expect_response(app, "/reader", 200, "read me")
    expect_response(app, "/strreader", 200, "read text")
    expect_response(app, "/writer", 200, "written")


def test_unserializable_is_server_error():
    app = helper.make_server()
    app.get("/n", lambda: 42)
    app.get("/t", lambda: (object(), None))
    expect_response(app, "/n", 500, "Server Error")
    expect_response(app, "/t", 500, "Server Error")


def test_tuple_error_skips_body():
    app = helper.make_server()
    app.get("/", lambda: ("ignored", tinyweb.HttpError(418, "teapot")))
    expect_response(app, "/", 418, "teapot")


def test_other_tuples_are_not_pairs():
    """Only (value, error-or-None) pairs are split."""
    app = helper.make_server()
    app.get("/", lambda: ("a", "b"))
    expect_response(app, "/", 500, "Server Error")


def test_capture_conversion():
    app = helper.make_server()

    @app.get(r"/add/(-?\d+)/(\w+)")
    def _(a: int, b: int):
        return str(a + b)

    @app.get(r"/flag/(\w+)")
    def _(ctx: tinyweb.Context, on: bool):
        return "yes" if on else "no"

    @app.get(r"/scale/([\d.]+)")
    def _(f: float):
        return f"{f * 2:.1f}"

    expect_response(app, "/add/2/40", 200, "42")
    expect_response(app, "/add/2/x", 400, "Illegal value for parameter b")
    expect_response(app, "/flag/true", 200, "yes")
    expect_response(app, "/flag/off", 200, "no")
    expect_response(app, "/flag/maybe", 400, "Illegal value for parameter on")
    expect_response(app, "/scale/1.5", 200, "3.0")
    expect_response(app, "/scale/1.2.3", 400)


def test_context_detection():
    class Sub(tinyweb.Context):
        pass

    def annotated(c: tinyweb.Context): ...
    def sub_annotated(c: Sub): ...
    def named(ctx, a): ...
    def counted(x, a): ...
    def plain(a): ...
    def other_annotation(a: str, b): ...

    assert handlers.requires_context(annotated, 0)
    assert handlers.requires_context(sub_annotated, 0)
    assert handlers.requires_context(named, 1)
    assert handlers.requires_context(counted, 1)
    assert not handlers.requires_context(plain, 1)
    assert not handlers.requires_context(other_annotation, 1)
    assert not handlers.requires_context(lambda: None, 0)


def test_arity_mismatch_rejected():
    app = helper.make_server()
    with pytest.raises(TypeError):
        app.get("/(a)(b)", lambda x: x)
    with pytest.raises(TypeError):
        app.get("/", lambda x, y: x)
    with pytest.raises(TypeError):
        app.get("/", "not callable")


def test_varargs_take_everything():
    app = helper.make_server()
    app.get("/(a)/(b)/(c)", lambda *args: "-".join(args))
    expect_response(app, "/a/b/c", 200, "a-b-c")


def test_serve_http_object():
    class Legacy:
        def serve_http(self, writer: tinyweb.ResponseWriter, request: tinyweb.Request):
            writer.header['Content-Type'] = 'text/plain'
            writer.write_header(203)
            writer.write(request.path.encode())

    app = helper.make_server()
    app.get("/legacy/(.*)", Legacy())
    expect_response(app, "/legacy/x", 203, "/legacy/x", {"Content-Type": "text/plain"})


def test_write_result():
    app = helper.make_server()
    app.get("/", lambda ctx: handlers.write_result(ctx, "direct"))
    expect_response(app, "/", 200, "direct")
