import tinyweb.util
import pytest


@pytest.mark.parametrize(
    ("src", "expect_val", "expect_params"), [
        # without quotes
        ("text/html;charset=utf8", "text/html", {'charset': 'utf8'}),
        # with quoted val
        ('text/html;charset="utf8"', "text/html", {'charset': 'utf8'}),

        # the rest adapted from werkzeug tests
        ("v;a=b;c=d;", "v", {"a": "b", "c": "d"}),
        ("v;  ; a=b ; ", "v", {"a": "b"}),
        ("v;a", "v", {}),
        ("v;a=", "v", {}),
        ("v;=b", "v", {}),
        ('v;a="b"', "v", {"a": "b"}),
        ('v;a="\';\'";b="µ";', "v", {"a": "';'", "b": "µ"}),
        ('v;a="b c"', "v", {"a": "b c"}),
        # HTTP headers use \" for internal "
        ('v;a="b\\"c";d=e', "v", {"a": 'b"c', "d": "e"}),
        # HTTP headers use \\ for internal \
        ('v;a="c:\\\\"', "v", {"a": "c:\\"}),
        # Invalid trailing slash in quoted part is left as-is.
        ('v;a="c:\\"', "v", {"a": "c:\\"}),
        ('v;a="b\\\\\\"c"', "v", {"a": 'b\\"c'}),
        # multipart form data uses %22 for internal "
        ('v;a="b%22c"', "v", {"a": 'b"c'}),
        ('v;a="🐍.txt"', "v", {"a": "🐍.txt"}),
    ]
)
def test_parse_header_options(src, expect_val, expect_params):
    assert tinyweb.util.parse_header_options(src) == (expect_val, expect_params)


def test_parse_header_complex():
    s = 'foo;a=x;b="y";c="x;y"'
    escaped = s.replace('\\', '\\\\').replace('"', '\\"')
    test_parse_header_options(s, "foo", {'a': 'x', 'b': 'y', 'c': 'x;y'})
    test_parse_header_options(f'bar;x="{escaped}"', "bar", {'x': s})  # tests full embedding


def test_parse_header_list():
    assert tinyweb.util.parse_header_list('gzip;q=1.0, , deflate,"a,b"') == [
        "gzip;q=1.0", "deflate", '"a,b"']


@pytest.mark.parametrize(("addr", "expect"), [
    ("0.0.0.0:9999", ("0.0.0.0", 9999)),
    (":8080", ("", 8080)),
    ("localhost:80", ("localhost", 80)),
    ("[::1]:443", ("::1", 443)),
])
def test_split_addr(addr, expect):
    assert tinyweb.util.split_addr(addr) == expect


@pytest.mark.parametrize("addr", ["9999", "host:", "host:port", ""])
def test_split_addr_invalid(addr):
    with pytest.raises(ValueError):
        tinyweb.util.split_addr(addr)


def test_web_time():
    assert tinyweb.util.web_time(0) == "Thu, 01 Jan 1970 00:00:00 GMT"
    assert tinyweb.util.web_time(tinyweb.util.FOREVER) == "Tue, 19 Jan 2038 03:14:07 GMT"
    assert tinyweb.util.parse_web_time("Thu, 01 Jan 1970 00:01:00 GMT") == 60
    assert tinyweb.util.parse_web_time("yesterday") is None
    assert tinyweb.util.parse_web_time("") is None


def test_parse_cookie_header():
    parsed = tinyweb.util.parse_cookie_header(
        'a=1; b="quoted"; novalue; c=x=y; a=2; =anon')
    assert parsed == {"a": "1", "b": "quoted", "c": "x=y"}
    assert tinyweb.util.parse_cookie_header("") == {}


def test_parse_query_keeps_blanks():
    assert tinyweb.util.parse_query("a=1&a=2&b=&c") == {"a": ["1", "2"], "b": [""], "c": [""]}
    assert tinyweb.util.parse_query(b"name=%C3%BC") == {"name": ["ü"]}


def test_parse_multipart():
    body = (
        b"--XyZ\r\n"
        b'Content-Disposition: form-data; name="title"\r\n\r\n'
        b"hello\r\n"
        b"--XyZ\r\n"
        b'Content-Disposition: form-data; name="upload"; filename="a.txt"\r\n'
        b"Content-Type: text/plain\r\n\r\n"
        b"file body\r\n"
        b"--XyZ--\r\n"
    )
    fields, files = tinyweb.util.parse_multipart(body, "XyZ")
    assert fields == {"title": ["hello"]}
    assert files == {"upload": ("a.txt", b"file body")}


def test_merge_multi():
    merged = tinyweb.util.merge_multi({"a": ["1"]}, {"a": ["2"], "b": ["3"]})
    assert merged == {"a": ["1", "2"], "b": ["3"]}
