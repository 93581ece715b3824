import logging
import secrets

import tinyweb

FORM = """<form action="say" method="POST">
<input name="said"><input type="submit"></form>"""

users: dict[str, str] = {}

tinyweb.config.cookie_secret = "7C19QRmwf3mHZ9CPAaPQ0hsWeufKd"
tinyweb.add_wrapper(tinyweb.compress_wrapper)


@tinyweb.get("/said")
def said():
    return FORM


@tinyweb.post("/say")
def say(ctx: tinyweb.Context):
    uid = secrets.token_hex(8)
    ctx.set_secure_cookie("user", uid, 3600)
    users[uid] = ctx.params.get("said", "")
    return '<a href="/final">Click Here</a>'


@tinyweb.get("/final")
def final(ctx: tinyweb.Context):
    uid = ctx.get_secure_cookie("user")
    return "You said " + users.get(uid or "", "nothing")


@tinyweb.get(r"/add/(\d+)/(\d+)")
def add(a: int, b: int):
    return str(a + b)


@tinyweb.websocket("/echo")
def echo(ctx):
    while (msg := ctx.websocket.receive()) is not None:
        ctx.websocket.send(msg)


def main():
    """Program entry point."""
    logging.basicConfig(level=logging.INFO)
    tinyweb.run("0.0.0.0:9999")


if __name__ == "__main__":
    main()
