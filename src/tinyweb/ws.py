"""Minimal RFC 6455 websocket support over a hijacked connection."""
import base64
import enum
import hashlib
import struct
import typing as t
from dataclasses import dataclass

from .context import Context
from .errors import HttpError

GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
VERSION = "13"


class Opcode(enum.IntEnum):
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


CLOSE_NORMAL = 1000
MAX_PAYLOAD = 16 * 1024 * 1024


class ConnectionClosed(Exception):
    """The peer went away mid-frame."""


class ProtocolError(Exception):
    pass


@dataclass
class Frame:
    fin: bool
    opcode: int
    payload: bytes


def accept_key(key: str) -> str:
    digest = hashlib.sha1((key + GUID).encode('ascii')).digest()
    return base64.b64encode(digest).decode('ascii')


def _mask(payload: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % 4] for i, b in enumerate(payload))


def encode_frame(opcode: int, payload: bytes = b'', fin: bool = True,
                 mask: bytes | None = None) -> bytes:
    """Serialize one frame. Servers send unmasked frames; pass `mask` to
    build a client frame."""
    head = bytearray([(0x80 if fin else 0) | opcode])
    mask_bit = 0x80 if mask is not None else 0
    n = len(payload)
    if n < 126:
        head.append(mask_bit | n)
    elif n < 1 << 16:
        head.append(mask_bit | 126)
        head += struct.pack('!H', n)
    else:
        head.append(mask_bit | 127)
        head += struct.pack('!Q', n)
    if mask is not None:
        head += mask
        payload = _mask(payload, mask)
    return bytes(head) + payload


def _read_exact(rfile: t.BinaryIO, n: int) -> bytes:
    data = b''
    while len(data) < n:
        chunk = rfile.read(n - len(data))
        if not chunk:
            raise ConnectionClosed()
        data += chunk
    return data


def read_frame(rfile: t.BinaryIO) -> Frame:
    b0, b1 = _read_exact(rfile, 2)
    if b0 & 0x70:
        raise ProtocolError("reserved bits set")
    n = b1 & 0x7F
    if n == 126:
        n, = struct.unpack('!H', _read_exact(rfile, 2))
    elif n == 127:
        n, = struct.unpack('!Q', _read_exact(rfile, 8))
    if n > MAX_PAYLOAD:
        raise ProtocolError("frame too large")
    key = _read_exact(rfile, 4) if b1 & 0x80 else None
    payload = _read_exact(rfile, n)
    if key is not None:
        payload = _mask(payload, key)
    return Frame(bool(b0 & 0x80), b0 & 0x0F, payload)


class WebSocket:
    """One open websocket, bound to the connection's raw streams."""

    def __init__(self, rfile: t.BinaryIO, wfile: t.BinaryIO):
        self.rfile = rfile
        self.wfile = wfile
        self.closed = False

    def _send_frame(self, opcode: int, payload: bytes):
        self.wfile.write(encode_frame(opcode, payload))
        self.wfile.flush()

    def send(self, data: str | bytes):
        if isinstance(data, str):
            self._send_frame(Opcode.TEXT, data.encode('utf-8'))
        else:
            self._send_frame(Opcode.BINARY, bytes(data))

    def receive(self) -> str | bytes | None:
        """Next complete message; None once the connection is closed."""
        if self.closed:
            return None
        opcode, parts = None, []
        while True:
            try:
                frame = read_frame(self.rfile)
            except ConnectionClosed:
                self.closed = True
                return None
            match frame.opcode:
                case Opcode.PING:
                    self._send_frame(Opcode.PONG, frame.payload)
                    continue
                case Opcode.PONG:
                    continue
                case Opcode.CLOSE:
                    code = frame.payload[:2] or struct.pack('!H', CLOSE_NORMAL)
                    self.close(struct.unpack('!H', code)[0])
                    return None
                case Opcode.CONTINUATION:
                    if opcode is None:
                        raise ProtocolError("continuation without a message")
                case Opcode.TEXT | Opcode.BINARY:
                    if opcode is not None:
                        raise ProtocolError("message interleaved with fragments")
                    opcode = frame.opcode
                case _:
                    raise ProtocolError(f"unknown opcode {frame.opcode}")
            parts.append(frame.payload)
            if frame.fin:
                message = b''.join(parts)
                return message.decode('utf-8') if opcode == Opcode.TEXT else message

    def close(self, code: int = CLOSE_NORMAL):
        if self.closed:
            return
        self.closed = True
        try:
            self._send_frame(Opcode.CLOSE, struct.pack('!H', code))
        except OSError:
            pass  # peer already gone


def handshake(ctx: Context) -> WebSocket:
    """Validate the upgrade request, take over the connection and answer 101."""
    headers = ctx.request.headers
    if headers.get('Upgrade', '').lower() != 'websocket':
        raise HttpError(400, "Not a websocket handshake")
    if not (key := headers.get('Sec-WebSocket-Key')):
        raise HttpError(400, "Missing Sec-WebSocket-Key")
    if headers.get('Sec-WebSocket-Version') != VERSION:
        raise HttpError(426, "Unsupported websocket version",
                        headers={'Sec-WebSocket-Version': VERSION})
    rfile, wfile = ctx.response.hijack()
    ctx.response.write_header(101)
    wfile.write((
        "HTTP/1.1 101 Switching Protocols\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Accept: {accept_key(key)}\r\n"
        "\r\n").encode('ascii'))
    wfile.flush()
    return WebSocket(rfile, wfile)
