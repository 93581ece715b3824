"""Encrypted and authenticated cookie values.

A value is encrypted with AES-256 in counter mode under a random IV, and the
whole ciphertext (IV included) is signed with HMAC-SHA-512 under a second,
independently derived key. The wire form is::

    base64(IV ∥ ciphertext) "|" base64(mac)

Decoding never says why a value was rejected.
"""
import base64
import binascii
import hashlib
import hmac
import os

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

PBKDF2_ITERATIONS = 64000
KEY_SIZE = 32
BLOCK_SIZE = 16

ENCRYPTION_SALT = b"tinyweb secure cookie encryption"
SIGNING_SALT = b"tinyweb secure cookie signing"


def gen_key(secret: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac('sha512', secret.encode('utf-8'), salt,
                               PBKDF2_ITERATIONS, KEY_SIZE)


def derive_keys(secret: str) -> tuple[bytes, bytes]:
    """(encryption key, signing key) for a cookie secret; empty if no secret."""
    if not secret:
        return b'', b''
    return gen_key(secret, ENCRYPTION_SALT), gen_key(secret, SIGNING_SALT)


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    iv = os.urandom(BLOCK_SIZE)
    encryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return iv + encryptor.update(plaintext) + encryptor.finalize()


def decrypt(ciphertext: bytes, key: bytes) -> bytes:
    if len(ciphertext) < BLOCK_SIZE:
        raise ValueError("invalid cipher text")
    iv, body = ciphertext[:BLOCK_SIZE], ciphertext[BLOCK_SIZE:]
    decryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).decryptor()
    return decryptor.update(body) + decryptor.finalize()


def sign(data: bytes, key: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha512).digest()


def encode_value(plaintext: str, enc_key: bytes, sign_key: bytes) -> str:
    ciphertext = encrypt(plaintext.encode('utf-8'), enc_key)
    mac = sign(ciphertext, sign_key)
    return "|".join((base64.b64encode(ciphertext).decode('ascii'),
                     base64.b64encode(mac).decode('ascii')))


def _b64decode(field: str) -> bytes:
    raw = base64.b64decode(field, validate=True)
    # unused trailing bits would let a tampered field decode to the same bytes
    if base64.b64encode(raw).decode('ascii') != field:
        raise ValueError("non-canonical base64")
    return raw


def decode_value(value: str, enc_key: bytes, sign_key: bytes) -> str | None:
    """Plaintext of an encoded value, or None if it is not authentic."""
    if not enc_key or not sign_key:
        return None
    parts = value.split("|")
    if len(parts) != 2:
        return None
    try:
        ciphertext, mac = _b64decode(parts[0]), _b64decode(parts[1])
    except (binascii.Error, ValueError):
        return None
    if not hmac.compare_digest(sign(ciphertext, sign_key), mac):
        return None
    try:
        return decrypt(ciphertext, enc_key).decode('utf-8')
    except ValueError:  # includes UnicodeDecodeError
        return None
