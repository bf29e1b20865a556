"""NUL-terminated byte string and memory helpers."""

from __future__ import annotations

from typing import BinaryIO


def _as_bytes(s) -> bytes:
    if isinstance(s, str):
        return s.encode("latin-1")
    return bytes(s)


def _cstr(s) -> bytes:
    """The bytes of s up to, not including, the first NUL."""
    data = _as_bytes(s)
    end = data.find(b"\0")
    return data if end < 0 else data[:end]


def _byte(c) -> int:
    if isinstance(c, int):
        return c & 0xFF
    data = _as_bytes(c)
    if len(data) != 1:
        raise ValueError("expected a single character")
    return data[0]


def memcmp(a, b, n: int) -> int:
    """Compare the first n bytes; return the difference of the first mismatch."""
    a, b = _as_bytes(a), _as_bytes(b)
    if n > len(a) or n > len(b):
        raise ValueError("n exceeds buffer length")
    for x, y in zip(a[:n], b[:n]):
        if x != y:
            return x - y
    return 0


def memmove(buf: bytearray, dst: int, src: int, n: int) -> bytearray:
    """Copy n bytes within buf from src to dst; overlapping ranges are safe."""
    if n < 0 or min(dst, src) < 0 or max(dst, src) + n > len(buf):
        raise ValueError("range outside buffer")
    buf[dst:dst + n] = bytes(buf[src:src + n])
    return buf


def strncmp(p, q, n: int) -> int:
    """Compare at most n characters of two NUL-terminated strings."""
    p, q = _cstr(p), _cstr(q)
    for i in range(n):
        a = p[i] if i < len(p) else 0
        b = q[i] if i < len(q) else 0
        if a == 0 or a != b:
            return a - b
    return 0


def strcmp(p, q) -> int:
    """Compare two NUL-terminated strings."""
    p, q = _cstr(p), _cstr(q)
    return strncmp(p, q, max(len(p), len(q)) + 1)


def strncpy(t, n: int) -> bytes:
    """The n-byte buffer strncpy would fill: t, then NUL padding; unterminated if t is too long."""
    if n <= 0:
        return b""
    return _cstr(t)[:n].ljust(n, b"\0")


def safestrcpy(t, n: int) -> bytes:
    """The string left by copying t into an n-byte buffer that is always NUL-terminated."""
    if n <= 0:
        return b""
    return _cstr(t)[:n - 1]


def strlen(s) -> int:
    """Length up to the first NUL."""
    return len(_cstr(s))


def strchr(s, c) -> int | None:
    """Index of the first c before the terminating NUL, or None."""
    target = _byte(c)
    if target == 0:
        return None
    idx = _cstr(s).find(bytes([target]))
    return None if idx < 0 else idx


def atoi(s) -> int:
    """Value of the leading decimal digits of s; no sign or whitespace is accepted."""
    n = 0
    for ch in _as_bytes(s):
        if not 0x30 <= ch <= 0x39:
            break
        n = n * 10 + ch - 0x30
    return n


def gets(stream: BinaryIO, limit: int) -> bytes:
    """Read one line of at most limit-1 bytes, keeping the '\\n' or '\\r' that ends it."""
    out = bytearray()
    while len(out) + 1 < limit:
        c = stream.read(1)
        if not c:
            break
        out += c
        if c in (b"\n", b"\r"):
            break
    return bytes(out)