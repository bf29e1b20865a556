"""Count lines, words and bytes."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Iterator

_CHUNK = 512
# A NUL byte also ends a word.
_SEPARATORS = frozenset(b" \r\t\n\v\0")


@dataclass(frozen=True)
class Counts:
    """Line, word and byte counts."""

    lines: int = 0
    words: int = 0
    chars: int = 0

    def format(self, name: str) -> str:
        return f"{self.lines} {self.words} {self.chars} {name}"


def _chunks(data) -> Iterator[bytes]:
    if hasattr(data, "read"):
        yield from iter(lambda: data.read(_CHUNK), b"")
    else:
        yield bytes(data)


def count(data) -> Counts:
    """Count bytes-like data or everything readable from a binary stream."""
    lines = words = chars = 0
    inword = False
    for chunk in _chunks(data):
        chars += len(chunk)
        lines += chunk.count(b"\n")
        for byte in chunk:
            if byte in _SEPARATORS:
                inword = False
            elif not inword:
                words += 1
                inword = True
    return Counts(lines, words, chars)


def _report(stream, name: str) -> int:
    try:
        counts = count(stream)
    except OSError:
        print("wc: read error")
        return 1
    print(counts.format(name))
    return 0


def main(argv=None) -> int:
    """Print counts for each named file, or for standard input if none."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        return _report(sys.stdin.buffer, "")
    for name in args:
        try:
            stream = open(name, "rb")
        except OSError:
            print(f"wc: cannot open {name}")
            return 1
        with stream:
            status = _report(stream, name)
        if status:
            return status
    return 0