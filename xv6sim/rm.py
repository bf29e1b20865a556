"""Remove files."""

from __future__ import annotations

import os
import sys


def _unlink(path: str) -> None:
    # Empty directories may be unlinked as well.
    if os.path.isdir(path) and not os.path.islink(path):
        os.rmdir(path)
    else:
        os.unlink(path)


def main(argv=None) -> int:
    """Remove each named file, stopping at the first failure."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: rm files...", file=sys.stderr)
        return 1
    for name in args:
        try:
            _unlink(name)
        except OSError:
            print(f"rm: {name} failed to delete", file=sys.stderr)
            return 1
    return 0