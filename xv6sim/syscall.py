"""System call numbers, argument fetching and dispatch."""

from __future__ import annotations

import enum
import struct
import sys
from typing import Callable, Dict, Optional, TextIO

_MASK32 = 0xFFFFFFFF


class SyscallNumber(enum.IntEnum):
    FORK = 1
    EXIT = 2
    WAIT = 3
    PIPE = 4
    READ = 5
    KILL = 6
    EXEC = 7
    FSTAT = 8
    CHDIR = 9
    DUP = 10
    GETPID = 11
    SBRK = 12
    SLEEP = 13
    UPTIME = 14
    OPEN = 15
    WRITE = 16
    MKNOD = 17
    UNLINK = 18
    LINK = 19
    MKDIR = 20
    CLOSE = 21


_NSYSCALLS = max(SyscallNumber) + 1


class BadArgument(Exception):
    """A system call argument lies outside the process's memory."""


class UserMemory:
    """A process's memory from address 0 to its size, with its saved user %esp."""

    def __init__(self, data, esp: int):
        self.data = data if isinstance(data, bytearray) else bytearray(data)
        self.esp = esp & _MASK32

    @property
    def sz(self) -> int:
        return len(self.data)

    def fetch_int(self, addr: int) -> int:
        """The 32-bit signed integer at addr."""
        addr &= _MASK32
        if addr >= self.sz or addr + 4 > self.sz:
            raise BadArgument(f"int at {addr:#x} outside process memory")
        return struct.unpack_from("<i", self.data, addr)[0]

    def fetch_str(self, addr: int) -> bytes:
        """The NUL-terminated string at addr, without its NUL."""
        addr &= _MASK32
        if addr >= self.sz:
            raise BadArgument(f"string at {addr:#x} outside process memory")
        end = self.data.find(0, addr)
        if end < 0:
            raise BadArgument(f"string at {addr:#x} is not terminated")
        return bytes(self.data[addr:end])

    def arg_int(self, n: int) -> int:
        """The nth 32-bit system call argument."""
        return self.fetch_int(self.esp + 4 + 4 * n)

    def arg_ptr(self, n: int, size: int) -> int:
        """The nth argument as the address of a block of size bytes inside memory."""
        addr = self.arg_int(n) & _MASK32
        if addr >= self.sz or ((addr + size) & _MASK32) > self.sz:
            raise BadArgument(f"block at {addr:#x} of {size} bytes outside process memory")
        return addr

    def arg_str(self, n: int) -> bytes:
        """The nth argument as a NUL-terminated string."""
        return self.fetch_str(self.arg_int(n))


class SyscallTable:
    """Maps system call numbers to handlers and runs them."""

    def __init__(self, console: Optional[TextIO] = None):
        self._handlers: Dict[int, Callable[[], int]] = {}
        self._console = console

    def register(self, num: int, handler: Callable[[], int]) -> Callable[[], int]:
        num = int(num)
        if not 0 < num < _NSYSCALLS:
            raise ValueError(f"no system call slot {num}")
        self._handlers[num] = handler
        return handler

    def dispatch(self, num: int, pid: int, name: str) -> int:
        """Run the handler for num and return its result, or -1 if there is none."""
        handler = self._handlers.get(num) if 0 < num < _NSYSCALLS else None
        if handler is None:
            out = self._console if self._console is not None else sys.stdout
            out.write(f"{pid} {name}: unknown sys call {num}\n")
            return -1
        try:
            return handler()
        except BadArgument:
            return -1