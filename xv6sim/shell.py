"""Command-line parser for the shell: tokens, command trees and open modes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Tuple, Union

WHITESPACE = " \t\r\n\v"
SYMBOLS = "<|>&;()"
MAXARGS = 10


class ShellSyntaxError(Exception):
    """Raised when a command line cannot be parsed."""


class OpenMode(enum.IntFlag):
    """Flags passed to open() for redirections."""

    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200


@dataclass
class ExecCmd:
    """Run a program with arguments; argv[0] names the program."""

    argv: List[str] = field(default_factory=list)


@dataclass
class RedirCmd:
    """Run cmd with file opened in mode on descriptor fd."""

    cmd: "Command"
    file: str
    mode: OpenMode
    fd: int


@dataclass
class PipeCmd:
    """Connect the output of left to the input of right."""

    left: "Command"
    right: "Command"


@dataclass
class ListCmd:
    """Run left, wait for it, then run right."""

    left: "Command"
    right: "Command"


@dataclass
class BackCmd:
    """Run cmd in the background."""

    cmd: "Command"


Command = Union[ExecCmd, RedirCmd, PipeCmd, ListCmd, BackCmd]


class Tokenizer:
    """Splits a command line into words and shell symbols."""

    def __init__(self, s: str):
        end = s.find("\0")
        self.s = s if end < 0 else s[:end]
        self.pos = 0

    @property
    def rest(self) -> str:
        """The text not yet consumed."""
        return self.s[self.pos:]

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.s)

    def _skip_whitespace(self) -> None:
        while self.pos < len(self.s) and self.s[self.pos] in WHITESPACE:
            self.pos += 1

    def gettoken(self) -> Tuple[str, str]:
        """Consume one token and return its kind and its text.

        The kind is the symbol itself, '+' for '>>', 'a' for a word,
        or '' at the end of the line.
        """
        self._skip_whitespace()
        s = self.s
        start = self.pos
        if start >= len(s):
            return "", ""
        ch = s[start]
        if ch in "|();&<":
            tok = ch
            self.pos += 1
        elif ch == ">":
            tok = ">"
            self.pos += 1
            if self.pos < len(s) and s[self.pos] == ">":
                tok = "+"
                self.pos += 1
        else:
            tok = "a"
            while (self.pos < len(s) and s[self.pos] not in WHITESPACE
                   and s[self.pos] not in SYMBOLS):
                self.pos += 1
        text = s[start:self.pos]
        self._skip_whitespace()
        return tok, text

    def peek(self, toks: str) -> bool:
        """Skip whitespace and report whether the next character is one of toks."""
        self._skip_whitespace()
        return self.pos < len(self.s) and self.s[self.pos] in toks


class _Parser:
    def __init__(self, s: str):
        self.t = Tokenizer(s)

    def line(self) -> Command:
        cmd = self.pipe()
        while self.t.peek("&"):
            self.t.gettoken()
            cmd = BackCmd(cmd)
        if self.t.peek(";"):
            self.t.gettoken()
            cmd = ListCmd(cmd, self.line())
        return cmd

    def pipe(self) -> Command:
        cmd = self.exec()
        if self.t.peek("|"):
            self.t.gettoken()
            cmd = PipeCmd(cmd, self.pipe())
        return cmd

    def redirs(self, cmd: Command) -> Command:
        while self.t.peek("<>"):
            tok, _ = self.t.gettoken()
            kind, file = self.t.gettoken()
            if kind != "a":
                raise ShellSyntaxError("missing file for redirection")
            if tok == "<":
                cmd = RedirCmd(cmd, file, OpenMode.RDONLY, 0)
            else:  # '>' and '>>'
                cmd = RedirCmd(cmd, file, OpenMode.WRONLY | OpenMode.CREATE, 1)
        return cmd

    def block(self) -> Command:
        if not self.t.peek("("):
            raise ShellSyntaxError("parseblock")
        self.t.gettoken()
        cmd = self.line()
        if not self.t.peek(")"):
            raise ShellSyntaxError("syntax - missing )")
        self.t.gettoken()
        return self.redirs(cmd)

    def exec(self) -> Command:
        if self.t.peek("("):
            return self.block()
        cmd = ExecCmd()
        ret: Command = self.redirs(cmd)
        while not self.t.peek("|)&;"):
            tok, text = self.t.gettoken()
            if tok == "":
                break
            if tok != "a":
                raise ShellSyntaxError("syntax")
            cmd.argv.append(text)
            if len(cmd.argv) >= MAXARGS:
                raise ShellSyntaxError("too many args")
            ret = self.redirs(ret)
        return ret


def parse_cmd(s: str) -> Command:
    """Parse a whole command line into a command tree."""
    parser = _Parser(s)
    cmd = parser.line()
    parser.t.peek("")
    if not parser.t.at_end:
        raise ShellSyntaxError(f"leftovers: {parser.t.rest}")
    return cmd