"""Format of an ELF executable file."""

from __future__ import annotations

import struct
from dataclasses import astuple, dataclass
from typing import ClassVar, Iterator

ELF_MAGIC = 0x464C457F  # "\x7FELF" in little endian

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4


class ElfFormatError(ValueError):
    """Raised when bytes do not hold a valid ELF structure."""


@dataclass
class ElfHeader:
    """ELF file header."""

    FORMAT: ClassVar[str] = "<I12sHHIIIIIHHHHHH"
    SIZE: ClassVar[int] = struct.calcsize("<I12sHHIIIIIHHHHHH")

    magic: int = ELF_MAGIC
    elf: bytes = bytes(12)
    type: int = 0
    machine: int = 0
    version: int = 0
    entry: int = 0
    phoff: int = 0
    shoff: int = 0
    flags: int = 0
    ehsize: int = 0
    phentsize: int = 0
    phnum: int = 0
    shentsize: int = 0
    shnum: int = 0
    shstrndx: int = 0

    def __post_init__(self):
        if len(self.elf) != 12:
            raise ElfFormatError("identification bytes must be 12 long")

    @classmethod
    def unpack(cls, data):
        data = bytes(data)
        if len(data) < cls.SIZE:
            raise ElfFormatError("data too short for an ELF header")
        header = cls(*struct.unpack_from(cls.FORMAT, data))
        if header.magic != ELF_MAGIC:
            raise ElfFormatError(f"bad ELF magic {header.magic:#x}")
        return header

    def pack(self) -> bytes:
        return struct.pack(self.FORMAT, *astuple(self))


@dataclass
class ProgramHeader:
    """ELF program section header."""

    FORMAT: ClassVar[str] = "<8I"
    SIZE: ClassVar[int] = struct.calcsize("<8I")

    type: int = 0
    off: int = 0
    vaddr: int = 0
    paddr: int = 0
    filesz: int = 0
    memsz: int = 0
    flags: int = 0
    align: int = 0

    @property
    def loadable(self) -> bool:
        return self.type == ELF_PROG_LOAD

    @property
    def executable(self) -> bool:
        return bool(self.flags & ELF_PROG_FLAG_EXEC)

    @property
    def writable(self) -> bool:
        return bool(self.flags & ELF_PROG_FLAG_WRITE)

    @property
    def readable(self) -> bool:
        return bool(self.flags & ELF_PROG_FLAG_READ)

    @classmethod
    def unpack(cls, data):
        data = bytes(data)
        if len(data) < cls.SIZE:
            raise ElfFormatError("data too short for a program header")
        return cls(*struct.unpack_from(cls.FORMAT, data))

    def pack(self) -> bytes:
        return struct.pack(self.FORMAT, *astuple(self))


def program_headers(data) -> Iterator[ProgramHeader]:
    """Yield the program headers of an ELF image, in table order."""
    data = bytes(data)
    header = ElfHeader.unpack(data)
    for i in range(header.phnum):
        off = header.phoff + i * ProgramHeader.SIZE
        yield ProgramHeader.unpack(data[off:off + ProgramHeader.SIZE])