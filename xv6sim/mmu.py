"""x86 memory-management unit definitions and the kernel memory layout."""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields

# Memory layout
EXTMEM = 0x100000
PHYSTOP = 0xE000000
DEVSPACE = 0xFE000000
KERNBASE = 0x80000000
KERNLINK = KERNBASE + EXTMEM

_MASK32 = 0xFFFFFFFF

# Eflags register
FL_CF = 0x00000001
FL_PF = 0x00000004
FL_AF = 0x00000010
FL_ZF = 0x00000040
FL_SF = 0x00000080
FL_TF = 0x00000100
FL_IF = 0x00000200
FL_DF = 0x00000400
FL_OF = 0x00000800
FL_IOPL_MASK = 0x00003000
FL_IOPL_0 = 0x00000000
FL_IOPL_1 = 0x00001000
FL_IOPL_2 = 0x00002000
FL_IOPL_3 = 0x00003000
FL_NT = 0x00004000
FL_RF = 0x00010000
FL_VM = 0x00020000
FL_AC = 0x00040000
FL_VIF = 0x00080000
FL_VIP = 0x00100000
FL_ID = 0x00200000

# Control register flags
CR0_PE = 0x00000001
CR0_MP = 0x00000002
CR0_EM = 0x00000004
CR0_TS = 0x00000008
CR0_ET = 0x00000010
CR0_NE = 0x00000020
CR0_WP = 0x00010000
CR0_AM = 0x00040000
CR0_NW = 0x20000000
CR0_CD = 0x40000000
CR0_PG = 0x80000000

CR4_PSE = 0x00000010

# Segment selectors
SEG_KCODE = 1
SEG_KDATA = 2
SEG_KCPU = 3
SEG_UCODE = 4
SEG_UDATA = 5
SEG_TSS = 6

DPL_USER = 0x3

# Application segment type bits
STA_X = 0x8
STA_E = 0x4
STA_C = 0x4
STA_W = 0x2
STA_R = 0x2
STA_A = 0x1

# System segment type bits
STS_T16A = 0x1
STS_LDT = 0x2
STS_T16B = 0x3
STS_CG16 = 0x4
STS_TG = 0x5
STS_IG16 = 0x6
STS_TG16 = 0x7
STS_T32A = 0x9
STS_T32B = 0xB
STS_CG32 = 0xC
STS_IG32 = 0xE
STS_TG32 = 0xF

# Paging
NPDENTRIES = 1024
NPTENTRIES = 1024
PGSIZE = 4096
PGSHIFT = 12
PTXSHIFT = 12
PDXSHIFT = 22

PTE_P = 0x001
PTE_W = 0x002
PTE_U = 0x004
PTE_PWT = 0x008
PTE_PCD = 0x010
PTE_A = 0x020
PTE_D = 0x040
PTE_PS = 0x080
PTE_MBZ = 0x180


def pdx(va: int) -> int:
    """Page directory index of a virtual address."""
    return ((va & _MASK32) >> PDXSHIFT) & 0x3FF


def ptx(va: int) -> int:
    """Page table index of a virtual address."""
    return ((va & _MASK32) >> PTXSHIFT) & 0x3FF


def pgaddr(d: int, t: int, o: int) -> int:
    """Build a virtual address from directory index, table index and offset."""
    return ((d << PDXSHIFT) | (t << PTXSHIFT) | o) & _MASK32


def pgroundup(sz: int) -> int:
    """Round up to the next page boundary."""
    return (sz + PGSIZE - 1) & ~(PGSIZE - 1) & _MASK32


def pgrounddown(a: int) -> int:
    """Round down to a page boundary."""
    return a & ~(PGSIZE - 1) & _MASK32


def pte_addr(pte: int) -> int:
    """Physical address held in a page table entry."""
    return pte & ~0xFFF & _MASK32


def pte_flags(pte: int) -> int:
    """Flag bits of a page table entry."""
    return pte & 0xFFF


def v2p(a: int) -> int:
    """Kernel virtual address to physical address."""
    return (a - KERNBASE) & _MASK32


def p2v(a: int) -> int:
    """Physical address to kernel virtual address."""
    return (a + KERNBASE) & _MASK32


def _check_fields(obj, layout):
    for name, width in layout:
        value = getattr(obj, name)
        if not 0 <= value < (1 << width):
            raise ValueError(f"{name}={value} does not fit in {width} bits")


def _pack_fields(obj, layout) -> bytes:
    value = 0
    shift = 0
    for name, width in layout:
        value |= getattr(obj, name) << shift
        shift += width
    return struct.pack("<Q", value)


def _unpack_fields(layout, data) -> dict:
    data = bytes(data)
    if len(data) != 8:
        raise ValueError(f"descriptor must be 8 bytes, got {len(data)}")
    (value,) = struct.unpack("<Q", data)
    result = {}
    for name, width in layout:
        result[name] = value & ((1 << width) - 1)
        value >>= width
    return result


@dataclass
class SegmentDescriptor:
    """An x86 segment descriptor."""

    lim_15_0: int = 0
    base_15_0: int = 0
    base_23_16: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    lim_19_16: int = 0
    avl: int = 0
    rsv1: int = 0
    db: int = 0
    g: int = 0
    base_31_24: int = 0

    def __post_init__(self):
        _check_fields(self, _SEG_LAYOUT)

    @classmethod
    def seg(cls, type, base, lim, dpl):
        """A normal 32-bit segment with 4K granularity."""
        base &= _MASK32
        lim &= _MASK32
        return cls(
            (lim >> 12) & 0xFFFF, base & 0xFFFF, (base >> 16) & 0xFF,
            type, 1, dpl, 1, (lim >> 28) & 0xF, 0, 0, 1, 1, base >> 24,
        )

    @classmethod
    def seg16(cls, type, base, lim, dpl):
        """A byte-granular segment, as used for the task state segment."""
        base &= _MASK32
        lim &= _MASK32
        return cls(
            lim & 0xFFFF, base & 0xFFFF, (base >> 16) & 0xFF,
            type, 1, dpl, 1, (lim >> 16) & 0xF, 0, 0, 1, 0, base >> 24,
        )

    @property
    def base(self) -> int:
        return self.base_15_0 | (self.base_23_16 << 16) | (self.base_31_24 << 24)

    @property
    def limit(self) -> int:
        raw = self.lim_15_0 | (self.lim_19_16 << 16)
        return (raw << 12) | 0xFFF if self.g else raw

    def pack(self) -> bytes:
        return _pack_fields(self, _SEG_LAYOUT)

    @classmethod
    def unpack(cls, data):
        return cls(**_unpack_fields(_SEG_LAYOUT, data))


_SEG_LAYOUT = tuple(
    zip((f.name for f in fields(SegmentDescriptor)),
        (16, 16, 8, 4, 1, 2, 1, 4, 1, 1, 1, 1, 8))
)


@dataclass
class GateDescriptor:
    """An x86 interrupt or trap gate descriptor."""

    off_15_0: int = 0
    cs: int = 0
    args: int = 0
    rsv1: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    off_31_16: int = 0

    def __post_init__(self):
        _check_fields(self, _GATE_LAYOUT)

    @classmethod
    def gate(cls, istrap, sel, off, dpl):
        """A trap gate if istrap, else an interrupt gate (which clears FL_IF)."""
        off &= _MASK32
        return cls(
            off & 0xFFFF, sel, 0, 0, STS_TG32 if istrap else STS_IG32,
            0, dpl, 1, off >> 16,
        )

    @property
    def offset(self) -> int:
        return self.off_15_0 | (self.off_31_16 << 16)

    def pack(self) -> bytes:
        return _pack_fields(self, _GATE_LAYOUT)

    @classmethod
    def unpack(cls, data):
        return cls(**_unpack_fields(_GATE_LAYOUT, data))


_GATE_LAYOUT = tuple(
    zip((f.name for f in fields(GateDescriptor)), (16, 16, 5, 3, 4, 1, 2, 1, 16))
)