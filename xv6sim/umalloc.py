"""A first-fit free-list allocator over an sbrk-grown heap."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

HEADER_SIZE = 8  # bytes in one block header, the allocation unit
MIN_UNITS = 4096  # smallest request made to sbrk, in units

_BASE = 0  # address of the sentinel header, below the heap


@dataclass
class _Header:
    ptr: int
    size: int  # in units, header included


class Heap:
    """A heap from start up to limit, with addresses as plain integers."""

    def __init__(self, start: int = 4096, limit: int = 1 << 24):
        if start < HEADER_SIZE or start % HEADER_SIZE:
            raise ValueError("start must be a positive multiple of the header size")
        if limit < start:
            raise ValueError("limit must not be below start")
        self.start = start
        self.limit = limit
        self.brk = start
        self._headers: Dict[int, _Header] = {}
        self._freep: Optional[int] = None
        self._allocated: Set[int] = set()

    def sbrk(self, n: int) -> int:
        """Move the break by n bytes and return the old break."""
        new = self.brk + n
        if not self.start <= new <= self.limit:
            raise MemoryError(f"sbrk({n}) would move the break outside the heap")
        old = self.brk
        self.brk = new
        return old

    def _morecore(self, nunits: int) -> int:
        nunits = max(nunits, MIN_UNITS)
        p = self.sbrk(nunits * HEADER_SIZE)
        self._headers[p] = _Header(_BASE, nunits)
        self._release(p)
        return self._freep

    def malloc(self, nbytes: int) -> int:
        """Allocate nbytes and return the address of the usable space."""
        if nbytes < 0:
            raise ValueError("nbytes must not be negative")
        nunits = (nbytes + HEADER_SIZE - 1) // HEADER_SIZE + 1
        h = self._headers
        if self._freep is None:
            h[_BASE] = _Header(_BASE, 0)
            self._freep = _BASE
        prevp = self._freep
        p = h[prevp].ptr
        while True:
            block = h[p]
            if block.size >= nunits:
                if block.size == nunits:
                    h[prevp].ptr = block.ptr
                else:
                    block.size -= nunits
                    p += block.size * HEADER_SIZE
                    h[p] = _Header(_BASE, nunits)
                self._freep = prevp
                self._allocated.add(p)
                return p + HEADER_SIZE
            if p == self._freep:
                p = self._morecore(nunits)
            prevp, p = p, h[p].ptr

    def _release(self, bp: int) -> None:
        h = self._headers
        p = self._freep
        while not (p < bp < h[p].ptr):
            nxt = h[p].ptr
            if p >= nxt and (bp > p or bp < nxt):
                break
            p = nxt
        block = h[bp]
        cur = h[p]
        if bp + block.size * HEADER_SIZE == cur.ptr:
            upper = h.pop(cur.ptr)
            block.size += upper.size
            block.ptr = upper.ptr
        else:
            block.ptr = cur.ptr
        if p + cur.size * HEADER_SIZE == bp:
            cur.size += block.size
            cur.ptr = block.ptr
            del h[bp]
        else:
            cur.ptr = bp
        self._freep = p

    def free(self, addr: int) -> None:
        """Return a block obtained from malloc to the free list."""
        bp = addr - HEADER_SIZE
        if bp not in self._allocated:
            raise ValueError(f"free of address {addr:#x} that is not allocated")
        self._allocated.remove(bp)
        self._release(bp)

    def free_blocks(self) -> List[Tuple[int, int]]:
        """Free blocks in address order as (header address, size in bytes)."""
        if self._freep is None:
            return []
        blocks = []
        p = self._headers[_BASE].ptr
        while p != _BASE:
            blocks.append((p, self._headers[p].size * HEADER_SIZE))
            p = self._headers[p].ptr
        return blocks