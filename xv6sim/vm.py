"""Two-level x86 page tables kept in a simulated physical memory."""

from __future__ import annotations

import struct
from typing import Iterable, Optional, Tuple

from .mmu import (
    KERNBASE,
    NPDENTRIES,
    NPTENTRIES,
    PGSIZE,
    PHYSTOP,
    PTE_P,
    PTE_U,
    PTE_W,
    p2v,
    pdx,
    pgrounddown,
    pgroundup,
    pte_addr,
    pte_flags,
    ptx,
    v2p,
)

_MASK32 = 0xFFFFFFFF
_ENTRY = struct.Struct("<I")

KernelMapping = Tuple[int, int, int, int]  # virt, phys_start, phys_end, perm


class VMError(Exception):
    """Raised where the kernel would panic or report a bad address."""


class OutOfMemory(VMError):
    """Raised when no physical page is left to allocate."""


class PhysicalMemory:
    """A pool of physical pages handed out one page at a time."""

    def __init__(self, npages: int = 256, base: int = 0x400000):
        if npages <= 0:
            raise ValueError("npages must be positive")
        if base < 0 or base % PGSIZE:
            raise ValueError("base must be a page-aligned address")
        self.base = base
        self.end = base + npages * PGSIZE
        if self.end > PHYSTOP:
            raise ValueError("physical memory would extend past PHYSTOP")
        self._data = bytearray(npages * PGSIZE)
        self._free = list(range(base, self.end, PGSIZE))
        self._free_set = set(self._free)

    def alloc_page(self) -> int:
        """Take a free page and return its physical address."""
        if not self._free:
            raise OutOfMemory("out of physical pages")
        pa = self._free.pop()
        self._free_set.discard(pa)
        return pa

    def free_page(self, pa: int) -> None:
        """Return a page to the pool."""
        if pa % PGSIZE or not self.base <= pa < self.end:
            raise VMError(f"kfree: bad page address {pa:#x}")
        if pa in self._free_set:
            raise VMError(f"kfree: page {pa:#x} is already free")
        self._free.append(pa)
        self._free_set.add(pa)

    def _offset(self, pa: int, n: int) -> int:
        if n < 0 or pa < self.base or pa + n > self.end:
            raise VMError(f"physical range {pa:#x}+{n} outside memory")
        return pa - self.base

    def read(self, pa: int, n: int) -> bytes:
        off = self._offset(pa, n)
        return bytes(self._data[off:off + n])

    def write(self, pa: int, data) -> None:
        data = bytes(data)
        off = self._offset(pa, len(data))
        self._data[off:off + len(data)] = data

    def free_count(self) -> int:
        return len(self._free)

    def _zero(self, pa: int) -> None:
        self.write(pa, bytes(PGSIZE))


class AddressSpace:
    """A page directory with its page tables, plus the kernel mappings given."""

    def __init__(self, mem: PhysicalMemory, kmap: Iterable[KernelMapping] = ()):
        self.mem = mem
        self.kmap: Tuple[KernelMapping, ...] = tuple(tuple(k) for k in kmap)
        self.pgdir = mem.alloc_page()
        mem._zero(self.pgdir)
        self._freed = False
        try:
            for virt, phys_start, phys_end, perm in self.kmap:
                self.map_pages(virt, (phys_end - phys_start) & _MASK32, phys_start, perm)
        except VMError:
            self.free()
            raise

    def _get(self, pa: int) -> int:
        return _ENTRY.unpack(self.mem.read(pa, 4))[0]

    def _put(self, pa: int, value: int) -> None:
        self.mem.write(pa, _ENTRY.pack(value & _MASK32))

    def _check_live(self) -> None:
        if self._freed:
            raise VMError("address space has been freed")

    def walk(self, va: int, alloc: bool = False) -> Optional[int]:
        """Physical address of the PTE for va, creating its page table if alloc."""
        self._check_live()
        pde_pa = self.pgdir + 4 * pdx(va)
        pde = self._get(pde_pa)
        if pde & PTE_P:
            pgtab = pte_addr(pde)
        else:
            if not alloc:
                return None
            pgtab = self.mem.alloc_page()
            self.mem._zero(pgtab)
            self._put(pde_pa, pgtab | PTE_P | PTE_W | PTE_U)
        return pgtab + 4 * ptx(va)

    def map_pages(self, va: int, size: int, pa: int, perm: int) -> None:
        """Map [va, va+size) to physical memory starting at pa."""
        if size <= 0:
            raise ValueError("size must be positive")
        a = pgrounddown(va)
        last = pgrounddown(va + size - 1)
        while True:
            pte = self.walk(a, True)
            if self._get(pte) & PTE_P:
                raise VMError(f"remap of {a:#x}")
            self._put(pte, pa | perm | PTE_P)
            if a == last:
                break
            a = (a + PGSIZE) & _MASK32
            pa = (pa + PGSIZE) & _MASK32

    def init_code(self, code) -> None:
        """Load code, smaller than a page, at address 0."""
        code = bytes(code)
        if len(code) >= PGSIZE:
            raise VMError("inituvm: more than a page")
        page = self.mem.alloc_page()
        self.mem._zero(page)
        self.map_pages(0, PGSIZE, page, PTE_W | PTE_U)
        self.mem.write(page, code)

    def load(self, va: int, data) -> None:
        """Copy data into already mapped pages starting at page-aligned va."""
        if va % PGSIZE:
            raise VMError("loaduvm: addr must be page aligned")
        data = bytes(data)
        for i in range(0, len(data), PGSIZE):
            pte = self.walk(va + i, False)
            if pte is None:
                raise VMError("loaduvm: address should exist")
            self.mem.write(pte_addr(self._get(pte)), data[i:i + PGSIZE])

    def grow(self, oldsz: int, newsz: int) -> int:
        """Allocate zeroed user pages to grow from oldsz to newsz; return the new size."""
        if newsz >= KERNBASE:
            raise VMError("allocuvm: size reaches kernel space")
        if newsz < oldsz:
            return oldsz
        for a in range(pgroundup(oldsz), newsz, PGSIZE):
            try:
                page = self.mem.alloc_page()
            except OutOfMemory:
                self.shrink(newsz, oldsz)
                raise
            self.mem._zero(page)
            try:
                self.map_pages(a, PGSIZE, page, PTE_W | PTE_U)
            except OutOfMemory:
                self.mem.free_page(page)
                self.shrink(newsz, oldsz)
                raise
        return newsz

    def shrink(self, oldsz: int, newsz: int) -> int:
        """Free user pages to bring the size from oldsz down to newsz; return the new size."""
        if newsz >= oldsz:
            return oldsz
        a = pgroundup(newsz)
        while a < oldsz:
            pte = self.walk(a, False)
            if pte is None:
                a += (NPTENTRIES - 1) * PGSIZE
            else:
                entry = self._get(pte)
                if entry & PTE_P:
                    pa = pte_addr(entry)
                    if pa == 0:
                        raise VMError("kfree")
                    self.mem.free_page(pa)
                    self._put(pte, 0)
            a += PGSIZE
        return newsz

    def free(self) -> None:
        """Free all user pages, every page table and the directory itself."""
        if self._freed:
            raise VMError("freevm: no pgdir")
        self.shrink(KERNBASE, 0)
        directory = self.mem.read(self.pgdir, NPDENTRIES * 4)
        for (pde,) in _ENTRY.iter_unpack(directory):
            if pde & PTE_P:
                self.mem.free_page(pte_addr(pde))
        self.mem.free_page(self.pgdir)
        self._freed = True

    def clear_user(self, va: int) -> None:
        """Clear PTE_U on the page holding va, making it a guard page."""
        pte = self.walk(va, False)
        if pte is None:
            raise VMError("clearpteu")
        self._put(pte, self._get(pte) & ~PTE_U)

    def copy(self, sz: int) -> "AddressSpace":
        """A new address space holding a copy of the first sz bytes of user memory."""
        child = AddressSpace(self.mem, self.kmap)
        try:
            for i in range(0, sz, PGSIZE):
                pte = self.walk(i, False)
                if pte is None:
                    raise VMError("copyuvm: pte should exist")
                entry = self._get(pte)
                if not entry & PTE_P:
                    raise VMError("copyuvm: page not present")
                page = self.mem.alloc_page()
                self.mem.write(page, self.mem.read(pte_addr(entry), PGSIZE))
                try:
                    child.map_pages(i, PGSIZE, page, pte_flags(entry))
                except VMError:
                    self.mem.free_page(page)
                    raise
        except VMError:
            child.free()
            raise
        return child

    def uva2ka(self, va: int) -> Optional[int]:
        """Kernel virtual address of the user page at va, or None if not user-mapped."""
        pte = self.walk(va, False)
        if pte is None:
            return None
        entry = self._get(pte)
        if not entry & PTE_P or not entry & PTE_U:
            return None
        return p2v(pte_addr(entry))

    def _user_chunks(self, va: int, n: int):
        va &= _MASK32
        pos = 0
        while pos < n:
            va0 = pgrounddown(va)
            ka = self.uva2ka(va0)
            if ka is None:
                raise VMError(f"user address {va0:#x} is not mapped")
            count = min(PGSIZE - (va - va0), n - pos)
            yield v2p(ka) + (va - va0), pos, count
            pos += count
            va = va0 + PGSIZE

    def copyout(self, va: int, data) -> None:
        """Copy data to user address va; only user pages may be written."""
        data = bytes(data)
        for pa, pos, count in self._user_chunks(va, len(data)):
            self.mem.write(pa, data[pos:pos + count])

    def read(self, va: int, n: int) -> bytes:
        """Read n bytes of user memory starting at va."""
        out = bytearray()
        for pa, _, count in self._user_chunks(va, n):
            out += self.mem.read(pa, count)
        return bytes(out)