import pytest

from xv6sim.mmu import (
    DPL_USER, EXTMEM, KERNBASE, KERNLINK, NPDENTRIES, NPTENTRIES, PGSIZE,
    PTE_P, PTE_U, PTE_W, SEG_KCODE, STA_R, STA_W, STA_X, STS_IG32, STS_T32A,
    STS_TG32, GateDescriptor, SegmentDescriptor, p2v, pdx, pgaddr,
    pgrounddown, pgroundup, pte_addr, pte_flags, ptx, v2p,
)

ADDRESSES = [0, KERNBASE, KERNLINK, 0x12345678, 0xFFFFFFFF, PGSIZE - 1]


@pytest.mark.parametrize("va", ADDRESSES)
def test_address_split_round_trip(va):
    assert pgaddr(pdx(va), ptx(va), va & (PGSIZE - 1)) == va


@pytest.mark.parametrize("va", ADDRESSES)
def test_indexes_in_range(va):
    assert 0 <= pdx(va) < NPDENTRIES
    assert 0 <= ptx(va) < NPTENTRIES


@pytest.mark.parametrize("sz", [0, 1, PGSIZE - 1, PGSIZE, PGSIZE + 1, 123456])
def test_pgroundup_invariants(sz):
    r = pgroundup(sz)
    assert r % PGSIZE == 0
    assert sz <= r < sz + PGSIZE


@pytest.mark.parametrize("a", [0, 1, PGSIZE, PGSIZE + 7, 0x12345678])
def test_pgrounddown_invariants(a):
    r = pgrounddown(a)
    assert r % PGSIZE == 0
    assert r <= a
    assert a - r < PGSIZE


def test_page_aligned_values_are_fixed_points():
    assert pgroundup(PGSIZE) == PGSIZE
    assert pgrounddown(PGSIZE) == PGSIZE


def test_v2p_p2v():
    assert p2v(0) == KERNBASE
    assert v2p(KERNLINK) == EXTMEM
    for pa in (0, EXTMEM, 0x12345000):
        assert v2p(p2v(pa)) == pa


def test_pte_split():
    pte = 0x12345000 | PTE_P | PTE_W | PTE_U
    assert pte_addr(pte) | pte_flags(pte) == pte
    assert pte_flags(pte_addr(pte)) == 0
    assert pte_flags(pte) == PTE_P | PTE_W | PTE_U


def test_kernel_code_segment_bytes():
    sd = SegmentDescriptor.seg(STA_X | STA_R, 0, 0xFFFFFFFF, 0)
    assert sd.pack() == bytes.fromhex("ffff0000009acf00")


def test_seg_base_and_limit():
    sd = SegmentDescriptor.seg(STA_W, 0x12345678, 0xFFFFFFFF, DPL_USER)
    assert sd.base == 0x12345678
    assert sd.limit == 0xFFFFFFFF
    assert sd.dpl == DPL_USER
    assert sd.g == 1 and sd.db == 1 and sd.p == 1 and sd.s == 1


def test_seg16_is_byte_granular():
    sd = SegmentDescriptor.seg16(STS_T32A, 0xC0105000, 0x67, 0)
    assert sd.g == 0
    assert sd.base == 0xC0105000
    assert sd.limit == 0x67
    assert sd.type == STS_T32A


def test_segment_round_trip():
    sd = SegmentDescriptor.seg(STA_X | STA_R, 0xDEADBEEF, 0xFFFFF000, DPL_USER)
    assert SegmentDescriptor.unpack(sd.pack()) == sd


def test_segment_field_out_of_range():
    with pytest.raises(ValueError):
        SegmentDescriptor(type=16)


def test_segment_unpack_wrong_length():
    with pytest.raises(ValueError):
        SegmentDescriptor.unpack(b"\x00" * 7)


def test_gate_types():
    assert GateDescriptor.gate(0, SEG_KCODE << 3, 0x80105000, 0).type == STS_IG32
    assert GateDescriptor.gate(1, SEG_KCODE << 3, 0x80105000, DPL_USER).type == STS_TG32


def test_gate_fields():
    g = GateDescriptor.gate(1, SEG_KCODE << 3, 0x80106ABC, DPL_USER)
    assert g.offset == 0x80106ABC
    assert g.cs == SEG_KCODE << 3
    assert g.dpl == DPL_USER
    assert g.p == 1 and g.s == 0 and g.args == 0


def test_gate_round_trip():
    g = GateDescriptor.gate(0, SEG_KCODE << 3, 0x8010ABCD, 0)
    assert GateDescriptor.unpack(g.pack()) == g


def test_gate_field_out_of_range():
    with pytest.raises(ValueError):
        GateDescriptor(dpl=4)