import threading
import time

import pytest

from xv6sim.mmu import FL_IF
from xv6sim.spinlock import Cpu, KernelPanic, SpinLock


def test_acquire_disables_interrupts_and_release_restores():
    cpu = Cpu()
    lock = SpinLock("test")
    lock.acquire(cpu)
    assert lock.locked
    assert lock.holding(cpu)
    assert cpu.ncli == 1
    assert cpu.eflags == 0
    lock.release(cpu)
    assert not lock.locked
    assert cpu.ncli == 0
    assert cpu.eflags == FL_IF


def test_acquire_twice_panics():
    cpu = Cpu()
    lock = SpinLock("test")
    lock.acquire(cpu)
    with pytest.raises(KernelPanic, match="acquire"):
        lock.acquire(cpu)


def test_release_without_holding_panics():
    with pytest.raises(KernelPanic, match="release"):
        SpinLock("test").release(Cpu())


def test_holding_is_per_cpu():
    a, b = Cpu(0), Cpu(1)
    lock = SpinLock("test")
    lock.acquire(a)
    assert lock.holding(a)
    assert not lock.holding(b)
    with pytest.raises(KernelPanic):
        lock.release(b)


def test_pcs_recorded_while_held():
    cpu = Cpu()
    lock = SpinLock("test")
    lock.acquire(cpu)
    assert 0 < len(lock.pcs) <= 10
    lock.release(cpu)
    assert lock.pcs == ()


def test_nested_push_cli():
    cpu = Cpu()
    cpu.push_cli()
    cpu.push_cli()
    cpu.pop_cli()
    assert cpu.interrupts_enabled is False
    cpu.pop_cli()
    assert cpu.interrupts_enabled is True
    assert cpu.ncli == 0


def test_interrupts_stay_off_if_they_were_off():
    cpu = Cpu(interrupts_enabled=False)
    cpu.push_cli()
    cpu.pop_cli()
    assert cpu.interrupts_enabled is False


def test_pop_cli_interruptible_panics():
    with pytest.raises(KernelPanic, match="interruptible"):
        Cpu().pop_cli()


def test_pop_cli_underflow_panics():
    cpu = Cpu(interrupts_enabled=False)
    with pytest.raises(KernelPanic, match="popcli"):
        cpu.pop_cli()
    assert cpu.ncli == -1


def test_other_cpu_waits_for_release():
    a, b = Cpu(0), Cpu(1)
    lock = SpinLock("shared")
    got = threading.Event()
    held_by_b = []

    def other():
        lock.acquire(b)
        held_by_b.append(lock.holding(b))
        got.set()
        lock.release(b)

    lock.acquire(a)
    t = threading.Thread(target=other)
    t.start()
    time.sleep(0.05)
    assert not got.is_set()
    lock.release(a)
    t.join(timeout=5)
    assert got.is_set()
    assert held_by_b == [True]
    assert not lock.locked