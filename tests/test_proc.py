import io

import pytest

from xv6sim.mmu import DPL_USER, FL_IF, PGSIZE, SEG_UCODE, SEG_UDATA
from xv6sim.proc import ProcessTable, ProcState, ProcTableFull
from xv6sim.spinlock import KernelPanic
from xv6sim.vm import OutOfMemory, PhysicalMemory, VMError

CODE = b"\x90\x90initcode"


def by_pid(table, pid):
    return next(p for p in table.procs if p.pid == pid and p.state is not ProcState.UNUSED)


@pytest.fixture
def table():
    return ProcessTable(console=io.StringIO())


def test_userinit(table):
    p = table.userinit(CODE)
    assert p.pid == 1
    assert p.state is ProcState.RUNNABLE
    assert p.name == "initcode"
    assert p.sz == PGSIZE
    assert p.tf.cs == (SEG_UCODE << 3) | DPL_USER
    assert p.tf.ds == p.tf.es == p.tf.ss == (SEG_UDATA << 3) | DPL_USER
    assert p.tf.eflags == FL_IF
    assert p.tf.esp == PGSIZE
    assert p.tf.eip == 0
    assert p.pgdir.read(0, len(CODE)) == CODE
    assert table.initproc is p
    assert not table.lock.locked


def test_fork_copies_parent(table):
    init = table.userinit(CODE)
    init.tf.eax = 7
    pid = table.fork(init)
    child = by_pid(table, pid)
    assert pid == 2
    assert child.parent is init
    assert child.state is ProcState.RUNNABLE
    assert child.tf.eax == 0
    assert init.tf.eax == 7
    assert child.tf.cs == init.tf.cs
    assert child.sz == init.sz
    assert child.name == init.name
    assert child.pgdir.read(0, len(CODE)) == CODE
    child.pgdir.copyout(0, b"X")
    assert init.pgdir.read(0, 1) == CODE[:1]


def test_fork_dups_files():
    duped = []
    table = ProcessTable(dup_file=lambda f: duped.append(f) or f)
    init = table.userinit(CODE)
    init.ofile[0] = "console"
    init.ofile[3] = "data"
    child = by_pid(table, table.fork(init))
    assert duped == ["console", "data"]
    assert child.ofile[0] == "console" and child.ofile[3] == "data"
    assert child.ofile[1] is None


def test_exit_of_init_panics(table):
    init = table.userinit(CODE)
    with pytest.raises(KernelPanic, match="init exiting"):
        table.exit(init)


def test_exit_closes_files_and_becomes_zombie():
    closed = []
    table = ProcessTable(close_file=closed.append)
    init = table.userinit(CODE)
    child = by_pid(table, table.fork(init))
    child.ofile[2] = "f"
    table.exit(child)
    assert child.state is ProcState.ZOMBIE
    assert closed == ["f"]
    assert all(f is None for f in child.ofile)
    assert child.cwd is None
    assert not table.lock.locked


def test_wait_reaps_and_frees_memory(table):
    init = table.userinit(CODE)
    before = table.mem.free_count()
    pid = table.fork(init)
    child = by_pid(table, pid)
    table.exit(child)
    assert table.wait(init) == pid
    assert child.state is ProcState.UNUSED
    assert child.pid == 0 and child.parent is None
    assert table.mem.free_count() == before


def test_wait_without_children(table):
    init = table.userinit(CODE)
    with pytest.raises(ChildProcessError):
        table.wait(init)


def test_wait_sleeps_until_child_exits(table):
    init = table.userinit(CODE)
    pid = table.fork(init)
    assert table.wait(init) is None
    assert init.state is ProcState.SLEEPING
    assert init.chan is init
    table.exit(by_pid(table, pid))
    assert init.state is ProcState.RUNNABLE
    assert table.wait(init) == pid


def test_wait_when_killed(table):
    init = table.userinit(CODE)
    table.fork(init)
    table.kill(init.pid)
    with pytest.raises(ChildProcessError):
        table.wait(init)


def test_exit_reparents_children_to_init(table):
    init = table.userinit(CODE)
    a = by_pid(table, table.fork(init))
    b = by_pid(table, table.fork(a))
    assert table.wait(init) is None
    table.exit(b)
    assert init.state is ProcState.SLEEPING
    table.exit(a)
    assert b.parent is init
    assert init.state is ProcState.RUNNABLE
    reaped = {table.wait(init), table.wait(init)}
    assert reaped == {a.pid, b.pid} or reaped == {2, 3}


def test_kill(table):
    init = table.userinit(CODE)
    child = by_pid(table, table.fork(init))
    table.sleep(child, "disk")
    table.kill(child.pid)
    assert child.killed
    assert child.state is ProcState.RUNNABLE


def test_kill_unknown_pid(table):
    table.userinit(CODE)
    with pytest.raises(ProcessLookupError):
        table.kill(99)


def test_sleep_and_wakeup(table):
    init = table.userinit(CODE)
    child = by_pid(table, table.fork(init))
    table.sleep(child, "ticks")
    assert child.state is ProcState.SLEEPING
    table.wakeup("other")
    assert child.state is ProcState.SLEEPING
    table.wakeup("ticks")
    assert child.state is ProcState.RUNNABLE
    assert not table.lock.locked


def test_sleep_without_process_panics(table):
    with pytest.raises(KernelPanic, match="sleep"):
        table.sleep(None, "chan")


def test_schedule_clears_channel_on_resume(table):
    init = table.userinit(CODE)
    table.sleep(init, "chan")
    table.wakeup("chan")
    rounds = table.schedule()
    p = next(rounds)
    assert p.chan is None
    table.yield_(p)


def test_schedule_panics_if_process_keeps_running(table):
    init = table.userinit(CODE)
    rounds = table.schedule()
    p = next(rounds)
    assert p is init
    assert p.state is ProcState.RUNNING
    with pytest.raises(KernelPanic, match="sched running"):
        next(rounds)


def test_schedule_with_nothing_runnable(table):
    init = table.userinit(CODE)
    table.sleep(init, "never")
    assert list(table.schedule()) == []


def test_growproc(table):
    p = table.userinit(CODE)
    assert table.growproc(p, 2 * PGSIZE) == 3 * PGSIZE
    assert p.pgdir.read(2 * PGSIZE, 4) == bytes(4)
    assert table.growproc(p, -PGSIZE) == 2 * PGSIZE
    with pytest.raises(VMError):
        p.pgdir.read(2 * PGSIZE, 1)
    with pytest.raises(ValueError):
        table.growproc(p, -10 * PGSIZE)


def test_table_full():
    table = ProcessTable(nproc=2)
    init = table.userinit(CODE)
    table.fork(init)
    with pytest.raises(ProcTableFull):
        table.fork(init)
    assert not table.lock.locked


def test_fork_out_of_memory_releases_slot():
    table = ProcessTable(mem=PhysicalMemory(npages=5))
    init = table.userinit(CODE)
    with pytest.raises(OutOfMemory):
        table.fork(init)
    assert table.mem.free_count() == 1
    assert [p.state for p in table.procs if p.state is not ProcState.UNUSED] == [
        ProcState.RUNNABLE
    ]


def test_procdump():
    console = io.StringIO()
    table = ProcessTable(console=console)
    init = table.userinit(CODE)
    child = by_pid(table, table.fork(init))
    table.sleep(child, "chan")
    lines = table.procdump()
    assert lines == ["1 runble initcode", "2 sleep  initcode"]
    assert console.getvalue() == "1 runble initcode\n2 sleep  initcode\n"