"""The process table: creation, fork, exit, wait, sleep and scheduling."""

from __future__ import annotations

import enum
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Iterator, List, Optional, TextIO

from .mmu import DPL_USER, FL_IF, PGSIZE, SEG_UCODE, SEG_UDATA
from .spinlock import Cpu, KernelPanic, SpinLock
from .vm import AddressSpace, OutOfMemory, PhysicalMemory, VMError

_NAME_LEN = 16


class ProcTableFull(Exception):
    """Raised when every process slot is in use."""


class ProcState(enum.IntEnum):
    UNUSED = 0
    EMBRYO = 1
    SLEEPING = 2
    RUNNABLE = 3
    RUNNING = 4
    ZOMBIE = 5


_STATE_NAMES = {
    ProcState.UNUSED: "unused",
    ProcState.EMBRYO: "embryo",
    ProcState.SLEEPING: "sleep ",
    ProcState.RUNNABLE: "runble",
    ProcState.RUNNING: "run   ",
    ProcState.ZOMBIE: "zombie",
}


@dataclass
class TrapFrame:
    """User registers saved on entry to the kernel."""

    edi: int = 0
    esi: int = 0
    ebp: int = 0
    ebx: int = 0
    edx: int = 0
    ecx: int = 0
    eax: int = 0
    gs: int = 0
    fs: int = 0
    es: int = 0
    ds: int = 0
    trapno: int = 0
    err: int = 0
    eip: int = 0
    cs: int = 0
    eflags: int = 0
    esp: int = 0
    ss: int = 0


@dataclass(eq=False)
class Proc:
    """Per-process state."""

    sz: int = 0
    pgdir: Optional[AddressSpace] = None
    kstack: Optional[int] = None
    state: ProcState = ProcState.UNUSED
    pid: int = 0
    parent: Optional["Proc"] = None
    tf: Optional[TrapFrame] = None
    chan: Any = None
    killed: bool = False
    ofile: List[Any] = field(default_factory=list)
    cwd: Any = None
    name: str = ""


class ProcessTable:
    """A fixed table of process slots run by one simulated CPU."""

    def __init__(
        self,
        mem: Optional[PhysicalMemory] = None,
        kmap: Iterable = (),
        nproc: int = 64,
        nofile: int = 16,
        dup_file: Optional[Callable[[Any], Any]] = None,
        close_file: Optional[Callable[[Any], None]] = None,
        console: Optional[TextIO] = None,
    ):
        if nproc <= 0 or nofile <= 0:
            raise ValueError("nproc and nofile must be positive")
        self.mem = PhysicalMemory() if mem is None else mem
        self.kmap = tuple(kmap)
        self.nofile = nofile
        self.lock = SpinLock("ptable")
        self.cpu = Cpu(0)
        self.procs = [Proc(ofile=[None] * nofile) for _ in range(nproc)]
        self.nextpid = 1
        self.initproc: Optional[Proc] = None
        self._dup = dup_file if dup_file is not None else (lambda f: f)
        self._close = close_file if close_file is not None else (lambda f: None)
        self._console = console

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.lock.acquire(self.cpu)
        try:
            yield
        finally:
            if self.lock.holding(self.cpu):
                self.lock.release(self.cpu)

    def alloc(self) -> Proc:
        """Claim an unused slot as an EMBRYO with a new pid and a kernel stack."""
        with self._locked():
            p = next((q for q in self.procs if q.state is ProcState.UNUSED), None)
            if p is None:
                raise ProcTableFull("no free process slot")
            p.state = ProcState.EMBRYO
            p.pid = self.nextpid
            self.nextpid += 1
        try:
            p.kstack = self.mem.alloc_page()
        except OutOfMemory:
            p.state = ProcState.UNUSED
            raise
        p.tf = TrapFrame()
        return p

    def userinit(self, code) -> Proc:
        """Set up the first user process running code from address 0."""
        p = self.alloc()
        self.initproc = p
        try:
            p.pgdir = AddressSpace(self.mem, self.kmap)
        except OutOfMemory as exc:
            raise KernelPanic("userinit: out of memory?") from exc
        p.pgdir.init_code(code)
        p.sz = PGSIZE
        udata = (SEG_UDATA << 3) | DPL_USER
        p.tf = TrapFrame(
            cs=(SEG_UCODE << 3) | DPL_USER, ds=udata, es=udata, ss=udata,
            eflags=FL_IF, esp=PGSIZE, eip=0,
        )
        p.name = "initcode"
        p.cwd = "/"
        p.state = ProcState.RUNNABLE
        return p

    def growproc(self, p: Proc, n: int) -> int:
        """Grow or shrink p's memory by n bytes and return its new size."""
        sz = p.sz
        if n > 0:
            sz = p.pgdir.grow(sz, sz + n)
        elif n < 0:
            if sz + n < 0:
                raise ValueError("cannot shrink below zero")
            sz = p.pgdir.shrink(sz, sz + n)
        p.sz = sz
        return sz

    def fork(self, parent: Proc) -> int:
        """Create a copy of parent as a runnable child and return the child's pid."""
        np = self.alloc()
        try:
            np.pgdir = parent.pgdir.copy(parent.sz)
        except VMError:
            self.mem.free_page(np.kstack)
            np.kstack = None
            np.state = ProcState.UNUSED
            raise
        np.sz = parent.sz
        np.parent = parent
        np.tf = replace(parent.tf, eax=0)
        np.ofile = [None if f is None else self._dup(f) for f in parent.ofile]
        np.cwd = parent.cwd
        np.name = parent.name[:_NAME_LEN - 1]
        with self._locked():
            np.state = ProcState.RUNNABLE
        return np.pid

    def exit(self, p: Proc) -> None:
        """Close p's files, hand its children to init and leave it a ZOMBIE."""
        if p is self.initproc:
            raise KernelPanic("init exiting")
        for f in p.ofile:
            if f is not None:
                self._close(f)
        p.ofile = [None] * len(p.ofile)
        p.cwd = None
        with self._locked():
            self._wakeup1(p.parent)
            for q in self.procs:
                if q.parent is p:
                    q.parent = self.initproc
                    if q.state is ProcState.ZOMBIE:
                        self._wakeup1(self.initproc)
            p.state = ProcState.ZOMBIE
            self._sched(p)

    def wait(self, p: Proc) -> Optional[int]:
        """Reap a zombie child and return its pid.

        If p has children but none has exited, p goes to sleep and None is
        returned; call again once p runs. Raises ChildProcessError if p has
        no children or has been killed.
        """
        with self._locked():
            havekids = False
            for q in self.procs:
                if q.parent is not p:
                    continue
                havekids = True
                if q.state is ProcState.ZOMBIE:
                    pid = q.pid
                    self.mem.free_page(q.kstack)
                    q.kstack = None
                    q.pgdir.free()
                    q.pgdir = None
                    q.state = ProcState.UNUSED
                    q.pid = 0
                    q.parent = None
                    q.name = ""
                    q.killed = False
                    return pid
            if not havekids or p.killed:
                raise ChildProcessError(f"pid {p.pid} has no children to wait for")
            self._sleep_locked(p, p)
            return None

    def _sched(self, p: Proc) -> None:
        if not self.lock.holding(self.cpu):
            raise KernelPanic("sched ptable.lock")
        if self.cpu.ncli != 1:
            raise KernelPanic("sched locks")
        if p.state is ProcState.RUNNING:
            raise KernelPanic("sched running")
        if self.cpu.interrupts_enabled:
            raise KernelPanic("sched interruptible")

    def _sleep_locked(self, p: Proc, chan) -> None:
        p.chan = chan
        p.state = ProcState.SLEEPING
        self._sched(p)

    def sleep(self, p: Proc, chan) -> None:
        """Put p to sleep on chan until a wakeup on the same channel."""
        if p is None:
            raise KernelPanic("sleep")
        with self._locked():
            self._sleep_locked(p, chan)

    def _wakeup1(self, chan) -> None:
        for q in self.procs:
            if q.state is ProcState.SLEEPING and q.chan == chan:
                q.state = ProcState.RUNNABLE

    def wakeup(self, chan) -> None:
        """Make every process sleeping on chan runnable."""
        with self._locked():
            self._wakeup1(chan)

    def kill(self, pid: int) -> None:
        """Mark the process with pid as killed, waking it if asleep."""
        with self._locked():
            for q in self.procs:
                if q.pid == pid:
                    q.killed = True
                    if q.state is ProcState.SLEEPING:
                        q.state = ProcState.RUNNABLE
                    return
        raise ProcessLookupError(f"no process with pid {pid}")

    def yield_(self, p: Proc) -> None:
        """Give up the CPU for one scheduling round."""
        with self._locked():
            p.state = ProcState.RUNNABLE
            self._sched(p)

    def schedule(self) -> Iterator[Proc]:
        """Run one scheduling round over the table.

        Yields each runnable process in table order after marking it RUNNING
        and making it the CPU's current process. Before the round resumes,
        the process must have given up the CPU (yield, sleep, wait or exit).
        """
        self.cpu.interrupts_enabled = True
        for p in self.procs:
            with self._locked():
                if p.state is not ProcState.RUNNABLE:
                    continue
                self.cpu.proc = p
                p.state = ProcState.RUNNING
                p.chan = None
            yield p
            self.cpu.proc = None
            if p.state is ProcState.RUNNING:
                raise KernelPanic("sched running")

    def procdump(self) -> List[str]:
        """Write a listing of live processes to the console and return its lines."""
        out = self._console if self._console is not None else sys.stdout
        lines = []
        for p in self.procs:
            if p.state is ProcState.UNUSED:
                continue
            state = _STATE_NAMES.get(p.state, "???")
            line = f"{p.pid} {state} {p.name}"
            out.write(line + "\n")
            lines.append(line)
        return lines