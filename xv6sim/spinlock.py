"""Mutual exclusion spin locks and per-CPU interrupt nesting."""

from __future__ import annotations

import threading
import traceback
from dataclasses import dataclass
from typing import Any, Tuple

from .mmu import FL_IF

_NPCS = 10


class KernelPanic(Exception):
    """Raised where the kernel would panic."""


@dataclass(eq=False)
class Cpu:
    """Per-CPU state: interrupt flag and push_cli nesting."""

    id: int = 0
    ncli: int = 0
    intena: bool = False
    interrupts_enabled: bool = True
    proc: Any = None

    @property
    def eflags(self) -> int:
        return FL_IF if self.interrupts_enabled else 0

    def push_cli(self) -> None:
        """Disable interrupts; matched pop_cli calls restore the earlier state."""
        enabled = self.interrupts_enabled
        self.interrupts_enabled = False
        if self.ncli == 0:
            self.intena = enabled
        self.ncli += 1

    def pop_cli(self) -> None:
        """Undo one push_cli, re-enabling interrupts at the outermost level."""
        if self.interrupts_enabled:
            raise KernelPanic("popcli - interruptible")
        self.ncli -= 1
        if self.ncli < 0:
            raise KernelPanic("popcli")
        if self.ncli == 0 and self.intena:
            self.interrupts_enabled = True


def _caller_pcs() -> Tuple[str, ...]:
    frames = traceback.extract_stack()[:-2]
    return tuple(f"{f.filename}:{f.lineno}" for f in reversed(frames[-_NPCS:]))


class SpinLock:
    """A lock owned by one CPU at a time; other CPUs wait until it is released."""

    def __init__(self, name: str = ""):
        self.name = name
        self.cpu = None
        self.pcs: Tuple[str, ...] = ()
        self._mutex = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._mutex.locked()

    def acquire(self, cpu: Cpu) -> None:
        """Take the lock on behalf of cpu, with its interrupts disabled."""
        cpu.push_cli()
        if self.holding(cpu):
            raise KernelPanic("acquire")
        self._mutex.acquire()
        self.cpu = cpu
        self.pcs = _caller_pcs()

    def release(self, cpu: Cpu) -> None:
        """Give up the lock held by cpu."""
        if not self.holding(cpu):
            raise KernelPanic("release")
        self.pcs = ()
        self.cpu = None
        self._mutex.release()
        cpu.pop_cli()

    def holding(self, cpu: Cpu) -> bool:
        """Whether cpu holds the lock."""
        return self.locked and self.cpu is cpu