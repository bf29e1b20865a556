# xv6sim

A pure-Python model of the core pieces of a small teaching Unix kernel and
its user programs. It needs nothing beyond the standard library. It lets you
explore and test how these pieces behave without an emulator:

- x86 paging arithmetic and segment and gate descriptors
- ELF file and program headers
- two-level page tables over simulated physical memory
- system-call argument fetching and dispatch
- a process table with fork, exit, wait, sleep, wakeup, kill and a scheduler
- spin locks with nested interrupt disabling
- the shell's command-line parser
- a first-fit user heap allocator
- `wc` and `rm`

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

## Modules

| Module | Contents |
| --- | --- |
| `xv6sim.mmu` | memory-layout and MMU constants; `pdx`, `ptx`, `pgaddr`, `pgroundup`, `pgrounddown`, `pte_addr`, `pte_flags`, `v2p`, `p2v`; `SegmentDescriptor` (`seg`, `seg16`, `pack`, `unpack`) and `GateDescriptor` (`gate`, `pack`, `unpack`) |
| `xv6sim.elf` | `ElfHeader`, `ProgramHeader`, `program_headers`, `ElfFormatError` |
| `xv6sim.cstring` | C-style string and memory helpers: `memcmp`, `memmove`, `strncmp`, `strncpy`, `safestrcpy`, `strlen`, `strcmp`, `strchr`, `atoi`, `gets` |
| `xv6sim.vm` | `PhysicalMemory` (a pool of pages), `AddressSpace` (page directory and tables: `walk`, `map_pages`, `init_code`, `load`, `grow`, `shrink`, `free`, `clear_user`, `copy`, `uva2ka`, `copyout`, `read`), `OutOfMemory`, `VMError` |
| `xv6sim.syscall` | `SyscallNumber`, `UserMemory` (`fetch_int`, `fetch_str`, `arg_int`, `arg_ptr`, `arg_str`), `SyscallTable` (`register`, `dispatch`), `BadArgument` |
| `xv6sim.shell` | `parse_cmd`, `Tokenizer`, the command nodes `ExecCmd`, `RedirCmd`, `PipeCmd`, `ListCmd`, `BackCmd`, `OpenMode`, `ShellSyntaxError` |
| `xv6sim.umalloc` | `Heap` with `malloc`, `free`, `sbrk` and `free_blocks` |
| `xv6sim.spinlock` | `Cpu` (`push_cli`, `pop_cli`), `SpinLock` (`acquire`, `release`, `holding`), `KernelPanic` |
| `xv6sim.proc` | `ProcState`, `Proc`, `TrapFrame`, `ProcessTable`, `ProcTableFull` |
| `xv6sim.wc` | `count`, `Counts`, `main` |
| `xv6sim.rm` | `main` |

Where the kernel would panic, the package raises `KernelPanic` or `VMError`;
bad system-call arguments raise `BadArgument`, which `SyscallTable.dispatch`
turns into a result of -1.

## Examples

Paging arithmetic:

```python
from xv6sim.mmu import pdx, ptx, pgroundup

va = 0x80101234
print(pdx(va), ptx(va), hex(pgroundup(va)))
```

Parse a shell command line into a tree of command nodes:

```python
from xv6sim.shell import parse_cmd

tree = parse_cmd("cat < in.txt | grep x > out.txt; echo done &\n")
print(tree)
```

Create, fork, exit and reap processes:

```python
from xv6sim.proc import ProcessTable

table = ProcessTable()
init = table.userinit(b"\x90")
child_pid = table.fork(init)
child = next(p for p in table.procs if p.pid == child_pid)
table.exit(child)
print(table.wait(init))  # the child's pid
print(table.procdump())
```

Count lines, words and bytes:

```python
from xv6sim.wc import count

print(count(b"hello world\nsecond line\n"))
```

## Command-line tools

Print line, word and byte counts for files, or for standard input when no
file is given:

```
xv6-wc README.md
```

Remove files (empty directories too). It stops at the first one it cannot
delete:

```
xv6-rm scratch1.txt scratch2.txt
```

## What it does not do

- There is no file system, disk, console or device model. Open files and the
  current directory of a process are opaque values supplied by the caller.
- The shell only parses command lines; it does not run them, and there is no
  interactive shell command.
- No user program is executed: `ProcessTable.schedule` hands each runnable
  process back to the caller, who decides what it does next.
- There is no trap or interrupt handling and no loading of ELF programs into
  memory; the ELF module only reads and writes the headers.

## Running the tests

```
pytest
```