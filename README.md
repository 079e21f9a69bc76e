# dumpwalk

`dumpwalk` recovers call stacks from the registers and stack memory of a
thread as captured in a minidump. It then renders them as human-readable
text.

## What is in the package

- **CPU contexts** (`dumpwalk.context`):
  - `X86Context`, `Amd64Context` and `Arm64Context` hold register sets.
  - All three share the `CpuContext` methods: `get_register`,
    `get_register_always`, `set_register`, `memoize_register`,
    `format_register`, `stack_pointer_register_name` and
    `instruction_pointer_register_name`.
  - `MinidumpContext` wraps a register set together with the registers known
    to be valid. `valid` is `None` when every register is valid.
  - Asking for a register name the CPU does not have raises
    `UnknownRegisterError`.
  - Setting a value too wide for the register raises `ValueError`.
- **Memory and modules** (`dumpwalk.memory`):
  - `MemoryRegion` reads unsigned words out of captured memory. It offers
    `get_memory_at_address`, `get_u32` and `get_u64`, and is little-endian
    unless you give it `endian="big"`. A read that does not lie wholly
    inside the region returns `None`.
  - `ModuleList` finds the `Module` covering an address
    (`module_at_address`), lists modules by base address (`by_addr`) and
    names the first-listed module as the main one (`main_module`).
  - `hex_bytes` formats bytes as a hex string.
- **Frames** (`dumpwalk.frames`):
  - `StackFrame` holds one frame. `FrameTrust` says how the frame was found.
  - `CallStack` holds a thread's frames, innermost first, plus a
    `CallStackInfo` outcome.
  - `CallStack.write` writes the classic text listing of the frames and
    their valid registers.
  - `format_registers` and `basename` are available on their own.
- **Stack walking** (`dumpwalk.stackwalker`):
  - `walk_stack` starts from a context and asks for caller frames until the
    stack ends.
  - For each caller it tries three methods in order:
    1. call frame information from a `SymbolProvider`, through a
       `dumpwalk.cfi.CfiStackWalker`;
    2. the frame-pointer chain;
    3. a scan of the stack for plausible return addresses.
  - The rules per architecture live in `dumpwalk.x86` and `dumpwalk.amd64`.
    `dumpwalk.amd64.is_non_canonical` rejects addresses outside the two
    48-bit canonical ranges.
  - Walking only unwinds x86 and AMD64 contexts. Any other context yields
    just its first frame.
- **Symbols** (`dumpwalk.symbols`):
  - Subclass `SymbolProvider` and override `fill_symbol` (function and
    source details) and `walk_frame` (unwind rules; return `True` on
    success). The base class knows no symbols.
  - `MultiSymbolProvider` consults several providers in the order they were
    added.
  - `ProcessError` and its subclasses `MinidumpReadError`,
    `MissingSystemInfo` and `MissingThreadList` are provided for reporting
    processing failures.
- **Raw dumps**:
  - `dumpwalk.context_dump.format_context` describes every field of an x86,
    AMD64 or ARM64 context. It raises `ValueError` for other types.
  - `dumpwalk.rawstream.format_raw_stream` renders a NUL-separated text
    stream, with each NUL shown as a visible `\0` line break.

## Quick look

```python
from dumpwalk.frames import basename
from dumpwalk.memory import hex_bytes
from dumpwalk.amd64 import is_non_canonical

basename("C:\\WINDOWS\\system32\\kernel32.dll")  # 'kernel32.dll'
hex_bytes(b"\x01\xff")                          # '01ff'
is_non_canonical(0x0000800000000000)            # True
```

## Walking a stack

```python
import sys

from dumpwalk.context import MinidumpContext, X86Context
from dumpwalk.memory import MemoryRegion, Module, ModuleList
from dumpwalk.stackwalker import walk_stack
from dumpwalk.symbols import SymbolProvider

context = MinidumpContext.from_raw(X86Context(eip=0x40000200, ebp=0x80000000))
stack = MemoryRegion(0x80000000, bytes(8))        # an end-of-stack marker
modules = ModuleList([Module(0x40000000, 0x10000, "module1")])

call_stack = walk_stack(context, stack, modules, SymbolProvider())
call_stack.frames[0].module.code_file             # 'module1'
call_stack.write(sys.stdout)
```

In a returned `StackFrame`:

- `instruction` points inside the call instruction, except for the
  innermost frame;
- `trust` is a `FrameTrust` value;
- `module` is the covering module, if there is one;
- the function and source fields are whatever the provider filled in.

## What it does not do

- It does not read minidump files. Contexts, memory regions and module
  lists are built by the caller.
- There is no whole-process report: no object gathering all threads,
  system information and crash details, and no JSON report.
- There is no command-line program.
- No symbol files are parsed and no symbol servers are contacted. Symbols
  and unwind rules come only from the `SymbolProvider` you supply.

## Tests

The test suite uses pytest, which comes with the `test` extra.