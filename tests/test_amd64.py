import struct

from dumpwalk.amd64 import get_caller_frame, is_non_canonical
from dumpwalk.context import Amd64Context
from dumpwalk.frames import FrameTrust
from dumpwalk.memory import MemoryRegion, Module, ModuleList
from dumpwalk.symbols import SymbolProvider

STACK_START = 0x8000000080000000
MODULES = ModuleList([
    Module(0x00007400C0000000, 0x10000, "module1"),
    Module(0x00007500B0000000, 0x10000, "module2"),
])
RETURN_ADDRESS = 0x00007500B0000110


def _stack(*words):
    return MemoryRegion(STACK_START, b"".join(struct.pack("<Q", w) for w in words))


class _CfiProvider(SymbolProvider):
    def walk_frame(self, module, walker):
        sp = walker.get_callee_register("rsp")
        ra = walker.get_register_at_address(sp + 8)
        return walker.set_cfa(sp + 16) and walker.set_ra(ra)


def test_is_non_canonical_hole():
    assert is_non_canonical(STACK_START) is True


def test_is_non_canonical_boundaries():
    assert is_non_canonical(0x7FFFFFFFFFFF) is False
    assert is_non_canonical(0xFFFF800000000000) is False
    assert is_non_canonical(RETURN_ADDRESS) is False


def test_no_stack_memory_gives_none():
    ctx = Amd64Context(rip=0x00007400C0000200)
    assert get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, None, None, MODULES, SymbolProvider()
    ) is None


def test_frame_pointer_unwind():
    stack = _stack(0, 0, STACK_START + 32, RETURN_ADDRESS, 0, 0)
    ctx = Amd64Context(rip=0x00007400C0000200, rsp=STACK_START, rbp=STACK_START + 16)
    frame = get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, MODULES, SymbolProvider()
    )
    assert frame.trust is FrameTrust.FRAME_POINTER
    assert frame.context.raw.rip == RETURN_ADDRESS
    assert frame.context.raw.rbp == STACK_START + 32
    assert frame.context.raw.rsp == STACK_START + 32
    assert frame.instruction + 1 == RETURN_ADDRESS
    assert frame.context.valid == frozenset({"rip", "rsp", "rbp"})


def test_cfi_unwind_is_preferred():
    stack = _stack(0, RETURN_ADDRESS, 0, 0)
    ctx = Amd64Context(rip=0x00007400C0000200, rsp=STACK_START)
    frame = get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, MODULES, _CfiProvider()
    )
    assert frame.trust is FrameTrust.CALL_FRAME_INFO
    assert frame.context.raw.rip == RETURN_ADDRESS
    assert frame.context.raw.rsp == STACK_START + 16
    assert frame.context.valid == frozenset({"rip", "rsp"})
    assert frame.instruction + 1 == RETURN_ADDRESS


def test_non_canonical_return_address_rejected():
    stack = _stack(0, 0, STACK_START + 32, STACK_START, 0, 0)
    ctx = Amd64Context(rip=0x00007400C0000200, rsp=STACK_START, rbp=STACK_START + 16)
    assert get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, MODULES, SymbolProvider()
    ) is None


def test_missing_stack_pointer_validity_gives_none():
    stack = _stack(0, 0, STACK_START + 32, RETURN_ADDRESS, 0, 0)
    ctx = Amd64Context(rip=0x00007400C0000200, rsp=STACK_START, rbp=STACK_START + 16)
    assert get_caller_frame(
        ctx, frozenset({"rip", "rbp"}), FrameTrust.CONTEXT, stack, None,
        MODULES, SymbolProvider(),
    ) is None


def test_scan_finds_return_address():
    stack = _stack(0, 0, RETURN_ADDRESS, 0)
    ctx = Amd64Context(rip=0x00007400C0000200, rsp=STACK_START)
    frame = get_caller_frame(
        ctx, frozenset({"rip", "rsp"}), FrameTrust.CONTEXT, stack, None,
        MODULES, SymbolProvider(),
    )
    assert frame.trust is FrameTrust.SCAN
    assert frame.context.raw.rip == RETURN_ADDRESS
    assert frame.context.raw.rsp == STACK_START + 24
    assert frame.context.valid == frozenset({"rip", "rsp"})