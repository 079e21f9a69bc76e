import struct

import pytest

from dumpwalk.context import X86Context
from dumpwalk.frames import FrameTrust, StackFrame
from dumpwalk.context import MinidumpContext
from dumpwalk.memory import MemoryRegion, Module, ModuleList
from dumpwalk.symbols import SymbolProvider
from dumpwalk.x86 import get_caller_frame

STACK_START = 0x80000000


def words(*values):
    return b"".join(struct.pack("<I", v) for v in values)


@pytest.fixture
def modules():
    return ModuleList(
        [
            Module(0x40000000, 0x10000, "module1"),
            Module(0x50000000, 0x10000, "module2"),
        ]
    )


class CfiProvider(SymbolProvider):
    def __init__(self, ra, cfa):
        self.ra = ra
        self.cfa = cfa
        self.seen_parameter_size = None

    def walk_frame(self, module, walker):
        self.seen_parameter_size = walker.grand_callee_parameter_size
        return walker.set_ra(self.ra) and walker.set_cfa(self.cfa)


def traditional_stack():
    frame0_ebp = STACK_START + 12
    frame1_ebp = frame0_ebp + 16
    data = bytes(12) + words(frame1_ebp, 0x40008679) + bytes(8) + words(0, 0)
    return MemoryRegion(STACK_START, data), frame0_ebp, frame1_ebp


def test_no_stack_memory_ends_walk(modules):
    ctx = X86Context(eip=0x40000200, ebp=STACK_START, esp=STACK_START)
    assert get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, None, None, modules, SymbolProvider()
    ) is None


def test_traditional_frame_pointer(modules):
    stack, frame0_ebp, frame1_ebp = traditional_stack()
    ctx = X86Context(eip=0x4000c7a5, esp=STACK_START, ebp=frame0_ebp)
    frame = get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, modules, SymbolProvider()
    )
    assert frame.trust is FrameTrust.FRAME_POINTER
    assert frame.instruction == 0x40008678
    assert frame.context.valid == {"eip", "esp", "ebp"}
    assert frame.context.raw.eip == 0x40008679
    assert frame.context.raw.ebp == frame1_ebp
    assert frame.context.raw.esp == frame0_ebp + 8


def test_traditional_second_frame_is_end_of_stack(modules):
    stack, frame0_ebp, _ = traditional_stack()
    ctx = X86Context(eip=0x4000c7a5, esp=STACK_START, ebp=frame0_ebp)
    frame1 = get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, modules, SymbolProvider()
    )
    caller = get_caller_frame(
        frame1.context.raw,
        frame1.context.valid,
        frame1.trust,
        stack,
        None,
        modules,
        SymbolProvider(),
    )
    assert caller is None


def scan_stack(padding):
    frame1_esp = STACK_START + 12 + padding + 8
    frame1_ebp = frame1_esp + 8
    data = (
        words(0xf065dc76, 0x46ee2167, 0xbab023ec)
        + bytes(padding)
        + words(frame1_ebp, 0x4000129d)
        + bytes(8)
        + words(0, 0)
    )
    return MemoryRegion(STACK_START, data), frame1_esp, frame1_ebp


@pytest.mark.parametrize("padding", [0, 20 * 4])
def test_traditional_scan(modules, padding):
    stack, frame1_esp, frame1_ebp = scan_stack(padding)
    ctx = X86Context(eip=0x4000f49d, esp=STACK_START, ebp=0xd43eed6e)
    frame = get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, modules, SymbolProvider()
    )
    assert frame.trust is FrameTrust.SCAN
    assert {"eip", "esp", "ebp"} <= frame.context.valid
    assert frame.instruction + 1 == 0x4000129d
    assert frame.context.raw.eip == 0x4000129d
    assert frame.context.raw.esp == frame1_esp
    assert frame.context.raw.ebp == frame1_ebp


def test_scan_range_is_longer_for_context_frames(modules):
    data = bytes(4 * 50) + words(STACK_START + 4 * 60, 0x4000129d) + bytes(4 * 20)
    stack = MemoryRegion(STACK_START, data)
    ctx = X86Context(eip=0x4000f49d, esp=STACK_START, ebp=0xd43eed6e)
    found = get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, modules, SymbolProvider()
    )
    missed = get_caller_frame(
        ctx, None, FrameTrust.SCAN, stack, None, modules, SymbolProvider()
    )
    assert found.context.raw.eip == 0x4000129d
    assert missed is None


def test_missing_stack_pointer_validity_ends_walk(modules):
    stack, _, _ = scan_stack(0)
    ctx = X86Context(eip=0x4000f49d, esp=STACK_START, ebp=0xd43eed6e)
    assert get_caller_frame(
        ctx, frozenset({"eip"}), FrameTrust.SCAN, stack, None, modules, SymbolProvider()
    ) is None


def test_non_progressing_frame_pointer_is_rejected(modules):
    data = words(STACK_START + 0x20, 0x40000100) + bytes(0x40)
    stack = MemoryRegion(STACK_START, data)
    ctx = X86Context(eip=0x40000200, esp=STACK_START + 16, ebp=STACK_START)
    assert get_caller_frame(
        ctx, None, FrameTrust.CONTEXT, stack, None, modules, SymbolProvider()
    ) is None


def test_cfi_frame_preferred(modules):
    stack, frame0_ebp, _ = traditional_stack()
    provider = CfiProvider(ra=0x50000010, cfa=STACK_START + 20)
    ctx = X86Context(eip=0x4000c7a5, esp=STACK_START, ebp=frame0_ebp)
    frame = get_caller_frame(ctx, None, FrameTrust.CONTEXT, stack, None, modules, provider)
    assert frame.trust is FrameTrust.CALL_FRAME_INFO
    assert frame.context.valid == {"eip", "esp"}
    assert frame.context.raw.eip == 0x50000010
    assert frame.instruction == 0x50000010 - 1
    assert frame.context.raw.esp == STACK_START + 20


def test_cfi_with_bad_return_address_falls_back(modules):
    stack, frame0_ebp, _ = traditional_stack()
    provider = CfiProvider(ra=0x60000000, cfa=STACK_START + 20)
    ctx = X86Context(eip=0x4000c7a5, esp=STACK_START, ebp=frame0_ebp)
    frame = get_caller_frame(ctx, None, FrameTrust.CONTEXT, stack, None, modules, provider)
    assert frame.trust is FrameTrust.FRAME_POINTER
    assert frame.context.raw.eip == 0x40008679


def test_cfi_sees_grand_callee_parameter_size(modules):
    stack, frame0_ebp, _ = traditional_stack()
    provider = CfiProvider(ra=0x50000010, cfa=STACK_START + 20)
    grand = StackFrame.from_context(
        MinidumpContext(X86Context(eip=0x40000000)), FrameTrust.CONTEXT
    )
    grand.set_function("f", 0x40000000, 12)
    ctx = X86Context(eip=0x4000c7a5, esp=STACK_START, ebp=frame0_ebp)
    get_caller_frame(ctx, None, FrameTrust.CFI_SCAN, stack, grand, modules, provider)
    assert provider.seen_parameter_size == 12