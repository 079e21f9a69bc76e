"""Unwinding of x86-64 stack frames."""

from __future__ import annotations

from typing import Optional

from .cfi import CfiStackWalker
from .context import Amd64Context, MinidumpContext
from .frames import FrameTrust, StackFrame
from .memory import MemoryRegion, ModuleList
from .symbols import SymbolProvider

POINTER_WIDTH = 8
INSTRUCTION_REGISTER = "rip"
STACK_POINTER_REGISTER = "rsp"
FRAME_POINTER_REGISTER = "rbp"

_MASK = 0xFFFFFFFFFFFFFFFF
_DEFAULT_SCAN_RANGE = 40
_EXTENDED_SCAN_RANGE = _DEFAULT_SCAN_RANGE * 4
# Computed for x86 frames, but still an extremely generous frame size on x64.
_MAX_REASONABLE_GAP_BETWEEN_FRAMES = 128 * 1024


def is_non_canonical(ptr: int) -> bool:
    """True if ``ptr`` falls in the hole between the two canonical address ranges.

    Only 48 bits of an address are assumed to be used (4-level page tables),
    with bit 47 copied into all the higher bits.
    """
    return 0x7FFFFFFFFFFF < ptr < 0xFFFF800000000000


def _read(stack_memory: MemoryRegion, address: int) -> Optional[int]:
    return stack_memory.get_memory_at_address(address, POINTER_WIDTH)


def _instruction_seems_valid(instruction: int, modules: ModuleList) -> bool:
    if is_non_canonical(instruction):
        return False
    return modules.module_at_address(instruction) is not None


def _stack_seems_valid(caller_sp: int, callee_sp: int, stack_memory: MemoryRegion) -> bool:
    # The stack must not grow while unwinding, and must stay inside the stack.
    if caller_sp <= callee_sp:
        return False
    return _read(stack_memory, caller_sp) is not None


def _adjust_instruction(frame: StackFrame, caller_ip: int) -> None:
    # The return address follows the CALL; point back inside the CALL itself.
    if caller_ip > 0:
        frame.instruction = caller_ip - 1


def _make_frame(
    rip: int, rsp: int, rbp: int, valid: set[str], trust: FrameTrust
) -> StackFrame:
    context = MinidumpContext(Amd64Context(rip=rip, rsp=rsp, rbp=rbp), frozenset(valid))
    frame = StackFrame.from_context(context, trust)
    _adjust_instruction(frame, rip)
    return frame


def _caller_by_frame_pointer(
    ctx: Amd64Context,
    valid: Optional[frozenset[str]],
    stack_memory: MemoryRegion,
    modules: ModuleList,
) -> Optional[StackFrame]:
    if valid is not None and (
        FRAME_POINTER_REGISTER not in valid or STACK_POINTER_REGISTER not in valid
    ):
        return None
    last_bp = ctx.rbp
    last_sp = ctx.rsp
    # ip_new = *(bp_old + ptr), sp_new = bp_old + 2 * ptr, bp_new = *(bp_old)
    caller_ip = _read(stack_memory, last_bp + POINTER_WIDTH)
    if caller_ip is None:
        return None
    caller_bp = _read(stack_memory, last_bp)
    if caller_bp is None:
        return None
    caller_sp = (last_bp + POINTER_WIDTH * 2) & _MASK

    # Coherent frame pointers must be well ordered and stay inside the stack.
    if caller_sp <= last_bp or caller_bp < caller_sp:
        return None
    if _read(stack_memory, caller_bp) is None:
        return None
    if not _instruction_seems_valid(caller_ip, modules):
        return None
    if not _stack_seems_valid(caller_sp, last_sp, stack_memory):
        return None
    return _make_frame(
        caller_ip,
        caller_sp,
        caller_bp,
        {INSTRUCTION_REGISTER, STACK_POINTER_REGISTER, FRAME_POINTER_REGISTER},
        FrameTrust.FRAME_POINTER,
    )


def _caller_by_cfi(
    ctx: Amd64Context,
    valid: Optional[frozenset[str]],
    stack_memory: MemoryRegion,
    grand_callee_frame: Optional[StackFrame],
    modules: ModuleList,
    symbol_provider: SymbolProvider,
) -> Optional[StackFrame]:
    if valid is not None and (
        INSTRUCTION_REGISTER not in valid or STACK_POINTER_REGISTER not in valid
    ):
        return None
    last_sp = ctx.rsp
    last_ip = ctx.rip
    module = modules.module_at_address(last_ip)
    if module is None:
        return None
    grand_callee_parameter_size = 0
    if grand_callee_frame is not None and grand_callee_frame.parameter_size is not None:
        grand_callee_parameter_size = grand_callee_frame.parameter_size

    walker = CfiStackWalker(
        instruction=last_ip,
        callee_ctx=ctx,
        stack_memory=stack_memory,
        callee_validity=valid,
        grand_callee_parameter_size=grand_callee_parameter_size,
    )
    if not symbol_provider.walk_frame(module, walker):
        return None
    caller_ctx = walker.caller_ctx
    caller_ip = caller_ctx.rip
    caller_sp = caller_ctx.rsp
    if not _instruction_seems_valid(caller_ip, modules):
        return None
    if not _stack_seems_valid(caller_sp, last_sp, stack_memory):
        return None
    context = MinidumpContext(caller_ctx, frozenset(walker.caller_validity))
    frame = StackFrame.from_context(context, FrameTrust.CALL_FRAME_INFO)
    _adjust_instruction(frame, caller_ip)
    return frame


def _caller_by_scan(
    ctx: Amd64Context,
    valid: Optional[frozenset[str]],
    trust: FrameTrust,
    stack_memory: MemoryRegion,
    modules: ModuleList,
) -> Optional[StackFrame]:
    if valid is None:
        last_bp: Optional[int] = ctx.rbp
    elif STACK_POINTER_REGISTER not in valid:
        return None
    else:
        last_bp = ctx.rbp if FRAME_POINTER_REGISTER in valid else None
    last_sp = ctx.rsp

    # The first frame of an unwind is often messy, so scan further for it.
    scan_range = _EXTENDED_SCAN_RANGE if trust is FrameTrust.CONTEXT else _DEFAULT_SCAN_RANGE

    for i in range(scan_range):
        address_of_ip = (last_sp + i * POINTER_WIDTH) & _MASK
        caller_ip = _read(stack_memory, address_of_ip)
        if caller_ip is None:
            return None
        if not _instruction_seems_valid(caller_ip, modules):
            continue
        caller_sp = (address_of_ip + POINTER_WIDTH) & _MASK

        # Recover bp from a standard prologue (saved just below the return
        # address, only when the callee's bp points there) or as preserved
        # unchanged from the callee.
        caller_bp: Optional[int] = None
        if last_bp is not None:
            address_of_bp = (address_of_ip - POINTER_WIDTH) & _MASK
            bp = _read(stack_memory, address_of_bp)
            if bp is None:
                return None
            if (
                last_bp == address_of_bp
                and bp > address_of_ip
                and bp - address_of_bp <= _MAX_REASONABLE_GAP_BETWEEN_FRAMES
            ):
                if _read(stack_memory, bp) is not None:
                    caller_bp = bp
            elif last_bp >= address_of_ip + POINTER_WIDTH:
                if _read(stack_memory, last_bp) is not None:
                    caller_bp = last_bp

        registers = {INSTRUCTION_REGISTER, STACK_POINTER_REGISTER}
        if caller_bp is not None:
            registers.add(FRAME_POINTER_REGISTER)
        return _make_frame(
            caller_ip, caller_sp, caller_bp or 0, registers, FrameTrust.SCAN
        )
    return None


def get_caller_frame(
    ctx: Amd64Context,
    valid: Optional[frozenset[str]],
    trust: FrameTrust,
    stack_memory: Optional[MemoryRegion],
    grand_callee_frame: Optional[StackFrame],
    modules: ModuleList,
    symbol_provider: SymbolProvider,
) -> Optional[StackFrame]:
    """Recover the caller of the frame described by ``ctx``, or None at stack end.

    Call frame information is tried first, then the frame pointer chain,
    then scanning the stack for something that looks like a return address.
    """
    if stack_memory is None:
        return None
    frame = (
        _caller_by_cfi(ctx, valid, stack_memory, grand_callee_frame, modules, symbol_provider)
        or _caller_by_frame_pointer(ctx, valid, stack_memory, modules)
        or _caller_by_scan(ctx, valid, trust, stack_memory, modules)
    )
    if frame is None:
        return None
    # An instruction address of 0 marks the end of the stack.
    if frame.context.get_instruction_pointer() == 0:
        return None
    # Insist on progress so unwinding cannot loop forever.
    if frame.context.get_stack_pointer() <= ctx.rsp:
        return None
    return frame