"""Unwinding of 32-bit x86 stack frames."""

from __future__ import annotations

from typing import Optional

from .cfi import CfiStackWalker
from .context import MinidumpContext, X86Context
from .frames import FrameTrust, StackFrame
from .memory import MemoryRegion, ModuleList
from .symbols import SymbolProvider

POINTER_WIDTH = 4
INSTRUCTION_REGISTER = "eip"
STACK_POINTER_REGISTER = "esp"
FRAME_POINTER_REGISTER = "ebp"

_MASK = 0xFFFFFFFF
_DEFAULT_SCAN_RANGE = 40
_EXTENDED_SCAN_RANGE = _DEFAULT_SCAN_RANGE * 4
# Based on a frame size histogram of popular libraries: 99.5% of frames
# are smaller than 128 KB.
_MAX_REASONABLE_GAP_BETWEEN_FRAMES = 128 * 1024


def _read(stack_memory: MemoryRegion, address: int) -> Optional[int]:
    return stack_memory.get_memory_at_address(address, POINTER_WIDTH)


def _instruction_seems_valid(instruction: int, modules: ModuleList) -> bool:
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
    eip: int, esp: int, ebp: int, valid: set[str], trust: FrameTrust
) -> StackFrame:
    context = MinidumpContext(X86Context(eip=eip, esp=esp, ebp=ebp), frozenset(valid))
    frame = StackFrame.from_context(context, trust)
    _adjust_instruction(frame, eip)
    return frame


def _caller_by_frame_pointer(
    ctx: X86Context,
    valid: Optional[frozenset[str]],
    stack_memory: MemoryRegion,
) -> Optional[StackFrame]:
    if valid is not None and FRAME_POINTER_REGISTER not in valid:
        return None
    last_bp = ctx.ebp
    # ip_new = *(bp_old + ptr), sp_new = bp_old + 2 * ptr, bp_new = *(bp_old)
    caller_ip = _read(stack_memory, last_bp + POINTER_WIDTH)
    if caller_ip is None:
        return None
    caller_bp = _read(stack_memory, last_bp)
    if caller_bp is None:
        return None
    caller_sp = (last_bp + POINTER_WIDTH * 2) & _MASK
    return _make_frame(
        caller_ip,
        caller_sp,
        caller_bp,
        {INSTRUCTION_REGISTER, STACK_POINTER_REGISTER, FRAME_POINTER_REGISTER},
        FrameTrust.FRAME_POINTER,
    )


def _caller_by_cfi(
    ctx: X86Context,
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
    last_sp = ctx.esp
    last_ip = ctx.eip
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
    caller_ip = caller_ctx.eip
    caller_sp = caller_ctx.esp
    if not _instruction_seems_valid(caller_ip, modules):
        return None
    if not _stack_seems_valid(caller_sp, last_sp, stack_memory):
        return None
    context = MinidumpContext(caller_ctx, frozenset(walker.caller_validity))
    frame = StackFrame.from_context(context, FrameTrust.CALL_FRAME_INFO)
    _adjust_instruction(frame, caller_ip)
    return frame


def _caller_by_scan(
    ctx: X86Context,
    valid: Optional[frozenset[str]],
    trust: FrameTrust,
    stack_memory: MemoryRegion,
    modules: ModuleList,
) -> Optional[StackFrame]:
    if valid is None:
        last_bp: Optional[int] = ctx.ebp
    elif STACK_POINTER_REGISTER not in valid:
        return None
    else:
        last_bp = ctx.ebp if FRAME_POINTER_REGISTER in valid else None
    last_sp = ctx.esp

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

        # Recover bp either from a standard prologue (saved just below the
        # return address) or as preserved unchanged from the callee.
        caller_bp: Optional[int] = None
        address_of_bp = (address_of_ip - POINTER_WIDTH) & _MASK
        bp = _read(stack_memory, address_of_bp)
        if bp is None:
            return None
        if bp > address_of_ip and bp - address_of_bp <= _MAX_REASONABLE_GAP_BETWEEN_FRAMES:
            if _read(stack_memory, bp) is not None:
                caller_bp = bp
        elif last_bp is not None and last_bp >= address_of_ip + POINTER_WIDTH:
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
    ctx: X86Context,
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
        or _caller_by_frame_pointer(ctx, valid, stack_memory)
        or _caller_by_scan(ctx, valid, trust, stack_memory, modules)
    )
    if frame is None:
        return None
    # An instruction address of 0 marks the end of the stack.
    if frame.context.get_instruction_pointer() == 0:
        return None
    # Insist on progress so unwinding cannot loop forever.
    if frame.context.get_stack_pointer() <= ctx.esp:
        return None
    return frame