"""Unwinding every frame of a thread's stack."""

from __future__ import annotations

import copy
from typing import Optional

from . import amd64, x86
from .context import Amd64Context, MinidumpContext, X86Context
from .frames import CallStack, CallStackInfo, FrameTrust, StackFrame
from .memory import MemoryRegion, ModuleList
from .symbols import SymbolProvider


def get_caller_frame(
    callee_frame: StackFrame,
    grand_callee_frame: Optional[StackFrame],
    stack_memory: Optional[MemoryRegion],
    modules: ModuleList,
    symbol_provider: SymbolProvider,
) -> Optional[StackFrame]:
    """Recover the caller of ``callee_frame``; None if the stack ends or the CPU is unsupported."""
    raw = callee_frame.context.raw
    if isinstance(raw, Amd64Context):
        unwinder = amd64.get_caller_frame
    elif isinstance(raw, X86Context):
        unwinder = x86.get_caller_frame
    else:
        return None
    return unwinder(
        raw,
        callee_frame.context.valid,
        callee_frame.trust,
        stack_memory,
        grand_callee_frame,
        modules,
        symbol_provider,
    )


def fill_source_line_info(
    frame: StackFrame, modules: ModuleList, symbol_provider: SymbolProvider
) -> None:
    """Attach the covering module to ``frame`` and let the provider symbolize it."""
    module = modules.module_at_address(frame.instruction)
    if module is not None:
        frame.module = module
        symbol_provider.fill_symbol(module, frame)


def walk_stack(
    context: Optional[MinidumpContext],
    stack_memory: Optional[MemoryRegion],
    modules: ModuleList,
    symbol_provider: SymbolProvider,
) -> CallStack:
    """Unwind a thread starting from ``context``, innermost frame first."""
    if context is None:
        return CallStack.with_info(CallStackInfo.MISSING_CONTEXT)
    frames: list[StackFrame] = []
    frame: Optional[StackFrame] = StackFrame.from_context(
        copy.deepcopy(context), FrameTrust.CONTEXT
    )
    while frame is not None:
        fill_source_line_info(frame, modules, symbol_provider)
        frames.append(frame)
        grand_callee = frames[-2] if len(frames) >= 2 else None
        frame = get_caller_frame(frame, grand_callee, stack_memory, modules, symbol_provider)
    return CallStack(frames=frames, info=CallStackInfo.OK)