"""Verbose, field-by-field text dumps of CPU contexts."""

from __future__ import annotations

from .context import Amd64Context, Arm64Context, CpuContext, MinidumpContext, X86Context
from .memory import hex_bytes

_X86_LABEL_WIDTH = 28
_AMD64_LABEL_WIDTH = 13


def _line(label: str, value: int, width: int) -> str:
    return f"  {label.ljust(width)} = {value:#x}\n"


def _format_x86(raw: X86Context) -> str:
    width = _X86_LABEL_WIDTH
    head = [
        ("context_flags", raw.context_flags),
        ("dr0", raw.dr0),
        ("dr1", raw.dr1),
        ("dr2", raw.dr2),
        ("dr3", raw.dr3),
        ("dr6", raw.dr6),
        ("dr7", raw.dr7),
        ("float_save.control_word", raw.float_control_word),
        ("float_save.status_word", raw.float_status_word),
        ("float_save.tag_word", raw.float_tag_word),
        ("float_save.error_offset", raw.float_error_offset),
        ("float_save.error_selector", raw.float_error_selector),
        ("float_save.data_offset", raw.float_data_offset),
        ("float_save.data_selector", raw.float_data_selector),
    ]
    tail = [
        ("float_save.cr0_npx_state", raw.float_cr0_npx_state),
        ("gs", raw.gs),
        ("fs", raw.fs),
        ("es", raw.es),
        ("ds", raw.ds),
        ("edi", raw.edi),
        ("esi", raw.esi),
        ("ebx", raw.ebx),
        ("edx", raw.edx),
        ("ecx", raw.ecx),
        ("eax", raw.eax),
        ("ebp", raw.ebp),
        ("eip", raw.eip),
        ("cs", raw.cs),
        ("eflags", raw.eflags),
        ("esp", raw.esp),
        ("ss", raw.ss),
    ]
    parts = ["CONTEXT_X86\n"]
    parts.extend(_line(label, value, width) for label, value in head)
    area_label = f"float_save.register_area[{len(raw.float_register_area):2}]"
    parts.append(f"  {area_label.ljust(width)} = 0x{hex_bytes(raw.float_register_area)}\n")
    parts.extend(_line(label, value, width) for label, value in tail)
    ext_label = f"extended_registers[{len(raw.extended_registers):3}]"
    parts.append(f"  {ext_label.ljust(width)} = 0x{hex_bytes(raw.extended_registers)}\n\n")
    return "".join(parts)


def _format_amd64(raw: Amd64Context) -> str:
    names = (
        "p1_home", "p2_home", "p3_home", "p4_home", "p5_home", "p6_home",
        "context_flags", "mx_csr", "cs", "ds", "es", "fs", "gs", "ss", "eflags",
        "dr0", "dr1", "dr2", "dr3", "dr6", "dr7",
        "rax", "rcx", "rdx", "rbx", "rsp", "rbp", "rsi", "rdi",
        "r8", "r9", "r10", "r11", "r12", "r13", "r14", "r15", "rip",
    )
    lines = "".join(_line(name, getattr(raw, name), _AMD64_LABEL_WIDTH) for name in names)
    return f"CONTEXT_AMD64\n{lines}\n"


def _format_arm64(raw: Arm64Context) -> str:
    parts = ["CONTEXT_ARM64\n", f"  context_flags        = {raw.context_flags:#x}\n"]
    parts.extend(
        f"  iregs[{index:2}]            = {value:#x}\n"
        for index, value in enumerate(raw.iregs)
    )
    parts.append(f"  pc                   = {raw.pc:#x}\n")
    parts.append(f"  cpsr                 = {raw.cpsr:#x}\n")
    parts.append(f"  float_save.fpsr     = {raw.fpsr:#x}\n")
    parts.append(f"  float_save.fpcr     = {raw.fpcr:#x}\n")
    parts.extend(
        f"  float_save.regs[{index:2}] = {value:#x}\n"
        for index, value in enumerate(raw.float_regs)
    )
    return "".join(parts)


def format_context(context: MinidumpContext | CpuContext) -> str:
    """Describe every field of a CPU context, one per line.

    Raises ValueError for context types that have no dump format.
    """
    raw = context.raw if isinstance(context, MinidumpContext) else context
    if isinstance(raw, X86Context):
        return _format_x86(raw)
    if isinstance(raw, Amd64Context):
        return _format_amd64(raw)
    if isinstance(raw, Arm64Context):
        return _format_arm64(raw)
    raise ValueError(f"no dump format for context type {type(raw).__name__}")