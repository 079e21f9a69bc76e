"""Stack frames and the call stacks produced by unwinding a thread."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, TextIO

from .context import MinidumpContext
from .memory import Module

_LINE_LIMIT = 80


class FrameTrust(enum.Enum):
    """How far the unwinder trusts the instruction pointer of a frame."""

    NONE = "non"
    SCAN = "scan"
    CFI_SCAN = "cfi_scan"
    FRAME_POINTER = "frame_pointer"
    CALL_FRAME_INFO = "cfi"
    PREWALKED = "prewalked"
    CONTEXT = "context"

    def description(self) -> str:
        """A sentence fragment saying how the frame was found."""
        return _TRUST_DESCRIPTIONS[self]

    def json_name(self) -> str:
        """The name used for this trust level in JSON reports."""
        return self.value


_TRUST_DESCRIPTIONS = {
    FrameTrust.CONTEXT: "given as instruction pointer in context",
    FrameTrust.PREWALKED: "recovered by external stack walker",
    FrameTrust.CALL_FRAME_INFO: "call frame info",
    FrameTrust.CFI_SCAN: "call frame info with scanning",
    FrameTrust.FRAME_POINTER: "previous frame's frame pointer",
    FrameTrust.SCAN: "stack scanning",
    FrameTrust.NONE: "unknown",
}


@dataclass
class StackFrame:
    """A single frame recovered while unwinding a thread's stack.

    ``instruction`` is an absolute address; for frames other than the
    innermost one it points inside the call instruction rather than at
    the return address.
    """

    instruction: int
    trust: FrameTrust
    context: MinidumpContext
    module: Optional[Module] = None
    function_name: Optional[str] = None
    function_base: Optional[int] = None
    parameter_size: Optional[int] = None
    source_file_name: Optional[str] = None
    source_line: Optional[int] = None
    source_line_base: Optional[int] = None

    @classmethod
    def from_context(cls, context: MinidumpContext, trust: FrameTrust) -> "StackFrame":
        """Create a frame whose instruction is the context's instruction pointer."""
        return cls(
            instruction=context.get_instruction_pointer(),
            trust=trust,
            context=context,
        )

    def return_address(self) -> int:
        """The address as saved by the machine."""
        return self.instruction

    def set_function(self, name: str, base: int, parameter_size: int) -> None:
        """Record the function containing this frame's instruction."""
        self.function_name = name
        self.function_base = base
        self.parameter_size = parameter_size

    def set_source_file(self, file: str, line: int, base: int) -> None:
        """Record the source location of this frame's instruction."""
        self.source_file_name = file
        self.source_line = line
        self.source_line_base = base


class CallStackInfo(enum.Enum):
    """The outcome of unwinding a thread."""

    OK = "ok"
    MISSING_CONTEXT = "missing_context"
    MISSING_MEMORY = "missing_memory"
    UNSUPPORTED_CPU = "unsupported_cpu"
    DUMP_THREAD_SKIPPED = "dump_thread_skipped"


def basename(path: str) -> str:
    """The final component of a path using either slash convention."""
    cut = max(path.rfind("/"), path.rfind("\\"))
    return path[cut + 1:]


def format_registers(context: MinidumpContext) -> str:
    """Format the valid registers of ``context``, wrapped to about 80 columns."""
    lines = []
    current = ""
    for reg in context.valid_registers():
        entry = f" {reg:>5} = {context.format_register(reg)}"
        if len(current) + len(entry) > _LINE_LIMIT:
            lines.append(f" {current}\n")
            current = ""
        current += entry
    if current:
        lines.append(f" {current}\n")
    return "".join(lines)


def _describe_location(frame: StackFrame) -> str:
    addr = frame.instruction
    module = frame.module
    if module is None:
        return f"{addr:#x}\n"
    text = basename(module.code_file)
    if frame.function_name is not None and frame.function_base is not None:
        text += f"!{frame.function_name}"
        if (
            frame.source_file_name is not None
            and frame.source_line is not None
            and frame.source_line_base is not None
        ):
            text += (
                f" [{basename(frame.source_file_name)} : {frame.source_line}"
                f" + {addr - frame.source_line_base:#x}]"
            )
        else:
            text += f" + {addr - frame.function_base:#x}"
    else:
        text += f" + {addr - module.base_address:#x}"
    return text


@dataclass
class CallStack:
    """The frames of one thread, innermost callee first."""

    frames: list[StackFrame] = field(default_factory=list)
    info: CallStackInfo = CallStackInfo.OK
    thread_name: Optional[str] = None

    @classmethod
    def with_info(cls, info: CallStackInfo) -> "CallStack":
        """An empty call stack carrying ``info``."""
        return cls(info=info)

    def write(self, out: TextIO) -> None:
        """Write a human-readable description of the stack to ``out``."""
        if not self.frames:
            out.write("<no frames>\n")
        for index, frame in enumerate(self.frames):
            out.write(f"{index:2}  ")
            out.write(_describe_location(frame))
            out.write("\n")
            out.write(format_registers(frame.context))
            out.write(f"    Found by: {frame.trust.description()}\n")