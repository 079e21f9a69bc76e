"""CPU register contexts captured for threads and exceptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Iterable, Mapping, Optional


class UnknownRegisterError(KeyError):
    """Raised when a register name is not defined for a CPU context."""


class CpuContext:
    """Common behaviour of the per-architecture register sets."""

    REGISTERS: ClassVar[tuple[str, ...]] = ()
    REGISTER_WIDTH: ClassVar[int] = 8
    STACK_POINTER: ClassVar[str] = ""
    INSTRUCTION_POINTER: ClassVar[str] = ""
    _FIELDS: ClassVar[Mapping[str, str]] = {}

    def get_register(self, reg: str, valid: Optional[Iterable[str]]) -> Optional[int]:
        """Return ``reg`` if ``valid`` marks it valid; None means all are valid."""
        if valid is not None and reg not in valid:
            return None
        return self.get_register_always(reg)

    def get_register_always(self, reg: str) -> int:
        """Return ``reg`` regardless of whether it is valid."""
        return getattr(self, self._field(reg))

    def set_register(self, reg: str, value: int) -> None:
        """Set ``reg`` to ``value``."""
        name = self._field(reg)
        self._check_value(value)
        setattr(self, name, value)

    def memoize_register(self, reg: str) -> Optional[str]:
        """Return the canonical general-purpose register name, if ``reg`` is one."""
        return reg if reg in self.REGISTERS else None

    def format_register(self, reg: str) -> str:
        """Format ``reg`` as hex padded to the register's natural width."""
        return f"0x{self.get_register_always(reg):0{self.REGISTER_WIDTH * 2}x}"

    def stack_pointer_register_name(self) -> str:
        return self.STACK_POINTER

    def instruction_pointer_register_name(self) -> str:
        return self.INSTRUCTION_POINTER

    def _field(self, reg: str) -> str:
        try:
            return self._FIELDS[reg]
        except KeyError:
            raise UnknownRegisterError(reg) from None

    def _check_value(self, value: int) -> None:
        if not 0 <= value < 1 << (8 * self.REGISTER_WIDTH):
            raise ValueError(
                f"value {value:#x} does not fit in a {self.REGISTER_WIDTH}-byte register"
            )


@dataclass
class X86Context(CpuContext):
    """Register state of a 32-bit x86 thread."""

    REGISTERS = ("eip", "esp", "ebp", "ebx", "esi", "edi", "eax", "ecx", "edx", "efl")
    REGISTER_WIDTH = 4
    STACK_POINTER = "esp"
    INSTRUCTION_POINTER = "eip"
    _FIELDS = {name: name for name in REGISTERS} | {"efl": "eflags"}

    context_flags: int = 0
    dr0: int = 0
    dr1: int = 0
    dr2: int = 0
    dr3: int = 0
    dr6: int = 0
    dr7: int = 0
    float_control_word: int = 0
    float_status_word: int = 0
    float_tag_word: int = 0
    float_error_offset: int = 0
    float_error_selector: int = 0
    float_data_offset: int = 0
    float_data_selector: int = 0
    float_register_area: bytes = bytes(80)
    float_cr0_npx_state: int = 0
    gs: int = 0
    fs: int = 0
    es: int = 0
    ds: int = 0
    edi: int = 0
    esi: int = 0
    ebx: int = 0
    edx: int = 0
    ecx: int = 0
    eax: int = 0
    ebp: int = 0
    eip: int = 0
    cs: int = 0
    eflags: int = 0
    esp: int = 0
    ss: int = 0
    extended_registers: bytes = bytes(512)


@dataclass
class Amd64Context(CpuContext):
    """Register state of an x86-64 thread."""

    REGISTERS = (
        "rax", "rdx", "rcx", "rbx", "rsi", "rdi", "rbp", "rsp", "r8", "r9",
        "r10", "r11", "r12", "r13", "r14", "r15", "rip",
    )
    REGISTER_WIDTH = 8
    STACK_POINTER = "rsp"
    INSTRUCTION_POINTER = "rip"
    _FIELDS = {name: name for name in REGISTERS}

    p1_home: int = 0
    p2_home: int = 0
    p3_home: int = 0
    p4_home: int = 0
    p5_home: int = 0
    p6_home: int = 0
    context_flags: int = 0
    mx_csr: int = 0
    cs: int = 0
    ds: int = 0
    es: int = 0
    fs: int = 0
    gs: int = 0
    ss: int = 0
    eflags: int = 0
    dr0: int = 0
    dr1: int = 0
    dr2: int = 0
    dr3: int = 0
    dr6: int = 0
    dr7: int = 0
    rax: int = 0
    rcx: int = 0
    rdx: int = 0
    rbx: int = 0
    rsp: int = 0
    rbp: int = 0
    rsi: int = 0
    rdi: int = 0
    r8: int = 0
    r9: int = 0
    r10: int = 0
    r11: int = 0
    r12: int = 0
    r13: int = 0
    r14: int = 0
    r15: int = 0
    rip: int = 0


_ARM64_FRAME_POINTER = 29
_ARM64_STACK_POINTER = 31
_ARM64_INDEX = {f"x{i}": i for i in range(32)} | {
    "fp": _ARM64_FRAME_POINTER,
    "sp": _ARM64_STACK_POINTER,
}


@dataclass
class Arm64Context(CpuContext):
    """Register state of an AArch64 thread."""

    REGISTERS = tuple(f"x{i}" for i in range(32)) + ("pc",)
    REGISTER_WIDTH = 8
    STACK_POINTER = "sp"
    INSTRUCTION_POINTER = "pc"

    context_flags: int = 0
    cpsr: int = 0
    iregs: list[int] = field(default_factory=lambda: [0] * 32)
    pc: int = 0
    fpsr: int = 0
    fpcr: int = 0
    float_regs: list[int] = field(default_factory=lambda: [0] * 32)

    def get_register_always(self, reg: str) -> int:
        if reg == "pc":
            return self.pc
        try:
            return self.iregs[_ARM64_INDEX[reg]]
        except KeyError:
            raise UnknownRegisterError(reg) from None

    def set_register(self, reg: str, value: int) -> None:
        if reg == "pc":
            self._check_value(value)
            self.pc = value
            return
        try:
            index = _ARM64_INDEX[reg]
        except KeyError:
            raise UnknownRegisterError(reg) from None
        self._check_value(value)
        self.iregs[index] = value


@dataclass
class MinidumpContext:
    """A CPU context and the set of registers in it that hold valid values.

    ``valid`` is None when every register is valid.
    """

    raw: CpuContext
    valid: Optional[frozenset[str]] = None

    def __post_init__(self) -> None:
        if self.valid is not None:
            self.valid = frozenset(self.valid)

    @classmethod
    def from_raw(cls, raw: CpuContext) -> "MinidumpContext":
        """Wrap ``raw`` with every register marked valid."""
        return cls(raw)

    def get_instruction_pointer(self) -> int:
        return self.raw.get_register_always(self.raw.instruction_pointer_register_name())

    def get_stack_pointer(self) -> int:
        return self.raw.get_register_always(self.raw.stack_pointer_register_name())

    def format_register(self, reg: str) -> str:
        return self.raw.format_register(reg)

    def general_purpose_registers(self) -> tuple[str, ...]:
        return self.raw.REGISTERS

    def valid_registers(self) -> tuple[str, ...]:
        """The valid general-purpose registers, in their natural order."""
        registers = self.general_purpose_registers()
        if self.valid is None:
            return registers
        return tuple(reg for reg in registers if reg in self.valid)