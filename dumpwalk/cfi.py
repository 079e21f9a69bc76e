"""The register bridge between call frame information and a CPU context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .context import CpuContext, UnknownRegisterError
from .memory import MemoryRegion


@dataclass
class CfiStackWalker:
    """Reads callee state and collects the caller's registers during a CFI unwind.

    ``callee_validity`` is None when every callee register is valid.
    """

    instruction: int
    callee_ctx: CpuContext
    stack_memory: MemoryRegion
    callee_validity: Optional[Iterable[str]] = None
    grand_callee_parameter_size: int = 0
    caller_ctx: Optional[CpuContext] = None
    caller_validity: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.caller_ctx is None:
            self.caller_ctx = type(self.callee_ctx)()

    def get_register_at_address(self, address: int) -> Optional[int]:
        """Read a register-sized value from stack memory."""
        return self.stack_memory.get_memory_at_address(
            address, self.callee_ctx.REGISTER_WIDTH
        )

    def get_callee_register(self, name: str) -> Optional[int]:
        """The callee's value of ``name``, if it is known and valid."""
        try:
            return self.callee_ctx.get_register(name, self.callee_validity)
        except UnknownRegisterError:
            return None

    def set_caller_register(self, name: str, value: int) -> bool:
        """Set a general-purpose register of the caller; False if impossible."""
        canonical = self.caller_ctx.memoize_register(name)
        if canonical is None:
            return False
        return self._set(canonical, value)

    def set_cfa(self, value: int) -> bool:
        """Set the caller's stack pointer from the canonical frame address."""
        return self._set(self.caller_ctx.stack_pointer_register_name(), value)

    def set_ra(self, value: int) -> bool:
        """Set the caller's instruction pointer from the return address."""
        return self._set(self.caller_ctx.instruction_pointer_register_name(), value)

    def _set(self, name: str, value: int) -> bool:
        try:
            self.caller_ctx.set_register(name, value)
        except (ValueError, UnknownRegisterError):
            return False
        self.caller_validity.add(name)
        return True