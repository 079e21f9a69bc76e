"""Memory regions and loaded modules recorded in a minidump."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Literal, Optional


def hex_bytes(data: bytes) -> str:
    """Format ``data`` as a contiguous lower-case hex string."""
    return data.hex()


@dataclass(frozen=True)
class MemoryRegion:
    """A contiguous block of process memory captured in a dump."""

    base_address: int
    data: bytes
    endian: Literal["little", "big"] = "little"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def end_address(self) -> int:
        """The first address past the end of the region."""
        return self.base_address + len(self.data)

    def get_memory_at_address(self, address: int, width: int) -> Optional[int]:
        """Read an unsigned integer of ``width`` bytes at ``address``.

        Returns None when the value does not lie wholly inside the region.
        """
        if width <= 0:
            raise ValueError(f"invalid read width: {width}")
        offset = address - self.base_address
        if offset < 0 or offset + width > len(self.data):
            return None
        return int.from_bytes(self.data[offset:offset + width], self.endian)

    def get_u32(self, address: int) -> Optional[int]:
        """Read a 32-bit unsigned value at ``address``."""
        return self.get_memory_at_address(address, 4)

    def get_u64(self, address: int) -> Optional[int]:
        """Read a 64-bit unsigned value at ``address``."""
        return self.get_memory_at_address(address, 8)


@dataclass(frozen=True)
class Module:
    """A code module (executable or shared library) loaded in the process."""

    base_address: int
    size: int
    name: str
    debug_file: Optional[str] = None
    debug_identifier: Optional[str] = None
    code_identifier: Optional[str] = None
    version: Optional[str] = None

    @property
    def code_file(self) -> str:
        return self.name

    @property
    def end_address(self) -> int:
        """The first address past the end of the module."""
        return self.base_address + self.size

    def contains(self, address: int) -> bool:
        """True if ``address`` lies inside this module's image."""
        return self.base_address <= address < self.end_address


class ModuleList:
    """The modules loaded into a process, in the order the dump lists them."""

    def __init__(self, modules: Iterable[Module] = ()) -> None:
        self._modules = tuple(modules)
        self._sorted = tuple(sorted(self._modules, key=lambda m: m.base_address))

    def __iter__(self) -> Iterator[Module]:
        return iter(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def __getitem__(self, index: int) -> Module:
        return self._modules[index]

    def module_at_address(self, address: int) -> Optional[Module]:
        """Return the module whose image covers ``address``, if any."""
        return next((m for m in self._sorted if m.contains(address)), None)

    def by_addr(self) -> list[Module]:
        """The modules ordered by base address."""
        return list(self._sorted)

    def main_module(self) -> Optional[Module]:
        """The main executable, which the dump lists first."""
        return self._modules[0] if self._modules else None