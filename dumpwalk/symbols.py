"""Symbol providers and the errors raised while processing a dump."""

from __future__ import annotations

from typing import Any, Optional


class SymbolProvider:
    """A source of symbols and unwind information.

    The base provider knows no symbols; subclasses override both methods.
    """

    def fill_symbol(self, module: Any, frame: Any) -> None:
        """Fill in function and source information for ``frame``."""

    def walk_frame(self, module: Any, walker: Any) -> bool:
        """Recover the caller's registers through ``walker``; True on success."""
        return False


class MultiSymbolProvider(SymbolProvider):
    """Consults several providers in the order they were added."""

    def __init__(self) -> None:
        self._providers: list[SymbolProvider] = []

    def add(self, provider: SymbolProvider) -> None:
        """Append ``provider`` to the providers consulted."""
        self._providers.append(provider)

    def fill_symbol(self, module: Any, frame: Any) -> None:
        for provider in self._providers:
            provider.fill_symbol(module, frame)

    def walk_frame(self, module: Any, walker: Any) -> bool:
        return any(provider.walk_frame(module, walker) for provider in self._providers)


class ProcessError(Exception):
    """An error encountered during minidump processing."""

    default_message = "An unknown error occurred"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class MinidumpReadError(ProcessError):
    """The minidump could not be read."""

    default_message = "Failed to read minidump"

    def __init__(self, cause: Optional[BaseException] = None) -> None:
        super().__init__()
        self.cause = cause


class MissingSystemInfo(ProcessError):
    """The dump has no system information stream."""

    default_message = "The system information stream was not found"


class MissingThreadList(ProcessError):
    """The dump has no thread list stream."""

    default_message = "The thread list stream was not found"