"""Text rendering of raw, NUL-separated minidump streams."""

from __future__ import annotations


def format_raw_stream(name: str, contents: bytes) -> str:
    """Render ``contents`` with each NUL shown as a visible ``\\0`` line break."""
    pieces = (chunk.decode("utf-8", errors="replace") for chunk in contents.split(b"\0"))
    body = "\\0\n".join(pieces)
    return f"Stream {name}:\n{body}\n\n"