"""
Stream Protocol for Communication

Defines the interface every transport (USB serial, test dummy) implements
so the rest of the package can talk to a TinyG channel without caring how
bytes actually move.
"""

from typing import Protocol, runtime_checkable

@runtime_checkable
class Stream(Protocol):
    """Protocol defining the interface for a single duplex channel."""

    def close(self) -> bool:
        """Closes the channel. Closing twice is a no-op."""
        ...

    def send(self, data: bytes) -> None:
        """Sends raw bytes over the channel."""
        ...

    def write_line(self, line: str) -> None:
        """Sends one newline-terminated text line."""
        ...

    def readline(self) -> bytes:
        """Reads a line (up to newline character), or b'' on timeout."""
        ...

    @property
    def is_open(self) -> bool:
        """True until close() has been called."""
        ...
