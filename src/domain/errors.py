"""
Exception types raised by the line reader.

Construction problems are raised synchronously. Failures that happen while
a source is being consumed are delivered through the reader's ``error``
notification instead.
"""

from typing import Optional


class LineReaderError(Exception):
    """Base class for all line reader failures."""
    pass


class InvalidConfiguration(LineReaderError):
    """Raised when reader options are missing or out of range."""
    pass


class SourceReadFailure(LineReaderError):
    """Raised when the byte source cannot be opened or read."""
    pass


class BufferOverflow(LineReaderError):
    """
    Raised when a single line does not fit in the accumulation buffer.

    Attributes:
        capacity_bytes: Configured buffer capacity
        line_number: Number the overflowing line would have been emitted with
    """

    def __init__(self, capacity_bytes: int, line_number: int, message: Optional[str] = None):
        self.capacity_bytes = capacity_bytes
        self.line_number = line_number
        super().__init__(
            message or f"Line {line_number} exceeds buffer capacity of {capacity_bytes} bytes"
        )


class ReaderStateError(LineReaderError):
    """Raised when a source signal arrives in a state that cannot accept it."""
    pass
