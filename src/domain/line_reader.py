"""
Line-oriented stream reader.

LineReader consumes a byte source incrementally and emits one ``line``
notification per completed line, keeping at most one partial line in a
fixed-size buffer. ``\\n`` terminates a line, ``\\r`` is dropped, every other
byte is kept.

Notifications (subscribe with ``reader.on(event, listener)``):
    open(descriptor)                    source opened, before any data
    line(content, line_number, byte_count)
    error(exception)                    terminal, nothing follows
    end()                               after the final line is flushed
    close()                             after the source was released

Usage:
    from domain.line_reader import LineReader

    reader = LineReader('/tmp/export.csv', {'capacityBytes': 8192})
    reader.on('line', lambda content, number, byte_count: print(number, content))
    summary = reader.run()

    # or pull lines lazily
    for line in LineReader(stream):
        print(line.number, line.content)

A reader can also be fed by an external producer through ``handle_open``,
``handle_data``, ``handle_error``, ``handle_end`` and ``handle_close``.
"""

import logging
import os
from collections import deque
from typing import Any, BinaryIO, Callable, Deque, Dict, Iterator, List, Mapping, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from .errors import BufferOverflow, LineReaderError, ReaderStateError, SourceReadFailure
from .models import (
    DEFAULT_ENCODING,
    OVERFLOW_TRUNCATE,
    Line,
    ReaderOptions,
    ReaderState,
    ReadSummary,
)

logger = logging.getLogger(__name__)

EVENTS = ('open', 'line', 'error', 'end', 'close')

# Failures raised by open()/read() that are reported as SourceReadFailure
SOURCE_ERRORS = (OSError, BotoCoreError, ClientError)

Source = Union[str, bytes, 'os.PathLike[Any]', BinaryIO]
Listener = Callable[..., Any]

_LF = b'\n'
_CR = b'\r'


class LineReader:
    """
    Splits a byte stream into lines and publishes them to subscribers.

    One instance reads one source. The buffer and counters belong to the
    instance and are never shared.
    """

    def __init__(
        self,
        source: Optional[Source] = None,
        options: Union[ReaderOptions, Mapping[str, Any], None] = None
    ):
        """
        Args:
            source: Path to open, an open binary handle with read(n), or None
                when chunks are pushed through handle_data()
            options: ReaderOptions or a dict (capacityBytes, retainBuffer, ...)

        Raises:
            InvalidConfiguration: If options are invalid
            TypeError: If source is neither a path nor a readable handle
        """
        if isinstance(options, ReaderOptions):
            self.options = options
        else:
            self.options = ReaderOptions.from_mapping(options)

        if source is not None and not _is_handle(source) and not _is_path(source):
            raise TypeError(
                f"source must be a path or a binary handle with read(), got {type(source).__name__}"
            )

        self._source = source
        self._handle: Optional[BinaryIO] = None
        self._owns_handle = False

        self._buffer = bytearray(self.options.capacity_bytes)
        self._length = 0
        self._truncated = False

        self._line_count = 0
        self._byte_count = 0

        self._state = ReaderState.UNOPENED
        self._ended = False
        self._error: Optional[BaseException] = None
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in EVENTS}

    def __repr__(self) -> str:
        return (
            f"LineReader(state={self._state.value}, lines={self._line_count}, "
            f"bytes={self._byte_count})"
        )

    # ------------------------------------------------------------------
    # Read-only state

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def line_count(self) -> int:
        return self._line_count

    @property
    def byte_count(self) -> int:
        return self._byte_count

    @property
    def buffered_bytes(self) -> int:
        """Bytes of the current, not yet terminated line."""
        return self._length

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    # ------------------------------------------------------------------
    # Subscribers

    def on(self, event: str, listener: Listener) -> 'LineReader':
        """Register a listener for one of open, line, error, end, close."""
        self._check_event(event)
        self._listeners[event].append(listener)
        return self

    def off(self, event: str, listener: Listener) -> 'LineReader':
        """Remove a previously registered listener."""
        self._check_event(event)
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            pass
        return self

    def _check_event(self, event: str) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown event '{event}'. Expected one of: {', '.join(EVENTS)}")

    def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            listener(*args)

    # ------------------------------------------------------------------
    # Source signals

    def handle_open(self, descriptor: Any = None) -> None:
        """Source has been opened; forwards the open notification."""
        if self._state is not ReaderState.UNOPENED:
            raise ReaderStateError(f"Cannot open a reader that is already {self._state.value}")

        self._state = ReaderState.OPEN
        logger.debug(f"Line reader opened: descriptor={descriptor!r}")
        self._emit('open', descriptor)

    def handle_data(self, chunk: Union[bytes, bytearray, memoryview]) -> None:
        """
        Consume one chunk of bytes.

        Lines completed by the chunk are emitted before this method returns.
        Chunks arriving after the reader ended, failed or closed are ignored.

        Raises:
            ReaderStateError: If the source has not been opened yet
            TypeError: If the chunk is text instead of bytes
        """
        if self._state is ReaderState.UNOPENED:
            raise ReaderStateError("Data received before the source was opened")
        if self._state is not ReaderState.OPEN:
            logger.debug(f"Ignoring {len(chunk)} byte(s) received while {self._state.value}")
            return

        if isinstance(chunk, str):
            raise TypeError("Chunks must be bytes; open the source in binary mode")
        if not isinstance(chunk, (bytes, bytearray)):
            chunk = bytes(chunk)

        size = len(chunk)
        pos = 0
        while pos < size and self._state is ReaderState.OPEN:
            newline = chunk.find(_LF, pos)
            segment_end = size if newline == -1 else newline

            self._append(chunk[pos:segment_end])
            self._byte_count += segment_end - pos
            if newline == -1 or self._state is not ReaderState.OPEN:
                break

            self._byte_count += 1
            self._emit_line()
            pos = newline + 1

    def handle_error(self, error: BaseException) -> None:
        """
        Source reported a failure.

        The partial line is discarded and the error notification is emitted.
        Errors that are not LineReaderError are wrapped in SourceReadFailure.
        """
        if not isinstance(error, LineReaderError):
            wrapped = SourceReadFailure(str(error) or error.__class__.__name__)
            wrapped.__cause__ = error
            error = wrapped
        self._fail(error)

    def handle_end(self) -> None:
        """Source is exhausted; flush the trailing line and emit end."""
        if self._state is ReaderState.UNOPENED:
            raise ReaderStateError("End received before the source was opened")
        if self._state is not ReaderState.OPEN:
            logger.debug(f"Ignoring end received while {self._state.value}")
            return

        # Last line without a trailing newline
        if self._length:
            self._emit_line()
            if self._state is not ReaderState.OPEN:
                return

        self._state = ReaderState.ENDED
        self._ended = True
        logger.debug(f"Line reader ended: lines={self._line_count}, bytes={self._byte_count}")
        self._emit('end')

    def handle_close(self) -> None:
        """Source released its resources; emit close unless already terminal."""
        if self._state.is_terminal:
            logger.debug(f"Ignoring close received while {self._state.value}")
            return

        self._state = ReaderState.CLOSED
        self._emit('close')

    # ------------------------------------------------------------------
    # Driving the source

    def run(self) -> ReadSummary:
        """
        Read the whole source, emitting notifications as lines complete.

        Returns:
            ReadSummary with the final state, counters and error (if any)

        Raises:
            ReaderStateError: If the reader has no source or was already used
        """
        if self._state is not ReaderState.UNOPENED:
            raise ReaderStateError(f"Reader already {self._state.value}")

        try:
            if self._start():
                while self._state is ReaderState.OPEN:
                    self._pump()
                self._finish()
        finally:
            # A raising listener must not leak the handle
            self._release()

        return self.summary()

    def __iter__(self) -> Iterator[Line]:
        """
        Yield lines lazily, reading one chunk at a time.

        Raises:
            LineReaderError: If the source fails or a line overflows
        """
        pending: Deque[Line] = deque()

        def collect(content, number, byte_count):
            pending.append(Line(content=content, number=number, byte_count=byte_count))

        self.on('line', collect)
        try:
            if self._state is ReaderState.UNOPENED:
                self._start()

            while True:
                while pending:
                    yield pending.popleft()
                if self._state is not ReaderState.OPEN:
                    break
                self._pump()

            if self._error is not None:
                raise self._error
            self._finish()
        except GeneratorExit:
            self.destroy()
            raise
        finally:
            self.off('line', collect)
            self._release()

    def destroy(self) -> None:
        """
        Stop consuming the source.

        Lines already emitted stay emitted. The partial line is dropped and
        close is emitted unless the reader already failed or closed.
        """
        if self._state.is_terminal:
            return

        self._length = 0
        self._release()
        self._state = ReaderState.CLOSED
        self._emit('close')

    def summary(self) -> ReadSummary:
        return ReadSummary(
            state=self._state,
            line_count=self._line_count,
            byte_count=self._byte_count,
            ended=self._ended,
            error=self._error,
        )

    def _start(self) -> bool:
        """Open the source and emit open. Returns False if opening failed."""
        if self._source is None:
            raise ReaderStateError("No source to read from; push chunks with handle_data()")

        try:
            if _is_path(self._source):
                self._handle = open(self._source, 'rb')
                self._owns_handle = True
            else:
                self._handle = self._source
        except SOURCE_ERRORS as e:
            logger.error(f"Failed to open source {self._source!r}: {e}")
            self.handle_error(e)
            return False

        self.handle_open(_describe(self._handle))
        return True

    def _pump(self) -> None:
        """Read one chunk and dispatch it as data, end or error."""
        try:
            chunk = self._handle.read(self.options.chunk_size)
        except SOURCE_ERRORS as e:
            logger.error(f"Failed to read source after {self._byte_count} byte(s): {e}")
            self.handle_error(e)
            return

        if isinstance(chunk, str):
            self.handle_error(SourceReadFailure(
                "Source returned text instead of bytes; open it in binary mode"
            ))
            return

        if chunk:
            self.handle_data(chunk)
        else:
            self.handle_end()

    def _finish(self) -> None:
        if self._state is ReaderState.ENDED:
            self._release()
            self.handle_close()

    def _release(self) -> None:
        handle = self._handle
        if handle is None or not (self._owns_handle or self.options.auto_close):
            return

        self._handle = None
        try:
            handle.close()
        except SOURCE_ERRORS as e:
            logger.warning(f"Failed to close source: {e}")

    # ------------------------------------------------------------------
    # Buffer

    def _append(self, segment: bytes) -> None:
        data = segment.replace(_CR, b'') if _CR in segment else segment
        if not data:
            return

        capacity = self.options.capacity_bytes
        end = self._length + len(data)
        if end > capacity:
            if self.options.overflow != OVERFLOW_TRUNCATE:
                self._fail(BufferOverflow(capacity, self._line_count + 1))
                return
            if not self._truncated:
                logger.warning(
                    f"Line {self._line_count + 1} exceeds {capacity} bytes, truncating"
                )
                self._truncated = True
            data = data[:capacity - self._length]
            end = capacity

        self._buffer[self._length:end] = data
        self._length = end

    def _emit_line(self) -> None:
        self._line_count += 1
        raw = bytes(self._buffer[:self._length])
        content = raw if self.options.retain_buffer else raw.decode(DEFAULT_ENCODING, errors='replace')
        self._length = 0
        self._truncated = False

        try:
            self._emit('line', content, self._line_count, self._byte_count)
        except Exception as e:
            logger.error(f"Line listener failed on line {self._line_count}: {e}", exc_info=True)
            self._fail(e)

    def _fail(self, error: BaseException) -> None:
        if self._state.is_terminal or self._state is ReaderState.ENDED:
            logger.debug(f"Ignoring error received while {self._state.value}: {error}")
            return

        self._state = ReaderState.ERRORED
        self._error = error
        self._length = 0
        logger.error(f"Line reader failed after {self._line_count} line(s): {error}")
        self._release()
        self._emit('error', error)


def read_lines(
    source: Source,
    options: Union[ReaderOptions, Mapping[str, Any], None] = None
) -> Iterator[Line]:
    """
    Iterate over the lines of a path or binary handle.

    Example:
        >>> for line in read_lines(io.BytesIO(b"a\\r\\nb\\n")):
        ...     print(line.number, line.content)
        1 a
        2 b
    """
    return iter(LineReader(source, options))


def _is_handle(source: Any) -> bool:
    return callable(getattr(source, 'read', None))


def _is_path(source: Any) -> bool:
    # Readable objects are handles even when they also implement __fspath__
    return not _is_handle(source) and isinstance(source, (str, bytes, os.PathLike))


def _describe(handle: Any) -> Any:
    """File descriptor of the handle when it has one, otherwise its name."""
    try:
        return handle.fileno()
    except (AttributeError, OSError, ValueError):
        return getattr(handle, 'name', None)
