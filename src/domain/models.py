"""
Data models for the line reader domain.

These type-safe data structures define clear contracts between the reader,
the object processor and the Lambda handler.
"""

import os
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import InvalidConfiguration

# Lines are decoded with a fixed encoding, never the platform default
DEFAULT_ENCODING = 'utf-8'

DEFAULT_CAPACITY_BYTES = 4096
DEFAULT_CHUNK_SIZE = 64 * 1024

OVERFLOW_ERROR = 'error'
OVERFLOW_TRUNCATE = 'truncate'
OVERFLOW_POLICIES = (OVERFLOW_ERROR, OVERFLOW_TRUNCATE)

_OPTION_ALIASES = {
    'capacityBytes': 'capacity_bytes',
    'maxLineLength': 'capacity_bytes',
    'retainBuffer': 'retain_buffer',
    'chunkSize': 'chunk_size',
    'autoClose': 'auto_close',
}

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off', ''}


class ReaderState(str, Enum):
    """Lifecycle of a single LineReader instance."""
    UNOPENED = 'unopened'
    OPEN = 'open'
    ENDED = 'ended'
    CLOSED = 'closed'
    ERRORED = 'errored'

    @property
    def is_terminal(self) -> bool:
        return self in (ReaderState.CLOSED, ReaderState.ERRORED)


@dataclass
class ReaderOptions:
    """
    Configuration for a LineReader.

    Attributes:
        capacity_bytes: Size of the accumulation buffer (maximum line length)
        retain_buffer: Emit raw bytes instead of decoded text
        overflow: What to do when a line exceeds capacity_bytes
            ("error" or "truncate")
        chunk_size: Bytes requested per read when the reader drives the source
        auto_close: Close the source handle once reading finishes
    """
    capacity_bytes: int = DEFAULT_CAPACITY_BYTES
    retain_buffer: bool = False
    overflow: str = OVERFLOW_ERROR
    chunk_size: int = DEFAULT_CHUNK_SIZE
    auto_close: bool = True

    def __post_init__(self) -> None:
        self.capacity_bytes = require_positive_int(self.capacity_bytes, 'capacity_bytes')
        self.chunk_size = require_positive_int(self.chunk_size, 'chunk_size')

        if not isinstance(self.retain_buffer, bool):
            raise InvalidConfiguration(
                f"retain_buffer must be a boolean, got {type(self.retain_buffer).__name__}"
            )
        if not isinstance(self.auto_close, bool):
            raise InvalidConfiguration(
                f"auto_close must be a boolean, got {type(self.auto_close).__name__}"
            )

        policy = str(self.overflow).strip().lower()
        if policy not in OVERFLOW_POLICIES:
            raise InvalidConfiguration(
                f"Unsupported overflow policy '{self.overflow}'. "
                f"Allowed: {', '.join(OVERFLOW_POLICIES)}"
            )
        self.overflow = policy

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> 'ReaderOptions':
        """
        Build options from a plain dict.

        Both snake_case names and the camelCase aliases (capacityBytes,
        retainBuffer, chunkSize, autoClose) are recognised. Unknown keys
        are ignored.

        Raises:
            InvalidConfiguration: If a recognised value is invalid
        """
        if mapping is None:
            return cls()
        if not isinstance(mapping, Mapping):
            raise InvalidConfiguration(
                f"Reader options must be a mapping, got {type(mapping).__name__}"
            )

        known = {f for f in cls.__dataclass_fields__}
        values: Dict[str, Any] = {}
        for key, value in mapping.items():
            name = _OPTION_ALIASES.get(key, key)
            if name in known:
                values[name] = value
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ReaderOptions':
        """
        Build options from LINE_READER_* environment variables.

        Variables:
            LINE_READER_MAX_LINE_BYTES: capacity_bytes (default 4096)
            LINE_READER_RETAIN_BUFFER: retain_buffer (default false)
            LINE_READER_OVERFLOW: overflow policy (default "error")
            LINE_READER_CHUNK_SIZE: chunk_size (default 65536)
        """
        env = os.environ if environ is None else environ
        return cls(
            capacity_bytes=env.get('LINE_READER_MAX_LINE_BYTES', DEFAULT_CAPACITY_BYTES),
            retain_buffer=_parse_bool(
                env.get('LINE_READER_RETAIN_BUFFER', 'false'), 'LINE_READER_RETAIN_BUFFER'
            ),
            overflow=env.get('LINE_READER_OVERFLOW', OVERFLOW_ERROR),
            chunk_size=env.get('LINE_READER_CHUNK_SIZE', DEFAULT_CHUNK_SIZE),
        )


@dataclass(frozen=True)
class Line:
    """
    A completed line.

    Attributes:
        content: Line text (or bytes when retain_buffer is set), without
            the terminating newline and with carriage returns removed
        number: 1-based line number
        byte_count: Bytes consumed from the source when the line completed
    """
    content: Union[str, bytes]
    number: int
    byte_count: int


@dataclass
class ReadSummary:
    """Outcome of LineReader.run()."""
    state: ReaderState
    line_count: int
    byte_count: int
    ended: bool = False
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        """True when the source was read to the end without an error."""
        return self.ended and self.error is None


@dataclass
class ObjectLocation:
    """
    S3 object to be read.

    Attributes:
        bucket: S3 bucket name
        key: Decoded S3 object key
        size: Object size from the event notification, if present
    """
    bucket: str
    key: str
    size: Optional[int] = None

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass
class LineStats:
    """
    Running statistics for one object.

    Attributes:
        line_count: Lines emitted by the reader
        byte_count: Bytes consumed from the object
        empty_lines: Lines with no content
        longest_line: Length of the longest line after carriage returns
            were removed (characters for text, bytes for raw lines)
        sample_lines: First lines of the object, up to sample_size
        sample_size: How many lines to keep in sample_lines
    """
    line_count: int = 0
    byte_count: int = 0
    empty_lines: int = 0
    longest_line: int = 0
    sample_lines: List[str] = field(default_factory=list)
    sample_size: int = 5

    def record(self, content: Union[str, bytes], line_number: int, byte_count: int) -> None:
        """Update the statistics with one emitted line."""
        self.line_count = line_number
        self.byte_count = byte_count
        if not content:
            self.empty_lines += 1
        self.longest_line = max(self.longest_line, len(content))
        if len(self.sample_lines) < self.sample_size:
            if isinstance(content, bytes):
                content = content.decode(DEFAULT_ENCODING, errors='replace')
            self.sample_lines.append(content)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result.pop('sample_size')
        return result


@dataclass
class ProcessingResult:
    """
    Result of reading one S3 object.

    Attributes:
        success: Whether the object was read to the end
        location: Object that was processed
        stats: Line statistics (partial when processing failed midway)
        summary_key: S3 key of the uploaded summary, if one was written
        error_message: Error description (if processing failed)
    """
    success: bool
    location: ObjectLocation
    stats: Optional[LineStats] = None
    summary_key: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'success': self.success,
            'bucket': self.location.bucket,
            'key': self.location.key,
        }
        if self.stats is not None:
            result['lineCount'] = self.stats.line_count
            result['byteCount'] = self.stats.byte_count
        if self.summary_key:
            result['summaryKey'] = self.summary_key
        if self.error_message:
            result['error'] = self.error_message
        return result

    def __repr__(self) -> str:
        """Human-readable representation for logging."""
        if self.success:
            return f"ProcessingResult(success=True, object={self.location.uri})"
        else:
            return f"ProcessingResult(success=False, object={self.location.uri}, error={self.error_message})"


def require_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidConfiguration(f"{name} must be an integer, got bool")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}") from exc
    if isinstance(value, float) and value != number:
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if number <= 0:
        raise InvalidConfiguration(f"{name} must be greater than zero, got {number}")
    return number


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise InvalidConfiguration(f"{name} must be a boolean flag, got {value!r}")
