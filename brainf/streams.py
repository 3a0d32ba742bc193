from __future__ import annotations

import io
import sys
from typing import BinaryIO, Iterable, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class ByteSource(Protocol):
    """Something the engine can pull input bytes from.

    ``read_byte`` returns ``None`` once the stream is exhausted and raises
    ``OSError`` when the underlying endpoint fails.
    """

    def read_byte(self) -> Optional[int]:
        ...


@runtime_checkable
class ByteSink(Protocol):
    """Something the engine can push output bytes to."""

    def write_byte(self, value: int) -> None:
        ...


class EmptySource:
    def read_byte(self) -> Optional[int]:
        return None


class NullSink:
    def write_byte(self, value: int) -> None:
        pass


class BytesSource:
    """In-memory input, consumed front to back."""

    def __init__(self, data: Union[bytes, bytearray, Iterable[int]] = b"") -> None:
        self._data = bytes(data)
        self._offset = 0

    def read_byte(self) -> Optional[int]:
        if self._offset >= len(self._data):
            return None
        value = self._data[self._offset]
        self._offset += 1
        return value

    @property
    def remaining(self) -> bytes:
        return self._data[self._offset :]


class BytesSink:
    """Captures every written byte."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    def write_byte(self, value: int) -> None:
        self.buffer.append(value)

    def getvalue(self) -> bytes:
        return bytes(self.buffer)

    def clear(self) -> None:
        self.buffer.clear()


class StreamSource:
    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    def read_byte(self) -> Optional[int]:
        try:
            data = self.stream.read(1)
        except ValueError as exc:
            # Closed file objects raise ValueError rather than OSError
            raise OSError(str(exc)) from exc
        if not data:
            return None
        return data[0]


class StreamSink:
    def __init__(self, stream: BinaryIO, flush_each: bool = False) -> None:
        self.stream = stream
        self.flush_each = flush_each

    def write_byte(self, value: int) -> None:
        try:
            self.stream.write(bytes((value,)))
            if self.flush_each:
                self.stream.flush()
        except ValueError as exc:
            raise OSError(str(exc)) from exc

    def flush(self) -> None:
        try:
            self.stream.flush()
        except ValueError as exc:
            raise OSError(str(exc)) from exc


SourceLike = Union[ByteSource, BinaryIO, bytes, bytearray, str, Iterable[int], None]
SinkLike = Union[ByteSink, BinaryIO, None]


def as_source(obj: SourceLike) -> ByteSource:
    if obj is None:
        return EmptySource()
    if isinstance(obj, ByteSource):
        return obj
    if isinstance(obj, str):
        return BytesSource(obj.encode("utf-8"))
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return BytesSource(bytes(obj))
    if isinstance(obj, io.TextIOBase):
        return StreamSource(_unwrap_text(obj))
    if callable(getattr(obj, "read", None)):
        return StreamSource(obj)  # type: ignore[arg-type]
    if isinstance(obj, int):
        raise TypeError("Input must be a byte sequence, not int")
    try:
        return BytesSource(bytes(obj))  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise TypeError(f"Cannot read input bytes from {type(obj).__name__}") from exc


def as_sink(obj: SinkLike) -> ByteSink:
    if obj is None:
        return NullSink()
    if isinstance(obj, ByteSink):
        return obj
    if isinstance(obj, bytearray):
        return _BytearraySink(obj)
    if isinstance(obj, io.TextIOBase):
        return StreamSink(_unwrap_text(obj))
    if callable(getattr(obj, "write", None)):
        return StreamSink(obj)  # type: ignore[arg-type]
    raise TypeError(f"Cannot write output bytes to {type(obj).__name__}")


class _BytearraySink:
    def __init__(self, target: bytearray) -> None:
        self.target = target

    def write_byte(self, value: int) -> None:
        self.target.append(value)


def _binary(stream):
    if isinstance(stream, io.TextIOBase):
        return _unwrap_text(stream)
    return stream


def _unwrap_text(stream: io.TextIOBase) -> BinaryIO:
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        raise TypeError(f"{type(stream).__name__} is a text stream; pass a binary stream or bytes")
    return buffer


def stdio_source() -> StreamSource:
    return StreamSource(_binary(sys.stdin))


def stdio_sink() -> StreamSink:
    return StreamSink(_binary(sys.stdout))


__all__ = [
    "ByteSink",
    "ByteSource",
    "BytesSink",
    "BytesSource",
    "EmptySource",
    "NullSink",
    "StreamSink",
    "StreamSource",
    "as_sink",
    "as_source",
    "stdio_sink",
    "stdio_source",
]
