"""
Output sinks for RUBE ports.

A port ('O') with two crates stacked on it and a tag beneath emits the
byte ``low + high * 16``: as a decimal number for a 'b' tag, as a
character for a 'c' tag. The engine decides when and what; sinks decide
where it goes.
"""

from __future__ import annotations

from typing import BinaryIO, Protocol

NUMBER_FORMAT = "{} "
ENCODING = "latin-1"


class OutputSink(Protocol):
    def write_number(self, value: int) -> None: ...

    def write_char(self, code: int) -> None: ...


class NullSink:
    """Discards everything."""

    def write_number(self, value: int) -> None:
        pass

    def write_char(self, code: int) -> None:
        pass


class StreamSink:
    """Writes emissions to a binary stream (``sys.stdout.buffer``, a file).

    A character emission is exactly one byte, whatever the terminal's
    encoding.
    """

    def __init__(self, stream: BinaryIO, flush: bool = True) -> None:
        self._stream = stream
        self._flush = flush

    def write_number(self, value: int) -> None:
        self._write(NUMBER_FORMAT.format(value).encode(ENCODING))

    def write_char(self, code: int) -> None:
        self._write(bytes((code,)))

    def _write(self, data: bytes) -> None:
        self._stream.write(data)
        if self._flush:
            self._stream.flush()


class BufferSink:
    """Keeps every emission in memory, in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, int]] = []

    def write_number(self, value: int) -> None:
        self.events.append(("number", value))

    def write_char(self, code: int) -> None:
        self.events.append(("char", code))

    @property
    def values(self) -> list[int]:
        return [value for _, value in self.events]

    @property
    def text(self) -> str:
        return "".join(
            NUMBER_FORMAT.format(value) if kind == "number" else chr(value)
            for kind, value in self.events
        )


class TeeSink:
    """Forwards every emission to each wrapped sink."""

    def __init__(self, *sinks: OutputSink) -> None:
        self.sinks = sinks

    def write_number(self, value: int) -> None:
        for sink in self.sinks:
            sink.write_number(value)

    def write_char(self, code: int) -> None:
        for sink in self.sinks:
            sink.write_char(code)


class CountingSink:
    """Counts emissions on their way to another sink."""

    def __init__(self, inner: OutputSink) -> None:
        self.inner = inner
        self.count: int = 0

    def write_number(self, value: int) -> None:
        self.count += 1
        self.inner.write_number(value)

    def write_char(self, code: int) -> None:
        self.count += 1
        self.inner.write_char(code)
