"""Line-buffered sink for streamed container output.

Container stdout/stderr arrive in arbitrary chunks. ``LineWriter``
buffers them and hands each complete line, synchronously and in order,
to a chain of handlers. A handler returns ``False`` to consume the line,
which stops the remaining handlers from seeing it; this is how workflow
commands (``::set-output ...``) are kept out of the raw log.

Example:
    >>> seen = []
    >>> writer = LineWriter(lambda line: seen.append(line) or True)
    >>> writer.write("hello\\nwor")
    9
    >>> writer.write("ld\\n")
    3
    >>> seen
    ['hello\\n', 'world\\n']
"""

from __future__ import annotations

from collections.abc import Callable

LineHandler = Callable[[str], bool]


class LineWriter:
    """Feed complete lines to ``handlers`` as they arrive."""

    def __init__(self, *handlers: LineHandler) -> None:
        self._handlers = list(handlers)
        self._buffer = ""

    def write(self, data: str | bytes) -> int:
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        self._buffer += data
        while True:
            idx = self._buffer.find("\n")
            if idx < 0:
                break
            line, self._buffer = self._buffer[: idx + 1], self._buffer[idx + 1 :]
            self._handle(line)
        return len(data)

    def flush(self) -> None:
        """Emit any trailing partial line."""
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self._handle(line)

    def _handle(self, line: str) -> None:
        for handler in self._handlers:
            if not handler(line):
                break
