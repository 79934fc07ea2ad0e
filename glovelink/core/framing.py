"""Line framing for the inbound text stream."""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass

LINE_DELIMITER = "\n"
_TERMINATOR_RE = re.compile(r"\r?\n")


@dataclass(frozen=True)
class FrameResult:
    lines: tuple[str, ...]
    tail: str
    segments: tuple[str, ...]


def split_lines(tail: str, chunk: str) -> FrameResult:
    """Split ``tail + chunk`` into complete lines and a new unterminated tail.

    ``segments`` holds every consumed piece with its terminator, so
    ``"".join(segments) + result.tail == tail + chunk`` always holds.
    Whitespace-only lines consume their terminator but are not reported.
    """
    text = tail + chunk
    lines: list[str] = []
    segments: list[str] = []
    start = 0
    for match in _TERMINATOR_RE.finditer(text):
        segments.append(text[start : match.end()])
        line = text[start : match.start()].strip()
        if line:
            lines.append(line)
        start = match.end()
    return FrameResult(lines=tuple(lines), tail=text[start:], segments=tuple(segments))


def frame_outbound(text: str) -> bytes:
    return (text + LINE_DELIMITER).encode("utf-8")


class LineFramer:
    """Receive buffer for one connection.

    Byte chunks are decoded incrementally, so a multi-byte character split
    across two notifications is reassembled before framing.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._tail = ""

    @property
    def buffer(self) -> str:
        return self._tail

    def feed(self, chunk: bytes | str) -> tuple[str, ...]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        result = split_lines(self._tail, text)
        self._tail = result.tail
        return result.lines

    def reset(self) -> None:
        self._tail = ""
        self._decoder.reset()
