"""
Server-sent-events framing.

Frames are separated by a blank line. Inside a frame, `event:` names the
frame type and one or more `data:` lines carry the payload.
"""

from dataclasses import dataclass
from typing import Optional

END_MARKER = "END"


@dataclass
class SSEFrame:
    """A parsed event-stream frame."""
    event: Optional[str]
    data: str

    @property
    def end_timestamp(self) -> Optional[int]:
        """Unix seconds carried by a `data: END <ts>` control frame, else None."""
        return parse_end_marker(self.data)


class FrameSplitter:
    """
    Accumulates decoded stream text and yields complete frames.

    A frame is only emitted once its terminating blank line has arrived, so
    chunk boundaries falling mid-frame (or mid-line) are harmless.
    """

    DELIMITER = "\n\n"

    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: str) -> list[str]:
        if not chunk:
            return []
        # Normalize the whole buffer so a CRLF split across chunks still joins
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        *complete, self._buffer = self._buffer.split(self.DELIMITER)
        return [frame for frame in complete if frame.strip()]

    def flush(self) -> Optional[str]:
        """Return any trailing partial frame left when the stream ended."""
        remainder, self._buffer = self._buffer, ""
        return remainder if remainder.strip() else None


def parse_frame(raw: str) -> Optional[SSEFrame]:
    """Parse a raw frame. Returns None for comment-only or empty frames."""
    event = None
    data_lines = []
    for line in raw.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value.strip()
        elif field == "data":
            data_lines.append(value)
    if event is None and not data_lines:
        return None
    return SSEFrame(event=event, data="\n".join(data_lines).strip())


def parse_end_marker(data: str) -> Optional[int]:
    parts = data.split()
    if len(parts) != 2 or parts[0] != END_MARKER:
        return None
    try:
        return int(float(parts[1]))
    except ValueError:
        return None
