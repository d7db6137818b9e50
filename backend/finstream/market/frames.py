"""Minimal STOMP 1.2 frame encoding/decoding for text WebSocket messages."""

from __future__ import annotations

from dataclasses import dataclass, field

NULL = "\x00"
EOL = "\n"

# CONNECT/CONNECTED headers are sent verbatim; every other frame escapes them
_UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED"})

_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


class FrameError(ValueError):
    """Raised for data that is not a well-formed STOMP frame."""


@dataclass(frozen=True, slots=True)
class Frame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def _unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        if nxt not in _UNESCAPES:
            raise FrameError(f"Invalid header escape: \\{nxt}")
        out.append(_UNESCAPES[nxt])
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    raw = frame.command in _UNESCAPED_COMMANDS
    lines = [frame.command]
    for key, value in frame.headers.items():
        if raw:
            lines.append(f"{key}:{value}")
        else:
            lines.append(f"{_escape(key)}:{_escape(str(value))}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


def decode_frames(data: str) -> list[Frame]:
    """Split one WebSocket text message into frames.

    Heart-beats (bare EOLs) produce no frames. When a header repeats, the
    first occurrence wins.
    """
    frames: list[Frame] = []
    for chunk in data.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        head, sep, body = chunk.partition("\n\n")
        if not sep:
            head, sep, body = chunk.partition("\r\n\r\n")
        if not sep:
            raise FrameError(f"Frame has no header terminator: {chunk[:40]!r}")

        head_lines = head.replace("\r\n", "\n").split("\n")
        command = head_lines[0].strip()
        if not command:
            raise FrameError("Frame has no command")

        raw = command in _UNESCAPED_COMMANDS
        headers: dict[str, str] = {}
        for line in head_lines[1:]:
            if not line:
                continue
            key, colon, value = line.partition(":")
            if not colon:
                raise FrameError(f"Malformed header line: {line!r}")
            if not raw:
                key, value = _unescape(key), _unescape(value)
            headers.setdefault(key, value)

        frames.append(Frame(command=command, headers=headers, body=body))
    return frames


def parse_heartbeat(value: str | None) -> tuple[float, float]:
    """Parse a 'heart-beat: cx,cy' header (milliseconds) into seconds."""
    if not value:
        return 0.0, 0.0
    try:
        cx, cy = (int(part) for part in value.split(","))
    except ValueError as e:
        raise FrameError(f"Invalid heart-beat header: {value!r}") from e
    return cx / 1000.0, cy / 1000.0


def format_heartbeat(outgoing: float, incoming: float) -> str:
    return f"{int(outgoing * 1000)},{int(incoming * 1000)}"
