"""Wire format shared by the chat server and client.

Every message travels as UTF-8 text followed by a single NUL byte. A message
that starts with ``COLOR:`` tells the client which console colour to use for
the text it prints from then on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

PORT = 12345
BUFFER_SIZE = 1024
COLOR_PREFIX = "COLOR:"

# Console attribute bits: blue, green, red and intensity.
_BLUE, _GREEN, _RED, _INTENSITY = 1, 2, 4, 8

DEFAULT_COLOR = _RED | _GREEN | _BLUE
COLORS = (
    _RED | _INTENSITY,
    _GREEN | _INTENSITY,
    _BLUE | _INTENSITY,
    _RED | _GREEN | _INTENSITY,
    _RED | _BLUE | _INTENSITY,
    _GREEN | _BLUE | _INTENSITY,
)

JOIN_TEMPLATE = "{name} присоединился к чату.\n"
LEAVE_TEMPLATE = "{name} покинул чат.\n"
WAIT_MESSAGE = "SERVER: Вы в очереди. Пожалуйста, подождите...\n"
ACCEPT_MESSAGE = "SERVER: Вы подключены к чату.\n"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class ColorMessage:
    """Instruction to switch the client's text colour."""

    color: int


@dataclass(frozen=True)
class TextMessage:
    """Chat text to be shown to the user."""

    text: str


def encode_frame(text: str) -> bytes:
    """Encode one message as it goes over the wire."""
    return text.encode("utf-8") + b"\0"


def split_frames(data: bytes) -> tuple[list[str], bytes]:
    """Split received bytes into complete messages and an unfinished remainder."""
    *complete, remainder = data.split(b"\0")
    return [part.decode("utf-8", errors="replace") for part in complete], remainder


def color_frame(color: int) -> bytes:
    """Encode the message that assigns a colour to a client."""
    return encode_frame(f"{COLOR_PREFIX}{color}\n")


def parse_message(message: str) -> ColorMessage | TextMessage:
    """Classify a received message; raise ValueError for a malformed colour."""
    if message.startswith(COLOR_PREFIX):
        match = _LEADING_INT.match(message[len(COLOR_PREFIX):])
        if match is None:
            raise ValueError(f"invalid colour message: {message!r}")
        return ColorMessage(int(match.group(1)))
    return TextMessage(message)


def color_for(index: int) -> int:
    """Colour given to a client when ``index`` clients are in the chat."""
    return COLORS[index % len(COLORS)]