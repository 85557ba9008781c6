"""
CRLF message framing for the exchange stream.

The stream is a raw TLS byte stream with no message boundaries of its own:
every JSON message is terminated by b"\\r\\n".
"""

import json
import logging
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

TERMINATOR = b"\r\n"


class FrameDecoder:
    """
    Splits a byte stream into CRLF-terminated frames.

    Bytes after the last terminator are kept until a later feed() completes
    the frame. Frames are split on bytes, never on decoded text, so a
    multi-byte character split across two reads is reassembled correctly.
    """

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes) -> Iterator[bytes]:
        """
        Ingest a chunk and return an iterator over the frames it completes.

        The chunk is buffered immediately; frames are cut lazily as the
        iterator is consumed.
        """
        self._buffer.extend(data)
        return self._frames()

    def _frames(self) -> Iterator[bytes]:
        while True:
            index = self._buffer.find(TERMINATOR)
            if index == -1:
                return
            frame = bytes(self._buffer[:index])
            del self._buffer[: index + len(TERMINATOR)]
            if frame:
                yield frame

    def reset(self) -> None:
        """Discard any buffered partial frame."""
        self._buffer.clear()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for a terminator."""
        return len(self._buffer)


def decode_frame(frame: bytes) -> Optional[dict[str, Any]]:
    """
    Parse one frame as a JSON object.

    Returns:
        The message dict, or None if the frame is not a valid JSON object
    """
    try:
        message = json.loads(frame.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Failed to parse stream message of length {len(frame)}: {e}")
        return None

    if not isinstance(message, dict):
        logger.error(f"Ignoring non-object stream message: {type(message).__name__}")
        return None

    return message


def encode_frame(message: dict[str, Any]) -> bytes:
    """Serialize a message as one CRLF-terminated frame."""
    return json.dumps(message, separators=(",", ":")).encode("utf-8") + TERMINATOR
