"""
TLS stream connection for the Betfair Exchange Stream API.

Owns the socket: connects, authenticates, reads CRLF-framed JSON and hands
every decoded message to a synchronous handler in arrival order. Any error
or close leads to a reconnect after a fixed delay.
"""

import asyncio
import logging
import ssl
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from src.config.settings import Settings
from .config import BettingConfig
from .framing import FrameDecoder, decode_frame, encode_frame

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AUTHENTICATING = "AUTHENTICATING"
    SUBSCRIBED = "SUBSCRIBED"


class ConnectionNotReady(ConnectionError):
    """Raised when sending without an active transport."""


class StreamConnection:
    """
    Persistent stream connection with auto-reconnect.

    Every connection attempt starts from scratch: new socket, new frame
    decoder, authenticated/subscribed cleared. The message handler is
    called synchronously for each decoded message.
    """

    def __init__(
        self,
        settings: Settings,
        config: BettingConfig,
        on_message: Callable[[dict[str, Any]], None],
        session_token: str = "",
        open_connection: Callable[..., Awaitable[tuple]] = asyncio.open_connection,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        """
        Initialize connection.

        Args:
            settings: Application settings (host, port, app key)
            config: Betting configuration (reconnect policy)
            on_message: Handler for decoded messages
            session_token: Session token from login
            open_connection: Coroutine opening (reader, writer)
            sleep: Coroutine used for the reconnect delay
            ssl_context: TLS context (system defaults if None)
        """
        self.settings = settings
        self.config = config
        self.on_message = on_message
        self.session_token = session_token
        self._open_connection = open_connection
        self._sleep = sleep
        self._ssl_context = ssl_context or ssl.create_default_context()

        self.state = ConnectionState.DISCONNECTED
        self.authenticated = False
        self.subscribed = False
        self.running = False
        self.reconnect_delay = config.reconnect_delay
        self.max_reconnects = config.max_reconnects

        self._decoder = FrameDecoder()
        self._writer: Optional[asyncio.StreamWriter] = None

        # Stats
        self.stats = {
            "connections": 0,
            "messages_received": 0,
            "frames_dropped": 0,
            "errors": 0,
            "reconnects": 0,
        }
        self.last_message_at: Optional[datetime] = None

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def start(self):
        """
        Run the connection with auto-reconnect.

        Runs until stop() is called or max_reconnects is exhausted.
        """
        self.running = True
        logger.info(f"Starting stream connection to {self.settings.stream_host}:{self.settings.stream_port}")

        while self.running:
            try:
                await self._connect_and_run()
            except asyncio.CancelledError:
                logger.info("Stream connection cancelled")
                self._close_transport()
                break
            except (OSError, asyncio.IncompleteReadError, asyncio.TimeoutError) as e:
                self.stats["errors"] += 1
                logger.error(f"Stream API error: {e}")

            self.state = ConnectionState.DISCONNECTED
            if not self.running:
                break

            if self.max_reconnects is not None and self.stats["reconnects"] >= self.max_reconnects:
                logger.error(f"Giving up after {self.stats['reconnects']} reconnects")
                self.running = False
                break

            self.stats["reconnects"] += 1
            logger.info(f"Reconnecting in {self.reconnect_delay:.1f}s")
            await self._sleep(self.reconnect_delay)

        self.state = ConnectionState.DISCONNECTED

    async def _connect_and_run(self):
        """Open one connection, authenticate and read until it closes."""
        self._close_transport()
        self.state = ConnectionState.CONNECTING
        self._decoder = FrameDecoder()
        self.authenticated = False
        self.subscribed = False

        host, port = self.settings.stream_host, self.settings.stream_port
        reader, writer = await self._open_connection(
            host,
            port,
            ssl=self._ssl_context,
            server_hostname=host,
        )
        self._writer = writer
        self.stats["connections"] += 1
        self.state = ConnectionState.AUTHENTICATING
        logger.info(f"Connected to Stream API at {host}:{port}")

        self.send({
            "op": "authentication",
            "appKey": self.settings.stream_app_key,
            "session": self.session_token,
        })

        try:
            while self.running:
                data = await reader.read(READ_CHUNK_SIZE)
                if not data:
                    logger.warning("Stream API connection closed")
                    break
                self.handle_data(data)
        finally:
            self._close_transport()

    def handle_data(self, data: bytes) -> int:
        """
        Decode a received chunk and dispatch its messages.

        Returns:
            Number of messages dispatched
        """
        dispatched = 0
        for frame in self._decoder.feed(data):
            message = decode_frame(frame)
            if message is None:
                self.stats["frames_dropped"] += 1
                continue

            self.stats["messages_received"] += 1
            self.last_message_at = datetime.now(timezone.utc)
            self.on_message(message)
            dispatched += 1
        return dispatched

    def send(self, message: dict[str, Any]) -> None:
        """
        Write one message to the stream.

        Raises:
            ConnectionNotReady: If there is no active transport
        """
        if self._writer is None or self._writer.is_closing():
            raise ConnectionNotReady(f"Cannot send {message.get('op')}: not connected")
        self._writer.write(encode_frame(message))

    def mark_authenticated(self) -> bool:
        """
        Record a successful authentication.

        Returns:
            True the first time on this connection
        """
        if self.authenticated:
            return False
        self.authenticated = True
        return True

    def mark_subscribed(self) -> None:
        self.subscribed = True
        self.state = ConnectionState.SUBSCRIBED

    def stop(self):
        """Stop the connection loop and close the socket."""
        logger.info("Stopping stream connection")
        self.running = False
        self._close_transport()

    def _close_transport(self) -> None:
        writer, self._writer = self._writer, None
        if writer is not None and not writer.is_closing():
            writer.close()

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "state": self.state.value,
            "connected": self.connected,
            "authenticated": self.authenticated,
            "subscribed": self.subscribed,
            "buffered_bytes": self._decoder.buffered,
            **self.stats,
            "last_message": (
                self.last_message_at.isoformat() if self.last_message_at else None
            ),
        }
