"""Websocket ticker feed transport."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config.settings import StreamConfig
from ..exceptions import TransportError
from .models import Ticker

logger = logging.getLogger(__name__)

TickerBatch = Dict[str, Ticker]
BatchHandler = Callable[[TickerBatch], Awaitable[None]]


class StreamHandle:
    """Handle to an open subscription; closing it more than once is a no-op."""

    def __init__(self, websocket: Any, reader_task: Optional[asyncio.Task] = None):
        self.websocket = websocket
        self.reader_task = reader_task
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self):
        if self._closed:
            return

        try:
            if self.reader_task and not self.reader_task.done():
                self.reader_task.cancel()
                try:
                    await self.reader_task
                except asyncio.CancelledError:
                    pass
        finally:
            if self.websocket is not None:
                await self.websocket.close()

        # a failed teardown leaves the handle open for another attempt
        self._closed = True
        logger.info("Ticker subscription closed")


class StreamTransport(ABC):
    """Interface for streaming ticker sources consumed by the snapshot aggregator."""

    @abstractmethod
    async def open(self, symbols: Iterable[str], on_message: BatchHandler) -> StreamHandle:
        """Subscribe to ``symbols`` and deliver ticker batches to ``on_message``."""


class WebSocketTickerTransport(StreamTransport):
    """Subscribes to the venue ticker channel and delivers one-symbol batches."""

    def __init__(self, config: StreamConfig):
        self.config = config

        self.stats = {
            'messages_received': 0,
            'tickers_delivered': 0,
            'decode_errors': 0,
        }

    def build_subscribe_message(self, symbols: Iterable[str]) -> Dict[str, Any]:
        return {
            'type': 'subscribe',
            'product_ids': sorted(symbols),
            'channels': [self.config.channel],
        }

    async def open(self, symbols: Iterable[str], on_message: BatchHandler) -> StreamHandle:
        """Connect, subscribe and start delivering ticker batches to ``on_message``."""
        symbols = list(symbols)
        logger.info(f"Connecting to ticker feed: {self.config.ws_url} ({len(symbols)} symbols)")

        try:
            websocket = await websockets.connect(
                self.config.ws_url,
                ping_interval=self.config.ping_interval_seconds,
                close_timeout=5,
                max_size=2**22,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Failed to connect to ticker feed: {e}")
            raise TransportError(f"Websocket connection failed: {e}") from e

        try:
            await websocket.send(json.dumps(self.build_subscribe_message(symbols)))
        except ConnectionClosed as e:
            await websocket.close()
            raise TransportError(f"Websocket closed during subscribe: {e}") from e

        reader_task = asyncio.create_task(self._read_loop(websocket, on_message))
        return StreamHandle(websocket, reader_task)

    async def _read_loop(self, websocket: Any, on_message: BatchHandler):
        try:
            async for raw_message in websocket:
                self.stats['messages_received'] += 1
                batch = self.parse_message(raw_message)
                if not batch:
                    continue

                try:
                    await on_message(batch)
                    self.stats['tickers_delivered'] += len(batch)
                except Exception as e:
                    logger.error(f"Ticker handler error: {e}", exc_info=True)
        except ConnectionClosed:
            logger.warning("Ticker feed connection closed by server")

    def parse_message(self, raw_message: Any) -> Optional[TickerBatch]:
        """Map a raw feed frame to a ticker batch, None for anything else."""
        try:
            message = json.loads(raw_message)
        except (TypeError, ValueError) as e:
            self.stats['decode_errors'] += 1
            logger.warning(f"Failed to decode feed message: {e}")
            return None

        if not isinstance(message, dict):
            return None

        message_type = message.get('type')
        if message_type == 'error':
            logger.error(f"Ticker feed error: {message.get('message')} {message.get('reason', '')}")
            return None
        if message_type != 'ticker' or not message.get('product_id'):
            return None

        ticker = Ticker.from_message(message)
        return {ticker.symbol: ticker}
