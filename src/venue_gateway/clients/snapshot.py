"""Ticker snapshot aggregation over the incremental ticker feed."""

import asyncio
import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Set

from .models import AggregationResult, Ticker
from .ticker_stream import StreamHandle, StreamTransport, TickerBatch

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_TIMEOUT_SECONDS = 10.0


class SnapshotState(Enum):
    """Lifecycle of one snapshot run."""
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


class _SnapshotRun:
    """
    State for a single aggregation run.

    Batches are folded in under a lock so only one batch at a time can observe
    the outstanding set becoming empty. The first ticker seen for a symbol is
    kept; later updates for a satisfied symbol are ignored.
    """

    def __init__(self, symbols: FrozenSet[str]):
        self.requested = symbols
        self.outstanding: Set[str] = set(symbols)
        self.tickers: Dict[str, Ticker] = {}
        self.state = SnapshotState.IDLE
        self.completed = asyncio.Event()
        self._lock = asyncio.Lock()

    async def on_batch(self, batch: TickerBatch):
        async with self._lock:
            if self.state is not SnapshotState.SUBSCRIBED:
                return

            for symbol, ticker in batch.items():
                symbol = symbol.upper()
                if symbol in self.outstanding:
                    self.tickers[symbol] = ticker
                    self.outstanding.discard(symbol)

            if not self.outstanding:
                self.state = SnapshotState.COMPLETED
                self.completed.set()

    async def finish(self) -> AggregationResult:
        """Move to a terminal state and hand out a copy of the accumulator."""
        async with self._lock:
            if self.state is SnapshotState.SUBSCRIBED:
                self.state = SnapshotState.TIMED_OUT
            return AggregationResult(
                values=dict(self.tickers),
                complete=self.state is SnapshotState.COMPLETED,
                requested=self.requested,
            )


class TickerSnapshotAggregator:
    """Builds a complete ticker snapshot for a symbol set from the streaming feed."""

    def __init__(
        self,
        transport: StreamTransport,
        timeout_seconds: float = DEFAULT_SNAPSHOT_TIMEOUT_SECONDS,
    ):
        self.transport = transport
        self.timeout_seconds = timeout_seconds

    async def run(self, symbols: Iterable[str]) -> AggregationResult:
        """
        Subscribe to the feed and collect one ticker per requested symbol.

        Returns once every symbol has been seen, or after ``timeout_seconds``
        with whatever arrived and ``complete=False``. A timeout is not an error.
        Transport failures while opening the subscription propagate.
        """
        requested = frozenset(symbol.upper() for symbol in symbols)
        run = _SnapshotRun(requested)

        if not requested:
            run.state = SnapshotState.COMPLETED
            return await run.finish()

        run.state = SnapshotState.SUBSCRIBED
        handle: Optional[StreamHandle] = None
        try:
            handle = await self.transport.open(sorted(requested), run.on_batch)
            try:
                await asyncio.wait_for(run.completed.wait(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                pass
            result = await run.finish()
        finally:
            if handle is not None:
                await handle.close()

        if result.complete:
            logger.info(f"Ticker snapshot complete: {len(result.values)} symbols")
        else:
            logger.warning(
                f"Ticker snapshot timed out after {self.timeout_seconds}s: "
                f"{len(result.values)}/{len(requested)} symbols received"
            )
        return result
