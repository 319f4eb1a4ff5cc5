"""
Chain notification consumer.

Notifications arrive on an asyncio.Queue from a notification source and are
handled strictly one at a time:

    IDLE -> EXTRACTING -> COMMITTING -> IDLE    (committed segment)
    IDLE -> REVERTING -> IDLE                   (reverted segment)

A block is acknowledged to the source only after its batch has been emitted
by the sink and the progress cursor has been advanced past it. Acknowledged
heights are never extracted again; anything not yet acknowledged is simply
extracted again after a restart.
"""

import asyncio
import enum
from typing import Dict, Iterable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    wait_exponential,
)

from solcmeta.chain import (
    Block,
    ChainCommitted,
    ChainNotification,
    ChainReorged,
    ChainReverted,
)
from solcmeta.cursor import ProgressCursor
from solcmeta.extract import Invalid, Metadata, extract
from solcmeta.log import get_logger
from solcmeta.sinks import BlockBatch, MetadataEntry, Sink, SinkError


class ConsumerState(enum.Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    COMMITTING = "committing"
    REVERTING = "reverting"


class MetadataConsumer:
    def __init__(
        self,
        sink: Sink,
        cursor: ProgressCursor,
        source,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        self.sink = sink
        self.cursor = cursor
        self.source = source
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.state = ConsumerState.IDLE
        self.pending: Dict[int, BlockBatch] = {}
        self.log = get_logger(__name__)

    async def run(self, queue: asyncio.Queue, stop: asyncio.Event) -> None:
        """Consume notifications until the stream ends or ``stop`` is set."""
        self.log.info("consumer_started", height=self.cursor.height)
        while True:
            notification = await self._next(queue, stop)
            if notification is None:
                break
            if not await self.handle(notification, stop):
                break
        self.log.info(
            "consumer_stopped", height=self.cursor.height, pending=len(self.pending)
        )

    async def _next(
        self, queue: asyncio.Queue, stop: asyncio.Event
    ) -> Optional[ChainNotification]:
        if stop.is_set():
            return None
        get = asyncio.ensure_future(queue.get())
        halt = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({get, halt}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            halt.cancel()
        if stop.is_set():
            get.cancel()
            return None
        return get.result()

    async def handle(self, notification: ChainNotification, stop: asyncio.Event) -> bool:
        """
        Process one notification to completion.

        Returns False when ``stop`` was set while a batch was still waiting
        on the sink; that batch is left unacknowledged.
        """
        if isinstance(notification, ChainCommitted):
            return await self._commit_segment(notification.blocks, stop)
        if isinstance(notification, ChainReverted):
            self._revert_segment(notification.blocks)
            return True
        if isinstance(notification, ChainReorged):
            self._revert_segment(notification.old)
            return await self._commit_segment(notification.new, stop)
        raise TypeError(f"Unknown notification: {notification!r}")

    def _extract_block(self, block: Block) -> BlockBatch:
        entries = []
        for deployment in block.deployments:
            outcome = extract(deployment.code)
            if isinstance(outcome, Invalid):
                self.log.warning(
                    "invalid_metadata",
                    height=block.number,
                    address=deployment.address,
                    kind=outcome.kind,
                    error=outcome.message,
                )
            elif isinstance(outcome, Metadata):
                self.log.debug(
                    "metadata_extracted",
                    height=block.number,
                    address=deployment.address,
                    reference=outcome.reference,
                )
            entries.append(
                MetadataEntry(
                    height=block.number,
                    block_hash=block.hash,
                    tx_hash=deployment.tx_hash,
                    address=deployment.address,
                    outcome=outcome,
                )
            )
        return BlockBatch(height=block.number, block_hash=block.hash, entries=tuple(entries))

    async def _commit_segment(self, blocks: Iterable[Block], stop: asyncio.Event) -> bool:
        self.state = ConsumerState.EXTRACTING
        for block in sorted(blocks, key=lambda b: b.number):
            if block.number <= self.cursor.height:
                self.log.debug(
                    "block_already_committed",
                    height=block.number,
                    cursor=self.cursor.height,
                )
                continue
            self.pending[block.number] = self._extract_block(block)

        self.state = ConsumerState.COMMITTING
        for height in sorted(self.pending):
            batch = self.pending[height]
            if not await self._emit(batch, stop):
                self.state = ConsumerState.IDLE
                return False
            self.cursor.advance(height)
            del self.pending[height]
            self.source.commit(height)
            self.log.info("block_committed", height=height, entries=len(batch.entries))

        self.state = ConsumerState.IDLE
        return True

    async def _emit(self, batch: BlockBatch, stop: asyncio.Event) -> bool:
        """Emit ``batch``, backing off between failures until it lands or ``stop`` is set."""

        async def pause(seconds: float) -> None:
            try:
                await asyncio.wait_for(stop.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass

        def log_failure(retry_state: RetryCallState) -> None:
            self.log.error(
                "sink_emit_failed",
                height=batch.height,
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception()),
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(SinkError),
            wait=wait_exponential(multiplier=self.retry_delay, max=self.max_retry_delay),
            stop=lambda retry_state: stop.is_set(),
            sleep=pause,
            after=log_failure,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self.sink.emit(batch)
        except RetryError:
            return False
        return True

    def _revert_segment(self, blocks: Iterable[Block]) -> None:
        self.state = ConsumerState.REVERTING
        heights = [b.number for b in blocks]
        if heights:
            lowest = min(heights)
            dropped = [h for h in self.pending if h >= lowest]
            for height in dropped:
                del self.pending[height]
            if lowest <= self.cursor.height:
                self.log.warning(
                    "revert_below_committed",
                    lowest=lowest,
                    cursor=self.cursor.height,
                )
            self.log.info("segment_reverted", lowest=lowest, dropped=len(dropped))
        self.state = ConsumerState.IDLE
