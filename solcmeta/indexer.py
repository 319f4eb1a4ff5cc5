"""Wires a notification source, the consumer and a sink into one pipeline."""

import asyncio
import signal
from typing import Optional

from solcmeta.config import Settings
from solcmeta.consumer import MetadataConsumer
from solcmeta.cursor import ProgressCursor
from solcmeta.log import get_logger
from solcmeta.sinks import Sink, build_sink
from solcmeta.source import ReplaySource, Web3Source, connect


def build_source(settings: Settings, cursor: ProgressCursor, replay: Optional[str] = None):
    if replay is not None:
        return ReplaySource(replay)

    if not settings.rpc_url:
        raise ValueError("An RPC URL is required for live mode")
    # Resume right after the last acknowledged height
    start = cursor.height + 1 if cursor.height >= 0 else settings.start_block
    return Web3Source(
        connect(settings.rpc_url),
        start_block=start,
        confirmations=settings.confirmations,
        poll_interval=settings.poll_interval,
        reorg_depth=settings.reorg_depth,
        max_blocks_per_poll=settings.max_blocks_per_poll,
    )


async def run_pipeline(
    source,
    consumer: MetadataConsumer,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Run source and consumer over a shared queue until either finishes."""
    stop = stop if stop is not None else asyncio.Event()
    queue: asyncio.Queue = asyncio.Queue(maxsize=256)

    producer = asyncio.create_task(source.run(queue, stop))
    consumer_task = asyncio.create_task(consumer.run(queue, stop))
    try:
        done, _ = await asyncio.wait(
            {producer, consumer_task}, return_when=asyncio.FIRST_EXCEPTION
        )
        for task in done:
            if task.exception() is not None:
                raise task.exception()
        await consumer_task
    finally:
        stop.set()
        for task in (producer, consumer_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(producer, consumer_task, return_exceptions=True)


async def serve(settings: Settings, replay: Optional[str] = None) -> int:
    log = get_logger(__name__)
    cursor = ProgressCursor.load(settings.cursor_path)
    source = build_source(settings, cursor, replay)
    sink: Sink = build_sink(settings)
    consumer = MetadataConsumer(
        sink,
        cursor,
        source,
        retry_delay=settings.retry_delay,
        max_retry_delay=settings.max_retry_delay,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            pass

    log.info("indexer_starting", cursor=cursor.height, sink=settings.sink)
    try:
        await run_pipeline(source, consumer, stop)
    finally:
        sink.close()
    log.info("indexer_finished", cursor=cursor.height)
    return 0
