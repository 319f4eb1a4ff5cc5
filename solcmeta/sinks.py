"""
Output sinks for extracted metadata.

A sink receives one BlockBatch per block and must only return once the
batch is durable. Any failure to persist is raised as SinkError so the
consumer can retry the same batch before acknowledging the height.
"""

import asyncio
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Tuple, Union

import requests

from solcmeta.extract import ExtractionOutcome, Invalid, Metadata


class SinkError(Exception):
    pass


@dataclass(frozen=True)
class MetadataEntry:
    height: int
    block_hash: str
    tx_hash: str
    address: str
    outcome: ExtractionOutcome


@dataclass(frozen=True)
class BlockBatch:
    height: int
    block_hash: str
    entries: Tuple[MetadataEntry, ...] = ()


def entry_to_record(entry: MetadataEntry) -> Optional[Dict[str, Any]]:
    """Flatten an entry into its persisted form. NoTrailer entries have none."""
    record: Dict[str, Any] = {
        "height": entry.height,
        "block_hash": entry.block_hash,
        "tx_hash": entry.tx_hash,
        "address": entry.address,
    }
    outcome = entry.outcome
    if isinstance(outcome, Metadata):
        record.update(
            status="metadata",
            metadata=outcome.record.to_json(),
            cid=str(outcome.cid) if outcome.cid is not None else None,
            reference=outcome.reference,
            error=outcome.cid_error,
        )
        return record
    if isinstance(outcome, Invalid):
        record.update(
            status="invalid",
            metadata=None,
            cid=None,
            reference=None,
            error=f"{outcome.kind}: {outcome.message}",
        )
        return record
    return None


def batch_records(batch: BlockBatch) -> List[Dict[str, Any]]:
    records = (entry_to_record(entry) for entry in batch.entries)
    return [r for r in records if r is not None]


class Sink:
    async def emit(self, batch: BlockBatch) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class ConsoleSink(Sink):
    """NDJSON on a text stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def _write(self, records: List[Dict[str, Any]]) -> None:
        stream = self.stream if self.stream is not None else sys.stdout
        try:
            for record in records:
                stream.write(json.dumps(record) + "\n")
            stream.flush()
        except OSError as e:
            raise SinkError(f"Error writing to console: {e}") from e

    async def emit(self, batch: BlockBatch) -> None:
        await asyncio.to_thread(self._write, batch_records(batch))


class JsonLinesSink(Sink):
    """Appends NDJSON to a file and fsyncs it before returning."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _append(self, records: List[Dict[str, Any]]) -> None:
        try:
            with open(self.path, "a") as f:
                for record in records:
                    f.write(json.dumps(record) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise SinkError(f"Error writing to {self.path}: {e}") from e

    async def emit(self, batch: BlockBatch) -> None:
        records = batch_records(batch)
        if not records:
            return
        await asyncio.to_thread(self._append, records)


class HttpSink(Sink):
    """POSTs each block's records to a downstream store."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise SinkError(f"Error posting to {self.url}: {e}") from e

    async def emit(self, batch: BlockBatch) -> None:
        payload = {
            "height": batch.height,
            "block_hash": batch.block_hash,
            "records": batch_records(batch),
        }
        await asyncio.to_thread(self._post, payload)

    def close(self) -> None:
        self.session.close()


def build_sink(settings) -> Sink:
    if settings.sink == "file":
        return JsonLinesSink(settings.output_path)
    if settings.sink == "http":
        return HttpSink(settings.sink_url, timeout=settings.sink_timeout)
    return ConsoleSink()
