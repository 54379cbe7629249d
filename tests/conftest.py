"""In-memory stand-ins for the ledger and the record store."""

from __future__ import annotations

import queue
import threading
from dataclasses import replace

import pytest

from errors import InvalidPaymentRequestError, LedgerError, LedgerStreamError, StoreError
from lnd_client import InvoiceEvent, InvoiceState
from record_store import Record

_END = object()


class FakeStream:
    """Blocking settlement stream fed from the test thread."""

    def __init__(self, *items) -> None:
        self._queue: queue.Queue = queue.Queue()
        self.cancelled = False
        for item in items:
            self.push(item)

    def push(self, item) -> None:
        self._queue.put(item)

    def end(self) -> None:
        self._queue.put(_END)

    def __iter__(self):
        return self

    def __next__(self) -> InvoiceEvent:
        item = self._queue.get()
        if item is _END:
            raise StopIteration
        if isinstance(item, Exception):
            raise item
        return item

    def cancel(self) -> None:
        self.cancelled = True
        self._queue.put(_END)


def settled_event(payment_request: str) -> InvoiceEvent:
    return InvoiceEvent(payment_request=payment_request, settled=True)


def failing_stream() -> FakeStream:
    return FakeStream(LedgerStreamError("connection reset"))


def ended_stream(*events) -> FakeStream:
    stream = FakeStream(*events)
    stream.end()
    return stream


class FakeLedger:
    def __init__(self) -> None:
        self.hashes: dict[str, str] = {}
        self.settled: dict[str, bool] = {}
        self.broken_hashes: set[str] = set()
        self.streams: list[FakeStream] = []
        self.calls: list[str] = []
        self.pubkey = "02" + "ab" * 32
        self.invoices_by_memo: dict = {}

    def add_invoice(self, payment_request: str, payment_hash: str, settled: bool) -> None:
        self.hashes[payment_request] = payment_hash
        self.settled[payment_hash] = settled

    def decode_payment_request(self, payment_request: str) -> str:
        self.calls.append("decode")
        try:
            return self.hashes[payment_request]
        except KeyError:
            raise InvalidPaymentRequestError(payment_request, "invalid bech32") from None

    def lookup_invoice(self, payment_hash: str) -> InvoiceState:
        self.calls.append("lookup")
        if payment_hash in self.broken_hashes:
            raise LedgerError("lookup_invoice failed: unavailable")
        if payment_hash not in self.settled:
            return InvoiceState(payment_hash=payment_hash, found=False)
        return InvoiceState(payment_hash=payment_hash, found=True, settled=self.settled[payment_hash])

    def subscribe_settlements(self) -> FakeStream:
        self.calls.append("subscribe")
        if not self.streams:
            raise LedgerStreamError("no stream configured")
        return self.streams.pop(0)

    def get_node_pubkey(self) -> str:
        return self.pubkey

    def find_invoice_by_memo(self, memo: str):
        return self.invoices_by_memo.get(memo)


class InMemoryRecordStore:
    """Hands out copies of its records, like snapshots from a document store."""

    def __init__(self) -> None:
        self.records: dict[str, Record] = {}
        self.writes: list[str] = []
        self.list_calls = 0
        self.fail_listing = False
        self.fail_updates: set[str] = set()
        self.vanished: set[str] = set()
        self._lock = threading.Lock()

    def add(self, record_id: str, payment_request: str, settled: bool = False) -> Record:
        record = Record(id=record_id, payment_request=payment_request, settled=settled, ref=record_id)
        self.records[record_id] = record
        return record

    def list_unsettled(self) -> list[Record]:
        with self._lock:
            self.list_calls += 1
            if self.fail_listing:
                raise StoreError("listing unavailable")
            return [replace(r) for r in self.records.values() if not r.settled]

    def find_by_payment_request(self, payment_request: str) -> list[Record]:
        with self._lock:
            return [replace(r) for r in self.records.values() if r.payment_request == payment_request]

    def mark_settled(self, record: Record) -> bool:
        with self._lock:
            if record.id in self.fail_updates:
                raise StoreError(f"update of record {record.id} failed")
            if record.id in self.vanished:
                return False
            self.writes.append(record.id)
            self.records[record.ref].settled = True
            record.settled = True
            return True


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()
