"""Narrow wrapper around the LND gRPC client.

Only the calls the settlement sync needs are exposed: decode a payment
request, look up an invoice, subscribe to invoice updates, plus the two
lookups served by the HTTP front end. Requests go through the generated
``Lightning`` stub, and gRPC errors are translated into :mod:`errors`
exceptions here and nowhere else.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

import grpc
from lndgrpc import LNDClient
from lndgrpc.compiled import lightning_pb2 as ln

from config import Settings
from errors import InvalidPaymentRequestError, LedgerError, LedgerStreamError

logger = logging.getLogger(__name__)

# lnrpc.Invoice.InvoiceState.SETTLED
INVOICE_STATE_SETTLED = 1

TRANSPORT_CODES = {grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED}

# Older lnd answers UNKNOWN with one of these for a missing invoice.
NOT_FOUND_DETAILS = ("unable to locate invoice", "there are no existing invoices")

LIST_INVOICES_PAGE_SIZE = 1000


@dataclass(frozen=True)
class InvoiceState:
    payment_hash: str
    found: bool
    settled: bool = False


@dataclass(frozen=True)
class InvoiceEvent:
    payment_request: str
    settled: bool
    payment_hash: str = ""
    memo: str = ""


@dataclass(frozen=True)
class InvoiceSummary:
    memo: str
    payment_request: str
    payment_hash: str
    value_sat: int
    settled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "memo": self.memo,
            "payment_request": self.payment_request,
            "r_hash": self.payment_hash,
            "value": self.value_sat,
            "settled": self.settled,
        }


class SettlementStream(Protocol):
    def __iter__(self) -> Iterator[InvoiceEvent]: ...

    def __next__(self) -> InvoiceEvent: ...

    def cancel(self) -> None: ...


class LedgerClient(Protocol):
    def decode_payment_request(self, payment_request: str) -> str: ...

    def lookup_invoice(self, payment_hash: str) -> InvoiceState: ...

    def subscribe_settlements(self) -> SettlementStream: ...

    def get_node_pubkey(self) -> str: ...

    def find_invoice_by_memo(self, memo: str) -> InvoiceSummary | None: ...


def _is_settled(invoice: Any) -> bool:
    return bool(getattr(invoice, "settled", False)) or getattr(invoice, "state", None) == INVOICE_STATE_SETTLED


def _hash_hex(invoice: Any) -> str:
    r_hash = getattr(invoice, "r_hash", b"")
    return r_hash.hex() if isinstance(r_hash, (bytes, bytearray)) else str(r_hash)


def _is_not_found(exc: grpc.RpcError) -> bool:
    if exc.code() == grpc.StatusCode.NOT_FOUND:
        return True
    details = exc.details() or ""
    return any(text in details for text in NOT_FOUND_DETAILS)


class LndSettlementStream:
    """Iterator over ``SubscribeInvoices`` that can be cancelled from any thread."""

    def __init__(self, call: Any) -> None:
        self._call = call
        self._events = iter(call)
        self._cancelled = threading.Event()

    def __iter__(self) -> "LndSettlementStream":
        return self

    def __next__(self) -> InvoiceEvent:
        try:
            invoice = next(self._events)
        except grpc.RpcError as exc:
            if self._cancelled.is_set() or exc.code() == grpc.StatusCode.CANCELLED:
                raise StopIteration from exc
            raise LedgerStreamError(f"invoice subscription failed: {exc.code()} {exc.details()}") from exc
        return InvoiceEvent(
            payment_request=invoice.payment_request,
            settled=_is_settled(invoice),
            payment_hash=_hash_hex(invoice),
            memo=getattr(invoice, "memo", ""),
        )

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        cancel = getattr(self._call, "cancel", None)
        if cancel is not None:
            cancel()


class LndLedger:
    """:class:`LedgerClient` backed by an ``lndgrpc.LNDClient``.

    Calls go straight to the client's generated ``Lightning`` stub. The
    client's convenience methods print and swallow gRPC errors, and its
    ``subscribe_invoices`` generator hides the cancellable call.
    """

    def __init__(self, client: Any, *, timeout: float | None = None) -> None:
        self._client = client
        self._timeout = timeout

    @property
    def _stub(self) -> Any:
        return self._client._ln_stub

    def decode_payment_request(self, payment_request: str) -> str:
        try:
            decoded = self._stub.DecodePayReq(ln.PayReqString(pay_req=payment_request), timeout=self._timeout)
        except grpc.RpcError as exc:
            if exc.code() in TRANSPORT_CODES:
                raise LedgerError(f"DecodePayReq failed: {exc.details()}") from exc
            raise InvalidPaymentRequestError(payment_request, exc.details() or "") from exc
        return decoded.payment_hash

    def lookup_invoice(self, payment_hash: str) -> InvoiceState:
        try:
            invoice = self._stub.LookupInvoice(ln.PaymentHash(r_hash_str=payment_hash), timeout=self._timeout)
        except grpc.RpcError as exc:
            if _is_not_found(exc):
                return InvoiceState(payment_hash=payment_hash, found=False)
            raise LedgerError(f"LookupInvoice failed: {exc.code()} {exc.details()}") from exc
        return InvoiceState(payment_hash=payment_hash, found=True, settled=_is_settled(invoice))

    def subscribe_settlements(self) -> LndSettlementStream:
        try:
            call = self._stub.SubscribeInvoices(ln.InvoiceSubscription())
        except grpc.RpcError as exc:
            raise LedgerStreamError(f"SubscribeInvoices failed: {exc.details()}") from exc
        return LndSettlementStream(call)

    def get_node_pubkey(self) -> str:
        try:
            return self._stub.GetInfo(ln.GetInfoRequest(), timeout=self._timeout).identity_pubkey
        except grpc.RpcError as exc:
            raise LedgerError(f"GetInfo failed: {exc.details()}") from exc

    def find_invoice_by_memo(self, memo: str) -> InvoiceSummary | None:
        # Page backwards from the newest invoice so a reused memo resolves
        # to its latest invoice.
        index_offset = 0
        while True:
            request = ln.ListInvoiceRequest(
                num_max_invoices=LIST_INVOICES_PAGE_SIZE,
                index_offset=index_offset,
                reversed=True,
            )
            try:
                response = self._stub.ListInvoices(request, timeout=self._timeout)
            except grpc.RpcError as exc:
                raise LedgerError(f"ListInvoices failed: {exc.details()}") from exc
            for invoice in reversed(list(response.invoices)):
                if invoice.memo == memo:
                    return InvoiceSummary(
                        memo=invoice.memo,
                        payment_request=invoice.payment_request,
                        payment_hash=_hash_hex(invoice),
                        value_sat=invoice.value,
                        settled=_is_settled(invoice),
                    )
            if len(response.invoices) < LIST_INVOICES_PAGE_SIZE or response.first_index_offset <= 1:
                return None
            index_offset = response.first_index_offset


def build_ledger(settings: Settings) -> LndLedger:
    """Connect to lnd using the TLS cert and macaroon named in ``settings``."""

    logger.info("Connecting to lnd at %s", settings.lnd_grpc_host)
    client = LNDClient(
        settings.lnd_grpc_host,
        cert_filepath=str(settings.tls_cert_path),
        macaroon_filepath=str(settings.macaroon_path),
    )
    return LndLedger(client, timeout=settings.call_timeout_seconds)


__all__ = [
    "InvoiceEvent",
    "InvoiceState",
    "InvoiceSummary",
    "LedgerClient",
    "LndLedger",
    "LndSettlementStream",
    "SettlementStream",
    "build_ledger",
]
