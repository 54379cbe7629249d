"""One-shot reconciliation of unsettled records against the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from calls import call_blocking
from errors import InvalidPaymentRequestError, SyncError
from lnd_client import LedgerClient
from record_store import Record, RecordStore

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    scanned: int = 0
    updated: int = 0
    skipped: int = 0
    not_found: int = 0
    failed: int = 0
    last_error: Exception | None = None


class ReconciliationScanner:
    """Cross-check every unsettled record with the ledger and settle the paid ones.

    A failure to list records aborts the pass by raising. Anything that goes
    wrong for a single record is logged and counted, and the pass moves on.
    """

    def __init__(self, ledger: LedgerClient, store: RecordStore, *, call_timeout: float = 5.0) -> None:
        self._ledger = ledger
        self._store = store
        self._call_timeout = call_timeout

    async def run_once(self) -> ScanResult:
        records = await call_blocking(self._store.list_unsettled, timeout=self._call_timeout)
        result = ScanResult(scanned=len(records))
        logger.info("Reconciling %s unsettled records", len(records))

        for record in records:
            try:
                await self._reconcile(record, result)
            except SyncError as exc:
                result.failed += 1
                result.last_error = exc
                logger.warning("Could not reconcile record %s: %s", record.id, exc)

        logger.info(
            "Reconciliation pass done: %s updated, %s skipped, %s not found, %s failed",
            result.updated,
            result.skipped,
            result.not_found,
            result.failed,
        )
        return result

    async def _reconcile(self, record: Record, result: ScanResult) -> None:
        try:
            payment_hash = await call_blocking(
                self._ledger.decode_payment_request, record.payment_request, timeout=self._call_timeout
            )
        except InvalidPaymentRequestError as exc:
            result.skipped += 1
            logger.warning("Skipping record %s: %s", record.id, exc)
            return

        state = await call_blocking(self._ledger.lookup_invoice, payment_hash, timeout=self._call_timeout)
        if not state.found:
            # Invoices created against another lnd instance (e.g. testnet)
            # are never found here and stay unsettled.
            result.not_found += 1
            logger.info("Invoice %s for record %s not found on this node", payment_hash, record.id)
            return
        if not state.settled:
            return

        if not await call_blocking(self._store.mark_settled, record, timeout=self._call_timeout):
            result.skipped += 1
            return
        result.updated += 1
        logger.info("Updated %s", record.payment_request)


__all__ = ["ReconciliationScanner", "ScanResult"]
