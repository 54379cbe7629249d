"""Firestore-backed view of the messages whose invoices we track."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as gapi_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from config import Settings
from errors import StoreError

logger = logging.getLogger(__name__)


@dataclass
class Record:
    id: str
    payment_request: str
    settled: bool = False
    ref: Any = None


class RecordStore(Protocol):
    def list_unsettled(self) -> list[Record]: ...

    def find_by_payment_request(self, payment_request: str) -> list[Record]: ...

    def mark_settled(self, record: Record) -> bool: ...


class FirestoreRecordStore:
    """:class:`RecordStore` over one Firestore collection."""

    def __init__(
        self,
        db: Any,
        collection: str = "messages",
        *,
        payment_request_field: str = "invoice",
        settled_field: str = "settled",
    ) -> None:
        self._collection = db.collection(collection)
        self._payment_request_field = payment_request_field
        self._settled_field = settled_field

    def _to_record(self, snapshot: Any) -> Record | None:
        data = snapshot.to_dict() or {}
        payment_request = data.get(self._payment_request_field)
        if not isinstance(payment_request, str) or not payment_request:
            logger.warning("Record %s has no payment request, skipping", snapshot.id)
            return None
        return Record(
            id=snapshot.id,
            payment_request=payment_request,
            settled=bool(data.get(self._settled_field, False)),
            ref=snapshot.reference,
        )

    def _query(self, field: str, value: Any) -> list[Record]:
        query = self._collection.where(filter=FieldFilter(field, "==", value))
        try:
            snapshots = list(query.stream())
        except gapi_exceptions.GoogleAPIError as exc:
            raise StoreError(f"query {field} == {value!r} failed: {exc}") from exc
        records = []
        for snapshot in snapshots:
            record = self._to_record(snapshot)
            if record is not None:
                records.append(record)
        return records

    def list_unsettled(self) -> list[Record]:
        return self._query(self._settled_field, False)

    def find_by_payment_request(self, payment_request: str) -> list[Record]:
        return self._query(self._payment_request_field, payment_request)

    def mark_settled(self, record: Record) -> bool:
        """Set the settled flag; repeating it on a settled record changes nothing.

        Returns False when the document no longer exists.
        """
        try:
            record.ref.update({self._settled_field: True})
        except gapi_exceptions.NotFound:
            logger.warning("Record %s disappeared before it could be marked settled", record.id)
            return False
        except gapi_exceptions.GoogleAPIError as exc:
            raise StoreError(f"update of record {record.id} failed: {exc}") from exc
        record.settled = True
        return True


def build_store(settings: Settings) -> FirestoreRecordStore:
    """Initialise the firebase app from the service account file in ``settings``."""

    try:
        app = firebase_admin.get_app()
    except ValueError:
        app = firebase_admin.initialize_app(credentials.Certificate(str(settings.firebase_credentials)))
    db = firestore.client(app)
    logger.info("Using Firestore collection %r", settings.collection)
    return FirestoreRecordStore(
        db,
        settings.collection,
        payment_request_field=settings.payment_request_field,
        settled_field=settings.settled_field,
    )


__all__ = ["Record", "RecordStore", "FirestoreRecordStore", "build_store"]
