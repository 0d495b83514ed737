"""
Reconciliation of optimistic local writes with authoritative refetches.

The collaborator API sometimes answers a single-shipment refetch with an
empty or stale items/documents collection right after a write. None of the
functions here ever lets such a response erase sub-collections the user can
already see: a non-empty remote collection wins, an empty one falls back to
the local copy. Scalar fields always come from the remote record.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple, Union

from src.schemas.shipment_schema import DocumentSchema, ItemSchema, ShipmentSchema
from src.services.core.tool import first_present, generate_temp_id

logger = logging.getLogger(__name__)

SUB_COLLECTIONS = ("items", "documents")


@dataclass(frozen=True)
class ReconciliationDiscrepancy:
    """A refetch disagreed with what was just submitted; the local value was kept"""

    shipment_id: Any
    collection: str
    submitted_count: int
    received_count: int
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shipment_id": self.shipment_id,
            "collection": self.collection,
            "submitted_count": self.submitted_count,
            "received_count": self.received_count,
            "recorded_at": self.recorded_at.isoformat(),
        }


def prefer_non_empty(remote: Optional[Sequence], local: Optional[Sequence]) -> List:
    if remote:
        return list(remote)
    return list(local or [])


def merge_refetched(local: ShipmentSchema, remote: ShipmentSchema) -> ShipmentSchema:
    """Scalars from remote; items and documents from remote only when non-empty"""
    return remote.model_copy(update={
        "items": prefer_non_empty(remote.items, local.items),
        "documents": prefer_non_empty(remote.documents, local.documents),
    })


def reconcile_after_save(
    shipment_id: Any,
    submitted_items: Sequence[ItemSchema],
    local: ShipmentSchema,
    remote: ShipmentSchema,
) -> Tuple[ShipmentSchema, Optional[ReconciliationDiscrepancy]]:
    """
    Merge a post-save refetch into the local buffer.

    When the refetched item count differs from the submitted one, the submitted
    set is kept and a discrepancy record is returned for diagnostics.
    """
    merged = merge_refetched(local, remote)
    if len(remote.items) == len(submitted_items):
        return merged, None

    discrepancy = ReconciliationDiscrepancy(
        shipment_id=shipment_id,
        collection="items",
        submitted_count=len(submitted_items),
        received_count=len(remote.items),
    )
    merged = merged.model_copy(update={"items": list(submitted_items)})
    return merged, discrepancy


def normalize_document(
    raw: Optional[Dict[str, Any]],
    fallback_name: str,
    shipment_id: Optional[int] = None,
) -> DocumentSchema:
    """
    Build the canonical document from a partial upload response.

    Missing id -> temporary local id, missing name -> original filename,
    missing content reference -> empty string.
    """
    raw = raw or {}
    return DocumentSchema(
        id=first_present(raw, "id", default=None) or generate_temp_id(),
        name=first_present(raw, "name", "original_name", "filename", default=fallback_name),
        file_content=first_present(raw, "file_content", "path", "url", default=""),
        shipment_id=first_present(raw, "shipment_id", default=shipment_id),
    )


def apply_document_upload(
    refreshed: ShipmentSchema,
    cached_items: Sequence[ItemSchema],
    previous_documents: Sequence[DocumentSchema],
    new_document: DocumentSchema,
) -> ShipmentSchema:
    """{...refreshed scalars, items: cached items, documents: previous + new}"""
    return refreshed.model_copy(update={
        "items": list(cached_items),
        "documents": list(previous_documents) + [new_document],
    })


def remove_document(
    documents: Sequence[DocumentSchema],
    document_id: Union[int, str],
) -> List[DocumentSchema]:
    return [doc for doc in documents if str(doc.id) != str(document_id)]


class DiscrepancyLog:
    """Bounded history of reconciliation discrepancies, for diagnostics"""

    def __init__(self, max_history: int = 200):
        self._entries: Deque[ReconciliationDiscrepancy] = deque(maxlen=max_history)

    def record(self, discrepancy: ReconciliationDiscrepancy) -> None:
        self._entries.append(discrepancy)
        logger.warning(
            f"Reconciliation discrepancy on shipment {discrepancy.shipment_id}: "
            f"submitted {discrepancy.submitted_count} {discrepancy.collection}, "
            f"refetch returned {discrepancy.received_count}; keeping submitted set"
        )

    def entries(self) -> List[ReconciliationDiscrepancy]:
        return list(self._entries)

    def for_shipment(self, shipment_id: Any) -> List[ReconciliationDiscrepancy]:
        return [entry for entry in self._entries if entry.shipment_id == shipment_id]

    def __len__(self) -> int:
        return len(self._entries)
