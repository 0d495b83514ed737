"""
ShipmentService: orchestrazione dei flussi di scrittura verso il servizio remoto.

Ogni scrittura segue lo stesso schema: controlli pre-flight (permessi,
validazione) prima di qualsiasi chiamata di rete, invio, applicazione
ottimistica dello stato locale, poi riconciliazione non distruttiva con il
dato rilanciato dal server.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union

from src.core.exceptions import (
    BaseApplicationException,
    ErrorCode,
    ExceptionFactory,
    InfrastructureException,
    NotFoundException,
)
from src.core.monitoring import ShipmentMonitor, get_shipment_monitor
from src.core.settings import FreightSettings, get_freight_settings
from src.events.core.event import Event, EventType
from src.events.core.event_bus import EventBus
from src.events.runtime import publish_safely
from src.models.role import Actor
from src.repository.shipment_store import ShipmentStore
from src.schemas.invoice_schema import AccountingCustomer, InvoiceLine
from src.schemas.shipment_schema import DocumentSchema, ItemSchema, ShipmentSchema
from src.services.core import permission_guard
from src.services.core.driver_suggester import DriverLoad, suggest_drivers
from src.services.core.reconciliation import (
    DiscrepancyLog,
    apply_document_upload,
    merge_refetched,
    normalize_document,
    reconcile_after_save,
    remove_document,
)
from src.services.core.shipment_filters import ALL, ShipmentPage, filter_shipments, paginate
from src.services.core.status_transition import plan_transition
from src.services.core.totals import filter_placeholders, prepare_for_save
from src.services.interfaces.accounting_service_interface import IAccountingService
from src.services.interfaces.freight_api_interface import IFreightApi
from src.services.shipment_edit_session import ShipmentEditSession

logger = logging.getLogger(__name__)


@dataclass
class SaveOutcome:
    """
    Result of a save: the optimistic state is already applied, reconciliation
    runs in the background and resolves to the merged shipment.
    """

    shipment: ShipmentSchema
    reconciliation: "asyncio.Task[ShipmentSchema]"

    async def reconciled(self) -> ShipmentSchema:
        return await self.reconciliation


class ShipmentService:
    """Flows on shipments shared by every view: list, save, status, documents, invoice"""

    def __init__(
        self,
        api: IFreightApi,
        store: Optional[ShipmentStore] = None,
        accounting: Optional[IAccountingService] = None,
        event_bus: Optional[EventBus] = None,
        monitor: Optional[ShipmentMonitor] = None,
        settings: Optional[FreightSettings] = None,
    ):
        self._api = api
        self._accounting = accounting
        self._event_bus = event_bus
        self.settings = settings or get_freight_settings()
        self.store = store if store is not None else ShipmentStore()
        self.monitor = monitor or get_shipment_monitor()
        self.discrepancies = DiscrepancyLog(self.settings.discrepancy_history_size)
        self._background: Set[asyncio.Task] = set()

    # Lettura

    async def refresh_shipments(
        self,
        status: Optional[str] = None,
        driver: Optional[int] = None,
    ) -> List[ShipmentSchema]:
        """
        Refetch the shipment list.

        Without server-side filters the response replaces the whole list;
        with filters the returned shipments are merged into it.
        """
        shipments = await self._api.list_shipments(status=status, driver=driver)
        if status is None and driver is None:
            self.store.replace_all(shipments)
        else:
            for shipment in shipments:
                if shipment.id is not None:
                    self.store.upsert(shipment)
        await self._publish(Event(
            event_type=EventType.SHIPMENTS_REFRESHED,
            data={"count": len(shipments), "status": status, "driver": driver},
        ))
        return self.store.all()

    def visible_shipments(
        self,
        actor: Actor,
        query: Optional[str] = None,
        status_filter: Optional[str] = ALL,
        **filters: Any,
    ) -> List[ShipmentSchema]:
        return filter_shipments(self.store.all(), query, status_filter, actor, **filters)

    def visible_page(
        self,
        actor: Actor,
        query: Optional[str] = None,
        status_filter: Optional[str] = ALL,
        page: int = 1,
        per_page: Optional[int] = None,
        **filters: Any,
    ) -> ShipmentPage:
        shipments = self.visible_shipments(actor, query, status_filter, **filters)
        return paginate(shipments, page, per_page or self.settings.shipments_per_page)

    async def open_shipment(self, shipment_id: int, actor: Actor) -> ShipmentEditSession:
        """Refetch one shipment and open an edit session on it"""
        remote = await self._call(shipment_id, self._api.get_shipment(shipment_id))
        if not permission_guard.can_view(remote, actor):
            raise ExceptionFactory.forbidden("view this shipment", actor.role.value)
        stored = self.store.upsert(remote)
        return ShipmentEditSession(stored, actor)

    # Scrittura

    async def save(self, session: ShipmentEditSession) -> SaveOutcome:
        """
        Persist the session draft.

        Raises before any network call on permission or validation errors.
        On TransportException the draft is left as it was.
        """
        permission_guard.ensure_can_edit(session.draft, session.actor)
        return await self._submit(session, session.draft, admin_override=session.actor.is_admin)

    async def change_status(self, session: ShipmentEditSession, target: Any) -> SaveOutcome:
        """Status change through the same update path as any other edit"""
        plan = plan_transition(session.draft, target, session.actor)
        logger.info(
            f"Shipment {session.shipment_id}: {plan.previous_status.value} -> {plan.target_status.value} "
            f"by {session.actor.role.value} {session.actor.id}"
        )
        return await self._submit(session, plan.shipment, admin_override=plan.admin_override)

    async def _submit(
        self,
        session: ShipmentEditSession,
        shipment: ShipmentSchema,
        admin_override: bool,
    ) -> SaveOutcome:
        shipment_id = shipment.id
        if shipment_id is None:
            raise ExceptionFactory.required_field_missing("id")
        self._validate_locations(shipment)
        prepared = prepare_for_save(shipment)

        payload = prepared.to_payload()
        if admin_override:
            payload["admin_override"] = True

        response = await self._call(shipment_id, self._api.update_shipment(shipment_id, payload))

        # Applicazione ottimistica: si parte dal draft inviato, il server sovrascrive solo i campi che ha restituito
        changes = {**prepared.scalar_fields(), **self._returned_scalars(response), "items": prepared.items}
        optimistic = ShipmentSchema.model_validate({
            **changes, "id": shipment_id, "documents": shipment.documents,
        })
        session.draft = optimistic
        self._patch_store(shipment_id, changes, explicit={"items"})

        self.monitor.record_save(shipment_id)
        await self._publish(Event.for_shipment(
            EventType.SHIPMENT_SAVED, shipment_id,
            source="shipment_service.save", status=optimistic.status.value,
        ))

        task = self._spawn(self._reconcile_after_save(session, shipment_id, list(prepared.items)))
        return SaveOutcome(shipment=optimistic, reconciliation=task)

    async def _reconcile_after_save(
        self,
        session: ShipmentEditSession,
        shipment_id: int,
        submitted_items: List[ItemSchema],
    ) -> ShipmentSchema:
        try:
            await self.refresh_shipments()
            remote = await self._call(shipment_id, self._api.get_shipment(shipment_id))
        except NotFoundException:
            return session.draft
        except BaseApplicationException as e:
            logger.warning(f"Reconciliation of shipment {shipment_id} skipped: {e.message}")
            return session.draft

        merged, discrepancy = reconcile_after_save(shipment_id, submitted_items, session.draft, remote)
        session.draft = merged
        self._patch_store(shipment_id, merged, explicit={"items"})

        self.monitor.record_reconciliation(shipment_id, discrepancy is not None)
        if discrepancy is not None:
            self.discrepancies.record(discrepancy)
            await self._publish(Event.for_shipment(
                EventType.RECONCILIATION_DISCREPANCY, shipment_id,
                **{key: value for key, value in discrepancy.to_dict().items() if key != "shipment_id"}
            ))
        await self._publish(Event.for_shipment(
            EventType.SHIPMENT_RECONCILED, shipment_id, items=len(merged.items), documents=len(merged.documents)
        ))
        return merged

    async def create_shipment(self, draft: ShipmentSchema, actor: Actor) -> ShipmentSchema:
        """Admin only; customer, both addresses and at least one item are required"""
        permission_guard.ensure_can_create(actor)
        if not draft.customer.strip():
            raise ExceptionFactory.required_field_missing("customer")
        self._validate_locations(draft)
        if not filter_placeholders(draft.items):
            raise ExceptionFactory.no_items()

        prepared = prepare_for_save(draft)
        payload = prepared.to_payload()
        payload.pop("id", None)

        created = await self._api.create_shipment(payload)
        stored = self.store.upsert(merge_refetched(prepared, created))
        logger.info(f"Shipment {stored.id} created ({len(stored.items)} items)")
        await self._publish(Event.for_shipment(EventType.SHIPMENT_SAVED, stored.id, source="shipment_service.create"))
        return stored

    async def delete_shipment(self, shipment_id: int, actor: Actor) -> None:
        permission_guard.ensure_can_delete(actor)
        await self._call(shipment_id, self._api.delete_shipment(shipment_id))
        await self._forget(shipment_id)

    # Documenti

    def _validate_document(self, filename: str, content: bytes, content_type: str) -> None:
        allowed = self.settings.document_allowed_content_types
        if content_type not in allowed:
            raise ExceptionFactory.document_rejected(filename, f"content type must be one of {allowed}")
        if not content:
            raise ExceptionFactory.document_rejected(filename, "file is empty")
        if len(content) > self.settings.document_max_size_bytes:
            limit_mb = self.settings.document_max_size_bytes / (1024 * 1024)
            raise ExceptionFactory.document_rejected(filename, f"file exceeds {limit_mb:g} MB")

    async def upload_document(
        self,
        session: ShipmentEditSession,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> DocumentSchema:
        """
        Upload one document to the session's shipment.

        Items are cached before the upload: the list refresh that follows may
        come back without them.
        """
        permission_guard.ensure_can_edit(session.draft, session.actor)
        shipment_id = session.shipment_id
        if shipment_id is None:
            raise ExceptionFactory.required_field_missing("id")
        self._validate_document(filename, content, content_type)

        cached_items = list(session.draft.items)
        previous_documents = list(session.draft.documents)

        raw = await self._call(
            shipment_id, self._api.upload_document(shipment_id, filename, content, content_type)
        )
        document = normalize_document(raw, filename, shipment_id)

        await self._refresh_quietly()
        refreshed = self.store.get(shipment_id) or session.draft
        updated = apply_document_upload(refreshed, cached_items, previous_documents, document)
        session.draft = updated
        self._patch_store(shipment_id, updated, explicit={"items", "documents"})

        await self._publish(Event.for_shipment(
            EventType.DOCUMENT_UPLOADED, shipment_id, document_id=document.id, name=document.name
        ))
        return document

    async def delete_document(self, session: ShipmentEditSession, document_id: Union[int, str]) -> List[DocumentSchema]:
        """
        Remove a document: the local list changes immediately, before the
        collaborator answers, and is never rolled back.
        """
        permission_guard.ensure_can_edit(session.draft, session.actor)
        shipment_id = session.shipment_id
        documents = remove_document(session.draft.documents, document_id)
        if len(documents) == len(session.draft.documents):
            raise ExceptionFactory.document_not_found(document_id)

        session.draft = session.draft.model_copy(update={"documents": documents})
        if shipment_id is not None and shipment_id in self.store:
            self.store.apply_patch(shipment_id, {"documents": documents}, explicit={"documents"})

        await self._api.delete_document(document_id)
        await self._publish(Event.for_shipment(EventType.DOCUMENT_DELETED, shipment_id, document_id=document_id))

        await self._refresh_quietly()
        refreshed = self.store.get(shipment_id) if shipment_id is not None else None
        if refreshed is not None:
            merged = merge_refetched(session.draft, refreshed).model_copy(update={"documents": documents})
            session.draft = merged
            self._patch_store(shipment_id, merged, explicit={"documents"})
        return list(session.draft.documents)

    # Autisti e fatturazione

    async def driver_suggestions(self) -> List[DriverLoad]:
        drivers = await self._api.list_drivers()
        return suggest_drivers(drivers, self.store.all())

    async def sync_invoice(self, session: ShipmentEditSession, customer: AccountingCustomer) -> SaveOutcome:
        """
        Create the invoice for a delivered shipment and store its id on it
        through the normal update path.
        """
        permission_guard.ensure_can_show_invoice(session.draft, session.actor)
        if self._accounting is None:
            raise InfrastructureException(
                "Accounting sync is not configured", ErrorCode.EXTERNAL_SERVICE_ERROR
            )
        lines = [InvoiceLine.from_item(item) for item in filter_placeholders(session.draft.items)]
        if not lines:
            raise ExceptionFactory.no_items()

        invoice_id = await self._accounting.create_invoice(customer, lines, session.shipment_id)
        session.draft = session.draft.model_copy(update={"invoice_id": invoice_id})
        outcome = await self._submit(session, session.draft, admin_override=session.actor.is_admin)

        await self._publish(Event.for_shipment(
            EventType.INVOICE_SYNCED, session.shipment_id, invoice_id=invoice_id
        ))
        return outcome

    # Helpers

    @staticmethod
    def _validate_locations(shipment: ShipmentSchema) -> None:
        for field_name in ("origin_address", "destination_address"):
            value = getattr(shipment, field_name)
            if not value or not value.strip():
                raise ExceptionFactory.required_field_missing(field_name)

    async def _call(self, shipment_id: Optional[int], request):
        """Await a collaborator call; a 404 on a shipment drops it from the local list"""
        try:
            return await request
        except NotFoundException as e:
            if e.entity_type == "Shipment" and shipment_id is not None:
                await self._forget(shipment_id)
            raise

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh_shipments()
        except BaseApplicationException as e:
            # La scrittura è già avvenuta: lo stato locale va comunque aggiornato
            logger.warning(f"List refresh failed, keeping local state: {e.message}")

    @staticmethod
    def _returned_scalars(response: Optional[ShipmentSchema]) -> Dict[str, Any]:
        """Scalar fields the collaborator actually sent back (schema defaults excluded)"""
        if response is None:
            return {}
        return response.model_dump(exclude_unset=True, exclude={"id", "items", "documents"})

    def _patch_store(self, shipment_id: int, patch: Union[ShipmentSchema, Dict[str, Any]], explicit: Set[str]) -> None:
        if shipment_id in self.store:
            self.store.apply_patch(shipment_id, patch, explicit=explicit)
        else:
            shipment = patch if isinstance(patch, ShipmentSchema) else ShipmentSchema.model_validate({**patch, "id": shipment_id})
            self.store.upsert(shipment)

    async def _forget(self, shipment_id: int) -> None:
        if self.store.remove(shipment_id) is not None:
            await self._publish(Event.for_shipment(EventType.SHIPMENT_REMOVED, shipment_id))

    async def _publish(self, event: Event) -> None:
        await publish_safely(self._event_bus, event)

    def _spawn(self, coro) -> "asyncio.Task[ShipmentSchema]":
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        """Await every pending reconciliation (shutdown, tests)"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
