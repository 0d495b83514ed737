import asyncio
from unittest.mock import AsyncMock

import pytest

from src.core.exceptions import (
    AuthorizationException,
    ErrorCode,
    NotFoundException,
    TransportException,
    ValidationException,
)
from src.core.monitoring import ShipmentMonitor
from src.core.settings import FreightSettings
from src.events.core.event import Event, EventType
from src.events.core.event_bus import EventBus
from src.repository.shipment_store import ShipmentStore
from src.schemas.invoice_schema import AccountingCustomer
from src.schemas.shipment_schema import ItemSchema, ShipmentSchema
from src.services.interfaces.accounting_service_interface import IAccountingService
from src.services.interfaces.freight_api_interface import IFreightApi
from src.services.shipment_edit_session import ShipmentEditSession
from src.services.shipment_service import ShipmentService
from test.utils import ADMIN, ACCOUNTANT, DRIVER, make_document, make_item, make_shipment, make_user


def _service(api, shipments=(), **kwargs) -> ShipmentService:
    return ShipmentService(
        api=api,
        store=ShipmentStore(list(shipments)),
        monitor=ShipmentMonitor(),
        settings=FreightSettings(),
        **kwargs,
    )


def _api(*listed) -> AsyncMock:
    api = AsyncMock(spec=IFreightApi)
    api.list_shipments.return_value = list(listed)
    api.update_shipment.return_value = None
    return api


@pytest.mark.asyncio
async def test_save_with_race_keeps_submitted_items():
    local = make_shipment(1, items=[make_item(1, value=10), make_item(2, quantity=2, value=5)])
    empty = make_shipment(1, items=[])
    api = _api(empty)
    refetch_gate = asyncio.Event()

    async def slow_refetch(shipment_id):
        await refetch_gate.wait()
        return empty

    api.get_shipment.side_effect = slow_refetch
    bus = EventBus()
    received = []

    async def on_event(event: Event) -> None:
        received.append((event.event_type, event.data))

    for event_type in (EventType.RECONCILIATION_DISCREPANCY, EventType.SHIPMENT_RECONCILED):
        await bus.subscribe(event_type, on_event)

    service = _service(api, [local], event_bus=bus)
    session = ShipmentEditSession(service.store.get(1), ADMIN)

    outcome = await service.save(session)

    # Stato ottimistico visibile prima che il refetch risponda
    assert not outcome.reconciliation.done()
    assert len(outcome.shipment.items) == 2
    assert len(session.draft.items) == 2
    assert outcome.shipment.shipping_cost == 20

    refetch_gate.set()
    merged = await outcome.reconciled()

    assert len(merged.items) == 2
    assert len(session.draft.items) == 2
    assert len(service.store.get(1).items) == 2
    assert len(service.discrepancies) == 1
    assert service.discrepancies.entries()[0].received_count == 0
    assert service.monitor.metrics.get_counter("reconciliation_discrepancies") == 1
    assert [event_type for event_type, _ in received] == ["reconciliation_discrepancy", "shipment_reconciled"]
    assert received[0][1]["shipment_id"] == 1
    assert received[0][1]["submitted_count"] == 2
    assert received[0][1]["received_count"] == 0

    payload = api.update_shipment.await_args.args[1]
    assert payload["admin_override"] is True
    assert payload["shipping_cost"] == 20


@pytest.mark.asyncio
async def test_save_drops_placeholders_and_publishes_events():
    shipment = make_shipment(1, items=[make_item(1)])
    api = _api(shipment)
    api.get_shipment.return_value = shipment
    bus = EventBus()
    received = []

    async def on_event(event: Event) -> None:
        received.append(event.event_type)

    for event_type in (EventType.SHIPMENT_SAVED, EventType.SHIPMENT_RECONCILED, EventType.RECONCILIATION_DISCREPANCY):
        await bus.subscribe(event_type, on_event)

    service = _service(api, [shipment], event_bus=bus)
    session = ShipmentEditSession(shipment, ACCOUNTANT)
    session.add_item()

    outcome = await service.save(session)
    await outcome.reconciled()

    assert [item["description"] for item in api.update_shipment.await_args.args[1]["items"]] == ["Pallet"]
    assert "admin_override" not in api.update_shipment.await_args.args[1]
    assert received == ["shipment_saved", "shipment_reconciled"]
    assert len(service.discrepancies) == 0


@pytest.mark.asyncio
async def test_save_transport_error_leaves_local_state():
    shipment = make_shipment(1, items=[make_item(1)])
    api = _api()
    api.update_shipment.side_effect = TransportException("timeout")
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)
    session.set_field("comments", "typed by user")

    with pytest.raises(TransportException):
        await service.save(session)

    assert session.draft.comments == "typed by user"
    assert service.store.get(1).comments is None
    api.get_shipment.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_not_found_removes_shipment():
    shipment = make_shipment(1)
    api = _api()
    api.update_shipment.side_effect = NotFoundException("Shipment", 1)
    bus = EventBus()
    removed = []

    async def on_removed(event: Event) -> None:
        removed.append(event.shipment_id)

    await bus.subscribe(EventType.SHIPMENT_REMOVED, on_removed)
    service = _service(api, [shipment], event_bus=bus)

    with pytest.raises(NotFoundException):
        await service.save(ShipmentEditSession(shipment, ADMIN))

    assert 1 not in service.store
    assert removed == [1]


@pytest.mark.asyncio
async def test_save_preflight_errors_make_no_request():
    api = _api()
    service = _service(api)

    delivered = make_shipment(1, status="delivered", driver_id=DRIVER.id)
    with pytest.raises(AuthorizationException):
        await service.save(ShipmentEditSession(delivered, DRIVER))

    no_origin = make_shipment(2, origin_address=None, origin_lat=None, origin_lng=None)
    with pytest.raises(ValidationException) as exc_info:
        await service.save(ShipmentEditSession(no_origin, ADMIN))
    assert exc_info.value.field == "origin_address"

    api.update_shipment.assert_not_awaited()


@pytest.mark.asyncio
async def test_change_status_goes_through_update_path():
    shipment = make_shipment(1, status="in_transit", driver_id=DRIVER.id, items=[make_item(1)])
    api = _api(shipment)
    api.get_shipment.return_value = make_shipment(1, status="delivered", driver_id=DRIVER.id, items=[make_item(1)])
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, DRIVER)

    outcome = await service.change_status(session, "delivered")
    await service.wait_for_background()

    payload = api.update_shipment.await_args.args[1]
    assert payload["status"] == "delivered"
    assert payload["delivery_date"] is not None
    assert "admin_override" not in payload
    assert outcome.shipment.status.value == "delivered"


@pytest.mark.asyncio
async def test_change_status_driver_terminal_lock_before_network():
    shipment = make_shipment(1, status="cancelled", driver_id=DRIVER.id)
    api = _api()
    service = _service(api, [shipment])

    with pytest.raises(AuthorizationException) as exc_info:
        await service.change_status(ShipmentEditSession(shipment, DRIVER), "pending")

    assert exc_info.value.error_code == ErrorCode.SHIPMENT_LOCKED.value
    api.update_shipment.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_document_is_immediate():
    shipment = make_shipment(1, items=[make_item(1)], documents=[make_document(3), make_document(5), make_document(8)])
    # Il refresh restituisce ancora il documento eliminato e nessun item
    stale = make_shipment(1, items=[], documents=[make_document(3), make_document(5), make_document(8)])
    api = _api(stale)
    delete_gate = asyncio.Event()

    async def slow_delete(document_id):
        await delete_gate.wait()

    api.delete_document.side_effect = slow_delete
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)

    task = asyncio.create_task(service.delete_document(session, 5))
    await asyncio.sleep(0)

    assert [doc.id for doc in session.draft.documents] == [3, 8]
    assert [doc.id for doc in service.store.get(1).documents] == [3, 8]

    delete_gate.set()
    documents = await task

    assert [doc.id for doc in documents] == [3, 8]
    assert [doc.id for doc in service.store.get(1).documents] == [3, 8]
    assert len(service.store.get(1).items) == 1
    api.delete_document.assert_awaited_once_with(5)


@pytest.mark.asyncio
async def test_delete_document_transport_error_keeps_optimistic_removal():
    shipment = make_shipment(1, documents=[make_document(3), make_document(5)])
    api = _api()
    api.delete_document.side_effect = TransportException("offline")
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)

    with pytest.raises(TransportException):
        await service.delete_document(session, 5)

    assert [doc.id for doc in session.draft.documents] == [3]


@pytest.mark.asyncio
async def test_delete_unknown_document():
    service = _service(_api())
    with pytest.raises(NotFoundException):
        await service.delete_document(ShipmentEditSession(make_shipment(1), ADMIN), 99)


@pytest.mark.asyncio
async def test_upload_document_keeps_cached_items():
    shipment = make_shipment(1, items=[make_item(1), make_item(2)], documents=[make_document(3)])
    api = _api(make_shipment(1, items=[], documents=[], status="in_transit"))
    api.upload_document.return_value = {"original_name": "pod-final.pdf"}
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)

    document = await service.upload_document(session, "pod.pdf", b"%PDF-1.4 data", "application/pdf")

    assert document.is_temporary
    assert document.name == "pod-final.pdf"
    assert len(session.draft.items) == 2
    assert [doc.id for doc in session.draft.documents] == [3, document.id]
    assert session.draft.status.value == "in_transit"
    assert len(service.store.get(1).documents) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("content,content_type", [
    (b"GIF89a", "image/gif"),
    (b"", "application/pdf"),
    (b"x" * (5 * 1024 * 1024 + 1), "application/pdf"),
])
async def test_upload_document_rejected_before_network(content, content_type):
    api = _api()
    service = _service(api)
    with pytest.raises(ValidationException) as exc_info:
        await service.upload_document(ShipmentEditSession(make_shipment(1), ADMIN), "file", content, content_type)
    assert exc_info.value.error_code == ErrorCode.DOCUMENT_REJECTED.value
    api.upload_document.assert_not_awaited()


@pytest.mark.asyncio
async def test_driver_suggestions():
    api = _api()
    api.list_drivers.return_value = [make_user(10, "A"), make_user(11, "B"), make_user(12, "C")]
    shipments = [
        make_shipment(1, driver_id=10), make_shipment(2, driver_id=10), make_shipment(3, driver_id=10),
        make_shipment(4, driver_id=12),
    ]
    service = _service(api, shipments)

    suggestions = await service.driver_suggestions()

    assert [(load.driver_id, load.pending_count) for load in suggestions] == [
        (99999, 0), (11, 0), (12, 1), (10, 3),
    ]


@pytest.mark.asyncio
async def test_refresh_and_visible_shipments():
    api = _api(make_shipment(1, driver_id=7), make_shipment(2, driver_id=9), make_shipment(3, driver_id=7))
    service = _service(api)

    await service.refresh_shipments()

    assert [s.id for s in service.visible_shipments(DRIVER)] == [3, 1]
    page = service.visible_page(ADMIN, per_page=2)
    assert [s.id for s in page.items] == [3, 2]
    assert page.has_next is True


@pytest.mark.asyncio
async def test_open_shipment_checks_visibility_and_not_found():
    api = _api()
    api.get_shipment.return_value = make_shipment(1, driver_id=9)
    service = _service(api, [make_shipment(2)])

    with pytest.raises(AuthorizationException):
        await service.open_shipment(1, DRIVER)

    api.get_shipment.side_effect = NotFoundException("Shipment", 2)
    with pytest.raises(NotFoundException):
        await service.open_shipment(2, ADMIN)
    assert 2 not in service.store


@pytest.mark.asyncio
async def test_create_shipment_requires_items_and_admin():
    api = _api()
    api.create_shipment.return_value = make_shipment(40, items=[])
    service = _service(api)
    draft = make_shipment(1, id=None, items=[make_item(None, quantity=2, value=30)])

    with pytest.raises(AuthorizationException):
        await service.create_shipment(draft, ACCOUNTANT)
    with pytest.raises(ValidationException) as exc_info:
        await service.create_shipment(draft.model_copy(update={"items": [ItemSchema.placeholder()]}), ADMIN)
    assert exc_info.value.error_code == ErrorCode.NO_ITEMS.value

    created = await service.create_shipment(draft, ADMIN)

    assert created.id == 40
    assert len(created.items) == 1
    assert "id" not in api.create_shipment.await_args.args[0]
    assert api.create_shipment.await_args.args[0]["shipping_cost"] == 60
    assert 40 in service.store


@pytest.mark.asyncio
async def test_delete_shipment():
    api = _api()
    service = _service(api, [make_shipment(1)])

    with pytest.raises(AuthorizationException):
        await service.delete_shipment(1, DRIVER)

    await service.delete_shipment(1, ADMIN)
    assert 1 not in service.store


@pytest.mark.asyncio
async def test_sync_invoice_stores_invoice_id():
    shipment = make_shipment(1, status="delivered", items=[make_item(1, quantity=2, value=50)])
    api = _api(shipment)
    api.get_shipment.return_value = shipment
    accounting = AsyncMock(spec=IAccountingService)
    accounting.create_invoice.return_value = "INV-1"
    service = _service(api, [shipment], accounting=accounting)

    outcome = await service.sync_invoice(ShipmentEditSession(shipment, ADMIN), AccountingCustomer(display_name="Acme"))
    await service.wait_for_background()

    lines = accounting.create_invoice.await_args.args[1]
    assert lines[0].amount == 100
    assert api.update_shipment.await_args.args[1]["invoice_id"] == "INV-1"
    assert outcome.shipment.invoice_id == "INV-1"


@pytest.mark.asyncio
async def test_sync_invoice_requires_delivered_shipment():
    accounting = AsyncMock(spec=IAccountingService)
    service = _service(_api(), accounting=accounting)
    with pytest.raises(AuthorizationException):
        await service.sync_invoice(ShipmentEditSession(make_shipment(1), ADMIN), AccountingCustomer(display_name="Acme"))
    accounting.create_invoice.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_with_partial_response_keeps_draft_fields():
    shipment = make_shipment(1, status="in_transit", items=[make_item(1)], comments="fragile")
    api = _api()
    # Il server risponde solo con id e un commento aggiornato
    api.update_shipment.return_value = ShipmentSchema.model_validate({"id": 1, "comments": "checked at dock"})
    api.list_shipments.side_effect = TransportException("service unavailable")
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)

    outcome = await service.save(session)
    await outcome.reconciled()

    for current in (session.draft, service.store.get(1)):
        assert current.customer == "Acme Freight"
        assert current.status.value == "in_transit"
        assert current.ref_code == "SHP-0001"
        assert current.origin_address == "1 Harbor Way, Oakland"
        assert current.comments == "checked at dock"
        assert len(current.items) == 1


@pytest.mark.asyncio
async def test_malformed_refetch_keeps_optimistic_state():
    shipment = make_shipment(1, items=[make_item(1)])
    api = _api(make_shipment(1, items=[make_item(1)], comments="call before delivery"))
    api.get_shipment.side_effect = TransportException(
        "Malformed shipment in GET /shipment/1 response", ErrorCode.EXTERNAL_SERVICE_ERROR
    )
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)
    session.set_field("comments", "call before delivery")

    outcome = await service.save(session)
    merged = await outcome.reconciled()

    assert merged.comments == "call before delivery"
    assert service.store.get(1).comments == "call before delivery"


@pytest.mark.asyncio
@pytest.mark.parametrize("refresh_error", [
    AuthorizationException("token expired"),
    ValidationException("bad filter"),
    NotFoundException("Resource", None),
])
async def test_upload_document_survives_failed_refresh(refresh_error):
    shipment = make_shipment(1, items=[make_item(1)], documents=[make_document(3)])
    api = _api()
    api.list_shipments.side_effect = refresh_error
    api.upload_document.return_value = {"id": 12, "filename": "pod.pdf"}
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)

    document = await service.upload_document(session, "pod.pdf", b"%PDF-1.4 data", "application/pdf")

    assert document.id == 12
    assert [doc.id for doc in session.draft.documents] == [3, 12]
    assert [doc.id for doc in service.store.get(1).documents] == [3, 12]
    api.upload_document.assert_awaited_once()


@pytest.mark.asyncio
async def test_delete_document_survives_failed_refresh():
    shipment = make_shipment(1, documents=[make_document(3), make_document(5)])
    api = _api()
    api.list_shipments.side_effect = AuthorizationException("token expired")
    service = _service(api, [shipment])
    session = ShipmentEditSession(shipment, ADMIN)

    documents = await service.delete_document(session, 5)

    assert [doc.id for doc in documents] == [3]
    assert [doc.id for doc in service.store.get(1).documents] == [3]
