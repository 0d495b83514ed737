import json

import httpx
import pytest

from src.core.exceptions import (
    AuthorizationException,
    NotFoundException,
    TransportException,
    ValidationException,
)
from src.core.monitoring import ShipmentMonitor
from src.core.settings import FreightSettings
from src.models.role import Role
from src.schemas.invoice_schema import AccountingCustomer, InvoiceLine
from src.services.external.accounting_client import AccountingClient
from src.services.external.freight_api_client import FreightApiClient


def _settings(**overrides) -> FreightSettings:
    values = {
        "freight_api_base_url": "http://api.test/api",
        "accounting_api_base_url": "http://accounting.test",
        "freight_api_token": "secret",
        "freight_api_max_retries": 2,
        "freight_api_retry_base_delay": 0.0,
    }
    values.update(overrides)
    return FreightSettings(**values)


def _client(handler, **overrides) -> FreightApiClient:
    return FreightApiClient(
        settings=_settings(**overrides),
        transport=httpx.MockTransport(handler),
        monitor=ShipmentMonitor(),
    )


@pytest.mark.asyncio
async def test_list_shipments_unwraps_envelope_and_builds_driver_name():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"ok": True, "msg": "", "data": [
            {"id": 1, "customer": "Acme", "status": "pendiente", "driver_id": 7,
             "driver_firstname": "Dan", "driver_lastname": "Diaz", "items": None},
            {"id": 2, "status": "lost"},
        ]})

    client = _client(handler)
    shipments = await client.list_shipments(status="pending")

    assert seen["url"] == "http://api.test/api/shipments?status=pending"
    assert seen["auth"] == "Bearer secret"
    # La riga malformata viene scartata
    assert [s.id for s in shipments] == [1]
    assert shipments[0].driver_name == "Dan Diaz"
    assert shipments[0].items == []
    assert client.monitor.metrics.get_counter("api_calls") == 1


@pytest.mark.asyncio
async def test_get_shipment_plain_body():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/shipment/5"
        return httpx.Response(200, json={"id": 5, "customer": "Acme", "items": [{"id": 1, "quantity": 2, "value": 3}]})

    shipment = await _client(handler).get_shipment(5)
    assert shipment.id == 5
    assert shipment.items[0].quantity == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("status,exc_type", [
    (401, AuthorizationException),
    (403, AuthorizationException),
    (404, NotFoundException),
    (422, ValidationException),
    (409, TransportException),
])
async def test_status_code_mapping(status, exc_type):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"msg": "nope"})

    with pytest.raises(exc_type):
        await _client(handler).get_shipment(5)


@pytest.mark.asyncio
async def test_not_found_carries_entity():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with pytest.raises(NotFoundException) as exc_info:
        await _client(handler).delete_document(8)
    assert exc_info.value.entity_type == "Document"
    assert exc_info.value.entity_id == 8


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"id": 5})

    client = _client(handler)
    shipment = await client.update_shipment(5, {"status": "pending"})

    assert shipment.id == 5
    assert calls == ["PUT", "PUT", "PUT"]


@pytest.mark.asyncio
async def test_server_error_after_retries_is_transport_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(500, json={"msg": "db down"})

    client = _client(handler)
    with pytest.raises(TransportException) as exc_info:
        await client.get_shipment(5)

    assert exc_info.value.retryable is True
    assert exc_info.value.message == "db down"
    assert len(calls) == 3
    assert client.monitor.metrics.get_counter("transport_errors") == 1


@pytest.mark.asyncio
async def test_post_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(502)

    with pytest.raises(TransportException):
        await _client(handler).create_shipment({"customer": "Acme"})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_network_error_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportException) as exc_info:
        await _client(handler, freight_api_max_retries=0).list_shipments()
    assert exc_info.value.error_code == "NETWORK_ERROR"


@pytest.mark.asyncio
async def test_envelope_failure_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "msg": "locked", "data": None})

    with pytest.raises(TransportException):
        await _client(handler).update_shipment(5, {})


@pytest.mark.asyncio
async def test_update_without_body_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    assert await _client(handler).update_shipment(5, {}) is None


@pytest.mark.asyncio
async def test_upload_document_multipart_and_list_response():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/shipment/5/document"
        assert b'name="documents[]"' in request.content
        assert request.headers["content-type"].startswith("multipart/form-data")
        return httpx.Response(200, json=[{"id": 31, "filename": "pod.pdf"}])

    raw = await _client(handler).upload_document(5, "pod.pdf", b"%PDF-1.4", "application/pdf")
    assert raw == {"id": 31, "filename": "pod.pdf"}


@pytest.mark.asyncio
async def test_list_drivers_keeps_only_drivers():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["role"] == "driver"
        return httpx.Response(200, json=[
            {"id": 7, "firstname": "Dan", "lastname": "Diaz", "role": "transportista"},
            {"id": 1, "firstname": "Ada", "lastname": "Admin", "role": "admin"},
            {"id": 8, "firstname": "X", "role": "pilot"},
        ])

    drivers = await _client(handler).list_drivers()
    assert [(d.id, d.role) for d in drivers] == [(7, Role.DRIVER)]


@pytest.mark.asyncio
async def test_accounting_client_returns_invoice_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"invoice_id": "INV-77"})

    client = AccountingClient(settings=_settings(), transport=httpx.MockTransport(handler))
    invoice_id = await client.create_invoice(
        AccountingCustomer(display_name="Acme", email="ops@acme.test"),
        [InvoiceLine(description="Pallet", quantity=2, unit_price=50)],
        shipment_id=5,
    )

    assert invoice_id == "INV-77"
    assert seen["url"] == "http://accounting.test/invoice"
    assert seen["body"]["customer"] == "Acme"
    assert seen["body"]["items"][0]["amount"] == 100
    assert seen["body"]["shipment_id"] == 5


@pytest.mark.asyncio
async def test_accounting_client_error_mapping():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    client = AccountingClient(settings=_settings(), transport=httpx.MockTransport(handler))
    with pytest.raises(TransportException):
        await client.create_invoice(
            AccountingCustomer(display_name="Acme"),
            [InvoiceLine(description="Pallet", quantity=1, unit_price=5)],
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("method,body", [
    ("get", {"id": 1, "status": "devuelto"}),
    ("create", {"id": 1, "items": [{"quantity": -2}]}),
    ("update", {"id": 1, "shipping_cost": "n/a"}),
])
async def test_malformed_shipment_record_is_transport_error(method, body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    client = _client(handler)
    calls = {
        "get": lambda: client.get_shipment(1),
        "create": lambda: client.create_shipment({"customer": "Acme"}),
        "update": lambda: client.update_shipment(1, {"customer": "Acme"}),
    }

    with pytest.raises(TransportException) as exc_info:
        await calls[method]()
    assert exc_info.value.error_code == "EXTERNAL_SERVICE_ERROR"
    assert client.monitor.metrics.get_counter("transport_errors") == 1


@pytest.mark.asyncio
async def test_update_response_only_marks_returned_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "msg": "updated", "data": {"id": 1, "comments": "ok"}})

    shipment = await _client(handler).update_shipment(1, {"customer": "Acme"})
    assert shipment.model_fields_set == {"id", "comments"}
