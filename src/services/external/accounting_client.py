import httpx
import logging
from typing import List, Optional

from src.core.exceptions import (
    AuthorizationException,
    ErrorCode,
    TransportException,
    ValidationException,
)
from src.core.settings import FreightSettings, get_freight_settings
from src.schemas.invoice_schema import AccountingCustomer, InvoiceLine, InvoiceRequest
from src.services.interfaces.accounting_service_interface import IAccountingService

logger = logging.getLogger(__name__)


class AccountingClient(IAccountingService):
    """
    Client per la sincronizzazione fatture con il sistema contabile esterno.

    L'autenticazione OAuth verso il sistema contabile è gestita dal backend:
    qui si invia solo il token di sessione del servizio spedizioni.
    """

    def __init__(
        self,
        settings: Optional[FreightSettings] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_freight_settings()
        self.base_url = self.settings.accounting_api_base_url.rstrip("/")
        self.token = token or self.settings.freight_api_token
        self._transport = transport

    async def create_invoice(
        self,
        customer: AccountingCustomer,
        lines: List[InvoiceLine],
        shipment_id: Optional[int] = None,
    ) -> str:
        request = InvoiceRequest(customer=customer, lines=lines, shipment_id=shipment_id)
        body = {
            "customer": request.customer.display_name,
            "customer_email": request.customer.email,
            "customer_phone": request.customer.phone,
            "customer_address": request.customer.address,
            "items": [line.model_dump() for line in request.lines],
            "shipment_id": request.shipment_id,
        }

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.settings.freight_api_timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/invoice", json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportException("Timeout creating invoice", ErrorCode.TIMEOUT, {"shipment_id": shipment_id}, 504) from e
        except httpx.RequestError as e:
            raise TransportException(f"Connection error creating invoice: {e}", ErrorCode.NETWORK_ERROR) from e

        logger.info(f"📥 Accounting POST /invoice -> {response.status_code}")

        if response.status_code in (401, 403):
            raise AuthorizationException("Accounting system rejected the request", ErrorCode.UNAUTHORIZED)
        if response.status_code in (400, 422):
            raise ValidationException(
                f"Accounting system rejected the invoice: {response.text}",
                ErrorCode.VALIDATION_ERROR,
                {"field": "invoice"},
            )
        if not response.is_success:
            raise TransportException(
                f"Accounting system error {response.status_code}",
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                {"status_code": response.status_code},
                response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportException("Invalid accounting response", ErrorCode.EXTERNAL_SERVICE_ERROR) from e

        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        invoice_id = (data.get("invoice_id") or data.get("id")) if isinstance(data, dict) else None
        if not invoice_id:
            raise TransportException("Accounting response carries no invoice id", ErrorCode.EXTERNAL_SERVICE_ERROR)

        logger.info(f"Invoice {invoice_id} created for shipment {shipment_id}")
        return str(invoice_id)
