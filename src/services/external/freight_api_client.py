import httpx
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from src.core.exceptions import (
    AuthorizationException,
    ErrorCode,
    NotFoundException,
    TransportException,
    ValidationException,
)
from src.core.monitoring import ShipmentMonitor, get_shipment_monitor
from src.core.settings import FreightSettings, get_freight_settings
from src.models.role import Role
from src.schemas.shipment_schema import ShipmentSchema
from src.schemas.user_schema import UserSchema
from src.services.interfaces.freight_api_interface import IFreightApi

logger = logging.getLogger(__name__)

# (entity type, entity id) used to build NotFoundException on 404
EntityRef = Tuple[str, Any]


class FreightApiClient(IFreightApi):
    """HTTP client for the freight persistence API with bearer auth and retry on 429/5xx"""

    def __init__(
        self,
        settings: Optional[FreightSettings] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        monitor: Optional[ShipmentMonitor] = None,
    ):
        self.settings = settings or get_freight_settings()
        self.base_url = self.settings.freight_api_base_url.rstrip("/")
        self.token = token or self.settings.freight_api_token
        self._transport = transport
        self.monitor = monitor or get_shipment_monitor()

    async def list_shipments(
        self,
        status: Optional[str] = None,
        driver: Optional[int] = None,
    ) -> List[ShipmentSchema]:
        params = {key: value for key, value in {"status": status, "driver": driver}.items() if value is not None}
        data = await self._request("GET", "/shipments", params=params)

        if not isinstance(data, list):
            raise TransportException(
                "Invalid shipments list response",
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                {"path": "/shipments"},
            )

        shipments = []
        for row in data:
            try:
                shipments.append(ShipmentSchema.model_validate(self._format_summary(row)))
            except ValidationError as e:
                logger.warning(f"Skipping malformed shipment in list response (id={row.get('id')}): {e}")
        logger.info(f"Fetched {len(shipments)} shipments")
        return shipments

    async def get_shipment(self, shipment_id: int) -> ShipmentSchema:
        data = await self._request("GET", f"/shipment/{shipment_id}", entity=("Shipment", shipment_id))
        if not isinstance(data, dict):
            raise TransportException(
                f"Invalid response for shipment {shipment_id}",
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                {"shipment_id": shipment_id},
            )
        return self._to_shipment(data, f"GET /shipment/{shipment_id}")

    async def create_shipment(self, payload: Dict[str, Any]) -> ShipmentSchema:
        data = await self._request("POST", "/shipment", json=payload, retry=False)
        if not isinstance(data, dict) or data.get("id") is None:
            raise TransportException(
                "Shipment created but the response carries no id",
                ErrorCode.EXTERNAL_SERVICE_ERROR,
            )
        return self._to_shipment(data, "POST /shipment")

    async def update_shipment(self, shipment_id: int, payload: Dict[str, Any]) -> Optional[ShipmentSchema]:
        data = await self._request(
            "PUT", f"/shipment/{shipment_id}", json=payload, entity=("Shipment", shipment_id)
        )
        if not isinstance(data, dict) or not data:
            return None
        return self._to_shipment(data, f"PUT /shipment/{shipment_id}")

    async def delete_shipment(self, shipment_id: int) -> None:
        await self._request("DELETE", f"/shipment/{shipment_id}", entity=("Shipment", shipment_id))

    async def upload_document(
        self,
        shipment_id: int,
        filename: str,
        content: bytes,
        content_type: str,
    ) -> Dict[str, Any]:
        files = {"documents[]": (filename, content, content_type)}
        data = await self._request(
            "POST",
            f"/shipment/{shipment_id}/document",
            files=files,
            entity=("Shipment", shipment_id),
            retry=False,
        )
        # Il backend può restituire il descrittore, una lista di descrittori o niente
        if isinstance(data, list):
            data = data[0] if data else {}
        return data if isinstance(data, dict) else {}

    async def delete_document(self, document_id: Union[int, str]) -> None:
        await self._request("DELETE", f"/shipment/document/{document_id}", entity=("Document", document_id))

    async def list_drivers(self) -> List[UserSchema]:
        data = await self._request("GET", "/users", params={"role": "driver"})
        drivers = []
        for row in data or []:
            try:
                user = UserSchema.model_validate(row)
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping user {row.get('id')} in drivers response: {e}")
                continue
            if user.role is Role.DRIVER:
                drivers.append(user)
        return drivers

    @staticmethod
    def _format_summary(row: Dict[str, Any]) -> Dict[str, Any]:
        """Build driver_name from first/last name when the API sends them separately"""
        row = dict(row)
        if not row.get("driver_name"):
            first, last = row.get("driver_firstname"), row.get("driver_lastname")
            if first and last:
                row["driver_name"] = f"{first} {last}"
        return row

    def _to_shipment(self, data: Dict[str, Any], operation: str) -> ShipmentSchema:
        """Validate a single shipment record; a malformed record is a remote failure"""
        try:
            return ShipmentSchema.model_validate(self._format_summary(data))
        except ValidationError as e:
            logger.error(f"Malformed shipment in {operation} response: {e}")
            self.monitor.record_transport_error(operation, "malformed shipment record")
            raise TransportException(
                f"Malformed shipment in {operation} response",
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                {"operation": operation, "error_count": e.error_count()},
                502,
            ) from e

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        entity: Optional[EntityRef] = None,
        retry: bool = True,
        **kwargs,
    ) -> Any:
        """
        Perform a request and map failures onto the core error taxonomy

        Args:
            method: HTTP method
            path: path relative to the API base URL
            entity: entity reference used when the API answers 404
            retry: whether 429/5xx/network failures are retried (only for idempotent calls)
            **kwargs: params / json / files passed to httpx

        Returns:
            Response payload, unwrapped from the {ok, data, msg} envelope when present
        """
        url = f"{self.base_url}{path}"
        max_retries = self.settings.freight_api_max_retries if retry else 0
        start = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=self.settings.freight_api_timeout, transport=self._transport) as client:
                response = await self._make_request_with_retry(
                    client, method, url, max_retries, headers=self._get_headers(), **kwargs
                )
        except httpx.TimeoutException as e:
            self.monitor.record_api_call(method, path, time.monotonic() - start)
            self.monitor.record_transport_error(f"{method} {path}", str(e))
            raise TransportException(
                f"Timeout calling {method} {path}", ErrorCode.TIMEOUT, {"path": path}, 504
            ) from e
        except httpx.RequestError as e:
            self.monitor.record_api_call(method, path, time.monotonic() - start)
            self.monitor.record_transport_error(f"{method} {path}", str(e))
            raise TransportException(
                f"Connection error calling {method} {path}: {e}", ErrorCode.NETWORK_ERROR, {"path": path}
            ) from e

        self.monitor.record_api_call(method, path, time.monotonic() - start, response.status_code)
        logger.info(f"📥 Freight API {method} {path} -> {response.status_code}")

        body = self._parse_body(response)
        self._raise_for_status(response, body, method, path, entity)
        return self._unwrap(body, method, path)

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        max_retries: int,
        **kwargs
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic for 429 and 5xx errors

        Returns the last response once retries are exhausted; timeouts and
        connection errors are re-raised after the last attempt.
        """
        base_delay = self.settings.freight_api_retry_base_delay

        for attempt in range(max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)

                # Success or client error (4xx except 429)
                if response.status_code < 500 and response.status_code != 429:
                    return response

                if attempt < max_retries:
                    delay = base_delay * (2 ** attempt)  # Exponential backoff
                    logger.warning(
                        f"Freight API request failed with status {response.status_code}, "
                        f"retrying in {delay}s (attempt {attempt + 1}/{max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue

                logger.error(f"Freight API request failed after {max_retries} retries")
                return response

            except httpx.TimeoutException:
                if attempt < max_retries:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(f"Freight API request timeout, retrying in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                logger.error("Freight API request timeout after all retries")
                raise
            except httpx.RequestError as e:
                if attempt < max_retries:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(f"Freight API request error: {e}, retrying in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"Freight API request error after all retries: {e}")
                raise

        # This should never be reached
        raise RuntimeError("Unexpected retry loop exit")

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _error_message(body: Any, default: str) -> str:
        if isinstance(body, dict):
            return body.get("msg") or body.get("detail") or body.get("message") or default
        return default

    def _raise_for_status(
        self,
        response: httpx.Response,
        body: Any,
        method: str,
        path: str,
        entity: Optional[EntityRef],
    ) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        message = self._error_message(body, f"{method} {path} failed with status {status}")
        details = {"path": path, "status_code": status}

        if status in (401, 403):
            # Il servizio remoto resta l'autorità: un rifiuto è un PermissionDenied
            raise AuthorizationException(
                message,
                ErrorCode.UNAUTHORIZED if status == 401 else ErrorCode.FORBIDDEN,
                details,
            )
        if status == 404:
            entity_type, entity_id = entity or ("Resource", None)
            raise NotFoundException(entity_type, entity_id, details)
        if status in (400, 422):
            raise ValidationException(message, ErrorCode.VALIDATION_ERROR, details)

        self.monitor.record_transport_error(f"{method} {path}", message)
        raise TransportException(message, ErrorCode.EXTERNAL_SERVICE_ERROR, details, status)

    def _unwrap(self, body: Any, method: str, path: str) -> Any:
        """Unwrap the {ok, data, msg} envelope; ok=false is a remote failure"""
        if not isinstance(body, dict) or "data" not in body or not ({"ok", "msg"} & body.keys()):
            return body
        if body.get("ok") is False:
            message = self._error_message(body, f"{method} {path} reported failure")
            self.monitor.record_transport_error(f"{method} {path}", message)
            raise TransportException(message, ErrorCode.EXTERNAL_SERVICE_ERROR, {"path": path}, 502)
        return body["data"]
