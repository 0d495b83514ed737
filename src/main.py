import logging
from typing import Optional

from src.core.monitoring import get_shipment_monitor
from src.core.settings import FreightSettings, get_freight_settings
from src.events.core.event_bus import EventBus
from src.events.runtime import set_event_bus
from src.repository.shipment_store import ShipmentStore
from src.services.external.accounting_client import AccountingClient
from src.services.external.freight_api_client import FreightApiClient
from src.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[FreightSettings] = None) -> None:
    settings = settings or get_freight_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_shipment_service(
    settings: Optional[FreightSettings] = None,
    token: Optional[str] = None,
) -> ShipmentService:
    """
    Composition root: collaborator clients, shared store, event bus and
    monitor wired into one ShipmentService.

    Args:
        settings: overrides the cached environment settings
        token: session bearer token, overrides FREIGHT_API_TOKEN
    """
    settings = settings or get_freight_settings()
    monitor = get_shipment_monitor()

    event_bus = EventBus()
    set_event_bus(event_bus)

    service = ShipmentService(
        api=FreightApiClient(settings=settings, token=token, monitor=monitor),
        store=ShipmentStore(),
        accounting=AccountingClient(settings=settings, token=token),
        event_bus=event_bus,
        monitor=monitor,
        settings=settings,
    )
    logger.info(f"Shipment service ready (API: {settings.freight_api_base_url})")
    return service
