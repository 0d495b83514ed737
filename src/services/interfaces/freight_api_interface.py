from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from src.schemas.shipment_schema import ShipmentSchema
from src.schemas.user_schema import UserSchema


class IFreightApi(ABC):
    """Contract the shipment core relies on from the remote persistence service"""

    @abstractmethod
    async def list_shipments(
        self,
        status: Optional[str] = None,
        driver: Optional[int] = None,
    ) -> List[ShipmentSchema]:
        """
        List shipment summaries.

        Items and documents may be empty even when they exist; callers must
        not treat them as authoritative.
        """
        pass

    @abstractmethod
    async def get_shipment(self, shipment_id: int) -> ShipmentSchema:
        """Fetch one shipment with items and documents"""
        pass

    @abstractmethod
    async def create_shipment(self, payload: Dict[str, Any]) -> ShipmentSchema:
        """Create a shipment; returns the persisted record with its server id"""
        pass

    @abstractmethod
    async def update_shipment(self, shipment_id: int, payload: Dict[str, Any]) -> Optional[ShipmentSchema]:
        """
        Submit the full record (scalars + items, optional admin_override).

        Only the scalar fields of the response are authoritative; None when
        the collaborator answers without a body.
        """
        pass

    @abstractmethod
    async def delete_shipment(self, shipment_id: int) -> None:
        pass

    @abstractmethod
    async def upload_document(
        self,
        shipment_id: int,
        filename: str,
        content: bytes,
        content_type: str,
    ) -> Dict[str, Any]:
        """
        Upload a single file.

        Returns the raw document descriptor; every field of it is optional.
        """
        pass

    @abstractmethod
    async def delete_document(self, document_id: Union[int, str]) -> None:
        pass

    @abstractmethod
    async def list_drivers(self) -> List[UserSchema]:
        pass
