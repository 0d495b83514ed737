from datetime import datetime
from typing import Any, List, Optional

from src.models.role import Actor, Role
from src.schemas.shipment_schema import DocumentSchema, ItemSchema, ShipmentSchema
from src.schemas.user_schema import UserSchema

ADMIN = Actor(id=1, role=Role.ADMIN)
DRIVER = Actor(id=7, role=Role.DRIVER)
OTHER_DRIVER = Actor(id=9, role=Role.DRIVER)
ACCOUNTANT = Actor(id=3, role=Role.ACCOUNTANT)
CLIENT = Actor(id=4, role=Role.CLIENT_VIEWER)


def make_item(item_id: Optional[int] = None, description: str = "Pallet", quantity: int = 1,
              weight: float = 10.0, value: float = 100.0) -> ItemSchema:
    return ItemSchema(id=item_id, description=description, quantity=quantity, weight=weight, value=value)


def make_document(document_id: Any, name: Optional[str] = None) -> DocumentSchema:
    return DocumentSchema(id=document_id, name=name or f"doc-{document_id}.pdf", file_content=f"docs/{document_id}.pdf")


def make_shipment(
    shipment_id: int = 1,
    status: str = "pending",
    driver_id: Optional[int] = 7,
    items: Optional[List[ItemSchema]] = None,
    documents: Optional[List[DocumentSchema]] = None,
    **overrides: Any,
) -> ShipmentSchema:
    data = {
        "id": shipment_id,
        "ref_code": f"SHP-{shipment_id:04d}",
        "customer": "Acme Freight",
        "origin_address": "1 Harbor Way, Oakland",
        "origin_lat": 37.80,
        "origin_lng": -122.27,
        "destination_address": "500 Main St, Reno",
        "destination_lat": 39.52,
        "destination_lng": -119.81,
        "driver_id": driver_id,
        "status": status,
        "shipping_cost": 0,
        "items": items if items is not None else [],
        "documents": documents if documents is not None else [],
        "created_at": datetime(2024, 5, shipment_id % 28 + 1, 10, 0),
    }
    data.update(overrides)
    return ShipmentSchema.model_validate(data)


def make_user(user_id: int, firstname: str, role: str = "driver", lastname: str = "Driver") -> UserSchema:
    return UserSchema(id=user_id, firstname=firstname, lastname=lastname, role=role)
