from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.shipment_status import ShipmentStatus
from src.services.core.tool import generate_temp_id, is_temp_id

# Valore usato dal selettore autisti per "nessun autista"; non viene mai salvato
UNASSIGNED_DRIVER_ID = 99999


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


class Location(BaseModel):
    """Indirizzo con coordinate, sempre valorizzati insieme"""
    address: str = Field(..., min_length=1)
    lat: float
    lng: float

    model_config = ConfigDict(frozen=True)


class ItemSchema(BaseModel):
    """
    Riga di carico di una spedizione.

    Attributes:
        id (Optional[int]): ID assegnato dal server.
        temp_id (Optional[str]): ID temporaneo per righe create lato client, mai inviato al server.
        description (str): Descrizione della merce.
        quantity (int): Quantità; 0 è ammesso solo per le righe segnaposto in modifica.
        weight (float): Peso in libbre.
        value (float): Valore unitario.
    """
    id: Optional[int] = None
    temp_id: Optional[str] = None
    description: str = ""
    quantity: int = Field(default=0, ge=0)
    weight: float = Field(default=0.0, ge=0)
    value: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(extra='ignore')

    @field_validator("description", mode="before")
    @classmethod
    def _description_not_null(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("quantity", "weight", "value", mode="before")
    @classmethod
    def _numbers_not_null(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return 0 if value is None else value

    @property
    def is_placeholder(self) -> bool:
        """A fully empty row kept only while editing"""
        return (
            self.description.strip() == ""
            and self.quantity == 0
            and self.weight == 0
            and self.value == 0
        )

    @property
    def line_total(self) -> float:
        return self.value * self.quantity

    @classmethod
    def placeholder(cls) -> "ItemSchema":
        return cls(temp_id=generate_temp_id())


class DocumentSchema(BaseModel):
    """Documento allegato a una spedizione (es. POD)"""
    id: Union[int, str]
    name: str
    file_content: str = ""
    shipment_id: Optional[int] = None

    model_config = ConfigDict(extra='ignore')

    @property
    def is_temporary(self) -> bool:
        return is_temp_id(self.id)


class ShipmentSchema(BaseModel):
    """
    Spedizione tracciata dal core.

    Le coordinate viaggiano come stringhe verso il servizio remoto ma sono float in memoria.
    Le collezioni items/documents nulle vengono normalizzate a liste vuote.
    """
    id: Optional[int] = None
    ref_code: Optional[str] = None
    customer: str = ""
    client_id: Optional[int] = None
    subclient_id: Optional[int] = None
    subclient_name: Optional[str] = None
    origin_address: Optional[str] = None
    origin_lat: Optional[float] = None
    origin_lng: Optional[float] = None
    destination_address: Optional[str] = None
    destination_lat: Optional[float] = None
    destination_lng: Optional[float] = None
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    shipping_cost: float = 0.0
    items: List[ItemSchema] = Field(default_factory=list)
    documents: List[DocumentSchema] = Field(default_factory=list)
    comments: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    invoice_id: Optional[str] = None

    model_config = ConfigDict(extra='ignore')

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> ShipmentStatus:
        return ShipmentStatus.parse(value)

    @field_validator("items", "documents", mode="before")
    @classmethod
    def _collections_not_null(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator(
        "origin_address", "origin_lat", "origin_lng",
        "destination_address", "destination_lat", "destination_lng",
        "ref_code", "client_id", "subclient_id", "delivery_date",
        mode="before",
    )
    @classmethod
    def _blank_fields(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("driver_id", mode="before")
    @classmethod
    def _unassigned_driver(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and str(value) == str(UNASSIGNED_DRIVER_ID):
            return None
        return value

    @field_validator("shipping_cost", mode="before")
    @classmethod
    def _cost_not_null(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return 0.0 if value is None else value

    @property
    def origin(self) -> Optional[Location]:
        return _location(self.origin_address, self.origin_lat, self.origin_lng)

    @property
    def destination(self) -> Optional[Location]:
        return _location(self.destination_address, self.destination_lat, self.destination_lng)

    @property
    def real_items(self) -> List[ItemSchema]:
        return [item for item in self.items if not item.is_placeholder]

    def scalar_fields(self) -> Dict[str, Any]:
        """Tutti i campi tranne le sotto-collezioni"""
        return self.model_dump(exclude={"items", "documents"})

    def to_payload(self) -> Dict[str, Any]:
        """
        Corpo della PUT/POST verso il servizio remoto: campi scalari + items.
        I documenti viaggiano su un endpoint dedicato e non vengono inviati.
        """
        payload = self.model_dump(
            mode="json",
            exclude={"documents", "driver_name", "created_at", "updated_at"},
        )
        payload["items"] = [
            item.model_dump(mode="json", exclude={"temp_id"}, exclude_none=True)
            for item in self.items
        ]
        for key in ("origin_lat", "origin_lng", "destination_lat", "destination_lng"):
            if payload.get(key) is not None:
                payload[key] = str(payload[key])
        return payload


def _location(address: Optional[str], lat: Optional[float], lng: Optional[float]) -> Optional[Location]:
    if not address or lat is None or lng is None:
        return None
    return Location(address=address, lat=lat, lng=lng)
