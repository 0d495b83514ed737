from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from src.schemas.shipment_schema import ItemSchema


class AccountingCustomer(BaseModel):
    """Dati cliente richiesti dal servizio di contabilità"""
    display_name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class InvoiceLine(BaseModel):
    """Riga fattura: descrizione, quantità e prezzo unitario"""
    description: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)

    @computed_field
    @property
    def amount(self) -> float:
        return self.unit_price * self.quantity

    @classmethod
    def from_item(cls, item: ItemSchema) -> "InvoiceLine":
        return cls(description=item.description, quantity=item.quantity, unit_price=item.value)


class InvoiceRequest(BaseModel):
    customer: AccountingCustomer
    lines: List[InvoiceLine] = Field(..., min_length=1)
    shipment_id: Optional[int] = None
