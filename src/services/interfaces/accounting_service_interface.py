from abc import ABC, abstractmethod
from typing import List, Optional

from src.schemas.invoice_schema import AccountingCustomer, InvoiceLine


class IAccountingService(ABC):
    """Accounting-sync collaborator: only the invoice identifier comes back"""

    @abstractmethod
    async def create_invoice(
        self,
        customer: AccountingCustomer,
        lines: List[InvoiceLine],
        shipment_id: Optional[int] = None,
    ) -> str:
        """
        Create an invoice in the external accounting system

        Returns:
            External invoice identifier
        """
        pass
