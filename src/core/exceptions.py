"""
Sistema di gestione errori centralizzato per il core spedizioni
"""
from abc import ABC
from typing import Optional, Dict, Any
from enum import Enum

class ErrorCode(Enum):
    """Codici errore standardizzati"""
    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
    NO_ITEMS = "NO_ITEMS"
    INVALID_ITEM = "INVALID_ITEM"
    DOCUMENT_REJECTED = "DOCUMENT_REJECTED"

    # Business logic errors
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    COST_LOCKED_BY_ITEMS = "COST_LOCKED_BY_ITEMS"

    # Not found errors
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"

    # Infrastructure errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"

    # Authentication/Authorization errors
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    SHIPMENT_LOCKED = "SHIPMENT_LOCKED"

    # Reconciliation
    RECONCILIATION_DISCREPANCY = "RECONCILIATION_DISCREPANCY"

class BaseApplicationException(Exception, ABC):
    """Base exception per l'applicazione"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400
    ):
        self.message = message
        self.error_code = error_code.value
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Converte l'eccezione in dizionario da mostrare all'utente"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code,
            "retryable": self.retryable
        }

class DomainException(BaseApplicationException):
    """Eccezioni del dominio business"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 400)

class ValidationException(DomainException):
    """Errori di validazione, sollevati prima di qualsiasi chiamata di rete"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)

    @property
    def field(self) -> Optional[str]:
        """Campo che ha causato l'errore, se noto"""
        return self.details.get("field")

class BusinessRuleException(DomainException):
    """Violazione regole business"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)

class InvalidTransitionException(BusinessRuleException):
    """Transizione di stato non presente nel grafo"""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Invalid status transition: {current} -> {target}",
            ErrorCode.INVALID_STATUS_TRANSITION,
            {"current_status": current, "target_status": target}
        )

class NotFoundException(BaseApplicationException):
    """Entità non trovata"""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if entity_id is not None:
            message = f"{entity_type} with id '{entity_id}' not found"
        else:
            message = f"{entity_type} not found"

        error_details = details or {}
        if entity_id is not None:
            error_details["entity_id"] = entity_id
        error_details["entity_type"] = entity_type

        super().__init__(
            message,
            ErrorCode.ENTITY_NOT_FOUND,
            error_details,
            404
        )

    @property
    def entity_type(self) -> str:
        return self.details["entity_type"]

    @property
    def entity_id(self) -> Any:
        return self.details.get("entity_id")

class InfrastructureException(BaseApplicationException):
    """Errori di infrastruttura"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500
    ):
        super().__init__(message, error_code, details, status_code)

class TransportException(InfrastructureException):
    """
    Errore di rete, timeout o risposta non-2xx del servizio remoto.
    Transitorio: l'utente può ripetere la stessa azione.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NETWORK_ERROR,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 503
    ):
        super().__init__(message, error_code, details, status_code)

class AuthenticationException(BaseApplicationException):
    """Errori di autenticazione"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 401)

class AuthorizationException(BaseApplicationException):
    """Errori di autorizzazione (pre-flight o rifiuto del servizio remoto)"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details, 403)


PermissionDenied = AuthorizationException


# Factory per creare eccezioni specifiche
class ExceptionFactory:
    """Factory per creare eccezioni specifiche"""

    @staticmethod
    def shipment_not_found(shipment_id: Any) -> NotFoundException:
        return NotFoundException("Shipment", shipment_id)

    @staticmethod
    def document_not_found(document_id: Any) -> NotFoundException:
        return NotFoundException("Document", document_id)

    @staticmethod
    def required_field_missing(field_name: str) -> ValidationException:
        return ValidationException(
            f"Required field '{field_name}' is missing",
            ErrorCode.REQUIRED_FIELD_MISSING,
            {"field": field_name}
        )

    @staticmethod
    def no_items() -> ValidationException:
        return ValidationException(
            "A shipment needs at least one item",
            ErrorCode.NO_ITEMS,
            {"field": "items"}
        )

    @staticmethod
    def shipment_locked(shipment_id: Any, status: str) -> AuthorizationException:
        return AuthorizationException(
            "A delivered or cancelled shipment cannot be modified",
            ErrorCode.SHIPMENT_LOCKED,
            {"shipment_id": shipment_id, "status": status}
        )

    @staticmethod
    def forbidden(action: str, role: str) -> AuthorizationException:
        return AuthorizationException(
            f"Role '{role}' is not allowed to {action}",
            ErrorCode.FORBIDDEN,
            {"action": action, "role": role}
        )

    @staticmethod
    def cost_locked(item_count: int) -> BusinessRuleException:
        return BusinessRuleException(
            "Shipping cost is derived from the items and cannot be edited directly",
            ErrorCode.COST_LOCKED_BY_ITEMS,
            {"field": "shipping_cost", "item_count": item_count}
        )

    @staticmethod
    def document_rejected(filename: str, reason: str) -> ValidationException:
        return ValidationException(
            f"Document '{filename}' rejected: {reason}",
            ErrorCode.DOCUMENT_REJECTED,
            {"field": "document", "filename": filename, "reason": reason}
        )
