from typing import Any, Optional
import uuid

TEMP_ID_PREFIX = "tmp-"


def safe_float(value: Any, default: float = 0.0) -> float:
    """Safely convert value to float, returning default if conversion fails"""
    if value is None:
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def generate_temp_id() -> str:
    """ID locale per righe e documenti non ancora confermati dal server"""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex[:12]}"


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


def first_present(data: dict, *keys: str, default: Any = None) -> Any:
    """Return the first value among keys that is neither missing, None nor an empty string"""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return default


def format_document_url(document_path: Optional[str], base_url: str) -> str:
    """
    Costruisce l'URL completo di un documento.

    Args:
        document_path: URL completo o percorso relativo restituito dal server
        base_url: URL base del servizio remoto

    Returns:
        URL assoluto, oppure '#' se il percorso manca
    """
    if not document_path:
        return "#"
    if document_path.startswith("http"):
        return document_path
    return f"{base_url.rstrip('/')}/{document_path.lstrip('/')}"
