"""
Configuration settings for the freight shipment core
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class FreightSettings(BaseSettings):
    """Collaborator API, document and reconciliation settings"""

    # Collaborator API
    freight_api_base_url: str = Field(default="http://localhost:8000/api")
    freight_api_token: Optional[str] = Field(default=None)
    freight_api_timeout: float = Field(default=30.0)      # seconds
    freight_api_max_retries: int = Field(default=3)
    freight_api_retry_base_delay: float = Field(default=1.0)  # seconds

    # Accounting sync collaborator
    accounting_api_base_url: str = Field(default="http://localhost:8000/api")

    # Documents
    document_max_size_bytes: int = Field(default=5 * 1024 * 1024)  # 5 MB
    document_allowed_content_types: List[str] = Field(default=["application/pdf"])

    # Reconciliation
    discrepancy_history_size: int = Field(default=200)

    # Listing
    shipments_per_page: int = Field(default=10)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )


@lru_cache()
def get_freight_settings() -> FreightSettings:
    """Get cached freight settings instance"""
    return FreightSettings()
