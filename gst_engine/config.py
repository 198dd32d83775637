"""
Engine configuration.

All settings can be overridden through environment variables prefixed
with ``GST_ENGINE_`` (for example ``GST_ENGINE_DEFAULT_TAX_RATE=12``) or a
local ``.env`` file.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler


class Settings(BaseSettings):
    """Runtime settings shared by every engine component."""

    model_config = SettingsConfigDict(
        env_prefix="GST_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Tax
    default_tax_rate: Decimal = Field(
        default=Decimal("18"),
        ge=0,
        le=100,
        description="GST rate (percent) applied when a line item carries no rate",
    )
    unknown_jurisdiction_code: str = Field(
        default="99",
        min_length=2,
        max_length=2,
        description="Code used for buyers whose state cannot be resolved",
    )
    default_hsn_code: str = Field(
        default="9999",
        description="Classification code for items with no known category",
    )

    # Document numbering
    sequence_width: int = Field(
        default=4,
        ge=1,
        le=12,
        description="Zero-padding width of formatted document numbers",
    )
    sequence_start: int = Field(
        default=1,
        ge=1,
        le=999999,
        description="First number issued for a new tenant/kind sequence",
    )
    sequence_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts against the counter store before giving up",
    )
    sequence_retry_wait_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Initial back-off between counter store attempts",
    )

    # Batch execution
    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Worker threads per batch run",
    )
    step_timeout_seconds: Optional[float] = Field(
        default=30.0,
        gt=0,
        description="Timeout for each fetch/build/persist step (None disables)",
    )

    # Document defaults
    invoice_due_days: int = Field(default=30, ge=0)
    default_courier_service: str = Field(default="INDIA_POST")
    default_service_type: str = Field(default="STANDARD")
    default_parcel_weight_kg: Decimal = Field(default=Decimal("1.0"), gt=0)


def get_settings() -> Settings:
    """Factory function to get settings instance."""
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Route engine logs through a rich console handler."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
