"""Shared configuration management for the invoice document core.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_STRICT_STATUS_TRANSITIONS=true
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Currency handling
    default_currency: str = Field(
        default="USD",
        description="Currency code used by the UBL export when the invoice has none",
    )
    crypto_currencies: list[str] = Field(
        default=["USDS", "DAI"],
        description="Currencies settled to a wallet rather than a bank account",
    )

    # Reducer behaviour
    price_precision: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Decimal places used when comparing line item prices and totals",
    )
    strict_status_transitions: bool = Field(
        default=False,
        description="Reject EDIT_STATUS actions outside the status transition table",
    )
    raise_on_rejected_action: bool = Field(
        default=False,
        description="Raise engine errors to the caller instead of only logging them",
    )

    # UBL export
    ubl_customization_id: str = Field(
        default="urn:cen.eu:en16931:2017",
        description="CustomizationID written to exported UBL invoices",
    )
    ubl_unit_code: str = Field(
        default="C62",
        description="UN/ECE Rec 20 unit code for invoiced quantities",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
