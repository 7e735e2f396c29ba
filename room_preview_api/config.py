"""
Configuration module for the Room Preview application.

Loads environment variables into an explicit configuration object that is
constructed once at startup and handed to every client that needs it.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from room_preview_api.errors import ConfigurationError


class Config(BaseModel):
    """Application configuration loaded from environment variables."""

    # Asset store (Google Cloud Storage)
    GCS_PROJECT: Optional[str] = None
    GCS_BUCKET: str = ""
    ASSET_ROOT_FOLDER: str = "room-preview"

    # Shopify Storefront catalog
    SHOPIFY_STORE_DOMAIN: str = ""
    SHOPIFY_STOREFRONT_TOKEN: str = ""
    SHOPIFY_API_VERSION: str = "2024-01"
    CATALOG_PAGE_SIZE: int = 80

    # Vision model
    OPENAI_API_KEY: str = ""
    VISION_MODEL: str = "gpt-4.1-mini"

    # Generation backend (Replicate)
    REPLICATE_API_TOKEN: str = ""
    REPLICATE_MODEL: str = ""
    GENERATION_POLL_INTERVAL: float = 1.8
    GENERATION_MAX_WAIT: float = 300.0
    GENERATION_MAX_POLLS: int = 200

    # Service
    HTTP_TIMEOUT: float = 60.0
    PORT: int = 10000
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"

    @classmethod
    def from_env(cls) -> "Config":
        """Build a Config from the process environment (and a .env file if present)."""
        load_dotenv()
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name)
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls(**values)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def catalog_endpoint(self) -> str:
        return f"https://{self.SHOPIFY_STORE_DOMAIN}/api/{self.SHOPIFY_API_VERSION}/graphql.json"

    def missing_required(self) -> list[str]:
        """Names of the external-service credentials that are not set."""
        required = [
            "GCS_BUCKET",
            "SHOPIFY_STORE_DOMAIN",
            "SHOPIFY_STOREFRONT_TOKEN",
            "OPENAI_API_KEY",
            "REPLICATE_API_TOKEN",
            "REPLICATE_MODEL",
        ]
        return [name for name in required if not getattr(self, name)]

    def validate_required(self) -> None:
        """Validate that every external-service credential is present."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
