"""Application settings and configuration.

This module defines all configuration options for the Chain Feed service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Chain Feed", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Upstream endpoints
    node_url: str = Field(default="https://restricted.idena.io", alias="IDENA_NODE_URL")
    node_api_key: str = Field(default="idena-restricted-node-key", alias="IDENA_NODE_API_KEY")
    indexer_api_url: str = Field(default="https://api.idena.io", alias="IDENA_INDEXER_API_URL")

    # Posting contract and its protocol history
    contract_address_current: str = Field(
        default="0xC5B35B4Dc4359Cc050D502564E789A374f634fA9",
        alias="CONTRACT_ADDRESS_CURRENT",
    )
    contract_address_legacy: str = Field(
        default="0x8d318630eB62A032d2f8073d74f05cbF7c6C87Ae",
        alias="CONTRACT_ADDRESS_LEGACY",
    )
    make_post_method: str = Field(default="makePost", alias="MAKE_POST_METHOD")
    main_channel_id: str = Field(default="", alias="MAIN_CHANNEL_ID")
    discuss_prefix: str = Field(default="discuss:", alias="DISCUSS_PREFIX")
    legacy_post_id_prefix: str = Field(default="v1:", alias="LEGACY_POST_ID_PREFIX")
    breaking_change_v3_timestamp: int = Field(
        default=1_746_057_600,
        alias="BREAKING_CHANGE_V3_TIMESTAMP",
    )
    breaking_change_v5_timestamp: int = Field(
        default=1_752_710_400,
        alias="BREAKING_CHANGE_V5_TIMESTAMP",
    )
    first_block: int = Field(default=10_135_627, alias="FIRST_BLOCK")

    # Scan drivers
    scan_enabled: bool = Field(default=True, alias="SCAN_ENABLED")
    backward_scan_source: Literal["indexer", "rpc"] = Field(
        default="indexer",
        alias="BACKWARD_SCAN_SOURCE",
    )
    forward_polling_interval_seconds: float = Field(
        default=5.0,
        alias="FORWARD_POLLING_INTERVAL_SECONDS",
    )
    backward_scanning_interval_seconds: float = Field(
        default=0.01,
        alias="BACKWARD_SCANNING_INTERVAL_SECONDS",
    )
    backward_scan_time_budget_seconds: float = Field(
        default=60.0,
        alias="BACKWARD_SCAN_TIME_BUDGET_SECONDS",
    )
    indexer_page_limit: int = Field(default=10, ge=1, alias="INDEXER_PAGE_LIMIT")
    unavailable_backoff_seconds: float = Field(
        default=30.0,
        alias="UNAVAILABLE_BACKOFF_SECONDS",
    )

    # Transport
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")
    rpc_max_retries: int = Field(default=2, ge=0, alias="RPC_MAX_RETRIES")
    rpc_retry_backoff_seconds: float = Field(default=0.5, alias="RPC_RETRY_BACKOFF_SECONDS")
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_recovery_timeout_seconds: float = Field(
        default=60.0,
        alias="CIRCUIT_RECOVERY_TIMEOUT_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_methods: list[str] = Field(default=["GET", "POST", "OPTIONS"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


settings = Settings()
