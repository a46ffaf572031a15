"""Configuration and environment settings for the settlement engine."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the settlement engine."""

    database_url: str = "sqlite:///settlement.db"
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    log_file: str | None = "logs/settlement.log"

    circle_api_key: str = ""
    circle_entity_secret: str = ""
    circle_base_url: str = "https://api.circle.com"
    circle_fee_level: str = "MEDIUM"

    lifi_base_url: str = "https://li.quest/v1"
    lifi_integrator: str = "settlement-engine"
    lifi_api_key: str | None = None
    swap_slippage: float = 0.005

    bridge_api_url: str | None = None
    chain_rpc_urls: dict[str, str] = {}

    sqs_queue_url: str | None = None
    sqs_endpoint_url: str | None = None
    aws_region: str | None = None

    settlement_chain: str = "ARB-SEPOLIA"
    settlement_symbol: str = "USDC"
    enable_non_usdc_swaps: bool = False
    swap_disabled_chains: list[str] = []
    lp_token_addresses: list[str] = []

    swap_lease_seconds: int = 60
    swap_worker_enabled: bool = True
    swap_worker_interval_seconds: float = 5.0
    swap_worker_batch_size: int = 5

    webhook_replay_window_seconds: int = 0
    webhook_key_cache_ttl_seconds: int = 3600

    http_timeout_seconds: float = 15.0
    http_retries: int = 2

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
