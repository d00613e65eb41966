"""Configuration settings for SKY token staking."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Query parameters an OAuth-style approver appends when it sends the user back.
DEFAULT_COMPLETION_MARKERS = ["code", "state", "oauth_token"]


class StakingSettings(BaseSettings):
    """Staking settings loaded from ``SKY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SKY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger
    node_url: str = "https://xrplcluster.com/"
    network: Literal["mainnet", "testnet"] = "mainnet"

    # Token
    token_currency: str = "SKY"
    token_issuer: str = ""  # Required - issuer account of the staked token

    # Staking recipient (Pure Sky Registry)
    staking_address: str = ""  # Required - destination of stake payments

    # Redirect wallet (Xaman / Xumm OAuth2 PKCE)
    redirect_api_key: str = ""
    redirect_target: str = "http://localhost:5173"
    completion_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLETION_MARKERS)
    )
    signing_timeout_s: float = 120.0

    # Finality polling
    finality_max_attempts: int = 10
    finality_poll_interval_s: float = 1.0

    # Wallet landing pages
    extension_install_url: str = "https://gemwallet.app"
    redirect_wallet_url: str = "https://xaman.app"

    # Program
    staking_period_months: int = 6
    reward_description: str = "PureSky ISO certified carbon credits"
    app_name: str = "SKY Token Staking - Pure Sky Registry"

    @property
    def expected_network(self) -> str:
        """Network name as reported by the extension wallet."""
        return "Mainnet" if self.network == "mainnet" else "Testnet"

    def missing_required(self) -> list[str]:
        """Names of settings that block staking when unset."""
        missing = []
        if not self.staking_address:
            missing.append("staking_address")
        if not self.token_issuer:
            missing.append("token_issuer")
        return missing


@lru_cache
def get_settings() -> StakingSettings:
    """Get cached settings instance."""
    return StakingSettings()
