"""
Application wiring.

Builds the one WalletSession and the objects that share it:

    settings → LedgerAdapter (JSON-RPC over httpx)
             → WalletSession
             → WalletConnection (state machine)
             → StakingOrchestrator

start() is what a page load runs before rendering: report missing
configuration, then resume or restore a redirect-wallet session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sky_stake.browser import BrowserContext
from sky_stake.config import StakingSettings, get_settings
from sky_stake.connection import WalletConnection
from sky_stake.orchestrator import StakingOrchestrator
from sky_stake.session import WalletSession
from sky_stake.wallets import ExtensionWallet, HandshakeFactory
from sky_stake.xrpl.jsonrpc_client import JsonRpcLedgerConnection
from sky_stake.xrpl.ledger import LedgerAdapter

logger = logging.getLogger(__name__)


@dataclass
class StakingApp:
    settings: StakingSettings
    session: WalletSession
    connection: WalletConnection
    orchestrator: StakingOrchestrator
    configuration_issues: list[str]

    async def start(self) -> bool:
        """Run the on-load checks. Returns True if a session was resumed."""
        self.configuration_issues = self.settings.missing_required()
        if self.configuration_issues:
            logger.error(
                "staking misconfigured, missing: %s", ", ".join(self.configuration_issues)
            )
        return await self.connection.resume_on_load()

    def program_info(self) -> dict[str, object]:
        """Static facts the staking page shows next to the form."""
        return {
            "app_name": self.settings.app_name,
            "token_currency": self.settings.token_currency,
            "network": self.settings.expected_network,
            "staking_period_months": self.settings.staking_period_months,
            "reward_description": self.settings.reward_description,
            "wallets": {
                "extension": self.settings.extension_install_url,
                "redirect": self.settings.redirect_wallet_url,
            },
        }


def create_staking_app(
    browser: BrowserContext,
    *,
    settings: StakingSettings | None = None,
    extension: ExtensionWallet | None = None,
    handshake_factory: HandshakeFactory | None = None,
    ledger: LedgerAdapter | None = None,
) -> StakingApp:
    settings = settings or get_settings()
    if ledger is None:
        ledger = LedgerAdapter(
            lambda: JsonRpcLedgerConnection(settings.node_url),
            token_currency=settings.token_currency,
            token_issuer=settings.token_issuer,
            max_attempts=settings.finality_max_attempts,
            poll_interval_s=settings.finality_poll_interval_s,
        )

    session = WalletSession()
    connection = WalletConnection(
        session,
        settings,
        ledger,
        browser,
        extension=extension,
        handshake_factory=handshake_factory,
    )
    return StakingApp(
        settings=settings,
        session=session,
        connection=connection,
        orchestrator=StakingOrchestrator(connection),
        configuration_issues=settings.missing_required(),
    )
