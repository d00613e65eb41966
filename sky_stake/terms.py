"""
Terms signer — produces the terms signature artifact for a stake.

Extension wallet:
    The wallet signs TERMS_TEXT interactively; its signature is the
    artifact. A refusal (no signature, or a wallet error) is
    SigningDeclined.

Redirect wallet:
    No interactive round-trip here; the user signs the payment itself
    later. The artifact is derived deterministically from TERMS_TEXT,
    the address and the current time in epoch milliseconds, truncated
    to MAX_ARTIFACT_CHARS so it fits the memo.

The artifact is opaque to everything downstream and is embedded in the
payment memo unmodified.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sky_stake.errors import SigningDeclined
from sky_stake.session import WalletKind
from sky_stake.wallets import ExtensionWallet

logger = logging.getLogger(__name__)

TERMS_TEXT = (
    "SKY TOKEN PARTICIPATION AND LENDING AGREEMENT - By signing this message, "
    "I acknowledge that I have read and agree to all terms and conditions of the "
    "SKY TOKEN PARTICIPATION AND LENDING AGREEMENT as displayed on the staking "
    "interface."
)

MAX_ARTIFACT_CHARS = 50


@dataclass(frozen=True)
class TermsSignature:
    artifact: str
    address: str
    signed_at: datetime
    wallet_kind: WalletKind


def derive_artifact(address: str, signed_at: datetime) -> str:
    """Bounded artifact for wallets that sign the payment instead."""
    millis = int(signed_at.timestamp() * 1000)
    return f"{TERMS_TEXT}{address}{millis}"[:MAX_ARTIFACT_CHARS]


async def sign_terms(
    address: str,
    wallet_kind: WalletKind,
    *,
    extension: ExtensionWallet | None = None,
    now_fn: Callable[[], datetime] | None = None,
) -> TermsSignature:
    """Produce the terms signature for ``address``.

    Raises:
        SigningDeclined: The extension wallet refused or failed to sign.
        ValueError: Extension path without an extension capability.
    """
    signed_at = (now_fn or (lambda: datetime.now(UTC)))()

    if wallet_kind == WalletKind.EXTENSION:
        if extension is None:
            raise ValueError("extension wallet capability required")
        try:
            signature = await extension.sign_message(TERMS_TEXT)
        except Exception as exc:
            raise SigningDeclined(f"Failed to sign terms agreement: {exc}") from exc
        if not signature:
            raise SigningDeclined()
        artifact = signature
    else:
        artifact = derive_artifact(address, signed_at)

    logger.info("terms signed for %s via %s wallet", address, wallet_kind)
    return TermsSignature(
        artifact=artifact,
        address=address,
        signed_at=signed_at,
        wallet_kind=wallet_kind,
    )
