"""
sky-stake: wallet connection and stake submission for an XRPL issued token.

Two wallet paths share one explicit session:
- an extension wallet, queried directly
- a redirect wallet, resolved through an OAuth-style handshake and
  signing out of band over a push channel

Every stake carries a terms signature in its payment memos and is
confirmed against the validated ledger.
"""

__version__ = "0.1.0"

from sky_stake.app import StakingApp, create_staking_app
from sky_stake.config import StakingSettings, get_settings
from sky_stake.connection import WalletConnection, describe_resolution
from sky_stake.errors import ErrorCode, StakingError
from sky_stake.orchestrator import (
    StakeReceipt,
    StakeRequest,
    StakingOrchestrator,
    parse_amount,
)
from sky_stake.session import SessionStatus, WalletKind, WalletSession
from sky_stake.signing import PendingSignature, SignatureOutcome, await_signature
from sky_stake.terms import TERMS_TEXT, TermsSignature, sign_terms

__all__ = [
    "TERMS_TEXT",
    "ErrorCode",
    "PendingSignature",
    "SessionStatus",
    "SignatureOutcome",
    "StakeReceipt",
    "StakeRequest",
    "StakingApp",
    "StakingError",
    "StakingOrchestrator",
    "StakingSettings",
    "TermsSignature",
    "WalletConnection",
    "WalletKind",
    "WalletSession",
    "await_signature",
    "create_staking_app",
    "describe_resolution",
    "get_settings",
    "parse_amount",
    "sign_terms",
]
