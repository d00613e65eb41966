"""
XRPL boundary for SKY token staking.

Public API:

    Pure layer (no I/O):
        - ``build_payment()`` — token Payment carrying the terms memos.
        - ``PaymentRequest`` — result type, rendered for either wallet.
        - Memo utilities: ``build_terms_memos``, ``to_hex``, ``from_hex``.
        - ``encode_currency`` — 3-char or 160-bit hex currency codes.

    Impure layer (network I/O):
        - ``LedgerAdapter.get_balance()`` — token balance, never raises.
        - ``LedgerAdapter.wait_for_finality()`` — bounded validation polling.

    Protocols (for dependency injection):
        - ``LedgerConnection`` — request/response session with a node.
        - ``JsonRpcTransport`` — injectable HTTP transport.

    Concrete implementations:
        - ``JsonRpcLedgerConnection`` — JSON-RPC LedgerConnection.
        - ``HttpxTransport`` — default httpx-based transport.
"""

from sky_stake.xrpl.client import (
    AccountLinesResult,
    LedgerConnection,
    TrustLine,
    TxStatusResult,
)
from sky_stake.xrpl.jsonrpc_client import JsonRpcLedgerConnection
from sky_stake.xrpl.ledger import (
    FINALITY_MAX_ATTEMPTS,
    FINALITY_POLL_INTERVAL_S,
    LedgerAdapter,
    advisory_read,
)
from sky_stake.xrpl.memo import (
    LABEL_MEMO_TYPE,
    MAX_MEMO_BYTES,
    TERMS_LABEL,
    TERMS_MEMO_TYPE,
    build_terms_memos,
    from_hex,
    to_hex,
)
from sky_stake.xrpl.transport import HttpxTransport, JsonRpcTransport
from sky_stake.xrpl.tx import PaymentRequest, build_payment, encode_currency

__all__ = [
    "AccountLinesResult",
    "FINALITY_MAX_ATTEMPTS",
    "FINALITY_POLL_INTERVAL_S",
    "HttpxTransport",
    "JsonRpcLedgerConnection",
    "JsonRpcTransport",
    "LABEL_MEMO_TYPE",
    "LedgerAdapter",
    "LedgerConnection",
    "MAX_MEMO_BYTES",
    "PaymentRequest",
    "TERMS_LABEL",
    "TERMS_MEMO_TYPE",
    "TrustLine",
    "TxStatusResult",
    "advisory_read",
    "build_payment",
    "build_terms_memos",
    "encode_currency",
    "from_hex",
    "to_hex",
]
