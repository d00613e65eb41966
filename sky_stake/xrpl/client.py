"""
XRPL ledger connection protocol — the network boundary.

Defines the interface the ledger adapter depends on, not a concrete
implementation. This keeps the adapter testable and keeps HTTP details
out of balance and finality logic.

Concrete implementations:
    - JsonRpcLedgerConnection (real, JSON-RPC over httpx)
    - FakeConnection (tests)

The protocol has four methods:
    - connect() / close() — acquire and release the node connection
    - account_lines(account, ...) → AccountLinesResult
    - tx(tx_hash) → TxStatusResult

Both query methods return boring frozen dataclasses. "Expected" ledger
answers (account not found, txnNotFound) are captured in the results;
transport failures raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


# =========================================================================
# Result types
# =========================================================================


@dataclass(frozen=True)
class TrustLine:
    """One trust line of an account, as returned by ``account_lines``.

    Attributes:
        account: The counterparty (issuer) of the line.
        currency: Currency code (3-char ISO-like or 40-char hex).
        balance: Decimal string balance from the account's perspective.
        limit: Trust limit set by the account.
    """

    account: str
    currency: str
    balance: str
    limit: str = "0"


@dataclass(frozen=True)
class AccountLinesResult:
    """Result of one ``account_lines`` page.

    Attributes:
        found: False when the account does not exist in the ledger
            (``actNotFound``) or the node reported an error.
        lines: Trust lines on this page.
        marker: Pagination marker for the next page. None on the last page.
        error_code: Machine-readable node error, None on success.
        detail: Human-readable detail for diagnostics.
    """

    found: bool
    lines: tuple[TrustLine, ...] = field(default_factory=tuple)
    marker: object | None = None
    error_code: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class TxStatusResult:
    """Result of querying a transaction's ledger status.

    Attributes:
        found: Whether the transaction was found at all.
        validated: Whether the transaction is in a validated ledger.
            Only meaningful when found is True.
        ledger_index: Ledger sequence number where the tx was included.
            None if not found or not yet validated.
        engine_result: Final engine result from the ledger metadata.
        error_code: Machine-readable node error, None on success or
            plain txnNotFound.
        detail: Human-readable detail for diagnostics.
    """

    found: bool
    validated: bool = False
    ledger_index: int | None = None
    engine_result: str | None = None
    error_code: str | None = None
    detail: str | None = None


# =========================================================================
# Protocol
# =========================================================================


@runtime_checkable
class LedgerConnection(Protocol):
    """Interface for one request/response session with a ledger node."""

    async def connect(self) -> None:
        ...

    async def account_lines(
        self,
        account: str,
        *,
        peer: str | None = None,
        marker: object | None = None,
    ) -> AccountLinesResult:
        """Query trust lines of ``account`` in the last validated ledger."""
        ...

    async def tx(self, tx_hash: str) -> TxStatusResult:
        """Query the status of a transaction by hash."""
        ...

    async def close(self) -> None:
        """Release the connection. Safe to call when never connected."""
        ...
