"""
Wallet session — the single live connection and its status machine.

Status transitions:
    DISCONNECTED → CONNECTING   (connect requested)
    CONNECTING   → CONNECTED    (address resolved)
    CONNECTING   → ERROR        (connect failed)
    ERROR        → DISCONNECTED (error dismissed, or before a new connect)
    any          → DISCONNECTED (logout / reset)

Invariants (checked after every transition):
    - signing_handle is set iff wallet_kind == REDIRECT and status == CONNECTED.
    - error is set iff status == ERROR.
    - address is a classic XRPL address iff status == CONNECTED, else "".
    - pending_signature exists only while CONNECTED.

``generation`` increases on every reset so work started against an
earlier session can tell that its session is gone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sky_stake.errors import InvalidTransition, StakingError
from sky_stake.signing import PendingSignature
from sky_stake.wallets import SigningHandle

# Classic address: "r" + base58 (XRPL alphabet, no 0/O/I/l), 25-35 chars total.
_CLASSIC_ADDRESS_RE = re.compile(r"^r[1-9A-HJ-NP-Za-km-z]{24,34}$")


def is_classic_address(value: object) -> bool:
    return isinstance(value, str) and bool(_CLASSIC_ADDRESS_RE.match(value))


class WalletKind(StrEnum):
    EXTENSION = "extension"
    REDIRECT = "redirect"


class SessionStatus(StrEnum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.DISCONNECTED: frozenset({SessionStatus.CONNECTING}),
    SessionStatus.CONNECTING: frozenset({SessionStatus.CONNECTED, SessionStatus.ERROR}),
    SessionStatus.CONNECTED: frozenset(),
    SessionStatus.ERROR: frozenset({SessionStatus.DISCONNECTED}),
}


@dataclass
class WalletSession:
    """The one live wallet connection.

    Mutate only through the transition methods; they keep the
    invariants in the module docstring.
    """

    address: str = ""
    wallet_kind: WalletKind | None = None
    balance: str = "0"
    signing_handle: SigningHandle | None = None
    status: SessionStatus = SessionStatus.DISCONNECTED
    error: StakingError | None = None
    pending_signature: PendingSignature | None = None
    generation: int = 0

    @property
    def is_connected(self) -> bool:
        return self.status == SessionStatus.CONNECTED

    def short_address(self) -> str:
        if len(self.address) <= 14:
            return self.address
        return f"{self.address[:8]}...{self.address[-6:]}"

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------

    def begin_connecting(self, kind: WalletKind) -> None:
        self._move(SessionStatus.CONNECTING)
        self.wallet_kind = kind

    def mark_connected(
        self,
        address: str,
        balance: str,
        signing_handle: SigningHandle | None = None,
    ) -> None:
        if not is_classic_address(address):
            raise ValueError(f"not a classic XRPL address: {address!r}")
        if (self.wallet_kind == WalletKind.REDIRECT) != (signing_handle is not None):
            raise InvalidTransition(
                f"signing handle required iff wallet is redirect (wallet={self.wallet_kind})"
            )
        self._move(SessionStatus.CONNECTED)
        self.address = address
        self.balance = balance
        self.signing_handle = signing_handle
        self._check()

    def mark_error(self, error: StakingError) -> None:
        self._move(SessionStatus.ERROR)
        self.error = error
        self._check()

    def clear_error(self) -> None:
        self._move(SessionStatus.DISCONNECTED)
        self._clear_fields()
        self._check()

    def reset(self) -> None:
        """Back to DISCONNECTED defaults from any status. Always safe."""
        self.status = SessionStatus.DISCONNECTED
        self._clear_fields()
        self.generation += 1
        self._check()

    def update_balance(self, balance: str) -> None:
        if not self.is_connected:
            raise InvalidTransition(f"cannot set balance while {self.status}")
        self.balance = balance

    def attach_signature(self, pending: PendingSignature) -> None:
        if not self.is_connected or self.wallet_kind != WalletKind.REDIRECT:
            raise InvalidTransition("pending signatures need a connected redirect wallet")
        self.pending_signature = pending

    def detach_signature(self, pending: PendingSignature) -> None:
        if self.pending_signature is pending:
            self.pending_signature = None

    def to_dict(self) -> dict[str, Any]:
        """Display-safe view. Never includes capability objects."""
        return {
            "address": self.address,
            "wallet_kind": str(self.wallet_kind) if self.wallet_kind else None,
            "balance": self.balance,
            "status": str(self.status),
            "error": self.error.to_dict() if self.error else None,
            "has_signing_handle": self.signing_handle is not None,
            "pending_request_id": (
                self.pending_signature.request_id if self.pending_signature else None
            ),
        }

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _move(self, target: SessionStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"{self.status} → {target} is not allowed")
        self.status = target

    def _clear_fields(self) -> None:
        self.address = ""
        self.wallet_kind = None
        self.balance = "0"
        self.signing_handle = None
        self.error = None
        self.pending_signature = None

    def _check(self) -> None:
        connected = self.status == SessionStatus.CONNECTED
        redirect = self.wallet_kind == WalletKind.REDIRECT
        assert (self.signing_handle is not None) == (connected and redirect), self.status
        assert (self.error is not None) == (self.status == SessionStatus.ERROR), self.status
        assert connected == bool(self.address), self.status
        assert connected or self.pending_signature is None, self.status
