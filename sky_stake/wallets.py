"""
Wallet capability protocols — the two wallet boundaries.

Both wallets are consumed as black boxes. These protocols describe only
what the connection state machine and the orchestrator call.

Extension wallet (synchronous browser extension, e.g. GemWallet):
    is_installed / get_address / get_network / sign_message / send_payment

Redirect wallet (OAuth2-PKCE style, e.g. Xaman):
    A RedirectHandshake is built by a HandshakeFactory from an API key
    and HandshakeOptions. resolve() either starts a fresh authorization
    or completes one the browser returned from; restore_session() reads
    the SDK's persisted session token. Both yield a resolved mapping:

        {"account": "r...", "signing_handle": <SigningHandle>, ...}

    or None. The mapping may hold other, non-serializable SDK internals;
    callers must read only the keys they need.

    Through the SigningHandle, out-of-band signing requests are created
    and their outcome is delivered over a PushChannel as terminal
    messages {"signed": true, "txid": "..."} (some wallets send "txId")
    or {"signed": false}.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

# Keys read from a resolved redirect session.
ACCOUNT_KEY = "account"
SIGNING_HANDLE_KEY = "signing_handle"

ResolvedSession = Mapping[str, Any]


@runtime_checkable
class ExtensionWallet(Protocol):
    """Browser extension wallet capability."""

    async def is_installed(self) -> bool:
        ...

    async def get_address(self) -> str | None:
        """Active address, or None when the wallet is locked."""
        ...

    async def get_network(self) -> str | None:
        """Active network name ("Mainnet", "Testnet", ...)."""
        ...

    async def sign_message(self, text: str) -> str | None:
        """Signature over ``text``, or None when the user refuses."""
        ...

    async def send_payment(self, payment: Mapping[str, Any]) -> Mapping[str, Any] | None:
        """Submit a payment; the result carries ``hash`` on success."""
        ...


@dataclass(frozen=True)
class HandshakeOptions:
    redirect_target: str
    persist_session: bool = True


@dataclass(frozen=True)
class SigningRequest:
    """An out-of-band signing request created through a SigningHandle.

    Attributes:
        request_id: Identifier used to subscribe to the outcome.
        approval_link: Link that opens the request in the wallet app.
        qr_url: Optional QR image for desktop approval.
    """

    request_id: str
    approval_link: str | None = None
    qr_url: str | None = None


@runtime_checkable
class PushChannel(Protocol):
    """Subscription delivering messages about one signing request."""

    async def receive(self) -> str | bytes | Mapping[str, Any]:
        """Next raw message. Raises when the channel breaks."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class SigningHandle(Protocol):
    async def create_signing_request(self, tx_json: Mapping[str, Any]) -> SigningRequest:
        ...

    async def subscribe(self, request_id: str) -> PushChannel:
        ...


@runtime_checkable
class RedirectHandshake(Protocol):
    async def resolve(self) -> ResolvedSession | None:
        """Start or complete the authorization. Safe once per load."""
        ...

    async def restore_session(self) -> ResolvedSession | None:
        """Session from the persisted token, or None."""
        ...


HandshakeFactory = Callable[[str, HandshakeOptions], RedirectHandshake]
