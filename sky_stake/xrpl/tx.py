"""
XRPL token payment builder for stake submissions.

Builds the canonical issued-currency Payment that carries the terms
signature memos. This is the "transaction recipe" — pure, deterministic,
no secrets, no network calls. Sequence, Fee and LastLedgerSequence are
filled in by the wallet at signing time and are NOT included here.

The builder enforces:
    - amount > 0
    - non-empty destination, currency and issuer
    - exactly two memo entries (see memo.py)

Two renderings of the same request are produced, one per wallet kind:
    - to_tx_json(): XRPL JSON (PascalCase), for redirect signing requests.
    - to_extension_spec(): camelCase payment spec for the extension wallet.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sky_stake.xrpl.memo import build_terms_memos


def encode_currency(code: str) -> str:
    """Return the ledger form of a currency code.

    Three-character codes are used as-is; longer codes become the
    40-hex-char (160-bit) form, right-padded with zeros.
    """
    if len(code) == 3:
        return code
    raw = code.encode("utf-8")
    if len(raw) > 20:
        raise ValueError(f"currency code longer than 20 bytes: {code!r}")
    return raw.hex().upper().ljust(40, "0")


@dataclass(frozen=True)
class PaymentRequest:
    """A structurally valid token transfer carrying the terms memos.

    Attributes:
        amount: Decimal string value of the transfer.
        destination: Staking destination account.
        currency: Currency code in ledger form.
        issuer: Token issuer account.
        memos: XRPL ``Memos`` array (two entries).
        account: Sending account, when known.
    """

    amount: str
    destination: str
    currency: str
    issuer: str
    memos: tuple[dict[str, dict[str, str]], ...]
    account: str | None = None

    def amount_object(self) -> dict[str, str]:
        return {
            "currency": self.currency,
            "value": self.amount,
            "issuer": self.issuer,
        }

    def to_tx_json(self) -> dict[str, Any]:
        """XRPL JSON transaction for an out-of-band signing request."""
        tx: dict[str, Any] = {"TransactionType": "Payment"}
        if self.account is not None:
            tx["Account"] = self.account
        tx["Destination"] = self.destination
        tx["Amount"] = self.amount_object()
        tx["Memos"] = [
            {"Memo": dict(entry["Memo"])} for entry in self.memos
        ]
        return tx

    def to_extension_spec(self) -> dict[str, Any]:
        """Payment spec in the extension wallet's ``sendPayment`` shape."""
        return {
            "amount": self.amount_object(),
            "destination": self.destination,
            "memos": [
                {
                    "memo": {
                        "memoType": entry["Memo"]["MemoType"],
                        "memoData": entry["Memo"]["MemoData"],
                    }
                }
                for entry in self.memos
            ],
        }


def build_payment(
    amount: Decimal,
    destination: str,
    currency: str,
    issuer: str,
    signature_artifact: str,
    *,
    account: str | None = None,
) -> PaymentRequest:
    """Build the stake payment for ``amount`` of ``currency``.

    Args:
        amount: Positive token amount.
        destination: Staking destination account.
        currency: Token currency code (3-char or longer).
        issuer: Token issuer account.
        signature_artifact: Opaque terms signature, embedded unmodified.
        account: Sending account. Omitted from tx JSON when None.

    Returns:
        PaymentRequest ready for either wallet path.

    Raises:
        ValueError: If amount is not positive.
        ValueError: If destination, currency, issuer or artifact is empty.
        ValueError: If the memos exceed the memo size limit.
    """
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"amount must be positive, got: {amount}")
    if not destination:
        raise ValueError("destination must be non-empty")
    if not currency:
        raise ValueError("currency must be non-empty")
    if not issuer:
        raise ValueError("issuer must be non-empty")

    memos = build_terms_memos(signature_artifact)

    return PaymentRequest(
        amount=format(amount, "f"),
        destination=destination,
        currency=encode_currency(currency),
        issuer=issuer,
        memos=tuple(memos),
        account=account,
    )
