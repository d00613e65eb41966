"""
Staking orchestrator — one stake attempt, end to end.

One call to stake() does:
    1. Validate: terms accepted, wallet connected, non-zero balance,
       destination and issuer configured, 0 < amount <= balance.
       Nothing below runs if any check fails.
    2. Sign the terms (terms.py). SigningDeclined propagates as-is.
    3. Build the payment (xrpl/tx.py).
    4. Dispatch by wallet kind:
         extension — re-check installed/address/network, send_payment(),
                     require a hash.
         redirect  — create a signing request, navigate to its approval
                     link on mobile, wait for the push-channel outcome.
    5. Report success (on_submitted callback) as soon as the tx id exists.
    6. Poll for finality (advisory).
    7. Refresh the balance (best-effort).

Once a transaction id exists, nothing raises: finality and balance are
advisory and a stake that reached the ledger is never reported failed.

Only one stake runs at a time per orchestrator (StakeInProgress).
If the session is logged out while a stake is in flight, its late
results are returned with ``discarded=True`` and applied nowhere.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sky_stake.browser import is_mobile_user_agent
from sky_stake.config import StakingSettings
from sky_stake.connection import WalletConnection
from sky_stake.errors import (
    AddressMismatch,
    AmountExceedsBalance,
    CapabilityReason,
    CapabilityUnavailable,
    ChannelError,
    ConfigurationError,
    InvalidAmount,
    NetworkMismatch,
    NotConnected,
    Rejected,
    StakeInProgress,
    StakingError,
    SubmissionFailed,
    TermsNotAccepted,
    TimedOut,
    ZeroBalance,
)
from sky_stake.session import WalletKind, WalletSession
from sky_stake.signing import PendingSignature, SignatureOutcome, await_signature
from sky_stake.terms import TermsSignature, sign_terms
from sky_stake.wallets import SigningHandle
from sky_stake.xrpl.tx import PaymentRequest, build_payment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StakeRequest:
    """One submission attempt. Dropped once the attempt ends."""

    amount: Decimal
    amount_text: str
    terms_signature: TermsSignature
    destination: str
    token_currency: str
    token_issuer: str


@dataclass(frozen=True)
class StakeReceipt:
    """Outcome of a stake that reached the ledger.

    Attributes:
        tx_id: Transaction identifier returned by the wallet.
        amount: Staked amount as sent.
        wallet_kind: Wallet that submitted the payment.
        validated: Finality result; None when not polled.
        balance_after: Refreshed balance; None when not refreshed.
        discarded: The session was torn down before the stake finished.
    """

    tx_id: str
    amount: str
    wallet_kind: WalletKind
    validated: bool | None = None
    balance_after: str | None = None
    discarded: bool = False


def parse_amount(text: str) -> Decimal:
    """Parse a user-entered amount. Raises InvalidAmount if not a positive number."""
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation:
        raise InvalidAmount(str(text)) from None
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(str(text))
    return value


def _decimal_or_zero(text: str) -> Decimal:
    try:
        value = Decimal(text)
    except InvalidOperation:
        return Decimal(0)
    return value if value.is_finite() else Decimal(0)


class StakingOrchestrator:
    """Runs stake attempts against the session of ``connection``.

    Args:
        connection: Wallet connection state machine (owns the session).
        confirm_finality: Poll for validation after submission.
        now_fn: Clock for terms signatures and signing deadlines.
    """

    def __init__(
        self,
        connection: WalletConnection,
        *,
        confirm_finality: bool = True,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.connection = connection
        self.confirm_finality = confirm_finality
        self._now_fn = now_fn
        self._in_flight = False

    @property
    def session(self) -> WalletSession:
        return self.connection.session

    @property
    def settings(self) -> StakingSettings:
        return self.connection.settings

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def configuration_issues(self) -> list[str]:
        return self.settings.missing_required()

    # -----------------------------------------------------------------
    # Validation (pure)
    # -----------------------------------------------------------------

    def validate(self, amount: str, *, terms_accepted: bool) -> Decimal:
        """Check a stake before any side effect. Returns the parsed amount."""
        if not terms_accepted:
            raise TermsNotAccepted()
        if not self.session.is_connected:
            raise NotConnected()

        balance = _decimal_or_zero(self.session.balance)
        if balance == 0:
            raise ZeroBalance(self.settings.token_currency)

        missing = self.configuration_issues()
        if missing:
            raise ConfigurationError(
                "Staking is not configured. Please contact support.", missing
            )

        value = parse_amount(amount)
        if value > balance:
            raise AmountExceedsBalance(value, self.session.balance, self.settings.token_currency)
        return value

    # -----------------------------------------------------------------
    # stake()
    # -----------------------------------------------------------------

    async def stake(
        self,
        amount: str,
        *,
        terms_accepted: bool,
        on_submitted: Callable[[StakeReceipt], object] | None = None,
    ) -> StakeReceipt:
        """Run one stake attempt.

        Raises:
            StakeInProgress: Another stake is still running.
            StakeValidationError / ConfigurationError: Rejected up front.
            SigningDeclined: Extension refused to sign the terms.
            CapabilityUnavailable / AddressMismatch / NetworkMismatch:
                Extension changed state since connecting.
            SubmissionFailed: No transaction identifier came back.
            Rejected / TimedOut / ChannelError: Redirect signing outcome.
        """
        if self._in_flight:
            raise StakeInProgress()
        self._in_flight = True
        try:
            return await self._stake(amount, terms_accepted, on_submitted)
        finally:
            self._in_flight = False

    async def _stake(
        self,
        amount: str,
        terms_accepted: bool,
        on_submitted: Callable[[StakeReceipt], object] | None,
    ) -> StakeReceipt:
        value = self.validate(amount, terms_accepted=terms_accepted)

        session = self.session
        generation = session.generation
        address = session.address
        kind = session.wallet_kind
        handle = session.signing_handle
        assert kind is not None

        signature = await sign_terms(
            address, kind, extension=self.connection.extension, now_fn=self._now_fn
        )
        if session.generation != generation:
            raise NotConnected()

        request = StakeRequest(
            amount=value,
            amount_text=format(value, "f"),
            terms_signature=signature,
            destination=self.settings.staking_address,
            token_currency=self.settings.token_currency,
            token_issuer=self.settings.token_issuer,
        )
        payment = build_payment(
            request.amount,
            request.destination,
            request.token_currency,
            request.token_issuer,
            request.terms_signature.artifact,
            account=address,
        )

        if kind == WalletKind.EXTENSION:
            tx_id = await self._submit_extension(payment, address)
        else:
            assert handle is not None
            tx_id = await self._submit_redirect(payment, handle, generation)

        logger.info(
            "stake of %s %s submitted: %s", request.amount_text, request.token_currency, tx_id
        )
        receipt = StakeReceipt(tx_id=tx_id, amount=request.amount_text, wallet_kind=kind)

        if session.generation != generation:
            logger.info("session gone before stake %s finished, discarding", tx_id)
            return replace(receipt, discarded=True)

        if on_submitted is not None:
            try:
                on_submitted(receipt)
            except Exception:
                logger.exception("on_submitted callback failed for %s", tx_id)

        return await self._after_submission(receipt, generation)

    async def _after_submission(self, receipt: StakeReceipt, generation: int) -> StakeReceipt:
        validated: bool | None = None
        try:
            if self.confirm_finality:
                validated = await self.connection.ledger.wait_for_finality(receipt.tx_id)
            if self.session.generation != generation:
                return replace(receipt, validated=validated, discarded=True)
            balance_after = await self.connection.refresh_balance()
        except Exception:
            logger.exception("post-submission step failed for %s", receipt.tx_id)
            return replace(receipt, validated=validated)

        return replace(
            receipt,
            validated=validated,
            balance_after=balance_after,
            discarded=self.session.generation != generation,
        )

    # -----------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------

    async def _submit_extension(self, payment: PaymentRequest, address: str) -> str:
        extension = self.connection.extension
        install_url = self.settings.extension_install_url
        if extension is None:
            raise CapabilityUnavailable(
                CapabilityReason.NOT_INSTALLED,
                "Wallet extension is not installed",
                remediation_url=install_url,
            )

        try:
            if not await extension.is_installed():
                raise CapabilityUnavailable(
                    CapabilityReason.NOT_INSTALLED,
                    "Wallet extension is not installed",
                    remediation_url=install_url,
                )
            current = await extension.get_address()
            if current != address:
                raise AddressMismatch(address, current)
            network = await extension.get_network()
            if network != self.settings.expected_network:
                raise NetworkMismatch(self.settings.expected_network, network)

            result = await extension.send_payment(payment.to_extension_spec())
        except StakingError:
            raise
        except Exception as exc:
            raise SubmissionFailed(f"Transaction failed: {exc}") from exc

        tx_hash = result.get("hash") if result else None
        if not isinstance(tx_hash, str) or not tx_hash:
            raise SubmissionFailed()
        return tx_hash

    async def _submit_redirect(
        self,
        payment: PaymentRequest,
        handle: SigningHandle,
        generation: int,
    ) -> str:
        try:
            signing_request = await handle.create_signing_request(payment.to_tx_json())
        except Exception as exc:
            raise SubmissionFailed(f"Failed to create signing request: {exc}") from exc
        if signing_request is None or not signing_request.request_id:
            raise SubmissionFailed("Failed to create signing request")

        if self.session.generation != generation:
            raise NotConnected()

        browser = self.connection.browser
        if signing_request.approval_link and is_mobile_user_agent(browser.user_agent):
            logger.info("opening wallet app for request %s", signing_request.request_id)
            browser.navigate(signing_request.approval_link)

        timeout_s = self.settings.signing_timeout_s
        pending = PendingSignature.start(signing_request.request_id, timeout_s, self._now_fn)
        self.session.attach_signature(pending)
        try:
            try:
                channel = await handle.subscribe(signing_request.request_id)
            except Exception as exc:
                logger.warning("subscribe failed for %s: %s", pending.request_id, exc)
                pending.settle(SignatureOutcome.CHANNEL_ERROR, detail=str(exc))
            else:
                await await_signature(channel, pending, timeout_s=timeout_s)
        finally:
            self.session.detach_signature(pending)

        return _tx_id_from(pending)


def _tx_id_from(pending: PendingSignature) -> str:
    if pending.outcome == SignatureOutcome.SIGNED:
        if not pending.tx_id:
            raise SubmissionFailed()
        return pending.tx_id
    if pending.outcome == SignatureOutcome.REJECTED:
        raise Rejected()
    if pending.outcome == SignatureOutcome.TIMED_OUT:
        raise TimedOut()
    raise ChannelError(
        f"Failed to communicate with wallet: {pending.detail}"
        if pending.detail
        else "Failed to communicate with wallet"
    )
