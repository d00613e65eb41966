"""
Error taxonomy for wallet connection and staking.

Every failure a user can see is a ``StakingError`` carrying a stable
``ErrorCode`` plus a human-readable message. The codes are the stable
API for a UI layer; messages may change.

Categories:
    - Configuration: ConfigurationError (missing destination/issuer/API key).
    - Capability: CapabilityUnavailable (extension not installed or locked).
    - Network: NetworkMismatch (extension on the wrong network).
    - User decisions: SigningDeclined, Rejected.
    - Submission: SubmissionFailed, AddressMismatch.
    - Signing channel: ChannelError, TimedOut.
    - Connection: ResolutionError (redirect handshake), ConnectionFailed.
    - Validation: StakeValidationError and its subclasses.
    - Session: SessionConflict, StakeInProgress.

Read-path transport failures (balance, finality) never surface here:
the ledger adapter logs them and returns a default instead.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable codes for user-reported failures."""

    CONFIGURATION = "CONFIGURATION"
    NOT_INSTALLED = "NOT_INSTALLED"
    LOCKED = "LOCKED"
    NETWORK_MISMATCH = "NETWORK_MISMATCH"
    SIGNING_DECLINED = "SIGNING_DECLINED"
    REJECTED = "REJECTED"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    ADDRESS_MISMATCH = "ADDRESS_MISMATCH"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    TERMS_NOT_ACCEPTED = "TERMS_NOT_ACCEPTED"
    NOT_CONNECTED = "NOT_CONNECTED"
    ZERO_BALANCE = "ZERO_BALANCE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    AMOUNT_EXCEEDS_BALANCE = "AMOUNT_EXCEEDS_BALANCE"
    SESSION_CONFLICT = "SESSION_CONFLICT"
    STAKE_IN_PROGRESS = "STAKE_IN_PROGRESS"


class StakingError(Exception):
    """Base exception for user-reportable staking failures."""

    code: ErrorCode = ErrorCode.SUBMISSION_FAILED

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": str(self.code),
            "message": self.message,
            "details": self.details,
        }


class InvalidTransition(RuntimeError):
    """A session transition not allowed from the current status."""


# =========================================================================
# Configuration and capability
# =========================================================================


class ConfigurationError(StakingError):
    """Required configuration is missing. Blocks the feature, not the app."""

    code = ErrorCode.CONFIGURATION

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message, details={"missing": list(missing or [])})
        self.missing = list(missing or [])


class CapabilityReason(StrEnum):
    NOT_INSTALLED = "NOT_INSTALLED"
    LOCKED = "LOCKED"


class CapabilityUnavailable(StakingError):
    """The extension wallet cannot be used right now.

    Reported once with a remediation link; never retried automatically.
    """

    def __init__(
        self,
        reason: CapabilityReason,
        message: str,
        remediation_url: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"reason": str(reason), "remediation_url": remediation_url},
        )
        self.reason = reason
        self.remediation_url = remediation_url
        self.code = (
            ErrorCode.NOT_INSTALLED
            if reason == CapabilityReason.NOT_INSTALLED
            else ErrorCode.LOCKED
        )


class NetworkMismatch(StakingError):
    """Extension wallet is on a different network. No auto-switch."""

    code = ErrorCode.NETWORK_MISMATCH

    def __init__(self, expected: str, actual: str | None) -> None:
        super().__init__(
            f"Please switch your wallet to {expected}",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


# =========================================================================
# Signing and submission
# =========================================================================


class SigningDeclined(StakingError):
    code = ErrorCode.SIGNING_DECLINED

    def __init__(self, message: str = "Failed to sign terms agreement") -> None:
        super().__init__(message)


class Rejected(StakingError):
    code = ErrorCode.REJECTED

    def __init__(self, message: str = "Transaction was rejected by user") -> None:
        super().__init__(message)


class SubmissionFailed(StakingError):
    code = ErrorCode.SUBMISSION_FAILED

    def __init__(
        self,
        message: str = "Transaction failed: No transaction hash returned",
    ) -> None:
        super().__init__(message)


class AddressMismatch(StakingError):
    code = ErrorCode.ADDRESS_MISMATCH

    def __init__(self, expected: str, actual: str | None) -> None:
        super().__init__(
            "Wallet address mismatch",
            details={"expected": expected, "actual": actual},
        )


class ChannelError(StakingError):
    code = ErrorCode.CHANNEL_ERROR

    def __init__(self, message: str = "Failed to communicate with wallet") -> None:
        super().__init__(message)


class TimedOut(StakingError):
    code = ErrorCode.TIMED_OUT

    def __init__(
        self,
        message: str = "Transaction signing timed out. Please try again.",
    ) -> None:
        super().__init__(message)


class ResolutionError(StakingError):
    """Redirect handshake did not yield an account.

    ``diagnostics`` holds presence flags and key lists only, never the
    resolved object itself.
    """

    code = ErrorCode.RESOLUTION_FAILED

    def __init__(self, message: str, diagnostics: dict[str, Any]) -> None:
        super().__init__(message, details={"diagnostics": diagnostics})
        self.diagnostics = diagnostics


class ConnectionFailed(StakingError):
    """Unexpected wallet failure while connecting."""

    code = ErrorCode.CONNECTION_FAILED


# =========================================================================
# Validation and session
# =========================================================================


class StakeValidationError(StakingError):
    """Stake rejected before any wallet or ledger call."""


class TermsNotAccepted(StakeValidationError):
    code = ErrorCode.TERMS_NOT_ACCEPTED

    def __init__(self) -> None:
        super().__init__("Please accept the terms and conditions to continue")


class NotConnected(StakeValidationError):
    code = ErrorCode.NOT_CONNECTED

    def __init__(self) -> None:
        super().__init__("Please connect your wallet first")


class ZeroBalance(StakeValidationError):
    code = ErrorCode.ZERO_BALANCE

    def __init__(self, currency: str) -> None:
        super().__init__(f"You have no {currency} tokens to stake")


class InvalidAmount(StakeValidationError):
    code = ErrorCode.INVALID_AMOUNT

    def __init__(self, amount: str) -> None:
        super().__init__(
            "Please enter a valid amount greater than 0",
            details={"amount": amount},
        )


class AmountExceedsBalance(StakeValidationError):
    code = ErrorCode.AMOUNT_EXCEEDS_BALANCE

    def __init__(self, amount: Decimal, balance: str, currency: str) -> None:
        super().__init__(
            f"Amount exceeds your balance of {balance} {currency}",
            details={"amount": str(amount), "balance": balance},
        )


class SessionConflict(StakingError):
    code = ErrorCode.SESSION_CONFLICT

    def __init__(self, active_kind: str | None) -> None:
        super().__init__(
            "A wallet is already connected. Log out before connecting another.",
            details={"active_wallet": active_kind},
        )


class StakeInProgress(StakingError):
    code = ErrorCode.STAKE_IN_PROGRESS

    def __init__(self) -> None:
        super().__init__("A stake is already being processed")
