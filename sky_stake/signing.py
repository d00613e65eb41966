"""
Out-of-band signing wait for the redirect wallet.

The wallet reports the outcome of a signing request over a push channel.
``await_signature`` turns that message stream into a single awaited
terminal outcome.

Outcomes:
    PENDING → SIGNED         ({"signed": true, "txid" or "txId": ...})
    PENDING → REJECTED       ({"signed": false})
    PENDING → TIMED_OUT      (no terminal message before the deadline)
    PENDING → CHANNEL_ERROR  (receive() raised, including its own timeouts)

Non-terminal messages (opened, expires_in_seconds, pushed, ...) and
messages that are not valid JSON objects are skipped.

The channel is closed on every exit path: terminal message, timeout,
channel error and cancellation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from sky_stake.wallets import PushChannel

logger = logging.getLogger(__name__)

SIGNING_TIMEOUT_S = 120.0


class SignatureOutcome(StrEnum):
    PENDING = "PENDING"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    TIMED_OUT = "TIMED_OUT"
    CHANNEL_ERROR = "CHANNEL_ERROR"


@dataclass
class PendingSignature:
    """One outstanding out-of-band signing request.

    Attributes:
        request_id: Wallet-side identifier of the request.
        created_at: When the wait started.
        deadline: When the wait gives up.
        outcome: PENDING until a terminal outcome is recorded.
        tx_id: Transaction identifier, set only when SIGNED.
        detail: Diagnostic detail for CHANNEL_ERROR.
    """

    request_id: str
    created_at: datetime
    deadline: datetime
    outcome: SignatureOutcome = SignatureOutcome.PENDING
    tx_id: str | None = None
    detail: str | None = None

    @classmethod
    def start(
        cls,
        request_id: str,
        timeout_s: float = SIGNING_TIMEOUT_S,
        now_fn: Callable[[], datetime] | None = None,
    ) -> PendingSignature:
        created_at = (now_fn or _utcnow)()
        return cls(
            request_id=request_id,
            created_at=created_at,
            deadline=created_at + timedelta(seconds=timeout_s),
        )

    @property
    def is_terminal(self) -> bool:
        return self.outcome != SignatureOutcome.PENDING

    def settle(
        self,
        outcome: SignatureOutcome,
        *,
        tx_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        if self.is_terminal:
            raise RuntimeError(
                f"signature {self.request_id} already settled as {self.outcome}"
            )
        self.outcome = outcome
        self.tx_id = tx_id
        self.detail = detail


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_message(raw: str | bytes | Mapping[str, Any]) -> Mapping[str, Any] | None:
    """Decode a push message into a mapping. None if undecodable."""
    if isinstance(raw, Mapping):
        return raw
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def terminal_outcome(
    message: Mapping[str, Any],
) -> tuple[SignatureOutcome, str | None] | None:
    """Classify a decoded message. None for non-terminal messages."""
    signed = message.get("signed")
    if not isinstance(signed, bool):
        return None
    if signed:
        tx_id = message.get("txid") or message.get("txId")
        return SignatureOutcome.SIGNED, tx_id if isinstance(tx_id, str) else None
    return SignatureOutcome.REJECTED, None


async def await_signature(
    channel: PushChannel,
    pending: PendingSignature,
    *,
    timeout_s: float = SIGNING_TIMEOUT_S,
) -> PendingSignature:
    """Wait for one terminal message on ``channel`` and settle ``pending``.

    Args:
        channel: Subscription for pending.request_id.
        pending: The signature being waited on (mutated in place).
        timeout_s: Deadline for a terminal message.

    Returns:
        ``pending``, settled to a terminal outcome.
    """
    deadline = asyncio.timeout(timeout_s)
    try:
        async with deadline:
            while True:
                raw = await channel.receive()
                message = parse_message(raw)
                if message is None:
                    logger.debug("ignoring undecodable message for %s", pending.request_id)
                    continue
                outcome = terminal_outcome(message)
                if outcome is None:
                    logger.debug("non-terminal message for %s: %s", pending.request_id, sorted(message))
                    continue
                pending.settle(outcome[0], tx_id=outcome[1])
                break
    except TimeoutError as exc:
        # Only our own deadline means TIMED_OUT; the channel may time out too.
        if deadline.expired():
            logger.warning("signing request %s timed out after %ss", pending.request_id, timeout_s)
            pending.settle(SignatureOutcome.TIMED_OUT)
        else:
            logger.warning("signing channel for %s timed out: %s", pending.request_id, exc)
            pending.settle(SignatureOutcome.CHANNEL_ERROR, detail=str(exc))
    except Exception as exc:
        logger.warning("signing channel for %s failed: %s", pending.request_id, exc)
        pending.settle(SignatureOutcome.CHANNEL_ERROR, detail=str(exc))
    finally:
        await _close_channel(channel, pending.request_id)

    logger.info("signing request %s settled: %s", pending.request_id, pending.outcome)
    return pending


async def _close_channel(channel: PushChannel, request_id: str) -> None:
    try:
        await channel.close()
    except Exception as exc:
        logger.warning("failed to close signing channel for %s: %s", request_id, exc)
