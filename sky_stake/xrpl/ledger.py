"""
Ledger adapter — balance reads and finality polling.

Both operations are advisory reads. Their failure policy is fixed and
named here rather than left to scattered exception handlers:

    advisory_read:
        Any transport or parsing failure is logged at WARNING and turned
        into the operation's default (balance "0", finality False). The
        caller cannot tell "no balance" from "node unreachable"; both
        mean "unknown, show zero, allow retry via reconnect".

Every call opens its own LedgerConnection and releases it on every exit
path, including failures inside connect().

Finality polling:
    At most FINALITY_MAX_ATTEMPTS ``tx`` queries, FINALITY_POLL_INTERVAL_S
    apart (no sleep after the last attempt). txnNotFound is expected
    while the transaction is not yet indexed and is not a failure; neither
    is a single failed query. Failure to connect ends polling with False.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sky_stake.xrpl.client import LedgerConnection
from sky_stake.xrpl.tx import encode_currency

logger = logging.getLogger(__name__)

T = TypeVar("T")

FINALITY_MAX_ATTEMPTS = 10
FINALITY_POLL_INTERVAL_S = 1.0

# Upper bound on account_lines pages followed for one balance read.
MAX_ACCOUNT_LINES_PAGES = 10

# Defaults returned under the advisory_read policy.
BALANCE_ON_ERROR = "0"
FINALITY_ON_ERROR = False


def advisory_read(operation: str, exc: BaseException, default: T) -> T:
    """Apply the advisory_read policy: log the failure, return the default."""
    logger.warning("%s failed, using %r: %s", operation, default, exc)
    return default


class LedgerAdapter:
    """Balance and finality reads for one configured token.

    Args:
        connection_factory: Returns a fresh, unconnected LedgerConnection.
        token_currency: Currency code of the tracked token.
        token_issuer: Issuer account of the tracked token.
        max_attempts: Finality attempt ceiling.
        poll_interval_s: Delay between finality attempts.
        sleep: Injectable sleep coroutine (tests pass a recorder).
    """

    def __init__(
        self,
        connection_factory: Callable[[], LedgerConnection],
        *,
        token_currency: str,
        token_issuer: str,
        max_attempts: int = FINALITY_MAX_ATTEMPTS,
        poll_interval_s: float = FINALITY_POLL_INTERVAL_S,
        sleep: Callable[[float], Awaitable[object]] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {max_attempts}")
        self._connection_factory = connection_factory
        self._currency = token_currency
        self._issuer = token_issuer
        self._max_attempts = max_attempts
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep or asyncio.sleep

    async def get_balance(self, address: str) -> str:
        """Return the token balance of ``address`` as a decimal string.

        Never raises. Returns "0" when no matching trust line exists or
        when anything goes wrong on the way.
        """
        connection = self._connection_factory()
        try:
            await connection.connect()
            return await self._find_balance(connection, address)
        except Exception as exc:
            return advisory_read(f"balance query for {address}", exc, BALANCE_ON_ERROR)
        finally:
            await _release(connection)

    async def wait_for_finality(self, tx_id: str) -> bool:
        """Poll until ``tx_id`` is in a validated ledger.

        Returns True on the first validated observation, False once the
        attempts are exhausted or the node cannot be reached.
        """
        connection = self._connection_factory()
        try:
            await connection.connect()
        except Exception as exc:
            await _release(connection)
            return advisory_read(f"finality poll for {tx_id}", exc, FINALITY_ON_ERROR)

        try:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    status = await connection.tx(tx_id)
                except Exception as exc:
                    logger.debug("tx query attempt %d for %s failed: %s", attempt, tx_id, exc)
                else:
                    if status.validated:
                        logger.info(
                            "transaction %s validated in ledger %s (%s)",
                            tx_id,
                            status.ledger_index,
                            status.engine_result,
                        )
                        return True
                if attempt < self._max_attempts:
                    await self._sleep(self._poll_interval_s)

            logger.warning(
                "transaction %s not validated after %d attempts", tx_id, self._max_attempts
            )
            return FINALITY_ON_ERROR
        finally:
            await _release(connection)

    async def _find_balance(self, connection: LedgerConnection, address: str) -> str:
        currencies = {self._currency, encode_currency(self._currency)}
        marker: object | None = None

        for _ in range(MAX_ACCOUNT_LINES_PAGES):
            page = await connection.account_lines(
                address, peer=self._issuer or None, marker=marker
            )
            if not page.found:
                logger.info(
                    "no trust lines for %s (%s)", address, page.error_code or "not found"
                )
                return BALANCE_ON_ERROR
            for line in page.lines:
                if line.currency in currencies and line.account == self._issuer:
                    return line.balance
            if page.marker is None:
                break
            marker = page.marker

        return BALANCE_ON_ERROR


async def _release(connection: LedgerConnection) -> None:
    try:
        await connection.close()
    except Exception as exc:
        logger.warning("failed to close ledger connection: %s", exc)
