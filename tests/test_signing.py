"""
Tests for the out-of-band signing wait.

Test plan:
- Terminal messages: signed with txid or txId → SIGNED, signed=false → REJECTED
- Non-terminal and undecodable messages skipped
- JSON text messages decoded
- Timeout → TIMED_OUT when no terminal message arrives
- receive() failure → CHANNEL_ERROR with detail, even when it is a
  TimeoutError raised before the deadline
- Channel closed exactly once on every path, including cancellation
  and a failing close()
- PendingSignature: deadline from timeout, settles only once
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from fakes import FakeChannel
from sky_stake.signing import (
    SIGNING_TIMEOUT_S,
    PendingSignature,
    SignatureOutcome,
    await_signature,
    parse_message,
    terminal_outcome,
)

TX_HASH = "C" * 64
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FailingCloseChannel(FakeChannel):
    async def close(self) -> None:
        self.closed += 1
        raise ConnectionResetError("already gone")


def _pending() -> PendingSignature:
    return PendingSignature.start("req-1", now_fn=lambda: FIXED_NOW)


class TestPendingSignature:
    def test_default_deadline_is_two_minutes(self) -> None:
        pending = _pending()
        assert SIGNING_TIMEOUT_S == 120.0
        assert pending.deadline - pending.created_at == timedelta(seconds=120)
        assert pending.outcome == SignatureOutcome.PENDING
        assert pending.is_terminal is False

    def test_settles_once(self) -> None:
        pending = _pending()
        pending.settle(SignatureOutcome.SIGNED, tx_id=TX_HASH)

        with pytest.raises(RuntimeError, match="already settled"):
            pending.settle(SignatureOutcome.REJECTED)
        assert pending.tx_id == TX_HASH


class TestMessages:
    def test_parse_mapping_passthrough(self) -> None:
        message = {"opened": True}
        assert parse_message(message) is message

    def test_parse_json_text(self) -> None:
        assert parse_message('{"signed": false}') == {"signed": False}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", b"\xff"])
    def test_parse_undecodable(self, raw: str | bytes) -> None:
        assert parse_message(raw) is None

    def test_terminal_signed(self) -> None:
        assert terminal_outcome({"signed": True, "txid": TX_HASH}) == (
            SignatureOutcome.SIGNED,
            TX_HASH,
        )

    def test_terminal_signed_camel_case_txid(self) -> None:
        assert terminal_outcome({"signed": True, "txId": TX_HASH}) == (
            SignatureOutcome.SIGNED,
            TX_HASH,
        )

    def test_terminal_rejected(self) -> None:
        assert terminal_outcome({"signed": False}) == (SignatureOutcome.REJECTED, None)

    @pytest.mark.parametrize(
        "message",
        [{"opened": True}, {"expires_in_seconds": 290}, {"signed": "yes"}, {}],
    )
    def test_non_terminal(self, message: dict) -> None:
        assert terminal_outcome(message) is None


class TestAwaitSignature:
    @pytest.mark.asyncio
    async def test_signed(self) -> None:
        channel = FakeChannel(
            [{"opened": True}, "garbage", {"signed": True, "txid": TX_HASH}]
        )

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.SIGNED
        assert pending.tx_id == TX_HASH
        assert channel.received == 3
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_signed_from_json_text(self) -> None:
        channel = FakeChannel(['{"signed": true, "txid": "%s"}' % TX_HASH])

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.SIGNED
        assert pending.tx_id == TX_HASH

    @pytest.mark.asyncio
    async def test_signed_camel_case_txid(self) -> None:
        channel = FakeChannel([{"opened": True}, {"signed": True, "txId": TX_HASH}])

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.SIGNED
        assert pending.tx_id == TX_HASH
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_rejected(self) -> None:
        channel = FakeChannel([{"expires_in_seconds": 290}, {"signed": False}])

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.REJECTED
        assert pending.tx_id is None
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        channel = FakeChannel([{"opened": True}])

        pending = await await_signature(channel, _pending(), timeout_s=0.05)

        assert pending.outcome == SignatureOutcome.TIMED_OUT
        assert pending.tx_id is None
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_channel_error(self) -> None:
        channel = FakeChannel(then_raise=ConnectionResetError("socket closed"))

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.CHANNEL_ERROR
        assert pending.detail == "socket closed"
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_channel_timeout_is_channel_error(self) -> None:
        channel = FakeChannel(then_raise=TimeoutError("socket read timed out"))

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.CHANNEL_ERROR
        assert pending.detail == "socket read timed out"
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_close_failure_does_not_mask_outcome(self) -> None:
        channel = FailingCloseChannel([{"signed": False}])

        pending = await await_signature(channel, _pending())

        assert pending.outcome == SignatureOutcome.REJECTED
        assert channel.closed == 1

    @pytest.mark.asyncio
    async def test_cancellation_closes_channel(self) -> None:
        channel = FakeChannel()
        pending = _pending()

        task = asyncio.ensure_future(await_signature(channel, pending))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert channel.closed == 1
        assert pending.outcome == SignatureOutcome.PENDING
