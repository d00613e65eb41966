"""
Tests for WalletConnection — the connection state machine.

All wallet capabilities, the ledger and the browser are fakes.

Test plan:
- Extension: success loads balance, not installed opens the install
  page, locked wallet, wrong network leaves balance untouched with no
  ledger query, unexpected errors wrapped, balance failure is a warning
- Conflicts: connect while CONNECTED/CONNECTING → SessionConflict with
  the session unchanged, retry after ERROR allowed
- Redirect: missing API key fails before any state change, success
  stores the signing handle, missing account → ResolutionError with
  diagnostics, resolve() raising → ResolutionError with exception info
- resume_on_load: markers complete the handshake and are stripped with
  other params kept, consumed markers never resolved twice, resolve
  failure keeps the markers, restore path, restore failure stays
  DISCONNECTED, no redirect support → no-op
- logout: safe when disconnected, clears handle, late connect results
  discarded
- refresh_balance: concurrent calls share one ledger read
"""

import asyncio

import pytest

from fakes import (
    SAMPLE_ACCOUNT,
    FakeBrowser,
    FakeExtension,
    FakeHandshake,
    FakeHandshakeFactory,
    FakeLedger,
    FakeSigningHandle,
    make_settings,
    resolved_session,
)
from sky_stake.connection import WalletConnection, describe_exception, describe_resolution
from sky_stake.errors import (
    CapabilityReason,
    CapabilityUnavailable,
    ConfigurationError,
    ConnectionFailed,
    ErrorCode,
    NetworkMismatch,
    ResolutionError,
    SessionConflict,
)
from sky_stake.session import SessionStatus, WalletKind, WalletSession
from sky_stake.wallets import HandshakeOptions

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

RETURN_URL = "https://stake.example/?ref=abc&code=xyz&state=s1#top"


def _connection(
    *,
    ledger: FakeLedger | None = None,
    browser: FakeBrowser | None = None,
    extension: FakeExtension | None = None,
    handshake: FakeHandshake | None = None,
    **settings: object,
) -> WalletConnection:
    factory = FakeHandshakeFactory(handshake) if handshake is not None else None
    return WalletConnection(
        WalletSession(),
        make_settings(**settings),
        ledger or FakeLedger(),  # type: ignore[arg-type]
        browser or FakeBrowser(),
        extension=extension,
        handshake_factory=factory,
    )


class LogoutDuringBalance(FakeLedger):
    """Logs the session out while its balance read is in flight."""

    connection: WalletConnection

    async def get_balance(self, address: str) -> str:
        self.connection.logout()
        return await super().get_balance(address)


# ---------------------------------------------------------------------------
# Extension wallet
# ---------------------------------------------------------------------------


class TestConnectExtension:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        ledger = FakeLedger(["100"])
        conn = _connection(ledger=ledger, extension=FakeExtension())

        session = await conn.connect_extension()

        assert session.status == SessionStatus.CONNECTED
        assert session.wallet_kind == WalletKind.EXTENSION
        assert session.address == SAMPLE_ACCOUNT
        assert session.balance == "100"
        assert session.signing_handle is None
        assert ledger.balance_calls == [SAMPLE_ACCOUNT]

    @pytest.mark.asyncio
    async def test_not_installed_opens_install_page(self) -> None:
        browser = FakeBrowser()
        conn = _connection(browser=browser, extension=FakeExtension(installed=False))

        with pytest.raises(CapabilityUnavailable) as exc_info:
            await conn.connect_extension()

        assert exc_info.value.reason == CapabilityReason.NOT_INSTALLED
        assert exc_info.value.code == ErrorCode.NOT_INSTALLED
        assert browser.opened == ["https://gemwallet.app"]
        assert conn.session.status == SessionStatus.ERROR
        assert conn.session.error is exc_info.value

    @pytest.mark.asyncio
    async def test_no_extension_capability(self) -> None:
        browser = FakeBrowser()
        conn = _connection(browser=browser)

        with pytest.raises(CapabilityUnavailable):
            await conn.connect_extension()
        assert browser.opened == ["https://gemwallet.app"]

    @pytest.mark.asyncio
    async def test_locked_wallet(self) -> None:
        conn = _connection(extension=FakeExtension(address=None))

        with pytest.raises(CapabilityUnavailable) as exc_info:
            await conn.connect_extension()

        assert exc_info.value.reason == CapabilityReason.LOCKED
        assert "unlock" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_wrong_network_leaves_balance_untouched(self) -> None:
        ledger = FakeLedger(["100"])
        conn = _connection(ledger=ledger, extension=FakeExtension(network="Testnet"))

        with pytest.raises(NetworkMismatch, match="Please switch your wallet to Mainnet"):
            await conn.connect_extension()

        assert conn.session.status == SessionStatus.ERROR
        assert conn.session.balance == "0"
        assert conn.session.address == ""
        assert ledger.balance_calls == []

    @pytest.mark.asyncio
    async def test_testnet_setting(self) -> None:
        conn = _connection(extension=FakeExtension(network="Testnet"), network="testnet")

        session = await conn.connect_extension()

        assert session.is_connected

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self) -> None:
        class BrokenExtension(FakeExtension):
            async def get_network(self) -> str | None:
                raise RuntimeError("extension crashed")

        conn = _connection(extension=BrokenExtension())

        with pytest.raises(ConnectionFailed) as exc_info:
            await conn.connect_extension()

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert conn.session.status == SessionStatus.ERROR

    @pytest.mark.asyncio
    async def test_balance_failure_is_warning(self) -> None:
        ledger = FakeLedger(balance_error=OSError("node down"))
        conn = _connection(ledger=ledger, extension=FakeExtension())

        session = await conn.connect_extension()

        assert session.is_connected
        assert session.balance == "0"
        assert conn.last_warning is not None


class TestConflicts:
    @pytest.mark.asyncio
    async def test_connect_while_connected(self) -> None:
        conn = _connection(
            extension=FakeExtension(),
            handshake=FakeHandshake(resolved=resolved_session()),
        )
        await conn.connect_extension()
        before = conn.session.to_dict()

        with pytest.raises(SessionConflict):
            await conn.connect_redirect()
        with pytest.raises(SessionConflict):
            await conn.connect_extension()

        assert conn.session.to_dict() == before

    @pytest.mark.asyncio
    async def test_connect_while_connecting(self) -> None:
        conn = _connection(extension=FakeExtension())
        conn.session.begin_connecting(WalletKind.REDIRECT)

        with pytest.raises(SessionConflict):
            await conn.connect_extension()
        assert conn.session.status == SessionStatus.CONNECTING
        assert conn.session.wallet_kind == WalletKind.REDIRECT

    @pytest.mark.asyncio
    async def test_retry_after_error(self) -> None:
        extension = FakeExtension(network="Testnet")
        conn = _connection(extension=extension)
        with pytest.raises(NetworkMismatch):
            await conn.connect_extension()

        extension.network = "Mainnet"
        session = await conn.connect_extension()

        assert session.is_connected
        assert session.error is None

    @pytest.mark.asyncio
    async def test_dismiss_error(self) -> None:
        conn = _connection(extension=FakeExtension(address="garbage"))
        with pytest.raises(CapabilityUnavailable):
            await conn.connect_extension()

        conn.dismiss_error()

        assert conn.session.status == SessionStatus.DISCONNECTED
        assert conn.session.error is None


# ---------------------------------------------------------------------------
# Redirect wallet
# ---------------------------------------------------------------------------


class TestConnectRedirect:
    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        conn = _connection(handshake=FakeHandshake(), redirect_api_key="")

        with pytest.raises(ConfigurationError, match="SKY_REDIRECT_API_KEY"):
            await conn.connect_redirect()

        assert conn.session.status == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_no_handshake_support(self) -> None:
        conn = _connection()

        with pytest.raises(ConfigurationError):
            await conn.connect_redirect()
        assert conn.session.status == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_success_stores_handle(self) -> None:
        handle = FakeSigningHandle()
        handshake = FakeHandshake(resolved=resolved_session(handle=handle))
        conn = _connection(ledger=FakeLedger(["250"]), handshake=handshake)

        session = await conn.connect_redirect()

        assert session.status == SessionStatus.CONNECTED
        assert session.wallet_kind == WalletKind.REDIRECT
        assert session.signing_handle is handle
        assert session.balance == "250"
        factory = conn._handshake_factory
        assert isinstance(factory, FakeHandshakeFactory)
        assert factory.calls == [
            ("test-api-key", HandshakeOptions(redirect_target="https://stake.example"))
        ]

    @pytest.mark.asyncio
    async def test_missing_account_reports_diagnostics(self) -> None:
        handshake = FakeHandshake(resolved={"signing_handle": FakeSigningHandle(), "jwt": "t"})
        conn = _connection(handshake=handshake)

        with pytest.raises(ResolutionError) as exc_info:
            await conn.connect_redirect()

        err = exc_info.value
        assert "Failed to get account from redirect wallet. Debug:" in str(err)
        assert err.diagnostics["has_resolved"] is True
        assert err.diagnostics["has_account"] is False
        assert err.diagnostics["has_signing_handle"] is True
        assert err.diagnostics["resolved_keys"] == ["jwt", "signing_handle"]
        assert conn.session.status == SessionStatus.ERROR

    @pytest.mark.asyncio
    async def test_nothing_resolved(self) -> None:
        conn = _connection(handshake=FakeHandshake(resolved=None))

        with pytest.raises(ResolutionError) as exc_info:
            await conn.connect_redirect()
        assert exc_info.value.diagnostics["has_resolved"] is False

    @pytest.mark.asyncio
    async def test_resolve_raises(self) -> None:
        cause = PermissionError("popup blocked")
        conn = _connection(handshake=FakeHandshake(resolve_error=cause))

        with pytest.raises(ResolutionError) as exc_info:
            await conn.connect_redirect()

        err = exc_info.value
        assert err.__cause__ is cause
        assert err.diagnostics["name"] == "PermissionError"
        assert err.diagnostics["message"] == "popup blocked"
        assert "Failed to connect to redirect wallet" in str(err)


class TestDiagnostics:
    def test_resolution_of_object(self) -> None:
        class Resolved:
            def __init__(self) -> None:
                self.account = SAMPLE_ACCOUNT
                self.signing_handle = None
                self._secret = "hidden"

        info = describe_resolution(Resolved())

        assert info["account_valid"] is True
        assert info["has_signing_handle"] is False
        assert info["resolved_keys"] == ["account", "signing_handle"]

    def test_values_never_included(self) -> None:
        info = describe_resolution({"account": SAMPLE_ACCOUNT, "jwt": "secret-token"})
        assert "secret-token" not in repr(info)

    def test_exception_stack_limited(self) -> None:
        def level3() -> None:
            raise ValueError("deep")

        def level2() -> None:
            level3()

        def level1() -> None:
            level2()

        try:
            level1()
        except ValueError as exc:
            info = describe_exception(exc)

        assert info["name"] == "ValueError"
        assert info["stack"].count(" | ") <= 2


# ---------------------------------------------------------------------------
# resume_on_load
# ---------------------------------------------------------------------------


class TestResumeOnLoad:
    @pytest.mark.asyncio
    async def test_markers_complete_handshake_and_are_stripped(self) -> None:
        browser = FakeBrowser(url=RETURN_URL)
        handshake = FakeHandshake(resolved=resolved_session())
        conn = _connection(browser=browser, handshake=handshake)

        assert await conn.resume_on_load() is True

        assert conn.session.is_connected
        assert handshake.resolve_calls == 1
        assert handshake.restore_calls == 0
        assert browser.replaced == ["https://stake.example/?ref=abc#top"]

    @pytest.mark.asyncio
    async def test_consumed_markers_not_resolved_twice(self) -> None:
        browser = FakeBrowser(url=RETURN_URL, apply_replace=False)
        handshake = FakeHandshake(resolved=resolved_session())
        conn = _connection(browser=browser, handshake=handshake)

        assert await conn.resume_on_load() is True
        conn.logout()

        assert await conn.resume_on_load() is False
        assert handshake.resolve_calls == 1
        assert conn.session.status == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_resolve_failure_recorded_not_raised(self) -> None:
        browser = FakeBrowser(url=RETURN_URL)
        conn = _connection(
            browser=browser,
            handshake=FakeHandshake(resolve_error=RuntimeError("state mismatch")),
        )

        assert await conn.resume_on_load() is False

        assert conn.session.status == SessionStatus.ERROR
        assert isinstance(conn.session.error, ResolutionError)
        assert browser.replaced == []

    @pytest.mark.asyncio
    async def test_unusable_resolution_recorded(self) -> None:
        conn = _connection(
            browser=FakeBrowser(url=RETURN_URL),
            handshake=FakeHandshake(resolved={"account": "bogus"}),
        )

        assert await conn.resume_on_load() is False
        assert conn.session.status == SessionStatus.ERROR

    @pytest.mark.asyncio
    async def test_restore_persisted_session(self) -> None:
        handle = FakeSigningHandle()
        handshake = FakeHandshake(restored=resolved_session(handle=handle))
        conn = _connection(handshake=handshake)

        assert await conn.resume_on_load() is True

        assert conn.session.signing_handle is handle
        assert handshake.resolve_calls == 0
        assert handshake.restore_calls == 1

    @pytest.mark.asyncio
    async def test_nothing_to_restore(self) -> None:
        conn = _connection(handshake=FakeHandshake(restored=None))

        assert await conn.resume_on_load() is False
        assert conn.session.status == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_restore_failure_stays_disconnected(self) -> None:
        conn = _connection(handshake=FakeHandshake(restore_error=OSError("storage blocked")))

        assert await conn.resume_on_load() is False
        assert conn.session.status == SessionStatus.DISCONNECTED
        assert conn.session.error is None

    @pytest.mark.asyncio
    async def test_no_redirect_support(self) -> None:
        conn = _connection(browser=FakeBrowser(url=RETURN_URL), redirect_api_key="")

        assert await conn.resume_on_load() is False
        assert conn.session.status == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_already_connected_is_noop(self) -> None:
        handshake = FakeHandshake(restored=resolved_session())
        conn = _connection(extension=FakeExtension(), handshake=handshake)
        await conn.connect_extension()

        assert await conn.resume_on_load() is False
        assert handshake.restore_calls == 0


# ---------------------------------------------------------------------------
# logout and balance refresh
# ---------------------------------------------------------------------------


class TestLogout:
    def test_safe_when_disconnected(self) -> None:
        conn = _connection()
        conn.logout()
        assert conn.session.status == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_clears_handle(self) -> None:
        conn = _connection(handshake=FakeHandshake(resolved=resolved_session()))
        await conn.connect_redirect()

        conn.logout()

        assert conn.session.signing_handle is None
        assert conn.session.address == ""
        assert conn.session.wallet_kind is None

    @pytest.mark.asyncio
    async def test_late_connect_result_discarded(self) -> None:
        ledger = LogoutDuringBalance(["100"])
        conn = _connection(ledger=ledger, extension=FakeExtension())
        ledger.connection = conn

        session = await conn.connect_extension()

        assert session.status == SessionStatus.DISCONNECTED
        assert session.address == ""


class TestRefreshBalance:
    @pytest.mark.asyncio
    async def test_updates_balance(self) -> None:
        conn = _connection(ledger=FakeLedger(["100", "60"]), extension=FakeExtension())
        await conn.connect_extension()

        assert await conn.refresh_balance() == "60"
        assert conn.session.balance == "60"

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_read(self) -> None:
        ledger = FakeLedger(["100", "60"])
        conn = _connection(ledger=ledger, extension=FakeExtension())
        await conn.connect_extension()

        results = await asyncio.gather(conn.refresh_balance(), conn.refresh_balance())

        assert results == ["60", "60"]
        assert len(ledger.balance_calls) == 2

    @pytest.mark.asyncio
    async def test_disconnected_skips_ledger(self) -> None:
        ledger = FakeLedger()
        conn = _connection(ledger=ledger)

        assert await conn.refresh_balance() == "0"
        assert ledger.balance_calls == []

    @pytest.mark.asyncio
    async def test_result_for_gone_session_not_applied(self) -> None:
        ledger = LogoutDuringBalance(["100"])
        conn = _connection(ledger=FakeLedger(["100"]), extension=FakeExtension())
        await conn.connect_extension()
        ledger.connection = conn
        conn.ledger = ledger  # type: ignore[assignment]

        await conn.refresh_balance()

        assert conn.session.status == SessionStatus.DISCONNECTED
        assert conn.session.balance == "0"
