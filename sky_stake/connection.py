"""
Wallet connection state machine.

Drives the single WalletSession through its statuses for both wallet
kinds. The session is owned by the caller and passed in; this class
holds no module-level state.

Extension wallet (connect_extension):
    1. is_installed()  — no → CapabilityUnavailable(NOT_INSTALLED), the
       install page is opened in a new tab.
    2. get_address()   — missing/malformed → CapabilityUnavailable(LOCKED).
    3. get_network()   — not the expected network → NetworkMismatch.
    4. balance         — best-effort, "0" on failure.

Redirect wallet:
    connect_redirect()  user-initiated fresh handshake via resolve().
    resume_on_load()    at process start, before rendering:
        - completion markers in the URL → complete the handshake with
          resolve(), then strip the markers from the visible URL. Markers
          already consumed in this process are never resolved again.
        - no markers → restore_session() from the persisted token; a
          missing or failing restore leaves the session DISCONNECTED.

Failures move the session to ERROR with the typed error retained and
re-raise it (resume_on_load records the error but does not raise).
Connecting while CONNECTED or CONNECTING raises SessionConflict and leaves
the session untouched.

Diagnostics for redirect resolution failures are extracted field by
field (presence flags, key lists). The resolved object itself is never
serialized: it may hold SDK internals that cannot be.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from collections.abc import Mapping
from typing import Any

from sky_stake.browser import BrowserContext, completion_markers, strip_markers
from sky_stake.canonical_json import canonical_json
from sky_stake.config import StakingSettings
from sky_stake.errors import (
    CapabilityReason,
    CapabilityUnavailable,
    ConfigurationError,
    ConnectionFailed,
    NetworkMismatch,
    ResolutionError,
    SessionConflict,
    StakingError,
)
from sky_stake.session import SessionStatus, WalletKind, WalletSession, is_classic_address
from sky_stake.wallets import (
    ACCOUNT_KEY,
    SIGNING_HANDLE_KEY,
    ExtensionWallet,
    HandshakeFactory,
    HandshakeOptions,
    RedirectHandshake,
    ResolvedSession,
)
from sky_stake.xrpl.ledger import BALANCE_ON_ERROR, LedgerAdapter

logger = logging.getLogger(__name__)


# =========================================================================
# Diagnostics
# =========================================================================


def _read_field(resolved: object, key: str) -> Any:
    if isinstance(resolved, Mapping):
        return resolved.get(key)
    return getattr(resolved, key, None)


def _field_names(resolved: object) -> list[str]:
    if isinstance(resolved, Mapping):
        return sorted(str(key) for key in resolved)
    return sorted(k for k in getattr(resolved, "__dict__", {}) if not k.startswith("_"))


def describe_resolution(resolved: object) -> dict[str, Any]:
    """Presence flags and key names of a resolved redirect session."""
    account = _read_field(resolved, ACCOUNT_KEY) if resolved is not None else None
    handle = _read_field(resolved, SIGNING_HANDLE_KEY) if resolved is not None else None
    return {
        "has_resolved": resolved is not None,
        "has_account": bool(account),
        "account_valid": is_classic_address(account),
        "has_signing_handle": handle is not None,
        "resolved_keys": _field_names(resolved) if resolved is not None else [],
    }


def describe_exception(exc: BaseException) -> dict[str, Any]:
    """Name, message and the first three traceback frames of ``exc``."""
    frames = traceback.format_tb(exc.__traceback__)[:3]
    return {
        "name": type(exc).__name__,
        "message": str(exc),
        "stack": " | ".join(" ".join(frame.split()) for frame in frames),
    }


# =========================================================================
# State machine
# =========================================================================


class WalletConnection:
    """Connects, resumes and tears down the one WalletSession.

    Args:
        session: The live session (owned by the caller).
        settings: Staking settings.
        ledger: Ledger adapter for balance reads.
        browser: Browser context (URL, navigation, user agent).
        extension: Extension wallet capability, None when unavailable.
        handshake_factory: Builds redirect handshakes, None when unavailable.
    """

    def __init__(
        self,
        session: WalletSession,
        settings: StakingSettings,
        ledger: LedgerAdapter,
        browser: BrowserContext,
        *,
        extension: ExtensionWallet | None = None,
        handshake_factory: HandshakeFactory | None = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.ledger = ledger
        self.browser = browser
        self.extension = extension
        self._handshake_factory = handshake_factory
        self._handshake: RedirectHandshake | None = None
        self._consumed_markers: set[tuple[tuple[str, str], ...]] = set()
        self._refresh_task: asyncio.Task[str] | None = None
        self.last_warning: str | None = None

    # -----------------------------------------------------------------
    # Extension wallet
    # -----------------------------------------------------------------

    async def connect_extension(self) -> WalletSession:
        """Connect the extension wallet.

        Raises:
            SessionConflict: A wallet is already connected or connecting.
            CapabilityUnavailable: Not installed or locked.
            NetworkMismatch: Wallet on another network.
            ConnectionFailed: The wallet raised unexpectedly.
        """
        generation = self._begin(WalletKind.EXTENSION)
        extension = self.extension

        try:
            if extension is None or not await extension.is_installed():
                self.browser.open_tab(self.settings.extension_install_url)
                raise CapabilityUnavailable(
                    CapabilityReason.NOT_INSTALLED,
                    "Wallet extension not found. Please install the browser extension.",
                    remediation_url=self.settings.extension_install_url,
                )

            address = await extension.get_address()
            if not is_classic_address(address):
                raise CapabilityUnavailable(
                    CapabilityReason.LOCKED,
                    "Failed to get wallet address. Please unlock your wallet.",
                    remediation_url=self.settings.extension_install_url,
                )

            network = await extension.get_network()
            if network != self.settings.expected_network:
                raise NetworkMismatch(self.settings.expected_network, network)
        except StakingError as exc:
            return self._fail(exc, generation)
        except Exception as exc:
            failure = ConnectionFailed(f"Failed to connect to wallet extension: {exc}")
            failure.__cause__ = exc
            return self._fail(failure, generation)

        assert address is not None
        balance = await self._balance_best_effort(address)
        if self._is_stale(generation):
            return self.session

        self.session.mark_connected(address, balance)
        logger.info("extension wallet connected: %s", self.session.short_address())
        return self.session

    # -----------------------------------------------------------------
    # Redirect wallet
    # -----------------------------------------------------------------

    async def connect_redirect(self) -> WalletSession:
        """Start a fresh redirect handshake and wait for its resolution.

        Raises:
            ConfigurationError: No API key or no handshake factory.
            SessionConflict: A wallet is already connected or connecting.
            ResolutionError: The handshake did not yield an account.
        """
        self._require_redirect_support()
        generation = self._begin(WalletKind.REDIRECT)
        handshake = self._new_handshake()

        try:
            resolved = await handshake.resolve()
        except Exception as exc:
            return self._fail(_resolution_failure(exc), generation)

        return await self._complete_redirect(handshake, resolved, generation)

    async def resume_on_load(self) -> bool:
        """Complete or restore a redirect session at process start.

        Returns:
            True if the session ended up CONNECTED.
        """
        if not self._redirect_supported():
            return False
        if self.session.status != SessionStatus.DISCONNECTED:
            return False

        url = self.browser.current_url
        markers = completion_markers(url, self.settings.completion_markers)

        if markers:
            return await self._resume_from_markers(url, markers)
        return await self._restore_persisted()

    async def _resume_from_markers(
        self,
        url: str,
        markers: tuple[tuple[str, str], ...],
    ) -> bool:
        if markers in self._consumed_markers:
            logger.info("completion markers already consumed, not resolving again")
            return False
        self._consumed_markers.add(markers)

        generation = self._begin(WalletKind.REDIRECT)
        handshake = self._new_handshake()
        logger.info("completing redirect handshake (%s)", ", ".join(k for k, _ in markers))

        try:
            resolved = await handshake.resolve()
        except Exception as exc:
            self._record_failure(_resolution_failure(exc), generation)
            return False

        try:
            await self._complete_redirect(handshake, resolved, generation)
        except StakingError:
            return False

        if not self.session.is_connected:
            return False
        self.browser.replace_url(strip_markers(url, [key for key, _ in markers]))
        return True

    async def _restore_persisted(self) -> bool:
        handshake = self._new_handshake()
        try:
            restored = await handshake.restore_session()
        except Exception as exc:
            logger.warning("could not restore redirect session: %s", exc)
            return False

        if restored is None:
            return False
        account = _read_field(restored, ACCOUNT_KEY)
        handle = _read_field(restored, SIGNING_HANDLE_KEY)
        if not is_classic_address(account) or handle is None:
            logger.info("persisted session unusable: %s", describe_resolution(restored))
            return False
        if self.session.status != SessionStatus.DISCONNECTED:
            return False

        generation = self._begin(WalletKind.REDIRECT)
        balance = await self._balance_best_effort(account)
        if self._is_stale(generation):
            return False

        self._handshake = handshake
        self.session.mark_connected(account, balance, handle)
        logger.info("redirect session restored: %s", self.session.short_address())
        return True

    async def _complete_redirect(
        self,
        handshake: RedirectHandshake,
        resolved: ResolvedSession | None,
        generation: int,
    ) -> WalletSession:
        account = _read_field(resolved, ACCOUNT_KEY) if resolved is not None else None
        handle = _read_field(resolved, SIGNING_HANDLE_KEY) if resolved is not None else None

        if not is_classic_address(account) or handle is None:
            diagnostics = describe_resolution(resolved)
            return self._fail(
                ResolutionError(
                    "Failed to get account from redirect wallet. "
                    f"Debug: {canonical_json(diagnostics)}",
                    diagnostics,
                ),
                generation,
            )

        balance = await self._balance_best_effort(account)
        if self._is_stale(generation):
            return self.session

        self._handshake = handshake
        self.session.mark_connected(account, balance, handle)
        logger.info("redirect wallet connected: %s", self.session.short_address())
        return self.session

    # -----------------------------------------------------------------
    # Session-wide operations
    # -----------------------------------------------------------------

    def logout(self) -> None:
        """Tear down the session. Safe with no active session."""
        had_session = self.session.status != SessionStatus.DISCONNECTED
        self._handshake = None
        self._refresh_task = None
        self.last_warning = None
        self.session.reset()
        if had_session:
            logger.info("wallet session logged out")

    def dismiss_error(self) -> None:
        if self.session.status == SessionStatus.ERROR:
            self.session.clear_error()

    async def refresh_balance(self) -> str:
        """Re-read the balance of the connected account.

        Concurrent calls share one ledger read. The result is applied
        only if the same session is still connected.
        """
        if not self.session.is_connected:
            return self.session.balance

        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(
                self._read_balance(self.session.address, self.session.generation)
            )
            self._refresh_task = task
        return await task

    async def _read_balance(self, address: str, generation: int) -> str:
        balance = await self._balance_best_effort(address)
        if self._is_stale(generation) or self.session.address != address:
            logger.info("discarding balance for a session that is gone")
            return balance
        self.session.update_balance(balance)
        return balance

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _begin(self, kind: WalletKind) -> int:
        status = self.session.status
        if status in (SessionStatus.CONNECTED, SessionStatus.CONNECTING):
            raise SessionConflict(
                str(self.session.wallet_kind) if self.session.wallet_kind else None
            )
        if status == SessionStatus.ERROR:
            self.session.clear_error()
        self.last_warning = None
        self.session.begin_connecting(kind)
        return self.session.generation

    def _is_stale(self, generation: int) -> bool:
        return self.session.generation != generation

    def _record_failure(self, error: StakingError, generation: int) -> None:
        if self._is_stale(generation):
            logger.info("dropping connect failure for a session that is gone: %s", error)
            return
        logger.warning("wallet connection failed: %s", error)
        self.session.mark_error(error)

    def _fail(self, error: StakingError, generation: int) -> WalletSession:
        self._record_failure(error, generation)
        if self._is_stale(generation):
            return self.session
        raise error

    async def _balance_best_effort(self, address: str) -> str:
        try:
            return await self.ledger.get_balance(address)
        except Exception as exc:
            self.last_warning = "Balance could not be loaded; showing 0."
            logger.warning("balance fetch for %s failed: %s", address, exc)
            return BALANCE_ON_ERROR

    def _redirect_supported(self) -> bool:
        return bool(self.settings.redirect_api_key) and self._handshake_factory is not None

    def _require_redirect_support(self) -> None:
        if not self.settings.redirect_api_key:
            raise ConfigurationError(
                "Redirect wallet API key not configured. Set SKY_REDIRECT_API_KEY.",
                ["redirect_api_key"],
            )
        if self._handshake_factory is None:
            raise ConfigurationError("Redirect wallet support is not available")

    def _new_handshake(self) -> RedirectHandshake:
        assert self._handshake_factory is not None
        return self._handshake_factory(
            self.settings.redirect_api_key,
            HandshakeOptions(
                redirect_target=self.settings.redirect_target,
                persist_session=True,
            ),
        )


def _resolution_failure(exc: Exception) -> ResolutionError:
    diagnostics = describe_exception(exc)
    error = ResolutionError(
        f"Failed to connect to redirect wallet: {canonical_json(diagnostics)}",
        diagnostics,
    )
    error.__cause__ = exc
    return error
