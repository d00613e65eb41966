"""
XRPL JSON-RPC connection — real network implementation of LedgerConnection.

Translates ``account_lines`` and ``tx`` responses into AccountLinesResult
and TxStatusResult. Uses an injectable transport (JsonRpcTransport) so
the HTTP layer can be swapped for test fakes without changing parsing.

No retry loops. No secrets. No business logic beyond response parsing.

Response parsing targets rippled JSON-RPC conventions:
    - Successful responses: {"result": {"status": "success", ...}}
    - Error responses: {"result": {"status": "error", "error": "...", ...}}
    - account_lines responses include: lines[], marker (when paginated)
    - tx responses include: validated, ledger_index, meta
"""

from __future__ import annotations

import itertools
from typing import Any

from sky_stake.xrpl.client import AccountLinesResult, TrustLine, TxStatusResult
from sky_stake.xrpl.transport import HttpxTransport, JsonRpcTransport

_request_ids = itertools.count(1)


class JsonRpcLedgerConnection:
    """LedgerConnection over JSON-RPC.

    Args:
        url: The rippled JSON-RPC endpoint URL
            (e.g. "https://xrplcluster.com/").
        transport: Injectable transport. Defaults to HttpxTransport.
    """

    def __init__(
        self,
        url: str,
        transport: JsonRpcTransport | None = None,
    ) -> None:
        self._url = url
        self._transport = transport or HttpxTransport()

    @property
    def url(self) -> str:
        """The JSON-RPC endpoint URL."""
        return self._url

    async def __aenter__(self) -> JsonRpcLedgerConnection:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -----------------------------------------------------------------
    # LedgerConnection protocol methods
    # -----------------------------------------------------------------

    async def connect(self) -> None:
        await self._transport.open()

    async def close(self) -> None:
        await self._transport.aclose()

    async def account_lines(
        self,
        account: str,
        *,
        peer: str | None = None,
        marker: object | None = None,
    ) -> AccountLinesResult:
        """Query trust lines via JSON-RPC, pinned to the validated ledger.

        Transport exceptions propagate to the caller.
        """
        params: dict[str, Any] = {"account": account, "ledger_index": "validated"}
        if peer is not None:
            params["peer"] = peer
        if marker is not None:
            params["marker"] = marker

        response = await self._call("account_lines", params)
        return _parse_account_lines_response(response)

    async def tx(self, tx_hash: str) -> TxStatusResult:
        """Query transaction status via JSON-RPC.

        Transport exceptions propagate to the caller.
        """
        response = await self._call(
            "tx", {"transaction": tx_hash, "binary": False}
        )
        return _parse_tx_response(response)

    async def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        payload = {
            "method": method,
            "params": [params],
            "id": next(_request_ids),
        }
        return await self._transport.post_json(self._url, payload)


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _parse_account_lines_response(response: dict[str, Any]) -> AccountLinesResult:
    """Parse a rippled account_lines JSON-RPC response.

    Handles:
        - Lines present (with or without a pagination marker)
        - Account not found (actNotFound) and other server errors
        - Malformed line entries (skipped)
    """
    result = response.get("result", {})

    if result.get("status") == "error":
        return AccountLinesResult(
            found=False,
            error_code=result.get("error", "SERVER_ERROR"),
            detail=result.get("error_message") or result.get("error"),
        )

    lines: list[TrustLine] = []
    for raw in result.get("lines") or []:
        if not isinstance(raw, dict):
            continue
        account = raw.get("account")
        currency = raw.get("currency")
        balance = raw.get("balance")
        if not (isinstance(account, str) and isinstance(currency, str)):
            continue
        lines.append(
            TrustLine(
                account=account,
                currency=currency,
                balance=str(balance) if balance is not None else "0",
                limit=str(raw.get("limit", "0")),
            )
        )

    return AccountLinesResult(
        found=True,
        lines=tuple(lines),
        marker=result.get("marker"),
    )


def _parse_tx_response(response: dict[str, Any]) -> TxStatusResult:
    """Parse a rippled tx JSON-RPC response into TxStatusResult.

    Handles:
        - Transaction found and validated
        - Transaction found but not yet validated
        - Transaction not found (txnNotFound error)
        - Server-level errors
    """
    result = response.get("result", {})

    if result.get("status") == "error":
        error = result.get("error", "")
        if error == "txnNotFound":
            return TxStatusResult(found=False)
        return TxStatusResult(
            found=False,
            error_code="SERVER_ERROR",
            detail=result.get("error_message") or error,
        )

    validated = bool(result.get("validated", False))
    ledger_index = result.get("ledger_index")

    engine_result = None
    meta = result.get("meta")
    if isinstance(meta, dict):
        engine_result = meta.get("TransactionResult")

    return TxStatusResult(
        found=True,
        validated=validated,
        ledger_index=ledger_index if validated else None,
        engine_result=engine_result,
    )
