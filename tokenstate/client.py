"""Client for the token state JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable

from tokenstate.addresses import encode_id
from tokenstate.server import (
    JSON_RPC_ENDPOINT,
    PARSE_ERROR,
    SERVER_ERROR,
    SERVICE_NAME,
    AssetNotFoundError,
    RPCError,
    TxNotFoundError,
)

_log = logging.getLogger(__name__)

Transport = Callable[[str, bytes], bytes]


@dataclass(frozen=True)
class TxStatus:
    found: bool
    success: bool
    timestamp: int


@dataclass(frozen=True)
class AssetInfo:
    exists: bool
    metadata: bytes
    supply: int
    owner: str
    warp: bool


def _http_transport(url: str, body: bytes) -> bytes:
    request = urllib.request.Request(
        url, data=body, headers={"Content-Type": "application/json"}, method="POST"
    )
    try:
        with urllib.request.urlopen(request) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        payload = exc.read()
        if payload:
            return payload
        raise


class JSONRPCClient:
    """Queries token state from a node's JSON-RPC endpoint."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        *,
        transport: Transport | None = None,
        poll_interval: float = 0.5,
        timeout: float | None = None,
    ) -> None:
        self.url = uri.removesuffix("/") + JSON_RPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._transport = transport or _http_transport
        self._ids = itertools.count(1)
        self._genesis: Any = None

    def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "method": f"{SERVICE_NAME}.{method}",
            "params": params,
            "id": next(self._ids),
        }
        raw = self._transport(self.url, json.dumps(payload).encode("utf-8"))
        try:
            response = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            raise RPCError(PARSE_ERROR, "malformed response") from exc
        if not isinstance(response, dict):
            raise RPCError(PARSE_ERROR, "malformed response")
        error = response.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCError(
                    error.get("code", SERVER_ERROR), str(error.get("message", "")), error.get("data")
                )
            raise RPCError(SERVER_ERROR, str(error))
        return response.get("result") or {}

    def genesis(self) -> Any:
        """Return the chain's genesis, fetched once and then cached."""
        if self._genesis is not None:
            return self._genesis
        result = self._call("genesis", {})
        self._genesis = result.get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> TxStatus:
        try:
            result = self._call("tx", {"txId": encode_id(tx_id)})
        except RPCError as exc:
            if str(TxNotFoundError()) in exc.message:
                return TxStatus(found=False, success=False, timestamp=-1)
            raise
        return TxStatus(found=True, success=bool(result.get("success")), timestamp=result.get("timestamp", 0))

    def asset(self, asset: bytes) -> AssetInfo:
        try:
            result = self._call("asset", {"asset": encode_id(asset)})
        except RPCError as exc:
            if str(AssetNotFoundError()) in exc.message:
                return AssetInfo(exists=False, metadata=b"", supply=0, owner="", warp=False)
            raise
        return AssetInfo(
            exists=True,
            metadata=base64.b64decode(result.get("metadata") or ""),
            supply=result.get("supply", 0),
            owner=result.get("owner", ""),
            warp=bool(result.get("warp")),
        )

    def balance(self, address: str, asset: bytes) -> int:
        result = self._call("balance", {"address": address, "asset": encode_id(asset)})
        return result.get("amount", 0)

    def orders(self, pair: str) -> list[Any]:
        result = self._call("orders", {"pair": pair})
        return list(result.get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        result = self._call(
            "loan", {"asset": encode_id(asset), "destination": encode_id(destination)}
        )
        return result.get("amount", 0)

    def _wait(self, check: Callable[[], bool]) -> None:
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        while True:
            if check():
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("gave up waiting")
            time.sleep(self.poll_interval)

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> None:
        """Poll until the balance reaches at least ``minimum``."""

        def reached() -> bool:
            done = self.balance(address, asset) >= minimum
            if not done:
                _log.info("waiting for %d balance: %s", minimum, address)
            return done

        self._wait(reached)

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Poll until the transaction is known; return whether it succeeded."""
        outcome: list[bool] = []

        def found() -> bool:
            status = self.tx(tx_id)
            if status.found:
                outcome.append(status.success)
            return status.found

        self._wait(found)
        return outcome[-1]