"""JSON-RPC service answering queries about token state."""

from __future__ import annotations

import base64
import json
from typing import Any, Callable, Mapping, Protocol, Sequence

from tokenstate.addresses import ID_LEN, decode_id, parse_address
from tokenstate.addresses import address as format_address
from tokenstate.storage import AssetRecord, TransactionRecord

JSON_RPC_ENDPOINT = "/tokenapi"
SERVICE_NAME = "tokenvm"
ORDERS_TO_SEND = 128
VERSION = "v0.0.1"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

EMPTY_ID = bytes(ID_LEN)


class RPCError(Exception):
    """An error carried in a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class TxNotFoundError(LookupError):
    """Raised when a transaction is unknown."""

    def __init__(self) -> None:
        super().__init__("tx not found")


class AssetNotFoundError(LookupError):
    """Raised when an asset does not exist."""

    def __init__(self) -> None:
        super().__init__("asset not found")


class Controller(Protocol):
    """What the service needs from the chain it reports on."""

    def genesis(self) -> Any: ...

    def get_transaction(self, tx_id: bytes) -> TransactionRecord | None: ...

    def get_asset_from_state(self, asset: bytes) -> AssetRecord | None: ...

    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> Sequence[Any]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


def _to_id(value: str | bytes | None) -> bytes:
    if value is None:
        return EMPTY_ID
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ID_LEN:
            raise ValueError(f"identifier must be {ID_LEN} bytes, got {len(value)}")
        return bytes(value)
    return decode_id(value)


# JSON argument names of each method, and whether each holds an identifier.
_METHODS: dict[str, tuple[tuple[str, bool], ...]] = {
    "genesis": (),
    "tx": (("txId", True),),
    "asset": (("asset", True),),
    "balance": (("address", False), ("asset", True)),
    "orders": (("pair", False),),
    "loan": (("asset", True), ("destination", True)),
}


class JSONRPCServer:
    """Answers token state queries for one controller."""

    def __init__(self, controller: Controller) -> None:
        self._controller = controller

    def genesis(self) -> dict[str, Any]:
        return {"genesis": self._controller.genesis()}

    def tx(self, tx_id: str | bytes | None) -> dict[str, Any]:
        record = self._controller.get_transaction(_to_id(tx_id))
        if record is None:
            raise TxNotFoundError()
        return {"timestamp": record.timestamp, "success": record.success, "units": record.units}

    def asset(self, asset: str | bytes | None) -> dict[str, Any]:
        record = self._controller.get_asset_from_state(_to_id(asset))
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": base64.b64encode(record.metadata).decode("ascii"),
            "supply": record.supply,
            "owner": format_address(record.owner),
            "warp": record.warp,
        }

    def balance(self, address: str, asset: str | bytes | None) -> dict[str, Any]:
        public_key = parse_address(address or "")
        amount = self._controller.get_balance_from_state(public_key, _to_id(asset))
        return {"amount": amount}

    def orders(self, pair: str) -> dict[str, Any]:
        return {"orders": list(self._controller.orders(pair or "", ORDERS_TO_SEND))}

    def loan(self, asset: str | bytes | None, destination: str | bytes | None) -> dict[str, Any]:
        amount = self._controller.get_loan_from_state(_to_id(asset), _to_id(destination))
        return {"amount": amount}

    def _resolve(self, request: Any) -> tuple[Callable[..., dict[str, Any]], list[Any]]:
        if not isinstance(request, Mapping):
            raise RPCError(INVALID_REQUEST, "request must be an object")
        if request.get("jsonrpc") != "2.0":
            raise RPCError(INVALID_REQUEST, 'jsonrpc must be "2.0"')
        method = request.get("method")
        if not isinstance(method, str):
            raise RPCError(INVALID_REQUEST, "method must be a string")
        service, _, name = method.rpartition(".")
        name = name.lower()
        if (service and service != SERVICE_NAME) or name not in _METHODS:
            raise RPCError(METHOD_NOT_FOUND, f"method not found: {method}")

        params = request.get("params")
        if params is None:
            params = {}
        elif isinstance(params, list):
            if not params:
                params = {}
            elif len(params) == 1 and isinstance(params[0], Mapping):
                params = params[0]
            else:
                raise RPCError(INVALID_PARAMS, "params must hold a single object")
        elif not isinstance(params, Mapping):
            raise RPCError(INVALID_PARAMS, "params must be an object")

        args = []
        for key, is_id in _METHODS[name]:
            value = params.get(key)
            if value is not None and not isinstance(value, str):
                raise RPCError(INVALID_PARAMS, f"{key} must be a string")
            args.append(value if is_id or value is not None else "")
        return getattr(self, name), args

    def handle(self, request: Any) -> dict[str, Any]:
        """Answer one decoded JSON-RPC request with a response object."""
        request_id = request.get("id") if isinstance(request, Mapping) else None
        try:
            method, args = self._resolve(request)
            result = method(*args)
        except RPCError as exc:
            return {"jsonrpc": "2.0", "error": exc.to_dict(), "id": request_id}
        except Exception as exc:  # the method's own failure goes back to the caller
            error = RPCError(SERVER_ERROR, str(exc))
            return {"jsonrpc": "2.0", "error": error.to_dict(), "id": request_id}
        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    def handle_bytes(self, body: bytes) -> bytes:
        """Answer a raw JSON-RPC request body with a raw response body."""
        try:
            request = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            error = RPCError(PARSE_ERROR, "invalid JSON")
            response: dict[str, Any] = {"jsonrpc": "2.0", "error": error.to_dict(), "id": None}
        else:
            response = self.handle(request)
        return json.dumps(response).encode("utf-8")