import base64
import json
from collections import Counter

import pytest

from tokenstate import storage
from tokenstate.addresses import AddressError, address, encode_id
from tokenstate.server import (
    EMPTY_ID,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ORDERS_TO_SEND,
    PARSE_ERROR,
    SERVER_ERROR,
    AssetNotFoundError,
    JSONRPCServer,
    TxNotFoundError,
)

OWNER = bytes([1]) * 32
ASSET = bytes([2]) * 32
TX_ID = bytes([3]) * 32
DEST = bytes([4]) * 32


class _Controller:
    def __init__(self):
        self.db = storage.MemoryDatabase()
        self.genesis_data = {"hrp": "token", "minUnitPrice": 1}
        self.order_book = {}
        self.order_limits = []
        self.reads = Counter()

    def genesis(self):
        return self.genesis_data

    def get_transaction(self, tx_id):
        return storage.get_transaction(self.db, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)

    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(self.db.read_state, public_key, asset)

    def orders(self, pair, limit):
        self.order_limits.append(limit)
        return self.order_book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)


@pytest.fixture
def controller():
    return _Controller()


@pytest.fixture
def server(controller):
    return JSONRPCServer(controller)


def _request(method, params, request_id=1):
    return {"jsonrpc": "2.0", "method": method, "params": params, "id": request_id}


def test_genesis_wraps_controller_genesis(server, controller):
    assert server.genesis() == {"genesis": controller.genesis_data}


def test_tx_found(server, controller):
    storage.store_transaction(controller.db, TX_ID, 1700, True, 472)
    assert server.tx(encode_id(TX_ID)) == {"timestamp": 1700, "success": True, "units": 472}


def test_tx_missing_raises(server):
    with pytest.raises(TxNotFoundError, match="tx not found"):
        server.tx(encode_id(TX_ID))


def test_asset_reply(server, controller):
    storage.set_asset(controller.db, ASSET, b"TKN", 10, OWNER, True)
    reply = server.asset(encode_id(ASSET))
    assert base64.b64decode(reply["metadata"]) == b"TKN"
    assert reply["owner"] == address(OWNER)
    assert reply["supply"] == 10
    assert reply["warp"] is True


def test_asset_missing_raises(server):
    with pytest.raises(AssetNotFoundError, match="asset not found"):
        server.asset(encode_id(ASSET))


def test_balance(server, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 5000)
    assert server.balance(address(OWNER), encode_id(ASSET)) == {"amount": 5000}


def test_balance_missing_is_zero(server):
    assert server.balance(address(OWNER), encode_id(ASSET)) == {"amount": 0}


def test_balance_bad_address(server):
    with pytest.raises(AddressError):
        server.balance("nonsense", encode_id(ASSET))


def test_orders_uses_fixed_limit(server, controller):
    controller.order_book["a-b"] = [{"id": "first"}]
    assert server.orders("a-b") == {"orders": [{"id": "first"}]}
    assert controller.order_limits == [ORDERS_TO_SEND]
    assert ORDERS_TO_SEND == 128


def test_loan(server, controller):
    storage.set_loan(controller.db, ASSET, DEST, 110)
    assert server.loan(encode_id(ASSET), encode_id(DEST)) == {"amount": 110}


def test_loan_bad_identifier(server):
    with pytest.raises(AddressError):
        server.loan("not-an-id", encode_id(DEST))


def test_handle_object_params(server, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 5000)
    params = {"address": address(OWNER), "asset": encode_id(ASSET)}
    response = server.handle(_request("tokenvm.balance", params, 7))
    assert response == {"jsonrpc": "2.0", "result": {"amount": 5000}, "id": 7}


def test_handle_list_params_and_method_case(server, controller):
    storage.set_balance(controller.db, OWNER, ASSET, 5000)
    params = [{"address": address(OWNER), "asset": encode_id(ASSET)}]
    response = server.handle(_request("tokenvm.Balance", params))
    assert response["result"] == {"amount": 5000}


def test_handle_missing_asset_uses_empty_id(server, controller):
    storage.set_balance(controller.db, OWNER, EMPTY_ID, 42)
    response = server.handle(_request("tokenvm.balance", {"address": address(OWNER)}))
    assert response["result"] == {"amount": 42}


def test_handle_tx_not_found(server):
    response = server.handle(_request("tokenvm.tx", {"txId": encode_id(TX_ID)}))
    assert response["error"]["code"] == SERVER_ERROR
    assert response["error"]["message"] == "tx not found"


@pytest.mark.parametrize("method", ["tokenvm.nothing", "othervm.balance"])
def test_handle_unknown_method(server, method):
    response = server.handle(_request(method, {}))
    assert response["error"]["code"] == METHOD_NOT_FOUND


def test_handle_wrong_version(server):
    response = server.handle({"jsonrpc": "1.0", "method": "tokenvm.genesis", "id": 3})
    assert response["error"]["code"] == INVALID_REQUEST
    assert response["id"] == 3


@pytest.mark.parametrize("params", [5, {"address": 3}, [1, 2]])
def test_handle_bad_params(server, params):
    response = server.handle(_request("tokenvm.balance", params))
    assert response["error"]["code"] == INVALID_PARAMS


def test_handle_bytes_round_trip(server, controller):
    storage.set_loan(controller.db, ASSET, DEST, 110)
    params = {"asset": encode_id(ASSET), "destination": encode_id(DEST)}
    body = json.dumps(_request("tokenvm.loan", params, 9)).encode()
    response = json.loads(server.handle_bytes(body))
    assert response == {"jsonrpc": "2.0", "result": {"amount": 110}, "id": 9}


def test_handle_bytes_parse_error(server):
    response = json.loads(server.handle_bytes(b"{not json"))
    assert response["error"]["code"] == PARSE_ERROR
    assert response["id"] is None