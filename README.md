# tokenstate

`tokenstate` holds the state of a small token ledger on top of a key-value
store: balances per account and asset, asset records, open orders,
cross-chain loans and transaction results. It can answer queries about that
state as JSON-RPC requests, and it ships a client for such a service.

It uses only the standard library.

## Modules

### `tokenstate.addresses`

- `address(public_key, hrp="token")` turns a 32-byte public key into a
  bech32 address; `parse_address(text, hrp="token")` turns it back and checks
  the checksum, the human-readable part and the length.
- `encode_id(raw)` and `decode_id(text)` convert 32-byte identifiers to and
  from their CB58 form (base58 with a 4-byte SHA-256 checksum).
- Malformed input raises `AddressError`, a `ValueError`.

### `tokenstate.storage`

The key layout and value encoding of the ledger. The helpers take any object
with `get_value(key)`, `insert(key, value)` and `remove(key)`, where
`get_value` raises `KeyNotFoundError` for a missing key.

- `MemoryDatabase` is a dictionary-backed store with those methods, plus
  `read_state(keys)`, which returns one value per key, or a
  `KeyNotFoundError` in the slot of a missing key. It supports `in` and
  `len()`.
- Balances: `get_balance`, `set_balance`, `delete_balance`, `add_balance`,
  `sub_balance`, and `get_balance_from_state` for a `read_state` callable.
- Assets: `get_asset`, `get_asset_from_state`, `set_asset`, `delete_asset`,
  returning an `AssetRecord` (`metadata`, `supply`, `owner`, `warp`) or
  `None`.
- Orders: `set_order`, `get_order`, `delete_order`, returning an
  `OrderRecord` (`in_asset`, `in_tick`, `out_asset`, `out_tick`,
  `remaining`, `owner`) or `None`.
- Loans: `get_loan`, `get_loan_from_state`, `set_loan`, `add_loan`,
  `sub_loan`.
- Transaction results: `store_transaction` and `get_transaction`, returning a
  `TransactionRecord` (`timestamp`, `success`, `units`) or `None`.
- Key builders: `prefix_tx_key`, `prefix_balance_key`, `prefix_asset_key`,
  `prefix_order_key`, `prefix_loan_key`, `height_key`,
  `incoming_warp_key_prefix`, `outgoing_warp_key_prefix`.

Amounts are unsigned 64-bit integers. Adding past the maximum or
subtracting more than is held raises `InvalidBalanceError`. A balance or loan
that reaches zero is removed rather than stored as zero; a missing balance or
loan reads as zero.

### `tokenstate.server`

`JSONRPCServer(controller)` answers queries against a `Controller`, an object
providing `genesis()`, `get_transaction(tx_id)`,
`get_asset_from_state(asset)`, `get_balance_from_state(public_key, asset)`,
`orders(pair, limit)` and `get_loan_from_state(asset, destination)`.

- Python calls: `genesis()`, `tx(tx_id)`, `asset(asset)`,
  `balance(address, asset)`, `orders(pair)` (at most 128 orders are asked
  for) and `loan(asset, destination)`. Identifiers may be given as CB58
  strings or as 32 raw bytes; `None` means the all-zero identifier. An
  unknown transaction raises `TxNotFoundError`, an unknown asset
  `AssetNotFoundError`.
- `handle(request)` answers a decoded JSON-RPC 2.0 request object, and
  `handle_bytes(body)` a raw request body. Methods are named `tokenvm.tx`,
  `tokenvm.balance` and so on, or without the service prefix. Arguments use
  the JSON names `txId`, `asset`, `address`, `pair` and `destination`.
  Asset metadata is returned base64-encoded. Failures come back as error
  objects (`RPCError` codes such as -32700, -32601, -32602 and -32000).

### `tokenstate.client`

`JSONRPCClient(uri, chain_id, *, transport=None, poll_interval=0.5,
timeout=None)` sends requests to `uri + "/tokenapi"`. By default it posts
over HTTP with `urllib`; `transport` may be any callable taking the URL and
the request body and returning the response body.

- `genesis()` is fetched once and then cached.
- `tx(tx_id)` returns a `TxStatus` (`found`, `success`, `timestamp`); an
  unknown transaction gives `found=False` and `timestamp=-1`.
- `asset(asset)` returns an `AssetInfo` (`exists`, `metadata`, `supply`,
  `owner`, `warp`); an unknown asset gives `exists=False`.
- `balance(address, asset)`, `orders(pair)` and `loan(asset, destination)`.
- `wait_for_balance(address, asset, minimum)` and
  `wait_for_transaction(tx_id)` poll every `poll_interval` seconds; the
  latter returns whether the transaction succeeded. With a `timeout` set,
  waiting raises `TimeoutError` once it runs out.
- Error responses are raised as `RPCError`.

## What it does not do

- It does not listen on a network port: `JSONRPCServer` turns request
  bodies into response bodies, and wiring it into an HTTP server is left to
  the caller.
- It has no controller of its own. What `genesis`, `orders` and the state
  lookups return is whatever the supplied `Controller` provides; there is no
  block processing, order matching, transaction building or signing here.
- It offers no command-line program.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from tokenstate.storage import (
    InvalidBalanceError,
    MemoryDatabase,
    add_balance,
    get_asset,
    get_balance,
    set_asset,
    sub_balance,
)

db = MemoryDatabase()
owner = bytes(32)      # a 32-byte public key
native = bytes(32)     # the all-zero asset identifier

add_balance(db, owner, native, 1_000)
sub_balance(db, owner, native, 400)
print(get_balance(db, owner, native))   # 600

try:
    sub_balance(db, owner, native, 10_000)
except InvalidBalanceError as exc:
    print(exc)

asset_id = bytes(range(32))
set_asset(db, asset_id, b"COIN", 21_000_000, owner, False)
print(get_asset(db, asset_id))
```

```python
from tokenstate.addresses import address, parse_address

text = address(bytes(32))
assert parse_address(text) == bytes(32)
```