"""Key layout and value encoding for token balances, assets, orders and loans."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, Union

from tokenstate.addresses import ID_LEN, PUBLIC_KEY_LEN, address, encode_id

TX_PREFIX = 0x0

BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

MAX_UINT64 = (1 << 64) - 1
MAX_METADATA_LEN = (1 << 16) - 1

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1
_HEIGHT_KEY = bytes([HEIGHT_PREFIX])

_U64 = struct.Struct(">Q")
_TX_VALUE = struct.Struct(">qBQ")
_U16 = struct.Struct(">H")


class InvalidBalanceError(Exception):
    """Raised when a balance or loan would overflow or go negative."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"invalid balance: {detail}")


class KeyNotFoundError(LookupError):
    """Raised when a key is not present in the database."""

    def __init__(self, key: bytes = b"") -> None:
        super().__init__("not found")
        self.key = key


ReadResult = Union[bytes, BaseException]
ReadState = Callable[[Sequence[bytes]], Sequence[ReadResult]]


class _Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class MemoryDatabase:
    """A dictionary-backed key/value store."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        try:
            return self._data[bytes(key)]
        except KeyError:
            raise KeyNotFoundError(bytes(key)) from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[ReadResult]:
        """Read many keys; missing keys yield a KeyNotFoundError in their slot."""
        results: list[ReadResult] = []
        for key in keys:
            value = self._data.get(bytes(key))
            results.append(value if value is not None else KeyNotFoundError(bytes(key)))
        return results

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _check_len(value: bytes, length: int, name: str) -> bytes:
    value = bytes(value)
    if len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")
    return value


def _id(value: bytes, name: str = "id") -> bytes:
    return _check_len(value, ID_LEN, name)


def _pk(value: bytes, name: str = "public key") -> bytes:
    return _check_len(value, PUBLIC_KEY_LEN, name)


def _u64(value: int, name: str) -> bytes:
    if not 0 <= value <= MAX_UINT64:
        raise ValueError(f"{name} must fit in an unsigned 64-bit integer")
    return _U64.pack(value)


def _read_one(read_state: ReadState, key: bytes) -> bytes | None:
    result = read_state([key])[0]
    if isinstance(result, KeyNotFoundError):
        return None
    if isinstance(result, BaseException):
        raise result
    return result


def _get_or_none(db: _Database, key: bytes) -> bytes | None:
    try:
        return db.get_value(key)
    except KeyNotFoundError:
        return None


def prefix_tx_key(tx_id: bytes) -> bytes:
    return bytes([TX_PREFIX]) + _id(tx_id, "tx id")


def store_transaction(db: _Database, tx_id: bytes, timestamp: int, success: bool, units: int) -> None:
    if not 0 <= units <= MAX_UINT64:
        raise ValueError("units must fit in an unsigned 64-bit integer")
    flag = _SUCCESS_BYTE if success else _FAILURE_BYTE
    db.insert(prefix_tx_key(tx_id), _TX_VALUE.pack(timestamp, flag, units))


def get_transaction(db: _Database, tx_id: bytes) -> TransactionRecord | None:
    """Return the stored transaction result, or None if it is unknown."""
    value = _get_or_none(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    timestamp, flag, units = _TX_VALUE.unpack_from(value)
    return TransactionRecord(timestamp, flag != _FAILURE_BYTE, units)


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    return bytes([BALANCE_PREFIX]) + _pk(public_key) + _id(asset, "asset")


def _decode_amount(value: bytes | None) -> int:
    return 0 if value is None else _U64.unpack_from(value)[0]


def get_balance(db: _Database, public_key: bytes, asset: bytes) -> int:
    """Return the balance; a missing record counts as zero."""
    return _decode_amount(_get_or_none(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    return _decode_amount(_read_one(read_state, prefix_balance_key(public_key, asset)))


def set_balance(db: _Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _u64(balance, "balance"))


def delete_balance(db: _Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: _Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_get_or_none(db, key))
    new_balance = balance + amount
    if amount < 0 or new_balance > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add balance (asset={encode_id(asset)}, bal={balance}, "
            f"addr={address(public_key)}, amount={amount})"
        )
    db.insert(key, _U64.pack(new_balance))


def sub_balance(db: _Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_amount(_get_or_none(db, key))
    if amount < 0 or amount > balance:
        raise InvalidBalanceError(
            f"could not subtract balance (asset={encode_id(asset)}, bal={balance}, "
            f"addr={address(public_key)}, amount={amount})"
        )
    new_balance = balance - amount
    if new_balance == 0:
        # An empty balance is removed rather than stored as zero.
        db.remove(key)
    else:
        db.insert(key, _U64.pack(new_balance))


def prefix_asset_key(asset: bytes) -> bytes:
    return bytes([ASSET_PREFIX]) + _id(asset, "asset")


def _decode_asset(value: bytes | None) -> AssetRecord | None:
    if value is None:
        return None
    (metadata_len,) = _U16.unpack_from(value)
    offset = _U16.size
    metadata = value[offset : offset + metadata_len]
    offset += metadata_len
    (supply,) = _U64.unpack_from(value, offset)
    offset += _U64.size
    owner = value[offset : offset + PUBLIC_KEY_LEN]
    warp = value[offset + PUBLIC_KEY_LEN] == 0x1
    return AssetRecord(bytes(metadata), supply, bytes(owner), warp)


def get_asset_from_state(read_state: ReadState, asset: bytes) -> AssetRecord | None:
    return _decode_asset(_read_one(read_state, prefix_asset_key(asset)))


def get_asset(db: _Database, asset: bytes) -> AssetRecord | None:
    """Return the asset record, or None if the asset does not exist."""
    return _decode_asset(_get_or_none(db, prefix_asset_key(asset)))


def set_asset(
    db: _Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata or b"")
    if len(metadata) > MAX_METADATA_LEN:
        raise ValueError(f"metadata must be at most {MAX_METADATA_LEN} bytes")
    value = b"".join(
        (
            _U16.pack(len(metadata)),
            metadata,
            _u64(supply, "supply"),
            _pk(owner, "owner"),
            b"\x01" if warp else b"\x00",
        )
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: _Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


def prefix_order_key(tx_id: bytes) -> bytes:
    return bytes([ORDER_PREFIX]) + _id(tx_id, "order id")


def set_order(
    db: _Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = b"".join(
        (
            _id(in_asset, "in asset"),
            _u64(in_tick, "in tick"),
            _id(out_asset, "out asset"),
            _u64(out_tick, "out tick"),
            _u64(supply, "supply"),
            _pk(owner, "owner"),
        )
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: _Database, order: bytes) -> OrderRecord | None:
    """Return the order record, or None if the order does not exist."""
    value = _get_or_none(db, prefix_order_key(order))
    if value is None:
        return None
    offset = 0
    in_asset = value[offset : offset + ID_LEN]
    offset += ID_LEN
    (in_tick,) = _U64.unpack_from(value, offset)
    offset += _U64.size
    out_asset = value[offset : offset + ID_LEN]
    offset += ID_LEN
    (out_tick,) = _U64.unpack_from(value, offset)
    offset += _U64.size
    (remaining,) = _U64.unpack_from(value, offset)
    offset += _U64.size
    owner = value[offset : offset + PUBLIC_KEY_LEN]
    return OrderRecord(bytes(in_asset), in_tick, bytes(out_asset), out_tick, remaining, bytes(owner))


def delete_order(db: _Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    return bytes([LOAN_PREFIX]) + _id(asset, "asset") + _id(destination, "destination")


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    return _decode_amount(_read_one(read_state, prefix_loan_key(asset, destination)))


def get_loan(db: _Database, asset: bytes, destination: bytes) -> int:
    """Return the amount loaned to a destination chain; zero if none."""
    return _decode_amount(_get_or_none(db, prefix_loan_key(asset, destination)))


def set_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _u64(amount, "amount"))


def add_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    if amount < 0 or amount > loan:
        raise InvalidBalanceError(
            f"could not subtract loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    new_loan = loan - amount
    if new_loan == 0:
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


def height_key() -> bytes:
    return _HEIGHT_KEY


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return bytes([INCOMING_WARP_PREFIX]) + _id(source_chain_id, "source chain id") + _id(msg_id, "message id")


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _id(tx_id, "tx id")