"""Bech32 account addresses and CB58-encoded identifiers."""

from __future__ import annotations

import hashlib

DEFAULT_HRP = "token"
PUBLIC_KEY_LEN = 32
ID_LEN = 32

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_BECH32_MAX_LEN = 90
_CHECKSUM_LEN = 6

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: value for value, char in enumerate(_BASE58_ALPHABET)}
_CB58_CHECKSUM_LEN = 4


class AddressError(ValueError):
    """Raised when an address or identifier is malformed."""


def _polymod(values: list[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = ((checksum & 0x1FFFFFF) << 5) ^ value
        for bit, generator in enumerate(_BECH32_GENERATOR):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * _CHECKSUM_LEN) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(_CHECKSUM_LEN)]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    accumulator = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise AddressError(f"invalid data value: {value}")
        accumulator = (accumulator << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((accumulator >> bits) & max_value)
    if pad:
        if bits:
            result.append((accumulator << (to_bits - bits)) & max_value)
    elif bits >= from_bits or ((accumulator << (to_bits - bits)) & max_value):
        raise AddressError("invalid padding in address data")
    return result


def _bech32_encode(hrp: str, payload: bytes) -> str:
    data = _convert_bits(payload, 8, 5, pad=True)
    combined = data + _create_checksum(hrp, data)
    return hrp + "1" + "".join(_BECH32_CHARSET[d] for d in combined)


def _bech32_decode(text: str) -> tuple[str, bytes]:
    if len(text) > _BECH32_MAX_LEN:
        raise AddressError("address is too long")
    if text.lower() != text and text.upper() != text:
        raise AddressError("address mixes upper and lower case")
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise AddressError("address contains invalid characters")
    text = text.lower()
    separator = text.rfind("1")
    if separator < 1 or separator + _CHECKSUM_LEN + 1 > len(text):
        raise AddressError("address separator is misplaced")
    hrp = text[:separator]
    try:
        data = [_BECH32_CHARSET.index(c) for c in text[separator + 1 :]]
    except ValueError as exc:
        raise AddressError("address contains invalid characters") from exc
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise AddressError("invalid address checksum")
    payload = bytes(_convert_bits(data[:-_CHECKSUM_LEN], 5, 8, pad=False))
    return hrp, payload


def address(public_key: bytes, hrp: str = DEFAULT_HRP) -> str:
    """Return the bech32 address of a public key."""
    public_key = bytes(public_key)
    if len(public_key) != PUBLIC_KEY_LEN:
        raise AddressError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(public_key)}")
    return _bech32_encode(hrp, public_key)


def parse_address(text: str, hrp: str = DEFAULT_HRP) -> bytes:
    """Decode a bech32 address into its public key."""
    found_hrp, payload = _bech32_decode(text)
    if found_hrp != hrp:
        raise AddressError(f"expected hrp {hrp!r}, found {found_hrp!r}")
    if len(payload) != PUBLIC_KEY_LEN:
        raise AddressError(f"address holds {len(payload)} bytes, expected {PUBLIC_KEY_LEN}")
    return payload


def _base58_encode(raw: bytes) -> str:
    number = int.from_bytes(raw, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_BASE58_ALPHABET[remainder])
    leading = len(raw) - len(raw.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(digits))


def _base58_decode(text: str) -> bytes:
    number = 0
    for char in text:
        try:
            number = number * 58 + _BASE58_INDEX[char]
        except KeyError as exc:
            raise AddressError(f"invalid base58 character: {char!r}") from exc
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    leading = len(text) - len(text.lstrip("1"))
    return b"\x00" * leading + body


def encode_id(raw: bytes) -> str:
    """Return the CB58 string form of a 32-byte identifier."""
    raw = bytes(raw)
    if len(raw) != ID_LEN:
        raise AddressError(f"identifier must be {ID_LEN} bytes, got {len(raw)}")
    checksum = hashlib.sha256(raw).digest()[-_CB58_CHECKSUM_LEN:]
    return _base58_encode(raw + checksum)


def decode_id(text: str) -> bytes:
    """Decode a CB58 identifier string into its 32 bytes."""
    decoded = _base58_decode(text)
    if len(decoded) < _CB58_CHECKSUM_LEN:
        raise AddressError("identifier is too short")
    raw, checksum = decoded[:-_CB58_CHECKSUM_LEN], decoded[-_CB58_CHECKSUM_LEN:]
    if hashlib.sha256(raw).digest()[-_CB58_CHECKSUM_LEN:] != checksum:
        raise AddressError("invalid identifier checksum")
    if len(raw) != ID_LEN:
        raise AddressError(f"identifier holds {len(raw)} bytes, expected {ID_LEN}")
    return raw