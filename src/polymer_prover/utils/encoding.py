"""
Encoding utilities for persisted records.

Records are stored as an 8-byte type discriminator followed by the CBOR
encoding of the record's ``to_dict()``. The discriminator stops one record type
from ever being decoded as another.
"""

import logging
from typing import Any, Protocol, TypeVar

import cbor2
from web3 import Web3

from ..errors import InvalidAccountData

logger = logging.getLogger(__name__)

DISCRIMINATOR_SIZE = 8


class Record(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


R = TypeVar("R")


def discriminator(record_type: type) -> bytes:
    """First 8 bytes of keccak("account:<TypeName>")."""
    return bytes(Web3.keccak(text=f"account:{record_type.__name__}"))[:DISCRIMINATOR_SIZE]


def encode_record(record: Record) -> bytes:
    return discriminator(type(record)) + cbor2.dumps(record.to_dict())


def decode_record(record_type: type[R], data: bytes) -> R:
    """
    Decode bytes written by ``encode_record`` back into ``record_type``.

    Raises:
        InvalidAccountData: If the discriminator or payload does not match
    """
    expected = discriminator(record_type)
    if data[:DISCRIMINATOR_SIZE] != expected:
        raise InvalidAccountData(
            f"account discriminator mismatch: expected {record_type.__name__}"
        )
    try:
        fields = cbor2.loads(data[DISCRIMINATOR_SIZE:])
        return record_type.from_dict(fields)
    except (cbor2.CBORDecodeError, KeyError, TypeError) as e:
        raise InvalidAccountData(f"malformed {record_type.__name__} account: {e}") from e


def address_from_hex(value: str) -> bytes:
    """
    Convert a hex string (with or without "0x" prefix) into a 20-byte address.

    Short inputs are left-padded with zeros and long inputs keep their last
    20 bytes. Input that is not hex yields the zero address.
    """
    try:
        src = bytes.fromhex(value.removeprefix("0x"))
    except ValueError:
        logger.warning(f"Could not decode address {value!r}, using zero address")
        return b"\x00" * 20
    return src[-20:].rjust(20, b"\x00")
