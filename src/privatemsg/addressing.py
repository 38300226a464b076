"""Conversation addressing for privatemsg."""

from typing import Tuple

from web3 import Web3

from .types import CODE_HASH, ADDRESS_SIZE


def normalize_address(value: str) -> str:
    """
    Validate an account address and return its EIP-55 checksum form.

    Args:
        value: Hex address (any valid casing)

    Returns:
        Checksummed address

    Raises:
        ValueError: If value is not a valid 20-byte hex address
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return Web3.to_checksum_address(value)


def canonical_pair(address_a: str, address_b: str) -> Tuple[str, str]:
    """Order two addresses by their unsigned numeric value, lower first."""
    a = normalize_address(address_a)
    b = normalize_address(address_b)
    if int(a, 16) < int(b, 16):
        return a, b
    return b, a


def conversation_id(address_a: str, address_b: str) -> str:
    """
    Compute the conversation id for an unordered pair of accounts.

    Same packing as the ledger program's getMsgID:
    keccak256(low ‖ high ‖ CODE_HASH), lower 20 bytes, as an address.

    Args:
        address_a: One participant
        address_b: The other participant

    Returns:
        Checksummed conversation id
    """
    low, high = canonical_pair(address_a, address_b)
    packed = bytes.fromhex(low[2:]) + bytes.fromhex(high[2:]) + CODE_HASH
    digest = Web3.keccak(packed)
    return Web3.to_checksum_address("0x" + bytes(digest[-ADDRESS_SIZE:]).hex())
