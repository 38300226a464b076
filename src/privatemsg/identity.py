"""Password identity derivation for privatemsg."""

from dataclasses import dataclass

from eth_account import Account
from web3 import Web3

from .addressing import normalize_address
from .authorization import DecryptionAuthorization, SignedAuthorization, sign_authorization


@dataclass(frozen=True)
class PasswordIdentity:
    """
    A secondary keypair derived from an account address and a password.

    Used only to authorize confidential key recovery, never to send
    transactions. Do not persist it or keep it beyond the current operation.

    Attributes:
        address: The identity's public address (checksummed).
        private_key: The 32-byte secp256k1 private key.
    """

    address: str
    private_key: bytes

    def sign_authorization(self, authorization: DecryptionAuthorization) -> SignedAuthorization:
        """Sign a decryption authorization with this identity."""
        return sign_authorization(authorization, self.private_key)

    def __repr__(self) -> str:
        return f"PasswordIdentity({self.address})"

    def __str__(self) -> str:
        return f"PasswordIdentity({self.address})"


def derive_password_identity(account: str, password: str) -> PasswordIdentity:
    """
    Derive the password identity for an account.

    private_key = keccak256(utf8(lowercase(account) + password)); the address
    follows the ordinary account rule for that secp256k1 scalar.

    Args:
        account: The account address (any valid casing)
        password: The raw password string

    Returns:
        PasswordIdentity

    Raises:
        ValueError: If the account address is malformed
    """
    if not isinstance(password, str):
        raise ValueError("Password must be a string")

    combined = normalize_address(account).lower() + password
    private_key = bytes(Web3.keccak(text=combined))

    local_account = Account.from_key(private_key)
    return PasswordIdentity(address=local_account.address, private_key=private_key)


def verify_password(account: str, password: str, expected_address: str) -> bool:
    """
    Check a password against a registered password address.

    Returns:
        True if the derived address matches expected_address, False otherwise
    """
    if not expected_address or not Web3.is_address(expected_address):
        return False

    identity = derive_password_identity(account, password)
    return identity.address.lower() == expected_address.lower()
