"""
Authorization objects for confidential key recovery.

An authorization is an EIP-712 typed-data request, scoped to a set of
contracts and valid for a bounded number of days, signed by a password
identity. The confidential-computation capability checks the signature,
scope and validity window before releasing a secret it holds.
"""

import time
from dataclasses import dataclass
from typing import List, Optional

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from .types import MAX_AUTHORIZATION_DAYS, SECONDS_PER_DAY


@dataclass(frozen=True)
class AuthorizationDomain:
    """EIP-712 domain of the decryption verifier."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": Web3.to_checksum_address(self.verifying_contract),
        }


@dataclass(frozen=True)
class DecryptionAuthorization:
    """
    A short-lived, contract-scoped user decryption request.

    Attributes:
        domain: EIP-712 domain of the verifier
        public_key: Ephemeral public key binding this request (32 bytes)
        contract_addresses: Contracts whose handles may be decrypted
        start_timestamp: Unix time the request becomes valid
        duration_days: Validity window in days
    """

    domain: AuthorizationDomain
    public_key: bytes
    contract_addresses: List[str]
    start_timestamp: int
    duration_days: int

    @property
    def expires_at(self) -> int:
        """Unix time at which the request stops being valid."""
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_valid_at(self, timestamp: int) -> bool:
        """Whether the validity window covers the given unix time."""
        return self.start_timestamp <= timestamp < self.expires_at

    def typed_data(self) -> dict:
        """Full EIP-712 message (domain, types and values)."""
        return {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "UserDecryptRequestVerification": [
                    {"name": "publicKey", "type": "bytes"},
                    {"name": "contractAddresses", "type": "address[]"},
                    {"name": "startTimestamp", "type": "uint256"},
                    {"name": "durationDays", "type": "uint256"},
                ],
            },
            "primaryType": "UserDecryptRequestVerification",
            "domain": self.domain.as_dict(),
            "message": {
                "publicKey": self.public_key,
                "contractAddresses": [
                    Web3.to_checksum_address(a) for a in self.contract_addresses
                ],
                "startTimestamp": self.start_timestamp,
                "durationDays": self.duration_days,
            },
        }


@dataclass(frozen=True)
class SignedAuthorization:
    """An authorization together with its signature and claimed signer."""

    authorization: DecryptionAuthorization
    signature: bytes
    signer: str


def create_authorization(
    domain: AuthorizationDomain,
    contract_addresses: List[str],
    duration_days: int = MAX_AUTHORIZATION_DAYS,
    start_timestamp: Optional[int] = None,
) -> DecryptionAuthorization:
    """
    Build a fresh decryption authorization.

    Every call binds a new ephemeral X25519 public key, so two
    authorizations are never identical.

    Args:
        domain: EIP-712 domain of the verifier
        contract_addresses: Contract scope
        duration_days: Validity window (1 to MAX_AUTHORIZATION_DAYS)
        start_timestamp: Start of validity (default: now)

    Raises:
        ValueError: If the duration or scope is invalid
    """
    if not 1 <= duration_days <= MAX_AUTHORIZATION_DAYS:
        raise ValueError(
            f"Authorization duration must be 1-{MAX_AUTHORIZATION_DAYS} days, got {duration_days}"
        )
    if not contract_addresses:
        raise ValueError("Authorization needs at least one contract address")

    ephemeral = X25519PrivateKey.generate()
    return DecryptionAuthorization(
        domain=domain,
        public_key=ephemeral.public_key().public_bytes_raw(),
        contract_addresses=[Web3.to_checksum_address(a) for a in contract_addresses],
        start_timestamp=int(time.time()) if start_timestamp is None else start_timestamp,
        duration_days=duration_days,
    )


def sign_authorization(
    authorization: DecryptionAuthorization,
    private_key: bytes,
) -> SignedAuthorization:
    """
    Sign an authorization with a secp256k1 private key.

    Args:
        authorization: The request to sign
        private_key: 32-byte private key of the password identity

    Returns:
        SignedAuthorization carrying the 65-byte signature
    """
    signable = encode_typed_data(full_message=authorization.typed_data())
    signed = Account.sign_message(signable, private_key=private_key)
    signer = Account.from_key(private_key).address
    return SignedAuthorization(
        authorization=authorization,
        signature=bytes(signed.signature),
        signer=signer,
    )


def recover_signer(signed: SignedAuthorization) -> str:
    """Recover the checksummed address that produced the signature."""
    signable = encode_typed_data(full_message=signed.authorization.typed_data())
    return Account.recover_message(signable, signature=signed.signature)


def verify_authorization(signed: SignedAuthorization) -> bool:
    """
    Verify that the signature was produced by the claimed signer.

    Returns:
        True if the recovered signer matches, False otherwise
    """
    try:
        recovered = recover_signer(signed)
    except Exception:
        return False
    return recovered.lower() == signed.signer.lower()
