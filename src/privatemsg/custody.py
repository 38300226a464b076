"""
Confidential custody of conversation keys.

A conversation key is handed to the confidential-computation capability,
which returns an opaque handle and an input proof. The ledger program stores
the handle and grants read access to the participants' password identities.
Recovering the key later requires a signed, time-bounded authorization from
an identity that was granted access.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from cryptography.hazmat.primitives.asymmetric import ec
from web3 import Web3

from .authorization import (
    AuthorizationDomain,
    SignedAuthorization,
    create_authorization,
    verify_authorization,
)
from .crypto import key_from_int, key_to_int
from .identity import PasswordIdentity
from .types import (
    DECRYPTION_CHAIN_ID,
    DECRYPTION_DOMAIN_NAME,
    DECRYPTION_DOMAIN_VERSION,
    DECRYPTION_VERIFIER_ADDRESS,
    MAX_AUTHORIZATION_DAYS,
    DecryptionFailedError,
    PrivateMsgError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedInput:
    """A confidentially encrypted value ready for submission to the ledger."""

    handle: str
    """Opaque ciphertext handle (0x-prefixed 32 bytes)."""

    proof: str
    """Input proof binding the handle to contract and owner."""


class ConfidentialCustody(ABC):
    """Abstract confidential-computation capability."""

    @property
    @abstractmethod
    def authorization_domain(self) -> AuthorizationDomain:
        """EIP-712 domain that decryption authorizations must be signed under."""
        pass

    @abstractmethod
    async def encrypt_secret(self, value: int, contract_scope: str, owner: str) -> EncryptedInput:
        """Encrypt a uint256 for use by contract_scope, submitted by owner."""
        pass

    @abstractmethod
    async def authorize_and_decrypt(
        self,
        handle: str,
        contract_scope: str,
        authorization: SignedAuthorization,
    ) -> int:
        """Decrypt a handle for an authorized identity."""
        pass


class KeyCustody:
    """
    Generates, confidentially stores and recovers conversation keys.

    Neither generate() nor store() touches the ledger; submitting the handle
    is the caller's job, bundled into the send transaction.
    """

    def __init__(
        self,
        capability: ConfidentialCustody,
        contract_address: str,
        authorization_duration_days: int = MAX_AUTHORIZATION_DAYS,
        authorization_timeout: float = 30.0,
        authorization_attempts: int = 2,
    ) -> None:
        if authorization_attempts < 1:
            raise ValueError("authorization_attempts must be at least 1")
        self.capability = capability
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.authorization_duration_days = authorization_duration_days
        self.authorization_timeout = authorization_timeout
        self.authorization_attempts = authorization_attempts

    @staticmethod
    def generate() -> bytes:
        """
        Generate a fresh 256-bit conversation key.

        The key is the private scalar of a new secp256k1 keypair.
        """
        private_key = ec.generate_private_key(ec.SECP256K1())
        return key_from_int(private_key.private_numbers().private_value)

    async def store(self, key: bytes, conversation_id: str, owner: str) -> EncryptedInput:
        """
        Confidentially encrypt a conversation key.

        Args:
            key: 32-byte conversation key
            conversation_id: Conversation the key belongs to
            owner: Account that will submit the handle

        Returns:
            EncryptedInput with handle and proof
        """
        encrypted = await self.capability.encrypt_secret(
            key_to_int(key), self.contract_address, Web3.to_checksum_address(owner)
        )
        logger.debug("Encrypted conversation key for %s as handle %s", conversation_id, encrypted.handle)
        return encrypted

    async def recover(self, handle: str, identity: PasswordIdentity) -> bytes:
        """
        Recover a conversation key through a signed authorization.

        Each attempt builds and signs a fresh authorization. An attempt that
        does not finish within authorization_timeout (or the authorization's
        validity window, whichever is shorter) is abandoned and retried with
        a new authorization.

        Args:
            handle: Confidential handle stored on the ledger
            identity: Password identity that was granted access

        Returns:
            32-byte conversation key

        Raises:
            DecryptionFailedError: If the capability refuses, or all attempts time out
        """
        for attempt in range(1, self.authorization_attempts + 1):
            authorization = create_authorization(
                self.capability.authorization_domain,
                [self.contract_address],
                duration_days=self.authorization_duration_days,
            )
            signed = identity.sign_authorization(authorization)
            timeout = min(self.authorization_timeout, authorization.expires_at - time.time())

            try:
                value = await asyncio.wait_for(
                    self.capability.authorize_and_decrypt(handle, self.contract_address, signed),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Authorization attempt %d/%d for handle %s timed out",
                    attempt,
                    self.authorization_attempts,
                    handle,
                )
                continue
            except PrivateMsgError:
                raise
            except Exception as e:
                raise DecryptionFailedError(f"Failed to decrypt conversation key: {e}") from e

            return key_from_int(value)

        raise DecryptionFailedError(
            f"Authorization timed out after {self.authorization_attempts} attempts"
        )


class InMemoryConfidentialCustody(ConfidentialCustody):
    """
    In-memory confidential-computation capability (for testing).

    WARNING: Values are held in plaintext in process memory. It enforces the
    same access rules as the real capability (input proofs, ACL grants,
    signed and scoped authorizations) but offers no confidentiality.
    """

    def __init__(
        self,
        domain: Optional[AuthorizationDomain] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._domain = domain or AuthorizationDomain(
            name=DECRYPTION_DOMAIN_NAME,
            version=DECRYPTION_DOMAIN_VERSION,
            chain_id=DECRYPTION_CHAIN_ID,
            verifying_contract=DECRYPTION_VERIFIER_ADDRESS,
        )
        self._clock = clock
        self._values: dict[str, int] = {}
        self._proofs: dict[str, str] = {}
        self._acl: dict[str, set[str]] = {}

    @property
    def authorization_domain(self) -> AuthorizationDomain:
        return self._domain

    async def encrypt_secret(self, value: int, contract_scope: str, owner: str) -> EncryptedInput:
        handle = "0x" + os.urandom(32).hex()
        proof = self._proof_for(handle, contract_scope, owner)
        self._values[handle] = value
        self._proofs[handle] = proof
        return EncryptedInput(handle=handle, proof=proof)

    def verify_input(self, handle: str, proof: str, contract_scope: str, sender: str) -> bool:
        """Check that an input was encrypted for this contract by this sender."""
        expected = self._proofs.get(handle)
        if expected is None:
            return False
        return expected == proof == self._proof_for(handle, contract_scope, sender)

    def allow(self, handle: str, address: str) -> None:
        """Grant an address read access to a handle."""
        self._acl.setdefault(handle, set()).add(address.lower())

    def is_allowed(self, handle: str, address: str) -> bool:
        """Whether an address was granted read access to a handle."""
        return address.lower() in self._acl.get(handle, set())

    async def authorize_and_decrypt(
        self,
        handle: str,
        contract_scope: str,
        authorization: SignedAuthorization,
    ) -> int:
        request = authorization.authorization

        if request.domain != self._domain:
            raise DecryptionFailedError("Authorization signed for a different domain")

        if not verify_authorization(authorization):
            raise DecryptionFailedError("Invalid authorization signature")

        scope = [a.lower() for a in request.contract_addresses]
        if contract_scope.lower() not in scope:
            raise DecryptionFailedError("Contract not in authorization scope")

        if request.duration_days > MAX_AUTHORIZATION_DAYS:
            raise DecryptionFailedError("Authorization validity window too long")

        if not request.is_valid_at(int(self._clock())):
            raise DecryptionFailedError("Authorization is not valid at this time")

        if handle not in self._values:
            raise DecryptionFailedError(f"Unknown handle: {handle}")

        if not self.is_allowed(handle, contract_scope):
            raise DecryptionFailedError("Contract has no access to handle")

        if not self.is_allowed(handle, authorization.signer):
            raise DecryptionFailedError(f"{authorization.signer} has no access to handle")

        return self._values[handle]

    @staticmethod
    def _proof_for(handle: str, contract_scope: str, owner: str) -> str:
        packed = (
            bytes.fromhex(handle[2:])
            + bytes.fromhex(Web3.to_checksum_address(contract_scope)[2:])
            + bytes.fromhex(Web3.to_checksum_address(owner)[2:])
        )
        return Web3.to_hex(Web3.keccak(packed))
