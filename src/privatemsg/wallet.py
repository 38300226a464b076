"""Signing wallet interface and a local key implementation."""

from abc import ABC, abstractmethod

from eth_account import Account
from eth_account.signers.local import LocalAccount


class SigningWallet(ABC):
    """Abstract signing capability for an account identity."""

    @property
    @abstractmethod
    def address(self) -> str:
        """The account address (checksummed)."""
        pass

    @abstractmethod
    def sign_transaction(self, transaction: dict) -> bytes:
        """Sign a transaction dict and return the raw signed bytes."""
        pass


class LocalWallet(SigningWallet):
    """
    Wallet backed by a private key held in process memory.

    Suitable for scripts and tests. Wallet key custody proper belongs to an
    external wallet.
    """

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: bytes) -> "LocalWallet":
        """Create a wallet from a 32-byte private key."""
        return cls(Account.from_key(private_key))

    @classmethod
    def create(cls) -> "LocalWallet":
        """Create a wallet with a fresh random key."""
        return cls(Account.create())

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, transaction: dict) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)

    def __repr__(self) -> str:
        return f"LocalWallet({self.address})"
