"""Client configuration and network presets."""

import dataclasses
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from .addressing import normalize_address
from .storage import DEFAULT_TTL
from .types import (
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_RPC_URL,
    MAX_AUTHORIZATION_DAYS,
    SEPOLIA_CHAIN_ID,
)

ENV_PREFIX = "PRIVATEMSG_"

LOCALNET_RPC_URL = "http://localhost:8545"
LOCALNET_CHAIN_ID = 31337


@dataclass
class PrivateMsgConfig:
    """Configuration for a PrivateMsgClient."""

    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    """Address of the message program."""

    rpc_url: str = DEFAULT_RPC_URL
    """JSON-RPC endpoint of the ledger node."""

    chain_id: int = SEPOLIA_CHAIN_ID
    """Chain id used when signing transactions."""

    key_cache_ttl: timedelta = DEFAULT_TTL
    """How long a recovered conversation key stays cached."""

    authorization_duration_days: int = MAX_AUTHORIZATION_DAYS
    """Validity window of decryption authorizations, in days (1 to 10)."""

    authorization_timeout: float = 30.0
    """Seconds to wait for one authorized decryption before retrying."""

    authorization_attempts: int = 2
    """How many fresh authorizations to try before giving up."""

    min_password_length: int = 6
    """Shortest password accepted by login and register."""

    receipt_timeout: float = 120.0
    """Seconds to wait for a transaction receipt."""

    def __post_init__(self) -> None:
        self.contract_address = normalize_address(self.contract_address)
        if not 1 <= self.authorization_duration_days <= MAX_AUTHORIZATION_DAYS:
            raise ValueError(
                f"authorization_duration_days must be between 1 and {MAX_AUTHORIZATION_DAYS}"
            )
        if self.authorization_attempts < 1:
            raise ValueError("authorization_attempts must be at least 1")
        if self.min_password_length < 1:
            raise ValueError("min_password_length must be at least 1")

    @classmethod
    def sepolia(cls) -> "PrivateMsgConfig":
        """Creates configuration for the public Sepolia deployment."""
        return cls()

    @classmethod
    def localnet(cls, contract_address: str) -> "PrivateMsgConfig":
        """Creates configuration for a local development node."""
        return cls(
            contract_address=contract_address,
            rpc_url=LOCALNET_RPC_URL,
            chain_id=LOCALNET_CHAIN_ID,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PrivateMsgConfig":
        """
        Creates configuration from PRIVATEMSG_* environment variables.

        Unset variables keep the Sepolia defaults. Recognized variables:
        CONTRACT_ADDRESS, RPC_URL, CHAIN_ID, KEY_CACHE_TTL (seconds),
        AUTHORIZATION_DURATION_DAYS, AUTHORIZATION_TIMEOUT,
        AUTHORIZATION_ATTEMPTS, MIN_PASSWORD_LENGTH, RECEIPT_TIMEOUT.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        overrides: dict = {}
        if get("CONTRACT_ADDRESS"):
            overrides["contract_address"] = get("CONTRACT_ADDRESS")
        if get("RPC_URL"):
            overrides["rpc_url"] = get("RPC_URL")
        if get("CHAIN_ID"):
            overrides["chain_id"] = int(get("CHAIN_ID"))
        if get("KEY_CACHE_TTL"):
            overrides["key_cache_ttl"] = timedelta(seconds=float(get("KEY_CACHE_TTL")))
        if get("AUTHORIZATION_DURATION_DAYS"):
            overrides["authorization_duration_days"] = int(get("AUTHORIZATION_DURATION_DAYS"))
        if get("AUTHORIZATION_TIMEOUT"):
            overrides["authorization_timeout"] = float(get("AUTHORIZATION_TIMEOUT"))
        if get("AUTHORIZATION_ATTEMPTS"):
            overrides["authorization_attempts"] = int(get("AUTHORIZATION_ATTEMPTS"))
        if get("MIN_PASSWORD_LENGTH"):
            overrides["min_password_length"] = int(get("MIN_PASSWORD_LENGTH"))
        if get("RECEIPT_TIMEOUT"):
            overrides["receipt_timeout"] = float(get("RECEIPT_TIMEOUT"))

        return cls(**overrides)

    def with_contract(self, contract_address: str) -> "PrivateMsgConfig":
        """Returns a copy pointing at a different program deployment."""
        return dataclasses.replace(self, contract_address=contract_address)
