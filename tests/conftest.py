"""Shared fixtures: an in-memory ledger, custody capability and clients."""

from datetime import datetime, timedelta

import pytest

from privatemsg.client import PrivateMsgClient
from privatemsg.config import PrivateMsgConfig
from privatemsg.custody import InMemoryConfidentialCustody
from privatemsg.ledger import InMemoryLedger
from privatemsg.wallet import LocalWallet
from .test_vectors import ALICE_PRIVATE_KEY_HEX, BOB_PRIVATE_KEY_HEX


class FakeClock:
    """Manually advanced clock for the key cache."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingCustody(InMemoryConfidentialCustody):
    """In-memory custody that counts decryption requests."""

    def __init__(self) -> None:
        super().__init__()
        self.decrypt_calls = 0

    async def authorize_and_decrypt(self, handle, contract_scope, authorization):
        self.decrypt_calls += 1
        return await super().authorize_and_decrypt(handle, contract_scope, authorization)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def custody():
    return RecordingCustody()


@pytest.fixture
def ledger(custody):
    return InMemoryLedger(custody)


@pytest.fixture
def config():
    return PrivateMsgConfig.sepolia()


@pytest.fixture
def alice_wallet():
    return LocalWallet.from_key(bytes.fromhex(ALICE_PRIVATE_KEY_HEX))


@pytest.fixture
def bob_wallet():
    return LocalWallet.from_key(bytes.fromhex(BOB_PRIVATE_KEY_HEX))


@pytest.fixture
def carol_wallet():
    return LocalWallet.create()


@pytest.fixture
def make_client(ledger, custody, config, clock):
    """Factory for clients sharing one ledger and custody capability."""

    def factory(wallet, **kwargs) -> PrivateMsgClient:
        return PrivateMsgClient(
            ledger.connect(wallet),
            custody,
            config=kwargs.pop("config", config),
            clock=kwargs.pop("clock", clock),
            **kwargs,
        )

    return factory


@pytest.fixture
def alice(make_client, alice_wallet):
    return make_client(alice_wallet)


@pytest.fixture
def bob(make_client, bob_wallet):
    return make_client(bob_wallet)


@pytest.fixture
def carol(make_client, carol_wallet):
    return make_client(carol_wallet)
