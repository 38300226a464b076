"""
Ledger interfaces for privatemsg.

This module provides the abstract LedgerClient the protocol depends on,
the record types it exchanges, and an in-memory ledger that reproduces the
message program's rules for tests and local use.
"""

import asyncio
import dataclasses
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .addressing import conversation_id, normalize_address
from .custody import InMemoryConfidentialCustody
from .models import TransactionReceipt
from .types import DEFAULT_CONTRACT_ADDRESS, ZERO_ADDRESS, TransactionFailedError
from .wallet import SigningWallet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedMessageRecord:
    """A message as stored on the ledger."""

    sender: str
    """Sender address."""

    recipient: str
    """Recipient address."""

    ciphertext: str
    """Encrypted body (0x-prefixed hex)."""

    send_time: int
    """Block timestamp (Unix time)."""


@dataclass
class ConversationRecord:
    """The ledger's view of one conversation."""

    conversation_id: str
    """Conversation id."""

    key_handle: Optional[str]
    """Confidential handle of the conversation key (None if never stored)."""

    sender: str
    """Participant who sent the first message."""

    recipient: str
    """The other participant."""

    messages: List[EncryptedMessageRecord] = field(default_factory=list)
    """Messages in append order."""

    @property
    def participants(self) -> List[str]:
        return [self.sender, self.recipient]


class LedgerClient(ABC):
    """Abstract client for the message program, bound to one account."""

    @property
    @abstractmethod
    def account(self) -> str:
        """Address of the account this client transacts as."""
        pass

    @abstractmethod
    async def register(self, password_address: str) -> str:
        """Bind the account to a password address. Returns the transaction hash."""
        pass

    @abstractmethod
    async def get_registered_identity(self, account: str) -> Optional[str]:
        """Password address registered for an account, or None."""
        pass

    @abstractmethod
    async def send_message(self, to: str, key_handle: str, ciphertext: str, proof: str) -> str:
        """Submit a message. Returns the transaction hash."""
        pass

    @abstractmethod
    async def wait_for_receipt(self, transaction_hash: str) -> TransactionReceipt:
        """Wait for a submitted transaction to be confirmed."""
        pass

    @abstractmethod
    async def get_conversation_key_handle(self, conversation_id: str) -> Optional[str]:
        """Canonical key handle stored for a conversation, or None."""
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        """A conversation with all of its messages, or None."""
        pass

    @abstractmethod
    async def list_conversations(self, account: str) -> List[ConversationRecord]:
        """All conversations an account participates in."""
        pass

    @abstractmethod
    async def compute_conversation_id(self, address_a: str, address_b: str) -> str:
        """The ledger's own conversation id for a pair."""
        pass


class InMemoryLedger:
    """
    In-memory message program (for testing).

    Rules reproduced from the deployed program:
    - register() binds once; a second call reverts. On registration the
      password address is granted access to the key of every conversation
      the account already takes part in.
    - sendMsg() stores the submitted key handle only when the pair's slot is
      empty, granting the program, the sender and both participants'
      registered password addresses. Later handles are ignored.
    - Messages are appended in submission order.
    """

    def __init__(
        self,
        custody: InMemoryConfidentialCustody,
        contract_address: str = DEFAULT_CONTRACT_ADDRESS,
        clock: Callable[[], float] = time.time,
        latency: float = 0.0,
    ) -> None:
        self.custody = custody
        self.contract_address = normalize_address(contract_address)
        self.latency = latency
        self._clock = clock
        self._users: dict[str, str] = {}
        self._key_handles: dict[str, str] = {}
        self._conversations: dict[str, ConversationRecord] = {}
        self._user_conversations: dict[str, List[str]] = {}
        self._receipts: dict[str, TransactionReceipt] = {}
        self._block_number = 0

    def connect(self, wallet: SigningWallet) -> "InMemoryLedgerClient":
        """Return a client that transacts as the wallet's account."""
        return InMemoryLedgerClient(self, wallet.address)

    # MARK: - Program entry points

    def register(self, sender: str, password_address: str) -> TransactionReceipt:
        sender = normalize_address(sender)
        password_address = normalize_address(password_address)

        if password_address == ZERO_ADDRESS:
            raise TransactionFailedError("Reverted: invalid password address")
        if sender in self._users:
            raise TransactionFailedError("Reverted: Already registered")

        self._users[sender] = password_address
        for cid in self._user_conversations.get(sender, []):
            self.custody.allow(self._key_handles[cid], password_address)

        logger.info("Registered %s with password address %s", sender, password_address)
        return self._mine()

    def send_msg(
        self,
        sender: str,
        to: str,
        key_handle: str,
        ciphertext: str,
        proof: str,
    ) -> TransactionReceipt:
        sender = normalize_address(sender)
        to = normalize_address(to)

        if to == ZERO_ADDRESS:
            raise TransactionFailedError("Reverted: invalid recipient")
        if not self.custody.verify_input(key_handle, proof, self.contract_address, sender):
            raise TransactionFailedError("Reverted: invalid input proof")

        cid = conversation_id(sender, to)
        if cid not in self._key_handles:
            self._key_handles[cid] = key_handle
            self.custody.allow(key_handle, self.contract_address)
            self.custody.allow(key_handle, sender)
            for participant in (sender, to):
                password_address = self._users.get(participant)
                if password_address is not None:
                    self.custody.allow(key_handle, password_address)

            self._conversations[cid] = ConversationRecord(
                conversation_id=cid,
                key_handle=key_handle,
                sender=sender,
                recipient=to,
            )
            for participant in {sender, to}:
                self._user_conversations.setdefault(participant, []).append(cid)

        self._conversations[cid].messages.append(
            EncryptedMessageRecord(
                sender=sender,
                recipient=to,
                ciphertext=ciphertext,
                send_time=int(self._clock()),
            )
        )
        return self._mine()

    # MARK: - Views

    def get_user(self, account: str) -> Optional[str]:
        return self._users.get(normalize_address(account))

    def key_handle(self, cid: str) -> Optional[str]:
        return self._key_handles.get(normalize_address(cid))

    def conversation(self, cid: str) -> Optional[ConversationRecord]:
        record = self._conversations.get(normalize_address(cid))
        if record is None:
            return None
        return dataclasses.replace(record, messages=list(record.messages))

    def conversations_for(self, account: str) -> List[ConversationRecord]:
        cids = self._user_conversations.get(normalize_address(account), [])
        return [self.conversation(cid) for cid in cids]

    def receipt(self, transaction_hash: str) -> TransactionReceipt:
        receipt = self._receipts.get(transaction_hash)
        if receipt is None:
            raise TransactionFailedError(f"Unknown transaction: {transaction_hash}")
        return receipt

    def _mine(self) -> TransactionReceipt:
        self._block_number += 1
        receipt = TransactionReceipt(
            transaction_hash="0x" + os.urandom(32).hex(),
            block_number=self._block_number,
        )
        self._receipts[receipt.transaction_hash] = receipt
        return receipt


class InMemoryLedgerClient(LedgerClient):
    """LedgerClient bound to one account of an InMemoryLedger."""

    def __init__(self, ledger: InMemoryLedger, account: str) -> None:
        self._ledger = ledger
        self._account = normalize_address(account)

    @property
    def account(self) -> str:
        return self._account

    async def register(self, password_address: str) -> str:
        await self._io()
        return self._ledger.register(self._account, password_address).transaction_hash

    async def get_registered_identity(self, account: str) -> Optional[str]:
        await self._io()
        return self._ledger.get_user(account)

    async def send_message(self, to: str, key_handle: str, ciphertext: str, proof: str) -> str:
        await self._io()
        receipt = self._ledger.send_msg(self._account, to, key_handle, ciphertext, proof)
        return receipt.transaction_hash

    async def wait_for_receipt(self, transaction_hash: str) -> TransactionReceipt:
        await self._io()
        return self._ledger.receipt(transaction_hash)

    async def get_conversation_key_handle(self, conversation_id: str) -> Optional[str]:
        await self._io()
        return self._ledger.key_handle(conversation_id)

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        await self._io()
        return self._ledger.conversation(conversation_id)

    async def list_conversations(self, account: str) -> List[ConversationRecord]:
        await self._io()
        return self._ledger.conversations_for(account)

    async def compute_conversation_id(self, address_a: str, address_b: str) -> str:
        await self._io()
        return conversation_id(address_a, address_b)

    async def _io(self) -> None:
        # Every call suspends once, like a network round trip.
        await asyncio.sleep(self._ledger.latency)
