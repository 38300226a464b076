"""Models for privatemsg messages, conversations and results."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, List


class MessageDirection(Enum):
    """Direction of a message relative to the current user."""
    SENT = "sent"
    RECEIVED = "received"


@dataclass
class Message:
    """A decrypted message between two accounts."""
    content: str
    encrypted_content: str
    timestamp: int
    sender: str
    recipient: str
    direction: MessageDirection = MessageDirection.RECEIVED
    decryption_failed: bool = False

    def sent_at(self) -> datetime:
        """The ledger send time as a datetime."""
        return datetime.fromtimestamp(self.timestamp)


@dataclass
class ConversationSummary:
    """A conversation as listed for an account (message bodies not decrypted)."""
    conversation_id: str
    participants: List[str]
    message_count: int
    encrypted_key_handle: Optional[str]
    other_user: Optional[str] = None
    last_message: Optional[Message] = None

    def is_empty(self) -> bool:
        """Whether the conversation has any messages."""
        return self.message_count == 0


@dataclass
class TransactionReceipt:
    """A confirmed ledger transaction."""
    transaction_hash: str
    block_number: Optional[int] = None


@dataclass
class SendResult:
    """Result of a confirmed send.

    key_mismatch is set when this send minted a conversation key but the
    ledger kept a different one (a concurrent first send won). The message
    was encrypted under the discarded key and will not decrypt.
    """
    transaction_hash: str
    conversation_id: str
    block_number: Optional[int] = None
    key_mismatch: bool = False


@dataclass
class RegisterResult:
    """Result of registering a password identity."""
    transaction_hash: str
    password_address: str
    block_number: Optional[int] = None


@dataclass
class LoginResult:
    """Result of establishing a session."""
    success: bool
    is_new_account: bool
    message: str


@dataclass
class NewMessageEvent:
    """A message that appeared on the ledger since the last poll."""
    conversation_id: str
    sender: str
    recipient: str
    encrypted_content: str
    timestamp: int


@dataclass
class EventCallbacks:
    """Optional hooks for transaction lifecycle and errors."""
    on_transaction_submitted: Optional[Callable[[str], None]] = None
    on_transaction_confirmed: Optional[Callable[[TransactionReceipt], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
