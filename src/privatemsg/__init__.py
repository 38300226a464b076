"""
PrivateMsg - Confidential messaging over a public ledger

Python implementation of the PrivateMsg protocol: password-derived identities,
confidentially stored per-conversation keys, and AES-256-CBC message bodies.
"""

__version__ = "0.1.0"

from .identity import PasswordIdentity, derive_password_identity, verify_password
from .addressing import normalize_address, canonical_pair, conversation_id
from .crypto import (
    encrypt_message,
    decrypt_message,
    decrypt_records,
    key_to_int,
    key_from_int,
)
from .authorization import (
    AuthorizationDomain,
    DecryptionAuthorization,
    SignedAuthorization,
    create_authorization,
    sign_authorization,
    recover_signer,
    verify_authorization,
)
from .custody import (
    ConfidentialCustody,
    EncryptedInput,
    KeyCustody,
    InMemoryConfidentialCustody,
)
from .storage import KeyCache, DEFAULT_TTL
from .session import Session
from .wallet import SigningWallet, LocalWallet
from .ledger import (
    LedgerClient,
    EncryptedMessageRecord,
    ConversationRecord,
    InMemoryLedger,
    InMemoryLedgerClient,
)
from .web3_ledger import Web3LedgerClient, CONTRACT_ABI
from .subscription import Subscription, Cursor
from .config import PrivateMsgConfig
from .client import PrivateMsgClient
from .models import (
    MessageDirection,
    Message,
    ConversationSummary,
    TransactionReceipt,
    SendResult,
    RegisterResult,
    LoginResult,
    NewMessageEvent,
    EventCallbacks,
)
from .types import (
    CODE_HASH,
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_RPC_URL,
    DECRYPTION_FAILED_PLACEHOLDER,
    ENCRYPTED_PLACEHOLDER,
    MAX_AUTHORIZATION_DAYS,
    ErrorCode,
    PrivateMsgError,
    NotRegisteredError,
    InvalidPasswordError,
    DecryptionFailedError,
    ConversationNotFoundError,
    AlreadyRegisteredError,
    NotInitializedError,
    TransactionFailedError,
)

__all__ = [
    # Identity
    "PasswordIdentity",
    "derive_password_identity",
    "verify_password",
    # Addressing
    "normalize_address",
    "canonical_pair",
    "conversation_id",
    # Crypto
    "encrypt_message",
    "decrypt_message",
    "decrypt_records",
    "key_to_int",
    "key_from_int",
    # Authorization
    "AuthorizationDomain",
    "DecryptionAuthorization",
    "SignedAuthorization",
    "create_authorization",
    "sign_authorization",
    "recover_signer",
    "verify_authorization",
    # Custody
    "ConfidentialCustody",
    "EncryptedInput",
    "KeyCustody",
    "InMemoryConfidentialCustody",
    # Storage and session
    "KeyCache",
    "DEFAULT_TTL",
    "Session",
    # Ledger
    "SigningWallet",
    "LocalWallet",
    "LedgerClient",
    "EncryptedMessageRecord",
    "ConversationRecord",
    "InMemoryLedger",
    "InMemoryLedgerClient",
    "Web3LedgerClient",
    "CONTRACT_ABI",
    # Client
    "PrivateMsgConfig",
    "PrivateMsgClient",
    "Subscription",
    "Cursor",
    # Models
    "MessageDirection",
    "Message",
    "ConversationSummary",
    "TransactionReceipt",
    "SendResult",
    "RegisterResult",
    "LoginResult",
    "NewMessageEvent",
    "EventCallbacks",
    # Constants
    "CODE_HASH",
    "DEFAULT_CONTRACT_ADDRESS",
    "DEFAULT_RPC_URL",
    "DECRYPTION_FAILED_PLACEHOLDER",
    "ENCRYPTED_PLACEHOLDER",
    "MAX_AUTHORIZATION_DAYS",
    # Errors
    "ErrorCode",
    "PrivateMsgError",
    "NotRegisteredError",
    "InvalidPasswordError",
    "DecryptionFailedError",
    "ConversationNotFoundError",
    "AlreadyRegisteredError",
    "NotInitializedError",
    "TransactionFailedError",
]
