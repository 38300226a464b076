"""Constants and error types for privatemsg."""

from enum import Enum


# Ledger program constants
CODE_HASH = bytes.fromhex("326792ea9981945c5ee81b1b459d2a986cc13aba6f9335ce16b6dd2e2823f496")
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HANDLE = "0x" + "00" * 32
ADDRESS_SIZE = 20

# Default deployment (Sepolia)
DEFAULT_CONTRACT_ADDRESS = "0x20b07c168eff2d2629da8b8a38e4a43a8882c3d3"
DEFAULT_RPC_URL = "https://1rpc.io/sepolia"
SEPOLIA_CHAIN_ID = 11155111

# Confidential-computation gateway (EIP-712 domain for user decryption)
DECRYPTION_DOMAIN_NAME = "Decryption"
DECRYPTION_DOMAIN_VERSION = "1"
DECRYPTION_CHAIN_ID = 55815
DECRYPTION_VERIFIER_ADDRESS = "0xb6e160b1ff80d67bfe90a85ee06ce0a2613607d1"

# Symmetric codec constants
KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE = 16
CIPHERTEXT_PREFIX = "0x"

# Authorization constants
MAX_AUTHORIZATION_DAYS = 10
SECONDS_PER_DAY = 86_400

# Sentinel contents for messages that are not (or cannot be) decrypted
DECRYPTION_FAILED_PLACEHOLDER = "[Decryption failed]"
ENCRYPTED_PLACEHOLDER = "[Encrypted]"


class ErrorCode(Enum):
    """Stable error codes. Callers branch on these, not on message text."""
    NOT_REGISTERED = "NOT_REGISTERED"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    CONVERSATION_NOT_FOUND = "CONVERSATION_NOT_FOUND"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    NOT_INITIALIZED = "NOT_INITIALIZED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"


# Exception types
class PrivateMsgError(Exception):
    """Base exception for privatemsg errors."""

    code: ErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class NotRegisteredError(PrivateMsgError):
    """Account has no password identity bound on the ledger."""
    code = ErrorCode.NOT_REGISTERED

    def __init__(self, account: str) -> None:
        super().__init__(f"Account not registered: {account}")
        self.account = account


class InvalidPasswordError(PrivateMsgError):
    """Password does not match the registered password identity."""
    code = ErrorCode.INVALID_PASSWORD


class DecryptionFailedError(PrivateMsgError):
    """A ciphertext or confidential handle could not be decrypted."""
    code = ErrorCode.DECRYPTION_FAILED


class ConversationNotFoundError(PrivateMsgError):
    """No conversation exists for the given id."""
    code = ErrorCode.CONVERSATION_NOT_FOUND

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class AlreadyRegisteredError(PrivateMsgError):
    """Account is already registered. Not retryable."""
    code = ErrorCode.ALREADY_REGISTERED

    def __init__(self, account: str) -> None:
        super().__init__(f"Account already registered: {account}")
        self.account = account


class NotInitializedError(PrivateMsgError):
    """Client or session is not ready for the requested operation."""
    code = ErrorCode.NOT_INITIALIZED


class TransactionFailedError(PrivateMsgError):
    """Ledger or network level failure."""
    code = ErrorCode.TRANSACTION_FAILED
