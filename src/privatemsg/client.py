"""
PrivateMsg client for confidential messaging over a public ledger.

The PrivateMsgClient ties the protocol together: password identities,
conversation addressing, conversation key custody and caching, and
message encryption on top of a LedgerClient.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from .addressing import conversation_id, normalize_address
from .config import PrivateMsgConfig
from .crypto import decrypt_records, encrypt_message
from .custody import ConfidentialCustody, KeyCustody
from .identity import PasswordIdentity, derive_password_identity, verify_password
from .ledger import ConversationRecord, LedgerClient
from .models import (
    ConversationSummary,
    EventCallbacks,
    LoginResult,
    Message,
    MessageDirection,
    NewMessageEvent,
    RegisterResult,
    SendResult,
    TransactionReceipt,
)
from .session import Session
from .storage import KeyCache
from .subscription import Cursor, MessageCallback, Subscription
from .types import (
    ENCRYPTED_PLACEHOLDER,
    AlreadyRegisteredError,
    ConversationNotFoundError,
    InvalidPasswordError,
    NotInitializedError,
    NotRegisteredError,
)
from .wallet import SigningWallet
from .web3_ledger import Web3LedgerClient

logger = logging.getLogger(__name__)


class PrivateMsgClient:
    """
    High-level client for PrivateMsg.

    The PrivateMsgClient provides methods for:
    - Registering and logging in with a password
    - Sending encrypted messages
    - Listing conversations and reading decrypted messages
    - Polling or subscribing for new messages

    Example usage:
        ```python
        client = PrivateMsgClient.from_config(
            PrivateMsgConfig.sepolia(),
            wallet=LocalWallet.from_key(private_key),
            custody=my_confidential_custody,
        )

        await client.login("correct horse battery")
        result = await client.send("0xRecipient...", "Hello!")

        for msg in await client.get_messages(result.conversation_id):
            print(f"{msg.sender}: {msg.content}")
        ```
    """

    def __init__(
        self,
        ledger: LedgerClient,
        custody: ConfidentialCustody,
        config: Optional[PrivateMsgConfig] = None,
        callbacks: Optional[EventCallbacks] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize the client.

        Args:
            ledger: LedgerClient bound to the account that sends messages.
            custody: Confidential-computation capability for conversation keys.
            config: Client configuration (default: Sepolia).
            callbacks: Optional transaction lifecycle hooks.
            clock: Time source for the key cache.
        """
        self.config = config or PrivateMsgConfig.sepolia()
        self.ledger = ledger
        self.callbacks = callbacks or EventCallbacks()
        self.key_custody = KeyCustody(
            custody,
            self.config.contract_address,
            authorization_duration_days=self.config.authorization_duration_days,
            authorization_timeout=self.config.authorization_timeout,
            authorization_attempts=self.config.authorization_attempts,
        )
        self.session = Session(key_cache_ttl=self.config.key_cache_ttl, clock=clock)

    @classmethod
    def from_config(
        cls,
        config: PrivateMsgConfig,
        wallet: SigningWallet,
        custody: ConfidentialCustody,
        callbacks: Optional[EventCallbacks] = None,
    ) -> "PrivateMsgClient":
        """Create a client talking to the deployed program over JSON-RPC."""
        ledger = Web3LedgerClient.from_config(config, wallet)
        return cls(ledger, custody, config=config, callbacks=callbacks)

    @property
    def address(self) -> str:
        """The account's address."""
        return self.ledger.account

    @property
    def is_logged_in(self) -> bool:
        """Whether a password is cached for this session."""
        return self.session.is_active

    @property
    def key_cache(self) -> KeyCache:
        return self.session.key_cache

    # MARK: - Registration and Session

    async def register(self, password: str) -> RegisterResult:
        """
        Bind a password identity to this account on the ledger.

        Raises:
            ValueError: If the password is too short.
            AlreadyRegisteredError: If the account is already registered.
            TransactionFailedError: If the ledger rejects the transaction.
        """
        self._check_password(password)

        try:
            if await self.is_registered():
                raise AlreadyRegisteredError(self.address)

            identity = derive_password_identity(self.address, password)
            receipt = await self._submit(self.ledger.register(identity.address))
        except Exception as e:
            self._notify_error(e)
            raise

        logger.info("Registered %s with password address %s", self.address, identity.address)
        return RegisterResult(
            transaction_hash=receipt.transaction_hash,
            password_address=identity.address,
            block_number=receipt.block_number,
        )

    async def login(self, password: str) -> LoginResult:
        """
        Start a session, registering the account first if needed.

        A wrong password for a registered account is reported in the result,
        not raised.
        """
        self._check_password(password)

        registered = await self.ledger.get_registered_identity(self.address)
        if registered is None:
            await self.register(password)
            self.session.start(password)
            return LoginResult(
                success=True,
                is_new_account=True,
                message="Registered and logged in",
            )

        if not verify_password(self.address, password, registered):
            logger.debug("Login rejected for %s: password mismatch", self.address)
            return LoginResult(success=False, is_new_account=False, message="Invalid password")

        self.session.start(password)
        return LoginResult(success=True, is_new_account=False, message="Logged in")

    def logout(self) -> None:
        """End the session, dropping the cached password and all cached keys."""
        self.session.end()

    async def is_registered(self, account: Optional[str] = None) -> bool:
        """Whether an account (default: this one) has a password identity."""
        registered = await self.ledger.get_registered_identity(account or self.address)
        return registered is not None

    async def verify_password(self, account: str, password: str) -> bool:
        """
        Check a password against an account's registered password identity.

        Raises:
            NotRegisteredError: If the account is not registered.
        """
        account = normalize_address(account)
        registered = await self.ledger.get_registered_identity(account)
        if registered is None:
            raise NotRegisteredError(account)
        return verify_password(account, password, registered)

    # MARK: - Sending Messages

    async def send(self, to: str, text: str, password: Optional[str] = None) -> SendResult:
        """
        Encrypt and send a message.

        The first message of a conversation mints its key. If another first
        message for the same pair was confirmed before this one, the ledger
        keeps the other key and the result is flagged with key_mismatch.

        Args:
            to: Recipient's address.
            text: Message text.
            password: Password to use if the conversation key must be
                recovered (default: the session password).

        Returns:
            SendResult with the transaction hash and conversation id.

        Raises:
            NotInitializedError: If a key must be recovered and no password is available.
            NotRegisteredError: If a key must be recovered and this account is not registered.
            InvalidPasswordError: If the password does not match.
            DecryptionFailedError: If the conversation key cannot be recovered.
            TransactionFailedError: If the ledger rejects the transaction.
        """
        to = normalize_address(to)
        cid = conversation_id(self.address, to)

        try:
            key = await self._cached_or_recovered_key(cid, password)
            generated = key is None
            if generated:
                logger.debug("No key for conversation %s yet, generating one", cid)
                key = KeyCustody.generate()

            ciphertext = encrypt_message(text, key)
            encrypted = await self.key_custody.store(key, cid, self.address)
            receipt = await self._submit(
                self.ledger.send_message(to, encrypted.handle, ciphertext, encrypted.proof)
            )

            key_mismatch = False
            if generated:
                canonical = await self.ledger.get_conversation_key_handle(cid)
                if canonical is not None and canonical.lower() == encrypted.handle.lower():
                    self.key_cache.store(cid, key)
                else:
                    key_mismatch = True
                    logger.warning(
                        "Conversation %s already had a key; message in %s was encrypted "
                        "under a discarded key",
                        cid,
                        receipt.transaction_hash,
                    )
        except Exception as e:
            self._notify_error(e)
            raise

        logger.info("Sent message to %s in conversation %s (%s)", to, cid, receipt.transaction_hash)
        return SendResult(
            transaction_hash=receipt.transaction_hash,
            conversation_id=cid,
            block_number=receipt.block_number,
            key_mismatch=key_mismatch,
        )

    # MARK: - Conversations

    def conversation_id(self, other: str) -> str:
        """Conversation id between this account and another."""
        return conversation_id(self.address, other)

    async def conversation_id_between(self, address_a: str, address_b: str) -> str:
        """Conversation id of any two accounts, as computed by the ledger program."""
        return await self.ledger.compute_conversation_id(address_a, address_b)

    async def list_conversations(self, account: Optional[str] = None) -> List[ConversationSummary]:
        """
        List conversations of an account (default: this one), most recent first.

        Message bodies are not decrypted; last_message carries the
        encrypted placeholder.
        """
        account = normalize_address(account or self.address)
        records = await self.ledger.list_conversations(account)
        summaries = [self._summarize(record, account) for record in records]
        summaries.sort(
            key=lambda s: s.last_message.timestamp if s.last_message else 0,
            reverse=True,
        )
        return summaries

    async def get_conversation(self, conversation_id: str) -> ConversationSummary:
        """
        Summary of a single conversation.

        Raises:
            ConversationNotFoundError: If no message was ever sent in it.
        """
        conversation_id = normalize_address(conversation_id)
        record = await self.ledger.get_conversation(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        return self._summarize(record, self.address)

    async def get_messages(self, conversation_id: str, password: Optional[str] = None) -> List[Message]:
        """
        Fetch and decrypt all messages of a conversation.

        Messages that fail to decrypt are returned with placeholder content
        and decryption_failed set. A conversation without a key yields an
        empty list.

        The password is only checked when the key has to be recovered. While
        the conversation key is cached, the password argument is ignored.

        Raises:
            NotInitializedError: If the key must be recovered and no password is available.
            NotRegisteredError: If this account is not registered.
            InvalidPasswordError: If the password does not match.
            DecryptionFailedError: If the conversation key cannot be recovered.
        """
        conversation_id = normalize_address(conversation_id)
        record = await self.ledger.get_conversation(conversation_id)
        if record is None or record.key_handle is None:
            return []

        key = await self._cached_or_recovered_key(conversation_id, password, record.key_handle)
        return decrypt_records(record.messages, key, self_address=self.address)

    async def conversation_with(
        self, other: str, password: Optional[str] = None
    ) -> Tuple[str, List[Message]]:
        """Conversation id and decrypted messages exchanged with another account."""
        cid = self.conversation_id(other)
        return cid, await self.get_messages(cid, password)

    # MARK: - New Messages

    async def list_since(
        self, cursor: Optional[Cursor] = None
    ) -> Tuple[List[NewMessageEvent], Cursor]:
        """
        Messages appended since a cursor, and the cursor to use next time.

        With no cursor every message is returned. Events are not decrypted.
        """
        records = await self.ledger.list_conversations(self.address)
        events: List[NewMessageEvent] = []
        next_cursor: Cursor = {}

        for record in records:
            cid = normalize_address(record.conversation_id)
            seen = cursor.get(cid, 0) if cursor else 0
            for msg in record.messages[seen:]:
                events.append(
                    NewMessageEvent(
                        conversation_id=cid,
                        sender=msg.sender,
                        recipient=msg.recipient,
                        encrypted_content=msg.ciphertext,
                        timestamp=msg.send_time,
                    )
                )
            next_cursor[cid] = len(record.messages)

        events.sort(key=lambda e: e.timestamp)
        return events, next_cursor

    async def subscribe(
        self,
        callback: MessageCallback,
        interval: float,
        cursor: Optional[Cursor] = None,
    ) -> Subscription:
        """
        Call back for every new message, polling every interval seconds.

        Only messages appended after this call (or after cursor, if given)
        are delivered. Poll failures go to the on_error callback.
        """
        subscription = Subscription(
            self.list_since,
            callback,
            interval,
            on_error=self.callbacks.on_error,
        )
        await subscription.start(cursor)
        return subscription

    # MARK: - Internals

    def _check_password(self, password: str) -> None:
        if not isinstance(password, str) or len(password) < self.config.min_password_length:
            raise ValueError(
                f"Password must be at least {self.config.min_password_length} characters"
            )

    async def _cached_or_recovered_key(
        self,
        cid: str,
        password: Optional[str],
        handle: Optional[str] = None,
    ) -> Optional[bytes]:
        """Conversation key from the cache or the ledger, or None if it has none."""
        key = self.key_cache.retrieve(cid)
        if key is not None:
            logger.debug("Key cache hit for conversation %s", cid)
            return key

        if handle is None:
            handle = await self.ledger.get_conversation_key_handle(cid)
            if handle is None:
                return None

        logger.debug("Key cache miss for conversation %s, recovering", cid)
        identity = await self._password_identity(password)
        key = await self.key_custody.recover(handle, identity)
        self.key_cache.store(cid, key)
        return key

    async def _password_identity(self, password: Optional[str]) -> PasswordIdentity:
        resolved = self.session.resolve_password(password)
        if resolved is None:
            raise NotInitializedError("No password given and no active session; call login() first")

        registered = await self.ledger.get_registered_identity(self.address)
        if registered is None:
            raise NotRegisteredError(self.address)

        identity = derive_password_identity(self.address, resolved)
        if identity.address.lower() != registered.lower():
            raise InvalidPasswordError("Password does not match the registered password identity")
        return identity

    async def _submit(self, submission: Awaitable[str]) -> TransactionReceipt:
        tx_hash = await submission
        if self.callbacks.on_transaction_submitted:
            self.callbacks.on_transaction_submitted(tx_hash)

        receipt = await self.ledger.wait_for_receipt(tx_hash)
        if self.callbacks.on_transaction_confirmed:
            self.callbacks.on_transaction_confirmed(receipt)
        return receipt

    def _notify_error(self, error: Exception) -> None:
        if self.callbacks.on_error:
            self.callbacks.on_error(error)

    def _summarize(self, record: ConversationRecord, account: str) -> ConversationSummary:
        account = normalize_address(account)
        other_user = record.recipient if record.sender == account else record.sender

        last_message = None
        if record.messages:
            last = record.messages[-1]
            last_message = Message(
                content=ENCRYPTED_PLACEHOLDER,
                encrypted_content=last.ciphertext,
                timestamp=last.send_time,
                sender=last.sender,
                recipient=last.recipient,
                direction=MessageDirection.SENT if last.sender == account else MessageDirection.RECEIVED,
            )

        return ConversationSummary(
            conversation_id=record.conversation_id,
            participants=record.participants,
            message_count=len(record.messages),
            encrypted_key_handle=record.key_handle,
            other_user=other_user,
            last_message=last_message,
        )
