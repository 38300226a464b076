"""Message body encryption and decryption for privatemsg."""

import logging
import os
from typing import List, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .models import Message, MessageDirection
from .types import (
    BLOCK_SIZE,
    CIPHERTEXT_PREFIX,
    DECRYPTION_FAILED_PLACEHOLDER,
    IV_SIZE,
    KEY_SIZE,
    DecryptionFailedError,
)

logger = logging.getLogger(__name__)


def key_to_int(key: bytes) -> int:
    """Convert a 32-byte conversation key to its uint256 form."""
    _check_key(key)
    return int.from_bytes(key, "big")


def key_from_int(value: int) -> bytes:
    """Convert a uint256 to a 32-byte conversation key."""
    if not 0 <= value < 2 ** (8 * KEY_SIZE):
        raise ValueError("Key value out of uint256 range")
    return value.to_bytes(KEY_SIZE, "big")


def encrypt_message(plaintext: str, key: bytes) -> str:
    """
    Encrypt a message body with AES-256-CBC.

    A fresh random IV is drawn for every call.

    Args:
        plaintext: Message to encrypt
        key: 32-byte conversation key

    Returns:
        "0x" + hex(iv || ciphertext)
    """
    _check_key(key)

    iv = os.urandom(IV_SIZE)

    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return CIPHERTEXT_PREFIX + (iv + ciphertext).hex()


def decrypt_message(blob: str, key: bytes) -> str:
    """
    Decrypt a message body produced by encrypt_message.

    Args:
        blob: Hex ciphertext, with or without the "0x" prefix
        key: 32-byte conversation key

    Returns:
        The plaintext

    Raises:
        DecryptionFailedError: If the blob is malformed, the padding is
            invalid, or the result is not UTF-8 text
    """
    _check_key(key)

    hex_string = blob[len(CIPHERTEXT_PREFIX):] if blob.startswith(CIPHERTEXT_PREFIX) else blob
    try:
        data = bytes.fromhex(hex_string)
    except ValueError as e:
        raise DecryptionFailedError("Ciphertext is not valid hex") from e

    if len(data) < IV_SIZE + BLOCK_SIZE or (len(data) - IV_SIZE) % BLOCK_SIZE != 0:
        raise DecryptionFailedError(f"Ciphertext has invalid length: {len(data)} bytes")

    iv = data[:IV_SIZE]
    ciphertext = data[IV_SIZE:]

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    try:
        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        message_bytes = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecryptionFailedError("Invalid padding") from e

    try:
        return message_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailedError("Decrypted content is not valid UTF-8") from e


def decrypt_records(
    records: list,
    key: bytes,
    self_address: Optional[str] = None,
) -> List[Message]:
    """
    Decrypt a batch of ledger records.

    A record that fails to decrypt is kept with placeholder content and
    decryption_failed set; it never aborts the batch.

    Args:
        records: EncryptedMessageRecord list, in ledger order
        key: 32-byte conversation key
        self_address: Current account, used to set message direction

    Returns:
        One Message per record, same order
    """
    messages: List[Message] = []

    for record in records:
        failed = False
        try:
            content = decrypt_message(record.ciphertext, key)
        except DecryptionFailedError as e:
            logger.warning("Failed to decrypt message from %s at %s: %s", record.sender, record.send_time, e)
            content = DECRYPTION_FAILED_PLACEHOLDER
            failed = True

        if self_address is not None and record.sender.lower() == self_address.lower():
            direction = MessageDirection.SENT
        else:
            direction = MessageDirection.RECEIVED

        messages.append(
            Message(
                content=content,
                encrypted_content=record.ciphertext,
                timestamp=record.send_time,
                sender=record.sender,
                recipient=record.recipient,
                direction=direction,
                decryption_failed=failed,
            )
        )

    return messages


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes")
