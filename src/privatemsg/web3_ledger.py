"""
LedgerClient for the deployed message program, over JSON-RPC.

Binds the subset of the program's ABI the protocol uses through
web3.AsyncWeb3. Transactions are signed by a SigningWallet and any
web3 or transport failure surfaces as TransactionFailedError.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from web3 import AsyncWeb3, Web3
from web3.contract.async_contract import AsyncContractFunction
from web3.exceptions import Web3Exception

from .addressing import normalize_address
from .config import PrivateMsgConfig
from .ledger import ConversationRecord, EncryptedMessageRecord, LedgerClient
from .models import TransactionReceipt
from .types import ZERO_ADDRESS, ZERO_HANDLE, TransactionFailedError
from .wallet import SigningWallet

logger = logging.getLogger(__name__)


_MSG_COMPONENTS = [
    {"internalType": "address", "name": "from", "type": "address"},
    {"internalType": "address", "name": "to", "type": "address"},
    {"internalType": "bytes", "name": "msgContent", "type": "bytes"},
    {"internalType": "uint256", "name": "time", "type": "uint256"},
]

_MSG_LIST_COMPONENTS = [
    {"internalType": "euint256", "name": "privateKey", "type": "bytes32"},
    {"internalType": "address", "name": "dialogueAddress", "type": "address"},
    {"internalType": "address", "name": "from", "type": "address"},
    {"internalType": "address", "name": "to", "type": "address"},
    {
        "components": _MSG_COMPONENTS,
        "internalType": "struct PrivateMsg.MSG[]",
        "name": "msgList",
        "type": "tuple[]",
    },
]

CONTRACT_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "getUser",
        "outputs": [{"internalType": "address", "name": "_user", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "passwordAddress", "type": "address"}],
        "name": "register",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "externalEuint256", "name": "_privateKey", "type": "bytes32"},
            {"internalType": "bytes", "name": "msgContent", "type": "bytes"},
            {"internalType": "bytes", "name": "inputProof", "type": "bytes"},
        ],
        "name": "sendMsg",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "", "type": "address"}],
        "name": "dialoguePrivateKeys",
        "outputs": [{"internalType": "euint256", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "dialogueAddresses", "type": "address"}],
        "name": "getMsgDetail",
        "outputs": [
            {
                "components": _MSG_LIST_COMPONENTS,
                "internalType": "struct PrivateMsg.MSGList",
                "name": "_msg",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "getMsgList",
        "outputs": [
            {
                "components": _MSG_LIST_COMPONENTS,
                "internalType": "struct PrivateMsg.MSGList[]",
                "name": "msgList",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
        ],
        "name": "getMsgID",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "pure",
        "type": "function",
    },
]


def _handle_or_none(value: bytes) -> Optional[str]:
    handle = Web3.to_hex(value)
    return None if handle == ZERO_HANDLE else handle


def parse_conversation(entry: tuple) -> Optional[ConversationRecord]:
    """
    Convert a decoded MSGList struct into a ConversationRecord.

    Returns None for the empty struct the program returns for an unknown
    conversation.
    """
    private_key, dialogue_address, sender, recipient, msg_list = entry
    if normalize_address(dialogue_address) == ZERO_ADDRESS and not msg_list:
        return None

    messages = [
        EncryptedMessageRecord(
            sender=normalize_address(msg_from),
            recipient=normalize_address(msg_to),
            ciphertext=Web3.to_hex(content),
            send_time=int(time),
        )
        for msg_from, msg_to, content, time in msg_list
    ]
    return ConversationRecord(
        conversation_id=normalize_address(dialogue_address),
        key_handle=_handle_or_none(private_key),
        sender=normalize_address(sender),
        recipient=normalize_address(recipient),
        messages=messages,
    )


class Web3LedgerClient(LedgerClient):
    """
    LedgerClient backed by a JSON-RPC node.

    Example usage:
        ```python
        config = PrivateMsgConfig.sepolia()
        ledger = Web3LedgerClient.from_config(config, LocalWallet.from_key(key))
        handle = await ledger.get_conversation_key_handle(conversation_id)
        ```
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        wallet: SigningWallet,
        chain_id: int,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.w3 = w3
        self.wallet = wallet
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.contract = w3.eth.contract(
            address=normalize_address(contract_address),
            abi=CONTRACT_ABI,
        )

    @classmethod
    def from_config(cls, config: PrivateMsgConfig, wallet: SigningWallet) -> "Web3LedgerClient":
        """Create a client connected to config.rpc_url over HTTP."""
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
        return cls(
            w3,
            config.contract_address,
            wallet,
            chain_id=config.chain_id,
            receipt_timeout=config.receipt_timeout,
        )

    @property
    def account(self) -> str:
        return normalize_address(self.wallet.address)

    # MARK: - Transactions

    async def register(self, password_address: str) -> str:
        function = self.contract.functions.register(normalize_address(password_address))
        return await self._transact(function, "register")

    async def send_message(self, to: str, key_handle: str, ciphertext: str, proof: str) -> str:
        function = self.contract.functions.sendMsg(
            normalize_address(to),
            Web3.to_bytes(hexstr=key_handle),
            Web3.to_bytes(hexstr=ciphertext),
            Web3.to_bytes(hexstr=proof),
        )
        return await self._transact(function, "sendMsg")

    async def wait_for_receipt(self, transaction_hash: str) -> TransactionReceipt:
        async with self._ledger_call("wait for receipt"):
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                transaction_hash, timeout=self.receipt_timeout
            )

        if receipt["status"] != 1:
            raise TransactionFailedError(f"Transaction reverted: {transaction_hash}")

        return TransactionReceipt(
            transaction_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
        )

    # MARK: - Views

    async def get_registered_identity(self, account: str) -> Optional[str]:
        account = normalize_address(account)
        async with self._ledger_call("getUser"):
            result = await self.contract.functions.getUser(account).call()
        password_address = normalize_address(result)
        return None if password_address == ZERO_ADDRESS else password_address

    async def get_conversation_key_handle(self, conversation_id: str) -> Optional[str]:
        conversation_id = normalize_address(conversation_id)
        async with self._ledger_call("dialoguePrivateKeys"):
            result = await self.contract.functions.dialoguePrivateKeys(conversation_id).call()
        return _handle_or_none(result)

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        conversation_id = normalize_address(conversation_id)
        async with self._ledger_call("getMsgDetail"):
            result = await self.contract.functions.getMsgDetail(conversation_id).call()
        return parse_conversation(result)

    async def list_conversations(self, account: str) -> List[ConversationRecord]:
        account = normalize_address(account)
        async with self._ledger_call("getMsgList"):
            result = await self.contract.functions.getMsgList(account).call()
        records = [parse_conversation(entry) for entry in result]
        return [r for r in records if r is not None]

    async def compute_conversation_id(self, address_a: str, address_b: str) -> str:
        address_a = normalize_address(address_a)
        address_b = normalize_address(address_b)
        async with self._ledger_call("getMsgID"):
            result = await self.contract.functions.getMsgID(address_a, address_b).call()
        return normalize_address(result)

    # MARK: - Internals

    async def _transact(self, function: AsyncContractFunction, action: str) -> str:
        async with self._ledger_call(action):
            nonce = await self.w3.eth.get_transaction_count(self.account, "pending")
            transaction = await function.build_transaction(
                {
                    "from": self.account,
                    "nonce": nonce,
                    "chainId": self.chain_id,
                }
            )
            raw = self.wallet.sign_transaction(transaction)
            tx_hash = await self.w3.eth.send_raw_transaction(raw)

        transaction_hash = Web3.to_hex(tx_hash)
        logger.debug("Submitted %s transaction %s", action, transaction_hash)
        return transaction_hash

    @asynccontextmanager
    async def _ledger_call(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except (Web3Exception, ValueError, OSError, asyncio.TimeoutError) as e:
            raise TransactionFailedError(f"{action} failed: {e}") from e
