"""End-to-end tests for PrivateMsgClient over the in-memory ledger."""

import asyncio

import pytest

from privatemsg.addressing import conversation_id
from privatemsg.client import PrivateMsgClient
from privatemsg.identity import derive_password_identity
from privatemsg.ledger import InMemoryLedgerClient
from privatemsg.models import EventCallbacks, MessageDirection
from privatemsg.types import (
    DECRYPTION_FAILED_PLACEHOLDER,
    ENCRYPTED_PLACEHOLDER,
    AlreadyRegisteredError,
    ConversationNotFoundError,
    DecryptionFailedError,
    InvalidPasswordError,
    NotInitializedError,
    NotRegisteredError,
)
from .test_vectors import ALICE_PASSWORD, BOB_PASSWORD, CAROL_PASSWORD, WRONG_PASSWORD


class _Barrier:
    """Minimal async barrier: wait() returns once `parties` callers arrived."""

    def __init__(self, parties: int) -> None:
        self._parties = parties
        self._arrived = 0
        self._event = asyncio.Event()

    async def wait(self) -> None:
        self._arrived += 1
        if self._arrived >= self._parties:
            self._event.set()
        await self._event.wait()


class BarrierLedgerClient(InMemoryLedgerClient):
    """Ledger client whose first key-handle read waits on a shared barrier."""

    def __init__(self, ledger, account, barrier: _Barrier) -> None:
        super().__init__(ledger, account)
        self._barrier = barrier

    async def get_conversation_key_handle(self, conversation_id):
        handle = await super().get_conversation_key_handle(conversation_id)
        barrier, self._barrier = self._barrier, None
        if barrier is not None:
            await barrier.wait()
        return handle


class TestLogin:
    """Test registration and sessions."""

    @pytest.mark.asyncio
    async def test_first_login_registers(self, alice) -> None:
        """Login on a fresh account registers it."""
        result = await alice.login(ALICE_PASSWORD)

        assert result.success
        assert result.is_new_account
        assert alice.is_logged_in
        assert await alice.is_registered()

    @pytest.mark.asyncio
    async def test_second_login_verifies(self, make_client, alice_wallet) -> None:
        """A registered account logs in with the right password only."""
        await make_client(alice_wallet).login(ALICE_PASSWORD)
        fresh = make_client(alice_wallet)

        wrong = await fresh.login(WRONG_PASSWORD)
        assert not wrong.success
        assert not fresh.is_logged_in

        right = await fresh.login(ALICE_PASSWORD)
        assert right.success
        assert not right.is_new_account
        assert fresh.is_logged_in

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, alice) -> None:
        """Passwords under the minimum length are rejected."""
        with pytest.raises(ValueError):
            await alice.login("12345")
        assert not await alice.is_registered()

    @pytest.mark.asyncio
    async def test_register_twice(self, alice) -> None:
        """Registering an already registered account fails."""
        result = await alice.register(ALICE_PASSWORD)

        assert result.password_address == derive_password_identity(
            alice.address, ALICE_PASSWORD
        ).address
        with pytest.raises(AlreadyRegisteredError):
            await alice.register(ALICE_PASSWORD)

    @pytest.mark.asyncio
    async def test_verify_password(self, alice, bob) -> None:
        """verify_password checks against the ledger binding."""
        await alice.login(ALICE_PASSWORD)

        assert await bob.verify_password(alice.address, ALICE_PASSWORD)
        assert not await bob.verify_password(alice.address, WRONG_PASSWORD)
        with pytest.raises(NotRegisteredError):
            await alice.verify_password(bob.address, BOB_PASSWORD)

    @pytest.mark.asyncio
    async def test_logout_clears_password_and_keys(self, alice, bob) -> None:
        """Logout drops the session password and cached keys."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        await alice.send(bob.address, "hi")
        assert len(alice.key_cache) == 1

        alice.logout()

        assert not alice.is_logged_in
        assert len(alice.key_cache) == 0


class TestSendAndRead:
    """Register, send and read (both parties registered first)."""

    @pytest.mark.asyncio
    async def test_bob_reads_alices_message(self, alice, bob) -> None:
        """Bob decrypts exactly what Alice sent."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)

        result = await alice.send(bob.address, "hello")
        messages = await bob.get_messages(result.conversation_id)

        assert result.conversation_id == conversation_id(alice.address, bob.address)
        assert not result.key_mismatch
        assert [m.content for m in messages] == ["hello"]
        assert messages[0].sender == alice.address
        assert messages[0].direction == MessageDirection.RECEIVED

    @pytest.mark.asyncio
    async def test_conversation_key_is_reused(self, alice, bob, ledger) -> None:
        """Replies use the key minted by the first message."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)

        first = await alice.send(bob.address, "one")
        handle = ledger.key_handle(first.conversation_id)
        await bob.send(alice.address, "two")
        await alice.send(bob.address, "three")

        assert ledger.key_handle(first.conversation_id) == handle
        cid, messages = await alice.conversation_with(bob.address)
        assert cid == first.conversation_id
        assert [m.content for m in messages] == ["one", "two", "three"]
        assert [m.direction for m in messages] == [
            MessageDirection.SENT,
            MessageDirection.RECEIVED,
            MessageDirection.SENT,
        ]

    @pytest.mark.asyncio
    async def test_empty_message(self, alice, bob) -> None:
        """An empty body round-trips."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)

        result = await alice.send(bob.address, "")

        assert [m.content for m in await bob.get_messages(result.conversation_id)] == [""]

    @pytest.mark.asyncio
    async def test_unknown_conversation_has_no_messages(self, alice, bob) -> None:
        """Reading a conversation that never started yields nothing."""
        await alice.login(ALICE_PASSWORD)

        assert await alice.get_messages(alice.conversation_id(bob.address)) == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, alice, bob, carol) -> None:
        """A third registered account cannot recover the key."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        await carol.login(CAROL_PASSWORD)
        result = await alice.send(bob.address, "private")

        with pytest.raises(DecryptionFailedError):
            await carol.get_messages(result.conversation_id)

    @pytest.mark.asyncio
    async def test_explicit_password_without_session(self, make_client, alice, bob_wallet) -> None:
        """A password argument works without logging in."""
        bob = make_client(bob_wallet)
        await alice.login(ALICE_PASSWORD)
        await bob.register(BOB_PASSWORD)
        result = await alice.send(bob.address, "hi")

        with pytest.raises(NotInitializedError):
            await bob.get_messages(result.conversation_id)

        messages = await bob.get_messages(result.conversation_id, password=BOB_PASSWORD)
        assert [m.content for m in messages] == ["hi"]


class TestRetroactiveGrant:
    """The recipient registers after the first message."""

    @pytest.mark.asyncio
    async def test_late_registration(self, alice, bob) -> None:
        """Bob can read once he registers, not before."""
        await alice.login(ALICE_PASSWORD)
        result = await alice.send(bob.address, "welcome")

        with pytest.raises(NotRegisteredError):
            await bob.get_messages(result.conversation_id, password=BOB_PASSWORD)

        login = await bob.login(BOB_PASSWORD)
        assert login.is_new_account

        messages = await bob.get_messages(result.conversation_id)
        assert [m.content for m in messages] == ["welcome"]

    @pytest.mark.asyncio
    async def test_unregistered_sender_first_send(self, alice, bob) -> None:
        """An unregistered account can start a conversation."""
        await bob.login(BOB_PASSWORD)

        result = await alice.send(bob.address, "from a newcomer")

        assert not result.key_mismatch
        assert [m.content for m in await bob.get_messages(result.conversation_id)] == [
            "from a newcomer"
        ]


class TestWrongPassword:
    """A wrong password fails before any decryption attempt."""

    @pytest.mark.asyncio
    async def test_invalid_password_before_recovery(self, make_client, alice, bob_wallet, custody) -> None:
        """InvalidPasswordError is raised without contacting the capability."""
        await alice.login(ALICE_PASSWORD)
        await make_client(bob_wallet).login(BOB_PASSWORD)
        result = await alice.send(bob_wallet.address, "secret")
        bob = make_client(bob_wallet)
        calls_before = custody.decrypt_calls

        with pytest.raises(InvalidPasswordError):
            await bob.get_messages(result.conversation_id, password=WRONG_PASSWORD)

        assert custody.decrypt_calls == calls_before
        assert len(bob.key_cache) == 0

    @pytest.mark.asyncio
    async def test_send_with_wrong_password(self, make_client, alice, bob_wallet) -> None:
        """Replying with a wrong password fails with InvalidPasswordError."""
        await alice.login(ALICE_PASSWORD)
        await make_client(bob_wallet).login(BOB_PASSWORD)
        await alice.send(bob_wallet.address, "ping")
        bob = make_client(bob_wallet)

        with pytest.raises(InvalidPasswordError):
            await bob.send(alice.address, "pong", password=WRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_explicit_empty_password_is_checked(self, alice, bob) -> None:
        """An empty password argument does not fall back to the session password."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        result = await alice.send(bob.address, "secret")

        with pytest.raises(InvalidPasswordError):
            await bob.get_messages(result.conversation_id, password="")

    @pytest.mark.asyncio
    async def test_cached_key_ignores_password(self, alice, bob) -> None:
        """With the key cached, the password argument is not checked."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        result = await alice.send(bob.address, "hi")
        await bob.get_messages(result.conversation_id)

        messages = await bob.get_messages(result.conversation_id, password=WRONG_PASSWORD)

        assert [m.content for m in messages] == ["hi"]


class TestKeyCacheExpiry:
    """Cached keys expire and are recovered again."""

    @pytest.mark.asyncio
    async def test_expired_key_is_recovered(self, alice, bob, clock, custody) -> None:
        """After the TTL, reading triggers a fresh recovery."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        result = await alice.send(bob.address, "still here")

        await bob.get_messages(result.conversation_id)
        recovered_once = custody.decrypt_calls
        await bob.get_messages(result.conversation_id)
        assert custody.decrypt_calls == recovered_once

        clock.advance(hours=1, seconds=1)
        messages = await bob.get_messages(result.conversation_id)

        assert custody.decrypt_calls == recovered_once + 1
        assert [m.content for m in messages] == ["still here"]

    @pytest.mark.asyncio
    async def test_minting_sender_skips_recovery(self, alice, bob, custody) -> None:
        """The sender who minted the key caches it without recovering."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)

        result = await alice.send(bob.address, "one")
        await alice.send(bob.address, "two")
        await alice.get_messages(result.conversation_id)

        assert custody.decrypt_calls == 0


class TestFirstSendRace:
    """Two first messages for the same pair submitted concurrently."""

    @pytest.mark.asyncio
    async def test_race_is_detected(self, ledger, custody, config, clock, alice_wallet, bob_wallet) -> None:
        """Exactly one sender is told its key was discarded."""

        barrier = _Barrier(2)
        alice = PrivateMsgClient(
            BarrierLedgerClient(ledger, alice_wallet.address, barrier), custody, config, clock=clock
        )
        bob = PrivateMsgClient(
            BarrierLedgerClient(ledger, bob_wallet.address, barrier), custody, config, clock=clock
        )
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)

        results = await asyncio.gather(
            alice.send(bob.address, "from alice"),
            bob.send(alice.address, "from bob"),
        )

        assert sorted(r.key_mismatch for r in results) == [False, True]
        loser = alice if results[0].key_mismatch else bob
        winner = bob if loser is alice else alice
        assert len(loser.key_cache) == 0
        assert len(winner.key_cache) == 1

        messages = await winner.get_messages(results[0].conversation_id)
        assert len(messages) == 2
        failed = [m for m in messages if m.decryption_failed]
        assert len(failed) == 1
        assert failed[0].content == DECRYPTION_FAILED_PLACEHOLDER
        assert failed[0].sender == loser.address


class TestConversations:
    """Test listing and summaries."""

    @pytest.mark.asyncio
    async def test_list_conversations(self, alice, bob, carol) -> None:
        """Summaries carry counts, the other user and an encrypted preview."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        await alice.send(bob.address, "one")
        await bob.send(alice.address, "two")

        summaries = await alice.list_conversations()

        assert len(summaries) == 1
        summary = summaries[0]
        assert summary.message_count == 2
        assert summary.other_user == bob.address
        assert set(summary.participants) == {alice.address, bob.address}
        assert summary.encrypted_key_handle is not None
        assert summary.last_message.content == ENCRYPTED_PLACEHOLDER
        assert summary.last_message.direction == MessageDirection.RECEIVED
        assert await carol.list_conversations() == []

    @pytest.mark.asyncio
    async def test_get_conversation(self, alice, bob) -> None:
        """A single summary, or ConversationNotFoundError."""
        await alice.login(ALICE_PASSWORD)
        cid = alice.conversation_id(bob.address)

        with pytest.raises(ConversationNotFoundError):
            await alice.get_conversation(cid)

        await alice.send(bob.address, "hello")
        summary = await alice.get_conversation(cid)
        assert summary.conversation_id == cid
        assert summary.message_count == 1

    @pytest.mark.asyncio
    async def test_conversation_id_between(self, alice, bob, carol) -> None:
        """Any account can ask the ledger for the id of another pair."""
        await alice.login(ALICE_PASSWORD)
        result = await alice.send(bob.address, "hello")

        assert await carol.conversation_id_between(bob.address, alice.address) == (
            result.conversation_id
        )
        assert await carol.conversation_id_between(alice.address, bob.address) == (
            alice.conversation_id(bob.address)
        )

    @pytest.mark.asyncio
    async def test_list_since(self, alice, bob) -> None:
        """list_since returns only messages after the cursor."""
        await alice.login(ALICE_PASSWORD)
        await bob.login(BOB_PASSWORD)
        await alice.send(bob.address, "one")

        events, cursor = await bob.list_since()
        assert len(events) == 1

        await alice.send(bob.address, "two")
        await alice.send(bob.address, "three")
        events, cursor = await bob.list_since(cursor)
        assert len(events) == 2
        assert all(e.sender == alice.address for e in events)

        events, _ = await bob.list_since(cursor)
        assert events == []


class TestCallbacks:
    """Test transaction lifecycle callbacks."""

    @pytest.mark.asyncio
    async def test_submitted_and_confirmed(self, make_client, alice_wallet, bob_wallet) -> None:
        """Send reports submission and confirmation."""
        submitted = []
        confirmed = []
        alice = make_client(
            alice_wallet,
            callbacks=EventCallbacks(
                on_transaction_submitted=submitted.append,
                on_transaction_confirmed=confirmed.append,
            ),
        )
        await alice.login(ALICE_PASSWORD)

        result = await alice.send(bob_wallet.address, "hi")

        assert submitted[-1] == result.transaction_hash
        assert confirmed[-1].transaction_hash == result.transaction_hash

    @pytest.mark.asyncio
    async def test_error_reported(self, make_client, alice_wallet, bob_wallet) -> None:
        """Failures reach on_error and still propagate."""
        errors = []
        bob = make_client(bob_wallet, callbacks=EventCallbacks(on_error=errors.append))
        alice = make_client(alice_wallet)
        await alice.login(ALICE_PASSWORD)
        result = await alice.send(bob_wallet.address, "hi")

        with pytest.raises(NotInitializedError):
            await bob.send(alice.address, "reply")

        assert len(errors) == 1
        assert isinstance(errors[0], NotInitializedError)
        assert result.conversation_id == bob.conversation_id(alice.address)
