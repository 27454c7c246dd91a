"""Tests for UserDirectory."""

import random

import pytest

from messenger.directory import UserDirectory, generate_handle, is_valid_handle
from messenger.errors import NotFound, ValidationError
from messenger.models import PrivacyLevel


class TestHandles:
    """Tests for handle generation."""

    def test_generated_handles_are_valid(self):
        """Test the +1(XXX) YYY-ZZZZ format."""
        rng = random.Random(7)
        for _ in range(50):
            assert is_valid_handle(generate_handle(rng))

    def test_is_valid_handle_rejects_other_formats(self):
        """Test that loose phone formats are rejected."""
        assert not is_valid_handle("212-555-0101")
        assert not is_valid_handle("+1(212)555-0101")
        assert is_valid_handle("+1(212) 555-0101")


class TestRegister:
    """Tests for UserDirectory.register()."""

    async def test_register_creates_user(self, directory):
        """Test registering a user assigns id and handle."""
        user = await directory.register("Alice")
        assert user.username == "alice"
        assert is_valid_handle(user.handle)
        assert (await directory.get_user(user.id)).handle == user.handle

    async def test_register_retries_handle_collision(self, storage):
        """Test that a taken handle is retried with a fresh one."""
        handles = iter(["+1(212) 555-0101", "+1(212) 555-0101", "+1(212) 555-0102"])
        directory = UserDirectory(storage, handle_factory=lambda: next(handles))

        first = await directory.register("alice")
        second = await directory.register("bob")
        assert first.handle == "+1(212) 555-0101"
        assert second.handle == "+1(212) 555-0102"

    async def test_register_duplicate_username(self, directory):
        """Test that usernames are unique."""
        await directory.register("alice")
        with pytest.raises(ValidationError):
            await directory.register("ALICE")

    async def test_register_empty_username(self, directory):
        """Test that a blank username is rejected."""
        with pytest.raises(ValidationError):
            await directory.register("  ")


class TestLookup:
    """Tests for user lookups."""

    async def test_get_unknown_user(self, directory):
        """Test that unknown ids raise NotFound."""
        with pytest.raises(NotFound):
            await directory.get_user("missing")

    async def test_exists(self, directory, users):
        """Test existence checks."""
        assert await directory.exists(users["alice"].id)
        assert not await directory.exists("missing")


class TestBlocking:
    """Tests for block relationships."""

    async def test_block_either_direction(self, directory, users):
        """Test that a block is visible from both sides."""
        alice, bob = users["alice"].id, users["bob"].id
        await directory.block(alice, bob)
        assert await directory.is_blocked(alice, bob)
        assert await directory.is_blocked(bob, alice)

        await directory.unblock(alice, bob)
        assert not await directory.is_blocked(bob, alice)

    async def test_cannot_block_self(self, directory, users):
        """Test that self-blocks are rejected."""
        with pytest.raises(ValidationError):
            await directory.block(users["alice"].id, users["alice"].id)

    async def test_blocked_among(self, directory, users):
        """Test filtering a candidate list."""
        alice, bob, carol = (users[n].id for n in ("alice", "bob", "carol"))
        await directory.block(carol, alice)
        assert await directory.blocked_among(alice, [bob, carol]) == {carol}


class TestContacts:
    """Tests for contacts and privacy."""

    async def test_add_and_remove_contact(self, directory, users):
        """Test contact list changes."""
        alice, bob = users["alice"].id, users["bob"].id
        await directory.add_contact(alice, bob)
        assert await directory.is_contact(alice, bob)
        assert not await directory.is_contact(bob, alice)

        await directory.remove_contact(alice, bob)
        assert not await directory.is_contact(alice, bob)

    async def test_duplicate_contact(self, directory, users):
        """Test adding the same contact twice."""
        alice, bob = users["alice"].id, users["bob"].id
        await directory.add_contact(alice, bob)
        with pytest.raises(ValidationError):
            await directory.add_contact(alice, bob)

    async def test_cannot_add_blocked_contact(self, directory, users):
        """Test that blocked users cannot become contacts."""
        alice, bob = users["alice"].id, users["bob"].id
        await directory.block(bob, alice)
        with pytest.raises(ValidationError):
            await directory.add_contact(alice, bob)

    async def test_set_privacy(self, directory, users):
        """Test updating the last-seen privacy level."""
        await directory.set_privacy(users["alice"].id, PrivacyLevel.NOBODY)
        user = await directory.get_user(users["alice"].id)
        assert user.privacy_last_seen == PrivacyLevel.NOBODY

    async def test_set_privacy_unknown_user(self, directory):
        """Test privacy update for unknown ids."""
        with pytest.raises(NotFound):
            await directory.set_privacy("missing", PrivacyLevel.NOBODY)
