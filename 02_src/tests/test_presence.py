"""Tests for PresenceTracker."""

from messenger.models import PrivacyLevel
from messenger.presence import can_see_presence


class TestTouch:
    """Tests for PresenceTracker.touch()."""

    async def test_touch_sets_last_seen(self, presence, clock, users):
        """Test that activity records the current time."""
        await presence.touch(users["alice"].id)
        assert await presence.last_seen(users["alice"].id) == clock()

    async def test_last_seen_never_decreases(self, presence, clock, users):
        """Test that a clock step back keeps the later value."""
        alice = users["alice"].id
        await presence.touch(alice)
        latest = clock()
        clock.advance(minutes=-10)
        await presence.touch(alice)

        assert await presence.last_seen(alice) == latest

    async def test_touch_unknown_user(self, presence):
        """Test that touching an unknown user does not raise."""
        await presence.touch("ghost")
        assert await presence.last_seen("ghost") is None


class TestIsOnline:
    """Tests for PresenceTracker.is_online()."""

    async def test_online_within_threshold(self, presence, clock, users):
        """Test online for 4 minutes, offline after 5."""
        alice = users["alice"].id
        await presence.touch(alice)

        clock.advance(minutes=4)
        assert await presence.is_online(alice)

        clock.advance(minutes=1)
        assert not await presence.is_online(alice)

    async def test_never_seen_is_offline(self, presence, users):
        """Test users without activity are offline."""
        assert not await presence.is_online(users["bob"].id)

    async def test_online_among(self, presence, clock, users):
        """Test bulk online lookup."""
        await presence.touch(users["alice"].id)
        clock.advance(minutes=6)
        await presence.touch(users["bob"].id)

        online = await presence.online_among([u.id for u in users.values()])
        assert online == {users["bob"].id}


class TestVisibility:
    """Tests for last-seen privacy filtering."""

    async def test_privacy_levels(self, directory, users):
        """Test everyone / contacts / nobody audiences."""
        alice, bob, carol = (users[n].id for n in ("alice", "bob", "carol"))
        await directory.add_contact(alice, bob)

        subject = await directory.get_user(alice)
        assert can_see_presence(carol, subject)

        await directory.set_privacy(alice, PrivacyLevel.CONTACTS)
        subject = await directory.get_user(alice)
        assert can_see_presence(bob, subject)
        assert not can_see_presence(carol, subject)

        await directory.set_privacy(alice, PrivacyLevel.NOBODY)
        subject = await directory.get_user(alice)
        assert not can_see_presence(bob, subject)
        assert can_see_presence(alice, subject)
