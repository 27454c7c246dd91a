"""Tests for the membership gate and group administration."""

import pytest

from messenger.errors import Forbidden, NotFound, NotMember, ValidationError
from messenger.models import GroupRole, SendPolicy


class TestMembershipGate:
    """Tests for MembershipGate."""

    async def test_member_may_send(self, gate, group, users):
        """Test that members pass the send check."""
        result = await gate.authorize_send(group.id, users["bob"].id)
        assert result.id == group.id

    async def test_non_member_rejected(self, gate, group, users):
        """Test that outsiders get NotMember for send and read."""
        with pytest.raises(NotMember):
            await gate.authorize_send(group.id, users["carol"].id)
        with pytest.raises(NotMember):
            await gate.authorize_read(group.id, users["carol"].id)

    async def test_unknown_group(self, gate, users):
        """Test that unknown groups raise NotFound."""
        with pytest.raises(NotFound):
            await gate.authorize_send("missing", users["alice"].id)

    async def test_membership_is_not_cached(self, gate, group_manager, group, users):
        """Test that a newly added member passes right away."""
        carol = users["carol"].id
        with pytest.raises(NotMember):
            await gate.authorize_send(group.id, carol)

        await group_manager.add_member(group.id, users["alice"].id, carol)

        await gate.authorize_send(group.id, carol)

    async def test_removed_member_rejected(self, gate, group_manager, group, users):
        """Test that a removed member loses access immediately."""
        bob = users["bob"].id
        await group_manager.remove_member(group.id, users["alice"].id, bob)
        with pytest.raises(NotMember):
            await gate.authorize_read(group.id, bob)

    async def test_admins_only_policy(self, gate, group_manager, group, users):
        """Test that only admins may send under the admins policy."""
        await group_manager.update_settings(group.id, users["alice"].id, SendPolicy.ADMINS)

        await gate.authorize_send(group.id, users["alice"].id)
        with pytest.raises(Forbidden):
            await gate.authorize_send(group.id, users["bob"].id)
        # Reading is still allowed
        await gate.authorize_read(group.id, users["bob"].id)


class TestCreateGroup:
    """Tests for GroupManager.create_group()."""

    async def test_creator_is_admin(self, group, users):
        """Test that the creator becomes admin and members are added."""
        assert group.is_admin(users["alice"].id)
        assert group.member(users["bob"].id).role == GroupRole.MEMBER
        assert not group.is_member(users["carol"].id)

    async def test_duplicate_members_collapsed(self, group_manager, users):
        """Test that repeated member ids are added once."""
        alice, bob = users["alice"].id, users["bob"].id
        group = await group_manager.create_group(alice, "Dupes", [bob, bob, alice])
        assert sorted(group.member_ids) == sorted([alice, bob])

    async def test_unknown_member_rejected(self, group_manager, users):
        """Test that initial members must be registered users."""
        with pytest.raises(NotFound):
            await group_manager.create_group(users["alice"].id, "Team", ["ghost"])

    async def test_name_validation(self, group_manager, users):
        """Test that names must be 1-100 characters."""
        with pytest.raises(ValidationError):
            await group_manager.create_group(users["alice"].id, "   ")
        with pytest.raises(ValidationError):
            await group_manager.create_group(users["alice"].id, "x" * 101)

    async def test_tracks_creation(self, group, storage):
        """Test that group creation is audited."""
        events = await storage.get_trace_events(event_types=["group_created"])
        assert events[0].data["group_id"] == group.id


class TestGroupAdministration:
    """Tests for member and settings changes."""

    async def test_non_admin_cannot_add(self, group_manager, group, users):
        """Test that members cannot add others."""
        with pytest.raises(Forbidden):
            await group_manager.add_member(group.id, users["bob"].id, users["carol"].id)

    async def test_add_unknown_user(self, group_manager, group, storage, users):
        """Test that only registered users can be added."""
        with pytest.raises(NotFound):
            await group_manager.add_member(group.id, users["alice"].id, "ghost")
        assert not (await storage.get_group(group.id)).is_member("ghost")

    async def test_add_existing_member(self, group_manager, group, users):
        """Test that duplicate membership is rejected."""
        with pytest.raises(ValidationError):
            await group_manager.add_member(group.id, users["alice"].id, users["bob"].id)

    async def test_member_can_leave(self, group_manager, group, users):
        """Test that a member may remove themselves."""
        updated = await group_manager.remove_member(group.id, users["bob"].id, users["bob"].id)
        assert not updated.is_member(users["bob"].id)

    async def test_member_cannot_remove_others(self, group_manager, group, users):
        """Test that only admins remove other members."""
        with pytest.raises(Forbidden):
            await group_manager.remove_member(group.id, users["bob"].id, users["alice"].id)

    async def test_remove_non_member(self, group_manager, group, users):
        """Test removing someone who is not in the group."""
        with pytest.raises(NotFound):
            await group_manager.remove_member(group.id, users["alice"].id, users["carol"].id)

    async def test_promote_member(self, group_manager, group, users):
        """Test role changes by an admin."""
        updated = await group_manager.update_member_role(
            group.id, users["alice"].id, users["bob"].id, GroupRole.ADMIN
        )
        assert updated.is_admin(users["bob"].id)
