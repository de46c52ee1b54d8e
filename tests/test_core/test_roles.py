"""
Tests the permission model, with memberships built in memory.
"""

from datetime import datetime, timezone

import pytest

from keygroups.core.errors import InvalidState, PermissionDenied
from keygroups.core.members import MembershipData
from keygroups.core.roles import (
    ALL_PERMISSIONS,
    Action,
    GroupRole,
    Permission,
    authorize,
    can_perform,
    denial_reason,
    check_role_change,
    ensure_role_change_keeps_owner,
    has_permission,
    permissions_for,
)

GROUP_ID = bytes(32)


def membership(role: GroupRole, seed: int, permissions: int | None = None):
    member = bytes([seed]) * 32

    return MembershipData(
        group_id=GROUP_ID,
        member=member,
        role=role,
        permissions=permissions_for(role) if permissions is None else permissions,
        joined_at=datetime.now(timezone.utc),
        invited_by=member,
    )


def test_role_ranks():
    assert (
        GroupRole.MEMBER.rank
        < GroupRole.MODERATOR.rank
        < GroupRole.ADMIN.rank
        < GroupRole.OWNER.rank
    )


def test_role_masks():
    assert permissions_for(GroupRole.MEMBER) == Permission.SEND_MESSAGES
    assert permissions_for(GroupRole.OWNER) == ALL_PERMISSIONS

    moderator = permissions_for(GroupRole.MODERATOR)
    assert has_permission(moderator, Permission.KICK_MEMBERS)
    assert not has_permission(moderator, Permission.MANAGE_ROLES)

    assert has_permission(permissions_for(GroupRole.ADMIN), Permission.MANAGE_ROLES)


@pytest.mark.parametrize(
    "role,allow_member_invites,permissions,allowed",
    [
        (GroupRole.OWNER, False, None, True),
        (GroupRole.ADMIN, False, None, True),
        (GroupRole.MODERATOR, False, None, True),
        (GroupRole.MEMBER, False, None, False),
        (GroupRole.MEMBER, True, None, False),
        (
            GroupRole.MEMBER,
            True,
            Permission.SEND_MESSAGES | Permission.INVITE_MEMBERS,
            True,
        ),
        (
            GroupRole.MEMBER,
            False,
            Permission.SEND_MESSAGES | Permission.INVITE_MEMBERS,
            False,
        ),
    ],
)
def test_invite(role, allow_member_invites, permissions, allowed):
    actor = membership(role, 1, permissions)

    for action in (Action.INVITE, Action.CREATE_INVITE_LINK):
        assert (
            can_perform(actor, action, allow_member_invites=allow_member_invites)
            is allowed
        )


def test_revoke_link():
    creator = membership(GroupRole.MEMBER, 1)
    other = membership(GroupRole.MEMBER, 2)
    moderator = membership(GroupRole.MODERATOR, 3)

    created_by = creator.member

    assert can_perform(creator, Action.REVOKE_INVITE_LINK, link_created_by=created_by)
    assert can_perform(moderator, Action.REVOKE_INVITE_LINK, link_created_by=created_by)

    reason = denial_reason(other, Action.REVOKE_INVITE_LINK, link_created_by=created_by)
    assert reason == "only the link creator or a moderator may revoke"


@pytest.mark.parametrize(
    "kicker_role,target_role,reason",
    [
        (GroupRole.OWNER, GroupRole.ADMIN, None),
        (GroupRole.OWNER, GroupRole.MEMBER, None),
        (GroupRole.ADMIN, GroupRole.MODERATOR, None),
        (GroupRole.ADMIN, GroupRole.MEMBER, None),
        (GroupRole.MODERATOR, GroupRole.MEMBER, None),
        (GroupRole.ADMIN, GroupRole.ADMIN, "kicker must outrank the target"),
        (GroupRole.MODERATOR, GroupRole.MODERATOR, "kicker must outrank the target"),
        (GroupRole.MODERATOR, GroupRole.ADMIN, "kicker must outrank the target"),
        (GroupRole.ADMIN, GroupRole.OWNER, "cannot kick the group owner"),
        (GroupRole.MEMBER, GroupRole.MEMBER, "insufficient permissions to kick"),
    ],
)
def test_kick(kicker_role, target_role, reason):
    kicker = membership(kicker_role, 1)
    target = membership(target_role, 2)

    assert denial_reason(kicker, Action.KICK, target) == reason


def test_kick_self():
    for role in (GroupRole.MODERATOR, GroupRole.ADMIN, GroupRole.OWNER):
        actor = membership(role, 1)
        assert denial_reason(actor, Action.KICK, actor) == "cannot kick yourself"


@pytest.mark.parametrize(
    "actor_role,new_role,allowed",
    [
        (GroupRole.OWNER, GroupRole.ADMIN, True),
        (GroupRole.OWNER, GroupRole.MODERATOR, True),
        (GroupRole.ADMIN, GroupRole.MODERATOR, True),
        (GroupRole.ADMIN, GroupRole.MEMBER, True),
        (GroupRole.ADMIN, GroupRole.ADMIN, False),
        (GroupRole.MODERATOR, GroupRole.MEMBER, False),
        (GroupRole.MEMBER, GroupRole.MODERATOR, False),
    ],
)
def test_update_role(actor_role, new_role, allowed):
    actor = membership(actor_role, 1)
    target = membership(GroupRole.MEMBER, 2)

    assert can_perform(actor, Action.UPDATE_ROLE, target, new_role=new_role) is allowed


def test_authorize_raises_with_reason():
    actor = membership(GroupRole.MEMBER, 1)
    target = membership(GroupRole.MEMBER, 2)

    with pytest.raises(PermissionDenied) as excinfo:
        authorize(actor, Action.KICK, target)

    assert excinfo.value.reason == "insufficient permissions to kick"

    authorize(membership(GroupRole.OWNER, 3), Action.KICK, target)


def test_missing_target():
    with pytest.raises(ValueError):
        denial_reason(membership(GroupRole.OWNER, 1), Action.KICK)


def test_single_owner():
    ensure_role_change_keeps_owner(GroupRole.MEMBER, GroupRole.ADMIN)

    with pytest.raises(InvalidState):
        ensure_role_change_keeps_owner(GroupRole.OWNER, GroupRole.ADMIN)

    with pytest.raises(InvalidState):
        ensure_role_change_keeps_owner(GroupRole.ADMIN, GroupRole.OWNER)


@pytest.mark.parametrize(
    "actor_role,target_role,new_role,error",
    [
        # Authority is checked first
        (GroupRole.MODERATOR, GroupRole.OWNER, GroupRole.MEMBER, PermissionDenied),
        (GroupRole.MEMBER, GroupRole.MEMBER, GroupRole.OWNER, PermissionDenied),
        # Then the owner's role, before the admin promotion rule
        (GroupRole.ADMIN, GroupRole.OWNER, GroupRole.ADMIN, InvalidState),
        (GroupRole.ADMIN, GroupRole.OWNER, GroupRole.MEMBER, InvalidState),
        (GroupRole.OWNER, GroupRole.MEMBER, GroupRole.OWNER, InvalidState),
        (GroupRole.ADMIN, GroupRole.MEMBER, GroupRole.ADMIN, PermissionDenied),
        (GroupRole.ADMIN, GroupRole.MEMBER, GroupRole.MODERATOR, None),
        (GroupRole.OWNER, GroupRole.MODERATOR, GroupRole.ADMIN, None),
    ],
)
def test_role_change_order(actor_role, target_role, new_role, error):
    actor = membership(actor_role, 1)
    target = membership(target_role, 2)

    if error is None:
        check_role_change(actor, target, new_role)
    else:
        with pytest.raises(error):
            check_role_change(actor, target, new_role)
