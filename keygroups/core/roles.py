"""
Roles, permission masks, and the authority rules deciding who may act on
whom inside a group.

Everything here is pure: callers load the relevant membership records and
pass them in, so the rules can be exercised without any storage.
"""

from enum import Enum, IntEnum, IntFlag
from typing import TYPE_CHECKING

from .errors import InvalidState, PermissionDenied

if TYPE_CHECKING:
    from .members import MembershipData


class GroupRole(IntEnum):
    """
    Roles in a group. The integer value is the role's rank; comparisons
    between roles are rank comparisons.
    """

    MEMBER = 0
    MODERATOR = 1
    ADMIN = 2
    OWNER = 3

    @property
    def rank(self) -> int:
        return int(self)


class Permission(IntFlag):
    SEND_MESSAGES = 1 << 0
    INVITE_MEMBERS = 1 << 1
    KICK_MEMBERS = 1 << 2
    MANAGE_SETTINGS = 1 << 3
    DELETE_MESSAGES = 1 << 4
    PIN_MESSAGES = 1 << 5
    MANAGE_ROLES = 1 << 6


ALL_PERMISSIONS = 0xFFFF

ROLE_PERMISSIONS: dict[GroupRole, int] = {
    GroupRole.MEMBER: int(Permission.SEND_MESSAGES),
    GroupRole.MODERATOR: int(
        Permission.SEND_MESSAGES | Permission.INVITE_MEMBERS | Permission.KICK_MEMBERS
    ),
    GroupRole.ADMIN: int(
        Permission.SEND_MESSAGES
        | Permission.INVITE_MEMBERS
        | Permission.KICK_MEMBERS
        | Permission.MANAGE_ROLES
    ),
    GroupRole.OWNER: ALL_PERMISSIONS,
}

STAFF_ROLES = frozenset({GroupRole.MODERATOR, GroupRole.ADMIN, GroupRole.OWNER})
ROLE_MANAGERS = frozenset({GroupRole.ADMIN, GroupRole.OWNER})


class Action(str, Enum):
    INVITE = "invite"
    CREATE_INVITE_LINK = "create_invite_link"
    REVOKE_INVITE_LINK = "revoke_invite_link"
    KICK = "kick"
    UPDATE_ROLE = "update_role"


def permissions_for(role: GroupRole) -> int:
    """
    The fixed permission mask for a role. There are no per-member overrides.
    """
    return ROLE_PERMISSIONS[GroupRole(role)]


def has_permission(permissions: int, permission: Permission) -> bool:
    return permissions & permission != 0


def denial_reason(
    actor: "MembershipData",
    action: Action,
    target: "MembershipData | None" = None,
    *,
    new_role: GroupRole | None = None,
    allow_member_invites: bool = False,
    link_created_by: bytes | None = None,
) -> str | None:
    """
    Decide whether `actor` may perform `action` (optionally on `target`).

    Parameters
    ----------
    actor: MembershipData
        The acting identity's membership in the group.
    action: Action
        What the actor is attempting.
    target: MembershipData | None
        The membership acted upon, required for kicks and role changes.
    new_role: GroupRole | None
        The role being assigned, required for role changes.
    allow_member_invites: bool
        The group's member-invite delegation flag.
    link_created_by: bytes | None
        Creator of the invite link being revoked.

    Returns
    -------
    str | None
        None if the action is allowed, otherwise a short reason.
    """
    role = GroupRole(actor.role)

    match action:
        case Action.INVITE | Action.CREATE_INVITE_LINK:
            if role in STAFF_ROLES:
                return None
            if allow_member_invites and has_permission(
                actor.permissions, Permission.INVITE_MEMBERS
            ):
                return None
            return "insufficient permissions to invite"

        case Action.REVOKE_INVITE_LINK:
            if link_created_by is not None and link_created_by == actor.member:
                return None
            if role in STAFF_ROLES:
                return None
            return "only the link creator or a moderator may revoke"

        case Action.KICK:
            if target is None:
                raise ValueError("Kick requires a target membership")
            if role not in STAFF_ROLES:
                return "insufficient permissions to kick"
            if target.member == actor.member:
                return "cannot kick yourself"
            if GroupRole(target.role) == GroupRole.OWNER:
                return "cannot kick the group owner"
            # Rank, not the permission mask, decides who may kick whom
            if role != GroupRole.OWNER and role.rank <= GroupRole(target.role).rank:
                return "kicker must outrank the target"
            return None

        case Action.UPDATE_ROLE:
            if target is None or new_role is None:
                raise ValueError("Role changes require a target and a new role")
            if role not in ROLE_MANAGERS:
                return "only the owner or an admin may change roles"
            if GroupRole(new_role) == GroupRole.ADMIN and role != GroupRole.OWNER:
                return "only the owner may promote to admin"
            return None

    raise ValueError(f"Unknown action {action}")


def can_perform(
    actor: "MembershipData",
    action: Action,
    target: "MembershipData | None" = None,
    **kwargs,
) -> bool:
    return denial_reason(actor, action, target, **kwargs) is None


def authorize(
    actor: "MembershipData",
    action: Action,
    target: "MembershipData | None" = None,
    **kwargs,
) -> None:
    """
    Raise `PermissionDenied` with the reason from `denial_reason` if the
    action is not allowed.
    """
    reason = denial_reason(actor, action, target, **kwargs)

    if reason is not None:
        raise PermissionDenied(reason)


def ensure_role_change_keeps_owner(
    current_role: GroupRole, new_role: GroupRole
) -> None:
    """
    A group has exactly one owner, fixed at creation. The owner's role can
    not be changed and no one else can be given the owner role.
    """
    if GroupRole(current_role) == GroupRole.OWNER:
        raise InvalidState("the owner's role cannot be changed")
    if GroupRole(new_role) == GroupRole.OWNER:
        raise InvalidState("the owner role cannot be assigned")


def check_role_change(
    actor: "MembershipData", target: "MembershipData", new_role: GroupRole
) -> None:
    """
    All checks for a role change, in order: the actor must be the owner or an
    admin, the owner's role is fixed and cannot be handed out, and only the
    owner may promote to admin.

    Raises
    ------
    PermissionDenied
        If the actor lacks the authority for this change.
    InvalidState
        If the change would touch the owner role.
    """
    if GroupRole(actor.role) not in ROLE_MANAGERS:
        authorize(actor, Action.UPDATE_ROLE, target, new_role=new_role)

    ensure_role_change_keeps_owner(GroupRole(target.role), new_role)

    authorize(actor, Action.UPDATE_ROLE, target, new_role=new_role)
