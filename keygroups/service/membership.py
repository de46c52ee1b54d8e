"""
Service layer implementing membership-related logic.

Every operation that creates or destroys a membership also adjusts the
group's `member_count` inside the same unit of work, so the counter always
equals the number of live memberships.
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from keygroups.config.settings import Settings
from keygroups.core.addressing import DerivedAddress
from keygroups.core.errors import (
    CapacityExceeded,
    InvalidState,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from keygroups.core.roles import (
    Action,
    GroupRole,
    authorize,
    check_role_change,
    permissions_for,
)
from keygroups.core.validation import (
    ENCRYPTED_GROUP_KEY_LENGTH,
    MAX_COUNTER,
    validate_fixed_bytes,
    validate_group_id,
    validate_identity,
)
from keygroups.database.group import Group
from keygroups.database.members import GroupMember

from . import storage
from .storage import UnitOfWork


def check_capacity(group: Group) -> None:
    """
    Raise `CapacityExceeded` if one more member would not fit.
    """
    if group.max_members != 0 and group.member_count >= group.max_members:
        raise CapacityExceeded(
            f"Group {group.group_id} is full ({group.member_count}/{group.max_members})"
        )

    if group.member_count >= MAX_COUNTER:
        raise CapacityExceeded(f"Group {group.group_id} cannot hold more members")


def stage_admission(
    uow: UnitOfWork,
    group: Group,
    member_address: DerivedAddress,
    member: bytes,
    encrypted_group_key: bytes,
    invited_by: bytes,
) -> GroupMember:
    """
    Stage a new Member-role membership and the matching counter increment on
    `uow`. The capacity check runs first, so nothing is staged for a full
    group.
    """
    check_capacity(group)

    current_time = datetime.now(timezone.utc)

    membership = uow.create(
        member_address,
        GroupMember(
            group_id=group.group_id,
            member=member.hex(),
            role=GroupRole.MEMBER.value,
            permissions=permissions_for(GroupRole.MEMBER),
            encrypted_group_key=encrypted_group_key,
            joined_at=current_time,
            invited_by=invited_by.hex(),
        ),
    )

    group.member_count += 1
    group.updated_at = current_time
    uow.update(group)

    return membership


def stage_removal(
    uow: UnitOfWork, group: Group, membership: GroupMember, refund_to: bytes
) -> None:
    uow.delete(membership, refund_to=refund_to)

    group.member_count = max(group.member_count - 1, 0)
    group.updated_at = datetime.now(timezone.utc)
    uow.update(group)


def _validate_key_blob(encrypted_group_key: bytes) -> None:
    validate_fixed_bytes(
        encrypted_group_key, ENCRYPTED_GROUP_KEY_LENGTH, "encrypted_group_key"
    )


async def read_membership(
    group_id: bytes,
    member: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupMember:
    """
    Read one identity's membership in a group.

    Raises
    ------
    NotFound
        If the identity is not a member of the group.
    """
    validate_group_id(group_id)
    validate_identity(member, "member")

    log = log.bind(group_id=group_id.hex(), member=member.hex())

    scheme = settings.address_scheme()

    try:
        membership = await storage.read(
            GroupMember, scheme.member(group_id, member), scheme, conn
        )
    except NotFound:
        await log.adebug("membership.not_found")
        raise NotFound(f"{member.hex()} is not a member of {group_id.hex()}")

    return membership


async def join(
    group_id: bytes,
    encrypted_group_key: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupMember:
    """
    Join a group as a plain member.

    Raises
    ------
    NotFound
        If the group does not exist.
    CapacityExceeded
        If the group is full.
    AlreadyExists
        If the caller is already a member.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    _validate_key_blob(encrypted_group_key)

    log = log.bind(group_id=group_id.hex(), member=caller.hex())

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    member_address = scheme.member(group_id, caller)

    uow = UnitOfWork("membership.join", caller, group_address, member_address)

    group = await storage.read(Group, group_address, scheme, conn, for_update=True)

    try:
        membership = stage_admission(
            uow=uow,
            group=group,
            member_address=member_address,
            member=caller,
            encrypted_group_key=encrypted_group_key,
            invited_by=caller,
        )
    except CapacityExceeded:
        await log.ainfo("membership.join.group_full", max_members=group.max_members)
        raise

    await uow.commit(conn=conn, log=log)

    await log.ainfo("membership.joined", member_count=group.member_count)

    return membership


async def invite(
    group_id: bytes,
    invitee: bytes,
    encrypted_group_key: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupMember:
    """
    Add `invitee` to the group on the caller's authority.

    Owners, admins and moderators may always invite; plain members only if
    they hold the invite permission and the group allows member invites.

    Raises
    ------
    NotFound
        If the group does not exist or the caller is not a member.
    PermissionDenied
        If the caller may not invite.
    CapacityExceeded
        If the group is full.
    AlreadyExists
        If the invitee is already a member.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_identity(invitee, "invitee")
    _validate_key_blob(encrypted_group_key)

    log = log.bind(
        group_id=group_id.hex(), inviter=caller.hex(), member=invitee.hex()
    )

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    invitee_address = scheme.member(group_id, invitee)

    uow = UnitOfWork("membership.invite", caller, group_address, invitee_address)

    group = await storage.read(Group, group_address, scheme, conn, for_update=True)
    inviter = await storage.read(
        GroupMember, scheme.member(group_id, caller), scheme, conn
    )

    authorize(
        inviter.to_core(),
        Action.INVITE,
        allow_member_invites=group.allow_member_invites,
    )

    membership = stage_admission(
        uow=uow,
        group=group,
        member_address=invitee_address,
        member=invitee,
        encrypted_group_key=encrypted_group_key,
        invited_by=caller,
    )

    await uow.commit(conn=conn, log=log)

    await log.ainfo("membership.invited", member_count=group.member_count)

    return membership


async def leave(
    group_id: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Leave a group voluntarily. The owner can never leave.

    Raises
    ------
    NotFound
        If the group does not exist or the caller is not a member.
    InvalidState
        If the caller is the group's owner.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")

    log = log.bind(group_id=group_id.hex(), member=caller.hex())

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    member_address = scheme.member(group_id, caller)

    uow = UnitOfWork("membership.leave", caller, group_address, member_address)

    group = await storage.read(Group, group_address, scheme, conn, for_update=True)
    membership = await storage.read(
        GroupMember, member_address, scheme, conn, for_update=True
    )

    if GroupRole(membership.role) == GroupRole.OWNER:
        await log.awarning("membership.leave.owner")
        raise InvalidState("the owner cannot leave the group")

    stage_removal(uow=uow, group=group, membership=membership, refund_to=caller)

    await uow.commit(conn=conn, log=log)

    await log.ainfo("membership.left", member_count=group.member_count)

    return group


async def kick(
    group_id: bytes,
    target: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Remove `target` from the group. The storage deposit of the removed
    membership goes to the kicker.

    Raises
    ------
    NotFound
        If the group, the caller's membership or the target's membership does
        not exist.
    PermissionDenied
        If the caller is not staff, targets themselves or the owner, or does
        not outrank the target.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_identity(target, "target")

    log = log.bind(
        group_id=group_id.hex(), kicker=caller.hex(), member=target.hex()
    )

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    target_address = scheme.member(group_id, target)

    uow = UnitOfWork("membership.kick", caller, group_address, target_address)

    group = await storage.read(Group, group_address, scheme, conn, for_update=True)
    kicker = await storage.read(
        GroupMember, scheme.member(group_id, caller), scheme, conn
    )
    kicked = await storage.read(
        GroupMember, target_address, scheme, conn, for_update=True
    )

    try:
        authorize(kicker.to_core(), Action.KICK, kicked.to_core())
    except PermissionDenied as e:
        await log.awarning("membership.kick.denied", reason=e.reason)
        raise

    stage_removal(uow=uow, group=group, membership=kicked, refund_to=caller)

    await uow.commit(conn=conn, log=log)

    await log.ainfo("membership.kicked", member_count=group.member_count)

    return group


async def update_role(
    group_id: bytes,
    target: bytes,
    new_role: GroupRole,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> GroupMember:
    """
    Change a member's role. The permission mask is reset to the new role's
    fixed mask.

    Raises
    ------
    ValidationError
        If `new_role` is not a role.
    NotFound
        If the group or either membership does not exist.
    PermissionDenied
        If the caller is not the owner or an admin, or an admin tries to
        promote to admin.
    InvalidState
        If the target is the owner or the new role is owner.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_identity(target, "target")

    try:
        new_role = GroupRole(new_role)
    except ValueError:
        raise ValidationError("role", f"Unknown role {new_role}")

    log = log.bind(
        group_id=group_id.hex(),
        updater=caller.hex(),
        member=target.hex(),
        new_role=new_role.name,
    )

    scheme = settings.address_scheme()
    target_address = scheme.member(group_id, target)

    uow = UnitOfWork("membership.update_role", caller, target_address)

    await storage.read(Group, scheme.group(group_id), scheme, conn)
    updater = await storage.read(
        GroupMember, scheme.member(group_id, caller), scheme, conn
    )
    membership = await storage.read(
        GroupMember, target_address, scheme, conn, for_update=True
    )

    check_role_change(updater.to_core(), membership.to_core(), new_role)

    old_role = GroupRole(membership.role)

    membership.role = new_role.value
    membership.permissions = permissions_for(new_role)
    uow.update(membership)

    await uow.commit(conn=conn, log=log)

    await log.ainfo("membership.role_updated", old_role=old_role.name)

    return membership


async def mark_read(
    group_id: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    read_at: datetime | None = None,
) -> GroupMember:
    """
    Move the caller's read marker. Defaults to now.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")

    log = log.bind(group_id=group_id.hex(), member=caller.hex())

    scheme = settings.address_scheme()
    member_address = scheme.member(group_id, caller)

    uow = UnitOfWork("membership.mark_read", caller, member_address)

    membership = await storage.read(
        GroupMember, member_address, scheme, conn, for_update=True
    )

    membership.last_read_at = read_at or datetime.now(timezone.utc)
    uow.update(membership)

    await uow.commit(conn=conn, log=log)

    await log.adebug("membership.read_marker_moved")

    return membership


async def list_members(
    group_id: bytes,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> list[GroupMember]:
    """
    List the memberships of a group, oldest first.
    """
    validate_group_id(group_id)

    log = log.bind(group_id=group_id.hex())

    result = await conn.execute(
        select(GroupMember)
        .where(GroupMember.group_id == group_id.hex())
        .order_by(GroupMember.joined_at)
    )

    memberships = list(result.scalars().all())

    await log.adebug("membership.listed", number_of_members=len(memberships))

    return memberships


async def list_groups_for_member(
    member: bytes,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> list[Group]:
    """
    List every group `member` belongs to.
    """
    validate_identity(member, "member")

    log = log.bind(member=member.hex())

    result = await conn.execute(
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.group_id)
        .where(GroupMember.member == member.hex())
        .order_by(Group.created_at)
    )

    groups = list(result.scalars().all())

    await log.adebug("membership.groups_listed", number_of_groups=len(groups))

    return groups
