"""
Service layer for invite links.

Links are created by members allowed to invite, revoked by their creator or
by staff, and redeemed by anyone holding the code. Redemption writes the new
membership, the group's counter and the link's use count in one unit.
"""

import time
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from keygroups.config.settings import Settings
from keygroups.core.errors import (
    AlreadyExists,
    InvalidState,
    NotFound,
    ValidationError,
)
from keygroups.core.roles import Action, authorize
from keygroups.core.validation import (
    ENCRYPTED_GROUP_KEY_LENGTH,
    validate_counter_limit,
    validate_fixed_bytes,
    validate_group_id,
    validate_identity,
    validate_invite_code,
)
from keygroups.database.group import Group
from keygroups.database.invite import InviteLink
from keygroups.database.members import GroupMember

from . import storage
from .membership import stage_admission
from .storage import UnitOfWork


async def create(
    group_id: bytes,
    invite_code: str,
    expires_at: int,
    max_uses: int,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> InviteLink:
    """
    Create an invite link for a group.

    Parameters
    ----------
    group_id: bytes
        The group the link admits to.
    invite_code: str
        8-16 alphanumeric characters, unique within the group.
    expires_at: int
        Unix timestamp after which the link stops working, 0 for never.
    max_uses: int
        Number of redemptions allowed, 0 for unlimited.
    caller: bytes
        Verified identity of the creator.

    Raises
    ------
    ValidationError
        If the code, expiry or use limit is malformed.
    NotFound
        If the group does not exist or the caller is not a member.
    PermissionDenied
        If the caller may not invite.
    AlreadyExists
        If the group already has a link with this code.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_invite_code(invite_code)
    validate_counter_limit(max_uses, "max_uses")

    if isinstance(expires_at, bool) or not isinstance(expires_at, int):
        raise ValidationError("expires_at", "expires_at must be an integer")

    if expires_at < 0:
        raise ValidationError("expires_at", "expires_at must be a unix time or 0")

    log = log.bind(
        group_id=group_id.hex(),
        creator=caller.hex(),
        invite_code=invite_code,
        expires_at=expires_at,
        max_uses=max_uses,
    )

    scheme = settings.address_scheme()
    link_address = scheme.invite_link(group_id, invite_code)

    uow = UnitOfWork("invite_link.create", caller, link_address)

    group = await storage.read(Group, scheme.group(group_id), scheme, conn)
    creator = await storage.read(
        GroupMember, scheme.member(group_id, caller), scheme, conn
    )

    authorize(
        creator.to_core(),
        Action.CREATE_INVITE_LINK,
        allow_member_invites=group.allow_member_invites,
    )

    link = uow.create(
        link_address,
        InviteLink(
            group_id=group_id.hex(),
            invite_code=invite_code,
            created_by=caller.hex(),
            expires_at=expires_at,
            max_uses=max_uses,
            use_count=0,
            is_active=True,
            created_at=datetime.now(timezone.utc),
        ),
    )

    try:
        await uow.commit(conn=conn, log=log)
    except AlreadyExists:
        await log.ainfo("invite_link.exists")
        raise AlreadyExists(
            f"Invite code {invite_code} already exists for this group"
        )

    await log.ainfo("invite_link.created")

    return link


async def read(
    group_id: bytes,
    invite_code: str,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> InviteLink:
    """
    Read an invite link.

    Raises
    ------
    NotFound
        If the group has no link with this code.
    """
    validate_group_id(group_id)
    validate_invite_code(invite_code)

    scheme = settings.address_scheme()

    try:
        return await storage.read(
            InviteLink, scheme.invite_link(group_id, invite_code), scheme, conn
        )
    except NotFound:
        await log.ainfo(
            "invite_link.not_found", group_id=group_id.hex(), invite_code=invite_code
        )
        raise NotFound(f"Invite code {invite_code} not found")


async def list_for_group(
    group_id: bytes,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    active_only: bool = False,
) -> list[InviteLink]:
    validate_group_id(group_id)

    statement = select(InviteLink).where(InviteLink.group_id == group_id.hex())

    if active_only:
        statement = statement.where(InviteLink.is_active)

    result = await conn.execute(statement.order_by(InviteLink.created_at))
    links = list(result.scalars().all())

    await log.adebug(
        "invite_link.listed", group_id=group_id.hex(), number_of_links=len(links)
    )

    return links


async def revoke(
    group_id: bytes,
    invite_code: str,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> InviteLink:
    """
    Deactivate an invite link. There is no way to reactivate it; revoking an
    already revoked link succeeds and changes nothing.

    Raises
    ------
    NotFound
        If the group or link does not exist, or the caller is not a member.
    PermissionDenied
        If the caller neither created the link nor is staff.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_invite_code(invite_code)

    log = log.bind(
        group_id=group_id.hex(), revoker=caller.hex(), invite_code=invite_code
    )

    scheme = settings.address_scheme()
    link_address = scheme.invite_link(group_id, invite_code)

    uow = UnitOfWork("invite_link.revoke", caller, link_address)

    await storage.read(Group, scheme.group(group_id), scheme, conn)
    revoker = await storage.read(
        GroupMember, scheme.member(group_id, caller), scheme, conn
    )
    link = await storage.read(
        InviteLink, link_address, scheme, conn, for_update=True
    )

    authorize(
        revoker.to_core(),
        Action.REVOKE_INVITE_LINK,
        link_created_by=bytes.fromhex(link.created_by),
    )

    was_active = link.is_active

    link.is_active = False
    uow.update(link)

    await uow.commit(conn=conn, log=log)

    await log.ainfo("invite_link.revoked", was_active=was_active)

    return link


async def redeem(
    group_id: bytes,
    invite_code: str,
    encrypted_group_key: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    now: int | None = None,
) -> GroupMember:
    """
    Join a group through an invite link.

    The link must be active, unexpired and not used up. The new membership
    records the link's creator as the inviter. The membership, the group's
    member count and the link's use count are written together.

    Parameters
    ----------
    now: int | None
        Unix time to check the expiry against; defaults to the current time.

    Raises
    ------
    NotFound
        If the group or the link does not exist.
    InvalidState
        If the link is revoked, expired or exhausted.
    CapacityExceeded
        If the group is full.
    AlreadyExists
        If the caller is already a member. The use count is not consumed.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_invite_code(invite_code)
    validate_fixed_bytes(
        encrypted_group_key, ENCRYPTED_GROUP_KEY_LENGTH, "encrypted_group_key"
    )

    now = int(time.time()) if now is None else now

    log = log.bind(
        group_id=group_id.hex(), member=caller.hex(), invite_code=invite_code
    )

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    member_address = scheme.member(group_id, caller)
    link_address = scheme.invite_link(group_id, invite_code)

    uow = UnitOfWork(
        "invite_link.redeem", caller, group_address, member_address, link_address
    )

    group = await storage.read(Group, group_address, scheme, conn, for_update=True)
    link = await storage.read(
        InviteLink, link_address, scheme, conn, for_update=True
    )

    details = link.to_core()

    if not details.is_active:
        await log.ainfo("invite_link.redeem.revoked")
        raise InvalidState("invite link revoked")

    if details.is_expired(now):
        await log.ainfo("invite_link.redeem.expired", expires_at=link.expires_at)
        raise InvalidState("invite link expired")

    if details.is_exhausted():
        await log.ainfo("invite_link.redeem.exhausted", use_count=link.use_count)
        raise InvalidState("invite link exhausted")

    membership = stage_admission(
        uow=uow,
        group=group,
        member_address=member_address,
        member=caller,
        encrypted_group_key=encrypted_group_key,
        invited_by=bytes.fromhex(link.created_by),
    )

    link.use_count += 1
    uow.update(link)

    await uow.commit(conn=conn, log=log)

    await log.ainfo(
        "invite_link.redeemed",
        member_count=group.member_count,
        use_count=link.use_count,
    )

    return membership
