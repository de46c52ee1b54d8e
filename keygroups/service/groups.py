"""
Service layer for groups.
"""

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from keygroups.config.settings import Settings
from keygroups.core.addressing import normalize_public_code
from keygroups.core.errors import (
    AlreadyExists,
    InvalidState,
    NotFound,
    PermissionDenied,
)
from keygroups.core.group import CreateGroupFlags
from keygroups.core.roles import ALL_PERMISSIONS, GroupRole
from keygroups.core.validation import (
    GROUP_ENCRYPTION_KEY_LENGTH,
    validate_counter_limit,
    validate_fixed_bytes,
    validate_group_description,
    validate_group_id,
    validate_group_name,
    validate_identity,
    validate_public_code,
)
from keygroups.database.group import CodeLookup, Group
from keygroups.database.members import GroupMember

from . import storage
from .storage import UnitOfWork

# The owner already holds the group key, so their copy is never encrypted
OWNER_ENCRYPTED_GROUP_KEY = bytes(64)


async def create(
    group_id: bytes,
    name: str,
    description: str,
    flags: CreateGroupFlags,
    max_members: int,
    group_encryption_key: bytes,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Create a new group owned by the caller.

    The group record and the owner's membership are written together; the
    owner counts as the first member.

    Parameters
    ----------
    group_id: bytes
        The 32 byte identifier chosen by the creator.
    name: str
        Group name, 1-100 characters.
    description: str
        Group description, up to 500 characters.
    flags: CreateGroupFlags
        Visibility and invite settings.
    max_members: int
        Member cap, 0 for unlimited.
    group_encryption_key: bytes
        32 byte shared key, opaque to this service.
    caller: bytes
        Verified identity of the creator, who becomes the owner.

    Raises
    ------
    ValidationError
        If any input is malformed.
    AlreadyExists
        If a group with this identifier already exists.
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_group_name(name)
    validate_group_description(description)
    validate_counter_limit(max_members, "max_members")
    validate_fixed_bytes(
        group_encryption_key, GROUP_ENCRYPTION_KEY_LENGTH, "group_encryption_key"
    )

    log = log.bind(
        group_id=group_id.hex(),
        owner=caller.hex(),
        group_name=name,
        is_public=flags.is_public,
        max_members=max_members,
    )

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    owner_address = scheme.member(group_id, caller)

    uow = UnitOfWork("group.create", caller, group_address, owner_address)

    current_time = datetime.now(timezone.utc)

    group = uow.create(
        group_address,
        Group(
            group_id=group_id.hex(),
            owner=caller.hex(),
            name=name,
            description=description,
            is_public=flags.is_public,
            is_searchable=flags.is_searchable,
            invite_only=flags.invite_only,
            max_members=max_members,
            allow_member_invites=flags.allow_member_invites,
            group_encryption_key=group_encryption_key,
            member_count=1,
            created_at=current_time,
            updated_at=current_time,
        ),
    )

    uow.create(
        owner_address,
        GroupMember(
            group_id=group_id.hex(),
            member=caller.hex(),
            role=GroupRole.OWNER.value,
            permissions=ALL_PERMISSIONS,
            encrypted_group_key=OWNER_ENCRYPTED_GROUP_KEY,
            joined_at=current_time,
            invited_by=caller.hex(),
        ),
    )

    try:
        await uow.commit(conn=conn, log=log)
    except AlreadyExists:
        await log.ainfo("group.exists")
        raise AlreadyExists(f"Group {group_id.hex()} already exists")

    await log.ainfo("group.created", member_count=group.member_count)

    return group


async def read_by_id(
    group_id: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Read a group by its ID.

    Raises
    ------
    NotFound
        If the group does not exist.
    """
    validate_group_id(group_id)

    log = log.bind(group_id=group_id.hex())

    scheme = settings.address_scheme()

    try:
        group = await storage.read(Group, scheme.group(group_id), scheme, conn)
    except NotFound:
        await log.ainfo("group.not_found")
        raise NotFound(f"Group {group_id.hex()} not found")

    await log.adebug("group.found")

    return group


async def set_group_code(
    group_id: bytes,
    public_code: str,
    caller: bytes,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Claim a public code for a group. Only the stored owner may do this.

    Setting a new code does not release the previous one: the old lookup
    keeps resolving to this group.

    Raises
    ------
    ValidationError
        If the code is malformed.
    NotFound
        If the group does not exist.
    PermissionDenied
        If the caller is not the group's owner.
    AlreadyExists
        If the code has already been claimed (by any group).
    """
    validate_group_id(group_id)
    validate_identity(caller, "caller")
    validate_public_code(public_code)

    log = log.bind(
        group_id=group_id.hex(), caller=caller.hex(), public_code=public_code
    )

    scheme = settings.address_scheme()
    group_address = scheme.group(group_id)
    lookup_address = scheme.code_lookup(public_code)

    uow = UnitOfWork("group.set_code", caller, group_address, lookup_address)

    group = await storage.read(Group, group_address, scheme, conn, for_update=True)

    if group.owner != caller.hex():
        await log.awarning("group.set_code.not_owner")
        raise PermissionDenied("not group owner")

    previous_code = group.public_code

    group.public_code = public_code
    group.updated_at = datetime.now(timezone.utc)
    uow.update(group)

    uow.create(
        lookup_address,
        CodeLookup(
            public_code=normalize_public_code(public_code), group_id=group_id.hex()
        ),
    )

    try:
        await uow.commit(conn=conn, log=log)
    except AlreadyExists:
        await log.ainfo("group.set_code.taken")
        raise AlreadyExists(f"Public code {public_code} is already taken")

    await log.ainfo("group.code_set", previous_code=previous_code or None)

    return group


async def resolve_by_code(
    public_code: str,
    settings: Settings,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Find the group a public code points to. Codes are case insensitive.

    Raises
    ------
    ValidationError
        If the (case folded) code is malformed.
    NotFound
        If the code is unclaimed, or the group it points to is missing.
    InvalidState
        If the lookup record does not belong to this code.
    """
    code = normalize_public_code(public_code)
    validate_public_code(code)

    log = log.bind(public_code=code)

    scheme = settings.address_scheme()

    try:
        lookup = await storage.read(CodeLookup, scheme.code_lookup(code), scheme, conn)
    except NotFound:
        await log.ainfo("group.code_not_found")
        raise NotFound(f"No group with public code {code}")

    claim = lookup.to_core()

    if claim.public_code != code:
        await log.awarning("group.code_mismatch", stored_code=claim.public_code)
        raise InvalidState("code lookup does not match the requested code")

    group_id = claim.group_id
    log = log.bind(group_id=group_id.hex())

    try:
        group = await storage.read(Group, scheme.group(group_id), scheme, conn)
    except NotFound:
        await log.awarning("group.code_dangling")
        raise NotFound(f"Group {group_id.hex()} for code {code} not found")

    await log.adebug("group.resolved")

    return group


async def search_public(
    conn: AsyncSession,
    log: FilteringBoundLogger,
    query: str | None = None,
) -> list[Group]:
    """
    List groups that are both public and searchable, optionally filtered by
    a case insensitive substring of the name.
    """
    log = log.bind(query=query)

    statement = select(Group).where(Group.is_public, Group.is_searchable)

    if query:
        statement = statement.where(
            func.lower(Group.name).contains(query.lower(), autoescape=True)
        )

    result = await conn.execute(statement.order_by(Group.created_at))
    groups = list(result.scalars().all())

    await log.adebug("group.searched", number_of_groups=len(groups))

    return groups
