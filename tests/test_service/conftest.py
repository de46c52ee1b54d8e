"""
Configuration variables and fixtures for the service layer tests.
"""

import secrets

import pytest
import pytest_asyncio
import structlog

from keygroups.config.settings import Settings
from keygroups.core.group import CreateGroupFlags
from keygroups.core.random import group_id as random_group_id
from keygroups.core.roles import GroupRole
from keygroups.service import groups as groups_service
from keygroups.service import membership as membership_service

GROUP_KEY = bytes(range(32))
MEMBER_KEY = bytes(range(64))


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def session_manager(server_settings: Settings, database):
    manager = server_settings.async_manager()
    yield manager
    await manager.dispose()


@pytest_asyncio.fixture(scope="session")
def logger():
    yield structlog.get_logger()


@pytest.fixture
def identity():
    """
    Factory for fresh, random 32 byte identities.
    """
    return lambda: secrets.token_bytes(32)


@pytest.fixture
def member_key():
    return MEMBER_KEY


@pytest.fixture
def create_group(session_manager, server_settings, logger):
    async def factory(owner: bytes, max_members: int = 0, **flags) -> bytes:
        group_id = random_group_id()

        async with session_manager.transaction() as conn:
            await groups_service.create(
                group_id=group_id,
                name="Test Group",
                description="A group for testing",
                flags=CreateGroupFlags(**flags),
                max_members=max_members,
                group_encryption_key=GROUP_KEY,
                caller=owner,
                settings=server_settings,
                conn=conn,
                log=logger,
            )

        return group_id

    return factory


@pytest.fixture
def add_member(session_manager, server_settings, logger):
    """
    Join `member` to the group and, if asked, have the owner give them a
    role.
    """

    async def factory(
        group_id: bytes,
        member: bytes,
        owner: bytes,
        role: GroupRole = GroupRole.MEMBER,
    ) -> None:
        async with session_manager.transaction() as conn:
            await membership_service.join(
                group_id=group_id,
                encrypted_group_key=MEMBER_KEY,
                caller=member,
                settings=server_settings,
                conn=conn,
                log=logger,
            )

        if role != GroupRole.MEMBER:
            async with session_manager.transaction() as conn:
                await membership_service.update_role(
                    group_id=group_id,
                    target=member,
                    new_role=role,
                    caller=owner,
                    settings=server_settings,
                    conn=conn,
                    log=logger,
                )

    return factory


@pytest.fixture
def read_group(session_manager, server_settings, logger):
    async def factory(group_id: bytes):
        async with session_manager.transaction() as conn:
            return await groups_service.read_by_id(
                group_id=group_id, settings=server_settings, conn=conn, log=logger
            )

    return factory
