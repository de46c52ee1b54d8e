"""
A simple CLI for administering a group database.
"""

import asyncio
import sys

import structlog

from keygroups.config.settings import Settings
from keygroups.core.errors import KeygroupsError

USAGE = (
    "Supported commands are keygroups setup, keygroups lookup {public_code}, "
    "or keygroups members {group_id_hex}"
)


async def lookup(settings: Settings, public_code: str):
    from keygroups.service import groups as groups_service

    manager = settings.async_manager()

    try:
        async with manager.transaction() as conn:
            group = await groups_service.resolve_by_code(
                public_code=public_code,
                settings=settings,
                conn=conn,
                log=structlog.get_logger(),
            )
            print(group.to_core().model_dump_json(indent=2))
    finally:
        await manager.dispose()


async def members(settings: Settings, group_id: bytes):
    from keygroups.service import membership as membership_service

    manager = settings.async_manager()

    try:
        async with manager.transaction() as conn:
            memberships = await membership_service.list_members(
                group_id=group_id, conn=conn, log=structlog.get_logger()
            )
            for membership in memberships:
                print(membership.to_core().model_dump_json())
    finally:
        await manager.dispose()


def main():
    try:
        command = sys.argv[1]
    except IndexError:
        print(USAGE)
        exit(1)

    settings = Settings()

    if command == "setup":
        settings.sync_manager().create_all()
        print("Setup complete")
        exit(0)

    try:
        argument = sys.argv[2]
    except IndexError:
        print(USAGE)
        exit(1)

    try:
        if command == "lookup":
            asyncio.run(lookup(settings=settings, public_code=argument))
        elif command == "members":
            asyncio.run(members(settings=settings, group_id=bytes.fromhex(argument)))
        else:
            print(USAGE)
            exit(1)
    except (KeygroupsError, ValueError) as e:
        print(f"Error: {e}")
        exit(1)
